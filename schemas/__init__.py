"""
SCENECAST Data Models (Pydantic Schemas)
"""

from .models import (
    NO_SPEAKER,
    IdentityStatus,
    TaskStatus,
    TaskType,
    SceneGenerationStatus,
    CharacterIdentity,
    Character,
    Shot,
    SceneGeneration,
    Scene,
    Project,
    ShotRange,
    GenerationTask,
    TaskStatusReport,
    DialogueLine,
    ShotScript,
    Script,
    GenerationSettings,
    BackendConfig,
    SceneOutcome,
    BatchReport,
)

__all__ = [
    "NO_SPEAKER",
    "IdentityStatus",
    "TaskStatus",
    "TaskType",
    "SceneGenerationStatus",
    "CharacterIdentity",
    "Character",
    "Shot",
    "SceneGeneration",
    "Scene",
    "Project",
    "ShotRange",
    "GenerationTask",
    "TaskStatusReport",
    "DialogueLine",
    "ShotScript",
    "Script",
    "GenerationSettings",
    "BackendConfig",
    "SceneOutcome",
    "BatchReport",
]
