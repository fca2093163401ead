"""
SCENECAST Data Models

공통 데이터 모델 정의 (Pydantic 기반)
- Character / CharacterIdentity: 캐릭터와 백엔드 등록 아이덴티티
- Scene / Shot / Project: 스토리보드 구조
- GenerationTask: 비동기 비디오 생성 작업 레코드
- Script: 백엔드로 전송되는 구조화 스크립트
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field, field_validator, model_validator


NO_SPEAKER = "none"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityStatus(str, Enum):
    """캐릭터 아이덴티티 상태"""
    PENDING = "pending"
    GENERATING = "generating"
    REGISTERED = "registered"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """생성 작업 상태"""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskType(str, Enum):
    SHOT_GENERATION = "shot_generation"
    CHARACTER_REFERENCE = "character_reference"


class SceneGenerationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# Characters
# ============================================================================

class CharacterIdentity(BaseModel):
    """백엔드가 발급한 캐릭터 아이덴티티 (등록 후 불변)"""
    code: str = Field(default="", description="Identity code issued by the backend")
    reference_video_url: Optional[str] = Field(
        default=None,
        description="Durable reference video URL used for registration"
    )
    status: IdentityStatus = Field(default=IdentityStatus.PENDING)
    task_id: Optional[str] = Field(default=None, description="Reference video task ID")
    failure_reason: Optional[str] = Field(default=None)
    failed_asset: Optional[str] = Field(
        default=None,
        description="Reference asset (image or video URL) the failed registration used"
    )

    @property
    def reference(self) -> str:
        """Code as written inside prompts, always with a single leading '@'."""
        code = self.code.strip()
        if not code:
            return ""
        return code if code.startswith("@") else f"@{code}"


class Character(BaseModel):
    """프로젝트 캐릭터"""
    id: str
    name: str
    description: str = ""
    appearance: str = ""
    reference_images: List[str] = Field(default_factory=list)
    identity: CharacterIdentity = Field(default_factory=CharacterIdentity)

    @property
    def has_registered_identity(self) -> bool:
        return self.identity.status == IdentityStatus.REGISTERED and bool(self.identity.code.strip())

    @property
    def has_reference_assets(self) -> bool:
        """참조 이미지 또는 참조 영상 보유 여부"""
        return bool(self.reference_images) or bool(self.identity.reference_video_url)

    @property
    def source_asset(self) -> Optional[str]:
        """등록 원본 자산: 참조 영상이 있으면 그 URL, 없으면 첫 참조 이미지"""
        if self.identity.reference_video_url:
            return self.identity.reference_video_url
        return self.reference_images[0] if self.reference_images else None


# ============================================================================
# Storyboard
# ============================================================================

class Shot(BaseModel):
    """스토리보드 샷 (order 순서로 청크 분할)"""
    id: str
    scene_id: str
    order: int = 0
    duration: float = Field(default=5.0, description="Shot duration in seconds")
    shot_size: str = ""
    camera_movement: str = ""
    description: str = ""
    dialogue: str = ""
    narration: str = ""
    characters: List[str] = Field(
        default_factory=list,
        description="Explicit character references (character id or name)"
    )

    @field_validator("duration", mode="before")
    @classmethod
    def _default_duration(cls, value: Any) -> float:
        # 길이 미지정/0 이하 → 기본 5초
        try:
            value = float(value)
        except (TypeError, ValueError):
            return 5.0
        return value if value > 0 else 5.0

    @property
    def narrative_text(self) -> str:
        """Description text, or its ``visual`` field when stored as JSON."""
        text = self.description or ""
        stripped = text.strip()
        if stripped.startswith("{"):
            try:
                payload = json.loads(stripped)
            except json.JSONDecodeError:
                return text
            if isinstance(payload, dict) and payload.get("visual"):
                return str(payload["visual"])
        return text

    @property
    def combined_text(self) -> str:
        return " ".join(part for part in (self.narrative_text, self.dialogue, self.narration) if part)


class SceneGeneration(BaseModel):
    """씬 단위 생성 상태"""
    task_ids: List[str] = Field(default_factory=list)
    chunk_count: int = Field(default=0, description="Chunks planned for the scene (all submitted when equal to len(task_ids))")
    status: SceneGenerationStatus = SceneGenerationStatus.PENDING
    progress: int = 0
    error: Optional[str] = None


class Scene(BaseModel):
    id: str
    name: str = ""
    location: str = ""
    description: str = ""
    generation: Optional[SceneGeneration] = None


class Project(BaseModel):
    """스토리보드 프로젝트"""
    id: str
    title: str = ""
    aspect_ratio: str = Field(default="16:9", description="Project aspect ratio (e.g. 16:9, 9:16)")
    art_style: str = ""
    characters: List[Character] = Field(default_factory=list)
    scenes: List[Scene] = Field(default_factory=list)
    shots: List[Shot] = Field(default_factory=list)

    def shots_for_scene(self, scene_id: str) -> List[Shot]:
        return sorted((s for s in self.shots if s.scene_id == scene_id), key=lambda s: s.order)

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        return next((s for s in self.scenes if s.id == scene_id), None)


# ============================================================================
# Generation tasks
# ============================================================================

class ShotRange(BaseModel):
    """청크 내 샷의 시간 구간 [start, end)"""
    shot_id: str
    start: float
    end: float


class GenerationTask(BaseModel):
    """비동기 생성 작업 레코드 (poller만 상태 필드를 변경)"""
    id: str
    type: TaskType = TaskType.SHOT_GENERATION
    project_id: Optional[str] = None
    scene_id: Optional[str] = None
    character_id: Optional[str] = None
    status: TaskStatus = TaskStatus.QUEUED
    progress: int = 0
    model: str = "sora-2"
    prompt: str = ""
    target_duration: int = 15
    target_size: str = "1280x720"
    shot_ids: List[str] = Field(default_factory=list)
    shot_ranges: List[ShotRange] = Field(default_factory=list)
    source_url: Optional[str] = Field(default=None, description="Ephemeral backend artifact URL")
    durable_url: Optional[str] = Field(default=None, description="Re-hosted artifact URL")
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskStatusReport(BaseModel):
    """백엔드 상태 조회 결과 (정규화된 status)"""
    status: TaskStatus = TaskStatus.PROCESSING
    progress: int = 0
    result_url: Optional[str] = None
    error: Optional[Any] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> str:
        if isinstance(value, TaskStatus):
            return value.value
        value = str(value or "").lower()
        if value in ("queued", "completed", "failed"):
            return value
        # running / in_progress / generating / 미지정 → processing
        return TaskStatus.PROCESSING.value

    @field_validator("progress", mode="before")
    @classmethod
    def _normalize_progress(cls, value: Any) -> int:
        try:
            return int(float(value or 0))
        except (TypeError, ValueError):
            return 0


# ============================================================================
# Structured script (serialization boundary)
# ============================================================================

class DialogueLine(BaseModel):
    speaker_code: str = NO_SPEAKER
    text: str = ""


class ShotScript(BaseModel):
    action: str
    camera: str = "Static"
    dialogue: DialogueLine = Field(default_factory=DialogueLine)
    duration: float
    location: str = "Unknown"
    style: List[str] = Field(default_factory=list)


class Script(BaseModel):
    """
    백엔드 전송용 구조화 스크립트.

    character_settings 키는 반드시 아이덴티티 코드(@code)이며 표시 이름이 아닙니다.
    """
    character_settings: Dict[str, str] = Field(default_factory=dict)
    shots: List[ShotScript] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_references(self) -> "Script":
        if not self.shots:
            raise ValueError("script must contain at least one shot")
        for key in self.character_settings:
            if not key.startswith("@"):
                raise ValueError(f"character setting key is not an identity reference: {key!r}")
        for shot in self.shots:
            speaker = shot.dialogue.speaker_code
            if speaker != NO_SPEAKER and speaker not in self.character_settings:
                raise ValueError(f"dialogue speaker {speaker!r} has no character setting")
        return self

    def to_payload(self) -> str:
        return self.model_dump_json()


# ============================================================================
# Settings
# ============================================================================

class GenerationSettings(BaseModel):
    """생성 정책 (config/generation_policy.yaml 의 타입 뷰)"""
    platform_max_seconds: int = 15
    safety_buffer_seconds: int = 2
    short_tier_seconds: int = 10
    long_tier_seconds: int = 15
    max_shot_seconds: float = 15
    model: str = "sora-2"
    reference_model: str = "sora-2"
    landscape_resolution: str = "1280x720"
    portrait_resolution: str = "720x1280"
    portrait_ratios: List[str] = Field(default_factory=lambda: ["9:16", "3:4"])
    poll_interval_sec: float = 5.0
    poll_max_attempts: int = 600
    retry_attempts: int = 3
    retry_backoff_sec: float = 2.0
    identity_timestamps: str = "1,3"
    style_tags: List[str] = Field(
        default_factory=lambda: ["no subtitles", "high definition", "no background music", "no flicker"]
    )

    @property
    def chunk_cap_seconds(self) -> float:
        return self.platform_max_seconds - self.safety_buffer_seconds


class BackendConfig(BaseModel):
    """생성 백엔드 접속 정보 (호출자가 주입)"""
    api_key: str
    base_url: str = "https://models.kapon.cloud"
    request_timeout_sec: float = 60.0
    download_timeout_sec: float = 300.0


# ============================================================================
# Orchestration results
# ============================================================================

class SceneOutcome(BaseModel):
    scene_id: str
    name: str = ""
    status: str = "submitted"
    task_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    stage: Optional[str] = None


class BatchReport(BaseModel):
    total: int = 0
    submitted: int = 0
    failed: int = 0
    skipped: int = 0
    details: List[SceneOutcome] = Field(default_factory=list)
