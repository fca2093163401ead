"""
SCENECAST Agents Package

에이전트 기반 아키텍처:
- CharacterResolver: 샷 텍스트에서 등장 캐릭터 / 대사 화자 식별
- SceneChunker: 샷 목록을 길이 제한 내 생성 단위로 분할
- PromptComposer: 청크별 구조화 스크립트 구성
- TaskRunner: 생성 작업 제출 / 폴링 / 재호스팅
- CharacterIdentityRegistrar: 참조 영상 생성 → 아이덴티티 등록
- SceneVideoOrchestrator: 씬 / 프로젝트 단위 비디오 생성
"""

from .character_resolver import CharacterResolver
from .scene_chunker import SceneChunker, compute_shot_ranges
from .prompt_composer import PromptComposer
from .task_runner import TaskRunner
from .identity_registrar import CharacterIdentityRegistrar, ReferenceAttempt, next_reference_attempt
from .video_orchestrator import SceneVideoOrchestrator

__all__ = [
    "CharacterResolver",
    "SceneChunker",
    "compute_shot_ranges",
    "PromptComposer",
    "TaskRunner",
    "CharacterIdentityRegistrar",
    "ReferenceAttempt",
    "next_reference_attempt",
    "SceneVideoOrchestrator",
]
