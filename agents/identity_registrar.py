"""
Character Identity Registrar: 캐릭터별 재사용 가능한 아이덴티티 코드 발급.

흐름:
1. 참조 이미지로 짧은 참조 영상 생성 (이미지 비율로 해상도 결정, 짧은 tier)
2. 완료된 참조 영상을 영구 스토리지로 재호스팅
3. 재호스팅 URL + 고정 타임스탬프로 아이덴티티 등록 → code

- 이미 등록된 캐릭터는 백엔드를 다시 호출하지 않음 (실행 단위 캐시 + 캐릭터별 lock)
- 콘텐츠 정책 거부 시 스타일화 프롬프트로 정확히 1회 재시도
- failed 캐릭터는 참조 자산이 교체될 때까지 다시 시도하지 않음
- 여러 캐릭터는 동시에 등록, 하나라도 실패하면 전체 실패 (all-or-nothing)
"""

import asyncio
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).parent.parent))

from agents.prompt_composer import PromptComposer
from agents.task_runner import TaskRunner
from schemas import Character, GenerationSettings, GenerationTask, IdentityStatus
from utils.error_manager import ErrorManager
from utils.errors import (
    CharacterRegistrationError,
    GenerationError,
    PolicyRejectionError,
    ValidationError,
)
from utils.image_probe import probe_image_size
from utils.logger import get_logger
from utils.project_store import CHARACTER
from utils.resolution import ResolutionPolicy

logger = get_logger("identity_registrar")


class ReferenceAttempt(str, Enum):
    ORIGINAL = "original"
    STYLIZED = "stylized"


def next_reference_attempt(current: ReferenceAttempt) -> Optional[ReferenceAttempt]:
    """정책 거부 후 다음 시도. 스타일화 시도까지 거부되면 None (더 이상 재시도 없음)"""
    if current == ReferenceAttempt.ORIGINAL:
        return ReferenceAttempt.STYLIZED
    return None


class CharacterIdentityRegistrar:
    """Ensures every involved character holds a registered identity code."""

    def __init__(
        self,
        client,
        runner: TaskRunner,
        store,
        composer: PromptComposer = None,
        resolution_policy: ResolutionPolicy = None,
        settings: GenerationSettings = None,
        probe: Callable[[str], Tuple[int, int]] = None,
    ):
        self.client = client
        self.runner = runner
        self.store = store
        self.settings = settings or GenerationSettings()
        self.composer = composer or PromptComposer(self.settings)
        self.resolution_policy = resolution_policy or ResolutionPolicy.from_settings(self.settings)
        self._probe = probe or probe_image_size
        # 실행 단위 캐시: character id → identity code
        self._registered: Dict[str, str] = {}
        # 실행 단위 실패 캐시: character id → 실패 원인 (같은 실행에서 재시도하지 않음)
        self._failed: Dict[str, GenerationError] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, characters: Sequence[Character]) -> None:
        """
        등록이 필요한 캐릭터가 참조 자산을 갖고 있는지 백엔드 호출 전에 확인합니다.

        Raises:
            ValidationError: 참조 이미지도 참조 영상도 없는 캐릭터가 있을 때 (이름 목록 포함)
        """
        missing = [
            c.name for c in characters
            if not c.has_registered_identity and c.id not in self._registered and not c.has_reference_assets
        ]
        if missing:
            raise ValidationError(
                f"Characters missing reference images: {', '.join(missing)}. "
                "Upload a reference image (or reference video) for each before generating.",
                stage="validation",
                character=missing[0],
            )

    # =========================================================================
    # Registration
    # =========================================================================

    async def ensure_registered(self, characters: Sequence[Character]) -> List[Character]:
        """
        Register every character that lacks an identity, concurrently.

        Returns:
            The same characters, all holding registered identities

        Raises:
            ValidationError: A character has no reference assets (nothing submitted)
            CharacterRegistrationError: At least one registration failed
        """
        characters = list(characters)
        self.validate(characters)

        pending = [c for c in characters if not c.has_registered_identity]
        if not pending:
            return characters

        logger.info(f"[Registrar] Registering {len(pending)} character(s): {[c.name for c in pending]}")
        results = await asyncio.gather(*(self.register(c) for c in pending), return_exceptions=True)

        failures: List[GenerationError] = []
        for char, result in zip(pending, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, GenerationError):
                failures.append(result)
            elif isinstance(result, Exception):
                failures.append(
                    GenerationError(str(result), stage="character_registration", character=char.name)
                )

        if failures:
            error = CharacterRegistrationError(failures)
            ErrorManager.log_exception("IdentityRegistrar", error)
            raise error
        return characters

    async def register(self, character: Character) -> Character:
        """
        단일 캐릭터 등록. 이미 등록된 경우 백엔드 호출 없이 반환.

        failed 상태의 캐릭터는 참조 자산이 교체되기 전까지 다시 시도하지 않습니다.
        같은 실행에서 실패한 캐릭터는 캐시된 실패로 즉시 거부됩니다.
        """
        if character.has_registered_identity:
            self._registered.setdefault(character.id, character.identity.code)
            return character

        lock = self._locks.setdefault(character.id, asyncio.Lock())
        async with lock:
            cached = self._registered.get(character.id)
            if cached:
                self._apply_code(character, cached)
                return character
            if character.has_registered_identity:
                return character

            failed = self._failed.get(character.id)
            if failed is None and character.identity.status == IdentityStatus.FAILED:
                failed = GenerationError(
                    character.identity.failure_reason or "previous registration failed",
                    stage="character_registration",
                    character=character.name,
                )
                self._failed[character.id] = failed
            if failed is not None:
                raise GenerationError(
                    f"Character '{character.name}' is marked failed ({failed.message}). "
                    "Replace its reference image or supply a reference video before retrying.",
                    stage=failed.stage,
                    character=character.name,
                    task_id=failed.task_id,
                )

            asset = character.source_asset
            try:
                reference_url = character.identity.reference_video_url
                if reference_url:
                    logger.info(f"[Registrar] {character.name}: using existing reference video")
                else:
                    self._set_status(character, IdentityStatus.GENERATING)
                    reference_url = await self._synthesize_reference(character)

                code = await asyncio.to_thread(
                    self.client.create_identity,
                    reference_url,
                    self.settings.identity_timestamps,
                )
            except GenerationError as e:
                e.character = e.character or character.name
                self._mark_failed(character, e, asset)
                raise

            self._apply_code(character, code)
            logger.info(f"[Registrar] {character.name} registered as {character.identity.reference}")
            return character

    async def adopt_reference(self, task: GenerationTask) -> Optional[Character]:
        """
        재조회로 완료된 참조 영상 작업을 캐릭터에 반영하고 아이덴티티를 등록합니다.

        등록 폴링이 타임아웃된 뒤 작업이 완료된 경우, 새 참조 영상을 만들지 않고
        완료된 영상을 그대로 사용합니다.

        Returns:
            갱신된 캐릭터 (저장된 캐릭터가 없으면 None)
        """
        record = self.store.load(CHARACTER, task.character_id) if task.character_id else None
        if not record:
            logger.warning(f"[Registrar] Reference task {task.id} has no stored character")
            return None

        character = Character.model_validate(record)
        if character.has_registered_identity:
            return character
        if character.identity.task_id and character.identity.task_id != task.id:
            logger.info(f"[Registrar] {character.name}: reference task {task.id} superseded, ignored")
            return character

        lock = self._locks.setdefault(character.id, asyncio.Lock())
        async with lock:
            asset = character.source_asset
            character.identity.reference_video_url = task.durable_url
            self._persist(character)
            try:
                code = await asyncio.to_thread(
                    self.client.create_identity,
                    task.durable_url,
                    self.settings.identity_timestamps,
                )
            except GenerationError as e:
                e.character = e.character or character.name
                self._mark_failed(character, e, asset)
                logger.warning(f"[Registrar] {character.name}: registration from refreshed reference failed: {e}")
                return character

            self._failed.pop(character.id, None)
            self._apply_code(character, code)
            logger.info(f"[Registrar] {character.name} registered from refreshed reference as {character.identity.reference}")
            return character

    # =========================================================================
    # Reference video
    # =========================================================================

    def _resolution_for_image(self, image: str) -> str:
        width, height = self._probe(image)
        return self.resolution_policy.resolve_dimensions(width, height)

    async def _synthesize_reference(self, character: Character) -> str:
        """참조 영상 생성 → 재호스팅 URL. 정책 거부 시 스타일화 프롬프트로 1회 재시도"""
        image = character.reference_images[0]
        resolution = await asyncio.to_thread(self._resolution_for_image, image)

        attempt: Optional[ReferenceAttempt] = ReferenceAttempt.ORIGINAL
        while True:
            if attempt == ReferenceAttempt.ORIGINAL:
                prompt = self.composer.reference_prompt(character)
            else:
                prompt = self.composer.stylized_reference_prompt(character)

            try:
                return await self._run_reference_attempt(character, prompt, resolution, image)
            except PolicyRejectionError as e:
                attempt = next_reference_attempt(attempt)
                if attempt is None:
                    raise PolicyRejectionError(
                        f"Reference video for '{character.name}' was rejected by the content policy "
                        "with both the original and the stylized prompt. "
                        "Replace the reference image with a stylized or non-photographic one and retry.",
                        status_code=e.status_code,
                        stage="reference_video",
                        character=character.name,
                        task_id=e.task_id,
                    ) from e
                logger.warning(
                    f"[Registrar] {character.name}: reference rejected by content policy, retrying with stylized prompt"
                )

    async def _run_reference_attempt(
        self,
        character: Character,
        prompt: str,
        resolution: str,
        image: str,
    ) -> str:
        task = await self.runner.submit_reference(
            character,
            prompt,
            self.settings.short_tier_seconds,
            resolution,
            image,
        )
        character.identity.task_id = task.id
        self._persist(character)

        task = await self.runner.poll(task)
        character.identity.reference_video_url = task.durable_url
        self._persist(character)
        return task.durable_url

    # =========================================================================
    # Persistence
    # =========================================================================

    def _persist(self, character: Character) -> None:
        self.store.update(
            CHARACTER,
            character.id,
            {
                "id": character.id,
                "name": character.name,
                "reference_images": list(character.reference_images),
                "identity": character.identity.model_dump(mode="json"),
            },
        )

    def _set_status(self, character: Character, status: IdentityStatus) -> None:
        character.identity.status = status
        self._persist(character)

    def _apply_code(self, character: Character, code: str) -> None:
        character.identity.code = code.lstrip("@")
        character.identity.status = IdentityStatus.REGISTERED
        character.identity.failure_reason = None
        character.identity.failed_asset = None
        self._registered[character.id] = character.identity.code
        self._persist(character)

    def _mark_failed(self, character: Character, error: GenerationError, asset: Optional[str] = None) -> None:
        character.identity.status = IdentityStatus.FAILED
        character.identity.failure_reason = error.message
        character.identity.failed_asset = asset
        self._failed[character.id] = error
        self._persist(character)
        ErrorManager.log_exception("IdentityRegistrar", error)
