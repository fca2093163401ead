"""
Scene Video Orchestrator: 씬 하나(또는 프로젝트 전체)를 비디오 생성 작업들로 만듭니다.

씬 단위 흐름:
1. 참조 자산 검증 (백엔드 호출 전)
2. 등장 캐릭터 식별 → 아이덴티티 일괄 등록 (all-or-nothing)
3. 샷 청크 분할 → 청크별 스크립트 구성
4. 청크 작업 동시 제출 (제출 즉시 작업 레코드 저장)
5. (wait=True) 폴링 → 재호스팅 → 씬 생성 기록 갱신

프로젝트 일괄 처리는 씬별로 실패를 격리하고 결과 리포트를 반환합니다.
재조회(refresh_pending)는 완료된 참조 영상을 등록하고 씬 생성 기록을 작업 상태로 다시 계산합니다.
"""

import asyncio
from typing import Any, Callable, List, Optional, Sequence
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).parent.parent))

from agents.character_resolver import CharacterResolver
from agents.identity_registrar import CharacterIdentityRegistrar
from agents.prompt_composer import PromptComposer
from agents.scene_chunker import SceneChunker
from agents.task_runner import TaskRunner
from schemas import (
    BatchReport,
    Character,
    GenerationSettings,
    GenerationTask,
    Project,
    Scene,
    SceneGeneration,
    SceneGenerationStatus,
    SceneOutcome,
    Shot,
    TaskStatus,
    TaskType,
)
from utils.error_manager import ErrorManager
from utils.errors import GenerationError, SceneGenerationError, ValidationError
from utils.logger import get_logger
from utils.project_store import SCENE, TASK
from utils.resolution import ResolutionPolicy

logger = get_logger("video_orchestrator")


def _collect(results: Sequence[Any]):
    """gather(return_exceptions=True) 결과를 (성공, 실패) 로 분리. 취소는 그대로 전파"""
    succeeded, failed = [], []
    for result in results:
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            failed.append(result)
        else:
            succeeded.append(result)
    return succeeded, failed


class SceneVideoOrchestrator:
    """
    Scene-level video generation.

    One instance is one orchestration run: identities registered during the run
    are cached and reused by every scene it processes.
    """

    def __init__(
        self,
        client,
        storage,
        store,
        settings: GenerationSettings = None,
        probe: Callable = None,
        sleep: Callable = None,
    ):
        """
        Args:
            client: Generation backend client
            storage: Durable object storage for re-hosting
            store: Persistence collaborator (characters / scenes / tasks)
            settings: Generation policy (defaults match the platform limits)
            probe: Image size probe override
            sleep: Poll sleep override
        """
        self.settings = settings or GenerationSettings()
        self.store = store
        self.resolution_policy = ResolutionPolicy.from_settings(self.settings)
        self.chunker = SceneChunker(self.settings)
        self.composer = PromptComposer(self.settings)
        self.runner = TaskRunner(client, storage, store, self.settings, sleep=sleep)
        self.registrar = CharacterIdentityRegistrar(
            client,
            self.runner,
            store,
            composer=self.composer,
            resolution_policy=self.resolution_policy,
            settings=self.settings,
            probe=probe,
        )

    # =========================================================================
    # Scene record
    # =========================================================================

    def _record_scene(
        self,
        scene: Scene,
        status: SceneGenerationStatus,
        task_ids: Optional[List[str]] = None,
        progress: Optional[int] = None,
        error: Optional[str] = None,
        chunk_count: Optional[int] = None,
    ) -> None:
        generation = scene.generation or SceneGeneration()
        generation.status = status
        if task_ids is not None:
            generation.task_ids = list(task_ids)
        if chunk_count is not None:
            generation.chunk_count = chunk_count
        if progress is not None:
            generation.progress = progress
        generation.error = error
        scene.generation = generation
        self.store.update(SCENE, scene.id, {"id": scene.id, "generation": generation.model_dump(mode="json")})

    # =========================================================================
    # Scene
    # =========================================================================

    async def generate_scene_video(
        self,
        scene: Scene,
        shots: Sequence[Shot],
        characters: Sequence[Character],
        aspect_ratio: str = "16:9",
        project_id: Optional[str] = None,
        art_style: Optional[str] = None,
        wait: bool = True,
    ) -> List[str]:
        """
        Generate one scene.

        Args:
            scene: Scene metadata (location)
            shots: Scene shots, any order (sorted by ``order`` here)
            characters: Project roster; registered identities are mutated in place
            aspect_ratio: Project aspect ratio
            project_id: Owning project (task records, artifact folders)
            art_style: Project art style tag
            wait: Poll every task to completion and re-host before returning

        Returns:
            Task IDs in chunk order

        Raises:
            ValidationError: No shots or missing reference assets (nothing submitted)
            CharacterRegistrationError: Registration failed (no shot task submitted)
            SceneGenerationError: Submission or polling failed for at least one chunk
        """
        ordered = sorted(shots, key=lambda s: s.order)
        if not ordered:
            raise ValidationError(f"Scene {scene.id} has no shots", stage="validation")

        resolver = CharacterResolver(characters)
        involved = resolver.involved_characters(ordered)

        try:
            await self.registrar.ensure_registered(involved)
        except GenerationError as e:
            self._record_scene(scene, SceneGenerationStatus.FAILED, task_ids=[], error=str(e), chunk_count=0)
            raise

        chunks = self.chunker.split(ordered)
        resolution = self.resolution_policy.resolve(aspect_ratio)
        # 모든 청크 스크립트를 먼저 구성 (구성 실패 시 아무것도 제출하지 않음)
        plans = [
            (chunk, self.composer.compose(chunk, involved, scene, resolver, art_style), self.chunker.duration_tier(chunk))
            for chunk in chunks
        ]

        logger.info(f"[Orchestrator] Scene {scene.id}: submitting {len(plans)} task(s) at {resolution}")
        results = await asyncio.gather(
            *(
                self.runner.submit_chunk(chunk, script, tier, resolution, scene_id=scene.id, project_id=project_id)
                for chunk, script, tier in plans
            ),
            return_exceptions=True,
        )
        tasks, failures = _collect(results)
        task_ids = [t.id for t in tasks]

        if failures:
            for failure in failures:
                ErrorManager.log_exception("Orchestrator", failure)
            message = (
                f"Scene {scene.id}: {len(failures)} of {len(plans)} chunk submission(s) failed: "
                + "; ".join(str(f) for f in failures)
            )
            self._record_scene(
                scene, SceneGenerationStatus.FAILED, task_ids=task_ids, error=message, chunk_count=len(plans)
            )
            raise SceneGenerationError(message, task_ids=task_ids, stage="submission")

        self._record_scene(
            scene, SceneGenerationStatus.PROCESSING, task_ids=task_ids, progress=0, chunk_count=len(plans)
        )
        if not wait:
            return task_ids

        polled = await asyncio.gather(*(self.runner.poll(t) for t in tasks), return_exceptions=True)
        _done, failures = _collect(polled)
        if failures:
            for failure in failures:
                ErrorManager.log_exception("Orchestrator", failure)
            failed_shots = [
                f"{t.id} (shots {', '.join(t.shot_ids)})" for t in tasks if t.status != TaskStatus.COMPLETED
            ]
            message = (
                f"Scene {scene.id}: task(s) did not complete: {'; '.join(failed_shots)}. "
                + "; ".join(str(f) for f in failures)
            )
            self._record_scene(scene, SceneGenerationStatus.FAILED, task_ids=task_ids, error=message)
            raise SceneGenerationError(message, task_ids=task_ids, stage="polling")

        self._record_scene(scene, SceneGenerationStatus.COMPLETED, task_ids=task_ids, progress=100)
        logger.info(f"[Orchestrator] Scene {scene.id} completed ({len(task_ids)} task(s))")
        return task_ids

    # =========================================================================
    # Project batch
    # =========================================================================

    async def batch_generate_project(
        self,
        project: Project,
        force: bool = False,
        progress_callback: Callable = None,
        wait: bool = True,
    ) -> BatchReport:
        """
        Generate every scene of a project, isolating failures per scene.

        Scenes without shots are skipped. Scenes whose generation already
        completed are skipped unless ``force`` is set.

        Args:
            project: Project with characters, scenes and shots
            force: Regenerate completed scenes
            progress_callback: Called as ``callback(total, current, status, message)``; may be async
            wait: Poll each scene to completion

        Returns:
            BatchReport with per-scene outcomes
        """
        report = BatchReport(total=len(project.scenes))

        for index, scene in enumerate(project.scenes, 1):
            shots = project.shots_for_scene(scene.id)
            if not shots:
                outcome = SceneOutcome(scene_id=scene.id, name=scene.name, status="skipped", error="no shots")
                report.skipped += 1
            elif (
                not force
                and scene.generation is not None
                and scene.generation.status == SceneGenerationStatus.COMPLETED
            ):
                outcome = SceneOutcome(
                    scene_id=scene.id,
                    name=scene.name,
                    status="skipped",
                    task_ids=list(scene.generation.task_ids),
                    error="already generated",
                )
                report.skipped += 1
            else:
                try:
                    task_ids = await self.generate_scene_video(
                        scene,
                        shots,
                        project.characters,
                        aspect_ratio=project.aspect_ratio,
                        project_id=project.id,
                        art_style=project.art_style or None,
                        wait=wait,
                    )
                    outcome = SceneOutcome(scene_id=scene.id, name=scene.name, status="submitted", task_ids=task_ids)
                    report.submitted += 1
                except GenerationError as e:
                    logger.error(f"[Orchestrator] Scene {scene.id} failed: {e}")
                    outcome = SceneOutcome(
                        scene_id=scene.id,
                        name=scene.name,
                        status="failed",
                        task_ids=list(getattr(e, "task_ids", []) or []),
                        error=e.message,
                        stage=e.stage,
                    )
                    report.failed += 1

            report.details.append(outcome)
            if progress_callback:
                try:
                    message = outcome.error or f"{len(outcome.task_ids)} task(s)"
                    result = progress_callback(report.total, index, outcome.status, f"{scene.name or scene.id}: {message}")
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as cb_error:
                    logger.warning(f"[Orchestrator] Progress callback failed: {cb_error}")

        logger.info(
            f"[Orchestrator] Batch {project.id}: {report.submitted} submitted, "
            f"{report.failed} failed, {report.skipped} skipped of {report.total}"
        )
        return report

    # =========================================================================
    # Resume
    # =========================================================================

    def roll_up_scene(self, scene_id: str) -> Optional[SceneGeneration]:
        """
        저장된 작업 레코드로 씬 생성 기록을 다시 계산합니다.

        - 작업 하나라도 failed → failed
        - 계획된 청크 작업이 모두 completed → completed
        - 그 외 → processing (평균 진행률)

        제출 단계에서 실패한 씬(일부 청크 미제출)은 그대로 둡니다.
        """
        record = self.store.load(SCENE, scene_id)
        if not record or not record.get("generation"):
            return None
        generation = SceneGeneration.model_validate(record["generation"])
        expected = generation.chunk_count or len(generation.task_ids)
        if not generation.task_ids or len(generation.task_ids) < expected:
            return generation
        if generation.status == SceneGenerationStatus.FAILED and not generation.chunk_count:
            return generation

        tasks = []
        for task_id in generation.task_ids:
            data = self.store.load(TASK, task_id)
            if data:
                tasks.append(GenerationTask.model_validate(data))

        scene = Scene(id=scene_id, generation=generation)
        failed = [t for t in tasks if t.status == TaskStatus.FAILED]
        if failed:
            message = f"Scene {scene_id}: task(s) failed: " + "; ".join(
                f"{t.id} (shots {', '.join(t.shot_ids)}): {t.error_message}" for t in failed
            )
            self._record_scene(scene, SceneGenerationStatus.FAILED, error=message)
        elif len(tasks) == expected and all(t.status == TaskStatus.COMPLETED for t in tasks):
            self._record_scene(scene, SceneGenerationStatus.COMPLETED, progress=100)
            logger.info(f"[Orchestrator] Scene {scene_id} completed after refresh")
        else:
            progress = int(sum(t.progress for t in tasks) / expected)
            self._record_scene(scene, SceneGenerationStatus.PROCESSING, progress=progress)
        return scene.generation

    async def refresh_pending(self) -> List[GenerationTask]:
        """
        미완료 작업을 재조회하고 결과를 소유자에게 반영합니다.

        - 완료된 참조 영상 작업 → 캐릭터 아이덴티티 등록
        - 샷 작업 → 씬 생성 기록 재계산
        """
        tasks = await self.runner.refresh_pending()
        scene_ids: List[str] = []
        for task in tasks:
            if task.type == TaskType.CHARACTER_REFERENCE:
                if task.status == TaskStatus.COMPLETED:
                    await self.registrar.adopt_reference(task)
            elif task.scene_id and task.scene_id not in scene_ids:
                scene_ids.append(task.scene_id)

        for scene_id in scene_ids:
            self.roll_up_scene(scene_id)
        return tasks
