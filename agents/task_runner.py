"""
Task Runner: 생성 작업 제출 / 폴링 / 결과 재호스팅.

- 제출 직후, 폴링 전에 작업 레코드(queued)를 먼저 저장 → 폴링 중 크래시에도 제출 내역 보존
- 고정 간격 폴링, 시도 횟수 상한 (초과 시 GenerationTimeoutError)
- completed: 결과를 내려받아 영구 스토리지로 재호스팅한 뒤 terminal 로 기록
- failed: 백엔드 사유를 그대로 전달 (정책 거부는 PolicyRejectionError)
- terminal 레코드는 다시 변경하지 않음
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).parent.parent))

from agents.scene_chunker import compute_shot_ranges
from schemas import (
    Character,
    GenerationSettings,
    GenerationTask,
    Script,
    Shot,
    TaskStatus,
    TaskStatusReport,
    TaskType,
)
from utils.errors import (
    BackendTaskFailure,
    GenerationError,
    GenerationTimeoutError,
    PolicyRejectionError,
    is_policy_rejection,
)
from utils.logger import get_logger
from utils.project_store import TASK

logger = get_logger("task_runner")


def artifact_folder(task: GenerationTask) -> str:
    """재호스팅 대상 폴더"""
    if task.type == TaskType.CHARACTER_REFERENCE:
        return f"characters/{task.character_id or 'unknown'}"
    return f"projects/{task.project_id or 'default'}/scenes/{task.scene_id or 'unknown'}"


class TaskRunner:
    """Submits generation tasks, polls them to a terminal state and re-hosts artifacts."""

    def __init__(self, client, storage, store, settings: GenerationSettings = None, sleep=None):
        """
        Args:
            client: Generation backend (SoraClient or compatible)
            storage: Object storage with ``upload(data, folder, filename=...)``
            store: Persistence with ``save`` / ``update`` / ``list``
            settings: Generation policy
            sleep: Awaitable sleep, injectable for tests
        """
        self.client = client
        self.storage = storage
        self.store = store
        self.settings = settings or GenerationSettings()
        self._sleep = sleep or asyncio.sleep

    def _persist(self, task: GenerationTask) -> None:
        task.updated_at = datetime.now(timezone.utc)
        self.store.save(TASK, task.id, task)

    # =========================================================================
    # Submit
    # =========================================================================

    async def submit_chunk(
        self,
        chunk: Sequence[Shot],
        script: Script,
        duration_tier: int,
        resolution: str,
        scene_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> GenerationTask:
        """청크 하나를 비디오 생성 작업으로 제출하고 즉시 queued 레코드를 저장"""
        task_id = await asyncio.to_thread(
            self.client.create_video,
            script,
            duration_tier,
            resolution,
            self.settings.model,
        )
        task = GenerationTask(
            id=task_id,
            type=TaskType.SHOT_GENERATION,
            project_id=project_id,
            scene_id=scene_id,
            status=TaskStatus.QUEUED,
            model=self.settings.model,
            prompt=script.to_payload(),
            target_duration=duration_tier,
            target_size=resolution,
            shot_ids=[s.id for s in chunk],
            shot_ranges=compute_shot_ranges(chunk),
        )
        self._persist(task)
        logger.info(
            f"[TaskRunner] Submitted task {task_id}: {len(chunk)} shot(s), {duration_tier}s, {resolution}"
        )
        return task

    async def submit_reference(
        self,
        character: Character,
        prompt: str,
        duration_tier: int,
        resolution: str,
        reference_image: str,
        project_id: Optional[str] = None,
    ) -> GenerationTask:
        """캐릭터 참조 영상 작업 제출 (type=character_reference)"""
        task_id = await asyncio.to_thread(
            self.client.create_reference_video,
            prompt,
            duration_tier,
            resolution,
            reference_image,
            self.settings.reference_model,
        )
        task = GenerationTask(
            id=task_id,
            type=TaskType.CHARACTER_REFERENCE,
            project_id=project_id,
            character_id=character.id,
            status=TaskStatus.QUEUED,
            model=self.settings.reference_model,
            prompt=prompt,
            target_duration=duration_tier,
            target_size=resolution,
        )
        self._persist(task)
        logger.info(f"[TaskRunner] Submitted reference video task {task_id} for {character.name}")
        return task

    # =========================================================================
    # Poll
    # =========================================================================

    async def _apply_report(self, task: GenerationTask, report: TaskStatusReport) -> bool:
        """
        상태 보고를 레코드에 반영합니다.

        Returns:
            True 면 terminal 도달 (completed, 재호스팅 완료)
        """
        if report.status == TaskStatus.COMPLETED:
            task.progress = 100
            task.source_url = report.result_url or task.source_url
            self._persist(task)
            await self.rehost(task)
            task.status = TaskStatus.COMPLETED
            self._persist(task)
            logger.info(f"[TaskRunner] Task {task.id} completed → {task.durable_url}")
            return True

        if report.status == TaskStatus.FAILED:
            task.status = TaskStatus.FAILED
            task.error_message = str(report.error) if report.error is not None else "unknown backend failure"
            self._persist(task)
            stage = "reference_video" if task.type == TaskType.CHARACTER_REFERENCE else "video_generation"
            if is_policy_rejection(report.error):
                raise PolicyRejectionError(
                    f"Task {task.id} rejected by content policy: {task.error_message}",
                    stage=stage,
                    task_id=task.id,
                )
            raise BackendTaskFailure(
                f"Task {task.id} failed: {task.error_message}",
                payload=report.error,
                stage=stage,
                task_id=task.id,
            )

        if report.status != task.status or report.progress != task.progress:
            task.status = report.status
            task.progress = report.progress
            self._persist(task)
        return False

    async def poll(self, task: GenerationTask) -> GenerationTask:
        """
        Poll a task on a fixed interval until it reaches a terminal state.

        Raises:
            BackendTaskFailure: Backend reported ``failed``
            PolicyRejectionError: Backend failure caused by content policy
            GenerationTimeoutError: Attempt budget exhausted
        """
        if task.is_terminal:
            return task

        for attempt in range(1, self.settings.poll_max_attempts + 1):
            report = await asyncio.to_thread(self.client.get_status, task.id)
            logger.debug(f"[TaskRunner] Task {task.id}: {report.status.value} ({report.progress}%)")
            if await self._apply_report(task, report):
                return task
            if attempt < self.settings.poll_max_attempts:
                await self._sleep(self.settings.poll_interval_sec)

        task.error_message = f"polling timed out after {self.settings.poll_max_attempts} attempts"
        self._persist(task)
        raise GenerationTimeoutError(
            f"Timeout waiting for task {task.id} after {self.settings.poll_max_attempts} attempts",
            stage="polling",
            task_id=task.id,
        )

    async def rehost(self, task: GenerationTask) -> GenerationTask:
        """결과물을 내려받아 영구 스토리지에 업로드하고 durable_url 기록"""
        if task.durable_url:
            return task
        data = await asyncio.to_thread(self.client.download_artifact, task.id)
        try:
            task.durable_url = await asyncio.to_thread(
                self.storage.upload,
                data,
                artifact_folder(task),
                f"{task.id}.mp4",
            )
        except GenerationError as e:
            e.task_id = e.task_id or task.id
            raise
        self._persist(task)
        return task

    # =========================================================================
    # Resume
    # =========================================================================

    async def refresh_pending(self) -> List[GenerationTask]:
        """
        저장된 non-terminal 작업들을 1회씩 재조회합니다.
        실패/타임아웃은 레코드에만 반영하고 다음 작업으로 진행합니다.
        """
        refreshed = []
        for record in self.store.list(TASK):
            task = GenerationTask.model_validate(record)
            if task.is_terminal:
                continue
            try:
                report = await asyncio.to_thread(self.client.get_status, task.id)
                await self._apply_report(task, report)
            except GenerationError as e:
                logger.warning(f"[TaskRunner] Refresh of task {task.id} ended with error: {e}")
            refreshed.append(task)
        logger.info(f"[TaskRunner] Refreshed {len(refreshed)} pending task(s)")
        return refreshed
