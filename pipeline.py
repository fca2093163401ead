"""
SCENECAST 통합 파이프라인

설정 / 백엔드 클라이언트 / 스토리지 / 영속화 계층을 조립하고
씬·프로젝트 단위 비디오 생성을 실행합니다.

실행 플로우:
1. 프로젝트 JSON 로드 (+ 저장된 캐릭터 아이덴티티 / 씬 생성 기록 병합)
2. SceneVideoOrchestrator - 아이덴티티 등록 → 청크 분할 → 작업 제출 → 폴링
3. refresh_tasks - 미완료 작업 재조회 (재시작 후 이어서 진행)
"""

import os
import json
import asyncio
from typing import Callable, List, Optional

from config import load_backend_config, load_env, load_generation_settings
from schemas import (
    BatchReport,
    CharacterIdentity,
    IdentityStatus,
    GenerationSettings,
    GenerationTask,
    Project,
    SceneGeneration,
)
from agents import SceneVideoOrchestrator
from utils.errors import ValidationError
from utils.logger import get_logger
from utils.project_store import CHARACTER, SCENE, TASK, JsonFileStore
from utils.sora_client import SoraClient
from utils.storage import StorageManager

logger = get_logger("pipeline")


class ScenecastPipeline:
    """
    SCENECAST 통합 파이프라인

    협력 객체(client / storage / store)는 주입할 수 있으며,
    생략하면 환경 변수와 설정 파일로부터 생성합니다.
    """

    def __init__(
        self,
        client=None,
        storage=None,
        store=None,
        settings: GenerationSettings = None,
        output_base_dir: str = "outputs",
        probe: Callable = None,
        sleep: Callable = None,
    ):
        """
        Initialize pipeline.

        Args:
            client: Generation backend client (default: SoraClient from env)
            storage: Durable storage (default: StorageManager from R2 env)
            store: Persistence (default: JsonFileStore under output_base_dir/store)
            settings: Generation policy (default: config/generation_policy.yaml)
            output_base_dir: 출력 기본 디렉토리
            probe: Image size probe override
            sleep: Poll sleep override
        """
        load_env()
        self.output_base_dir = output_base_dir
        self.settings = settings or load_generation_settings()
        if client is None:
            client = SoraClient(
                load_backend_config(),
                retry_attempts=self.settings.retry_attempts,
                retry_backoff_sec=self.settings.retry_backoff_sec,
            )
        self.client = client
        self.storage = storage or StorageManager()
        self.store = store or JsonFileStore(os.path.join(output_base_dir, "store"))
        self.projects_dir = os.getenv("SCENECAST_PROJECTS_DIR", os.path.join(output_base_dir, "projects"))
        self._probe = probe
        self._sleep = sleep

    def _orchestrator(self) -> SceneVideoOrchestrator:
        """실행(run) 하나당 오케스트레이터 하나 (아이덴티티 캐시 범위)"""
        return SceneVideoOrchestrator(
            self.client,
            self.storage,
            self.store,
            self.settings,
            probe=self._probe,
            sleep=self._sleep,
        )

    # =========================================================================
    # Project loading
    # =========================================================================

    def project_path(self, project_id: str) -> str:
        return os.path.join(self.projects_dir, f"{project_id}.json")

    def load_project(self, path: str) -> Project:
        """프로젝트 JSON 파일 로드 후 저장된 상태 병합"""
        if not os.path.exists(path):
            raise ValidationError(f"Project file not found: {path}", stage="load")
        with open(path, "r", encoding="utf-8") as f:
            project = Project.model_validate(json.load(f))
        return self.hydrate(project)

    def load_project_by_id(self, project_id: str) -> Project:
        return self.load_project(self.project_path(project_id))

    def hydrate(self, project: Project) -> Project:
        """
        Merge persisted state into a freshly loaded project.

        Registered identities and scene generation records live in the store,
        so a rerun reuses codes instead of registering the character again.
        A stored ``failed`` identity is kept until the character's reference
        asset is replaced; a replaced asset starts registration over.
        """
        for char in project.characters:
            record = self.store.load(CHARACTER, char.id)
            if not record or not record.get("identity") or char.has_registered_identity:
                continue
            stored = CharacterIdentity.model_validate(record["identity"])
            if stored.status == IdentityStatus.FAILED:
                if stored.failed_asset in (None, char.source_asset):
                    char.identity = stored
                else:
                    logger.info(f"[Pipeline] {char.name}: reference asset replaced, registration will be retried")
            elif stored.code or stored.reference_video_url:
                char.identity = stored
        for scene in project.scenes:
            record = self.store.load(SCENE, scene.id)
            if record and record.get("generation"):
                scene.generation = SceneGeneration.model_validate(record["generation"])
        return project

    # =========================================================================
    # Async API
    # =========================================================================

    async def generate_scene_async(self, project: Project, scene_id: str, wait: bool = True) -> List[str]:
        scene = project.get_scene(scene_id)
        if scene is None:
            raise ValidationError(f"Scene {scene_id} not found in project {project.id}", stage="load")
        return await self._orchestrator().generate_scene_video(
            scene,
            project.shots_for_scene(scene_id),
            project.characters,
            aspect_ratio=project.aspect_ratio,
            project_id=project.id,
            art_style=project.art_style or None,
            wait=wait,
        )

    async def generate_project_async(
        self,
        project: Project,
        force: bool = False,
        progress_callback: Callable = None,
        wait: bool = True,
    ) -> BatchReport:
        return await self._orchestrator().batch_generate_project(
            project,
            force=force,
            progress_callback=progress_callback,
            wait=wait,
        )

    async def refresh_tasks_async(self) -> List[GenerationTask]:
        """미완료 작업 재조회 → 참조 영상 등록 / 씬 생성 기록 갱신"""
        return await self._orchestrator().refresh_pending()

    # =========================================================================
    # Sync API
    # =========================================================================

    def generate_scene(self, project: Project, scene_id: str, wait: bool = True) -> List[str]:
        return asyncio.run(self.generate_scene_async(project, scene_id, wait=wait))

    def generate_project(
        self,
        project: Project,
        force: bool = False,
        progress_callback: Callable = None,
        wait: bool = True,
    ) -> BatchReport:
        return asyncio.run(
            self.generate_project_async(project, force=force, progress_callback=progress_callback, wait=wait)
        )

    def refresh_tasks(self) -> List[GenerationTask]:
        """미완료 작업 1회 재조회"""
        return asyncio.run(self.refresh_tasks_async())

    def get_task(self, task_id: str) -> Optional[GenerationTask]:
        record = self.store.load(TASK, task_id)
        if record is None:
            return None
        return GenerationTask.model_validate(record)
