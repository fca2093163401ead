"""
SCENECAST FastAPI Server

씬 / 프로젝트 비디오 생성 요청과 작업 상태 조회를 HTTP로 노출합니다.
생성 요청은 기본적으로 제출까지만 수행하고(wait=false),
완료 여부는 /api/tasks/refresh (주기 호출) 와 /api/tasks/{task_id} 로 확인합니다.
"""

import os
import sys
from typing import Optional, Dict, Any
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

# SCENECAST 모듈 import
sys.path.append(str(Path(__file__).parent))
from pipeline import ScenecastPipeline
from utils.errors import (
    CharacterRegistrationError,
    GenerationError,
    SceneGenerationError,
    ValidationError,
)
from utils.logger import get_logger

logger = get_logger("api_server")

# FastAPI 앱 생성
app = FastAPI(title="SCENECAST API", version="1.0")

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_pipeline() -> ScenecastPipeline:
    """요청 단위 파이프라인 (자격 증명을 전역에 두지 않음)"""
    return ScenecastPipeline(output_base_dir=os.getenv("SCENECAST_OUTPUT_DIR", "outputs"))


class SceneGenerateRequest(BaseModel):
    wait: bool = False


class ProjectGenerateRequest(BaseModel):
    force: bool = False
    wait: bool = False


def _error_response(e: GenerationError) -> HTTPException:
    """GenerationError → HTTP 오류 (운영자가 조치할 수 있도록 stage/character 포함)"""
    detail: Dict[str, Any] = {
        "error": e.message,
        "stage": e.stage,
        "character": e.character,
        "task_id": e.task_id,
    }
    if isinstance(e, CharacterRegistrationError):
        detail["failures"] = [
            {"character": f.character, "stage": f.stage, "error": f.message} for f in e.failures
        ]
        return HTTPException(status_code=422, detail=detail)
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=detail)
    if isinstance(e, SceneGenerationError):
        detail["task_ids"] = e.task_ids
        return HTTPException(status_code=502, detail=detail)
    return HTTPException(status_code=500, detail=detail)


def _load_project(pipeline: ScenecastPipeline, project_id: str):
    try:
        return pipeline.load_project_by_id(project_id)
    except ValidationError:
        raise HTTPException(status_code=404, detail=f"프로젝트를 찾을 수 없습니다: {project_id}")


@app.post("/api/projects/{project_id}/scenes/{scene_id}/generate")
async def generate_scene(
    project_id: str,
    scene_id: str,
    req: Optional[SceneGenerateRequest] = None,
    pipeline: ScenecastPipeline = Depends(get_pipeline),
):
    """씬 하나 비디오 생성 (아이덴티티 등록 → 청크 작업 제출)"""
    req = req or SceneGenerateRequest()
    project = _load_project(pipeline, project_id)
    if project.get_scene(scene_id) is None:
        raise HTTPException(status_code=404, detail=f"씬을 찾을 수 없습니다: {scene_id}")

    try:
        task_ids = await pipeline.generate_scene_async(project, scene_id, wait=req.wait)
    except GenerationError as e:
        logger.error(f"[API] Scene {scene_id} generation failed: {e}")
        raise _error_response(e)

    return {
        "project_id": project_id,
        "scene_id": scene_id,
        "status": "completed" if req.wait else "processing",
        "task_ids": task_ids,
    }


@app.post("/api/projects/{project_id}/generate")
async def generate_project(
    project_id: str,
    req: Optional[ProjectGenerateRequest] = None,
    pipeline: ScenecastPipeline = Depends(get_pipeline),
):
    """프로젝트 전체 씬 일괄 생성 (씬별 실패 격리)"""
    req = req or ProjectGenerateRequest()
    project = _load_project(pipeline, project_id)
    report = await pipeline.generate_project_async(project, force=req.force, wait=req.wait)
    return {"project_id": project_id, **report.model_dump(mode="json")}


@app.get("/api/tasks/{task_id}")
async def get_task(task_id: str, pipeline: ScenecastPipeline = Depends(get_pipeline)):
    """작업 레코드 조회"""
    task = pipeline.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"작업을 찾을 수 없습니다: {task_id}")
    return task.model_dump(mode="json")


@app.post("/api/tasks/refresh")
async def refresh_tasks(pipeline: ScenecastPipeline = Depends(get_pipeline)):
    """미완료 작업 재조회 (스케줄러에서 주기적으로 호출)"""
    tasks = await pipeline.refresh_tasks_async()
    return {
        "refreshed": len(tasks),
        "tasks": [
            {"id": t.id, "status": t.status.value, "progress": t.progress, "durable_url": t.durable_url}
            for t in tasks
        ],
    }


@app.get("/health")
async def health_check():
    """헬스 체크"""
    return {"status": "ok", "version": "1.0"}


if __name__ == "__main__":
    import uvicorn

    print("""
============================================================
              SCENECAST API Server v1.0
============================================================
  Server: http://localhost:8000
  API Docs: http://localhost:8000/docs
============================================================
    """)

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "api_server:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        log_level="info"
    )
