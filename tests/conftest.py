"""
Shared fixtures: in-memory backend, storage and store collaborators.
"""
import sys
import os
import itertools
import threading
from typing import Any, Callable, Dict, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from schemas import (
    Character,
    CharacterIdentity,
    GenerationSettings,
    IdentityStatus,
    Scene,
    Script,
    Shot,
    TaskStatus,
    TaskStatusReport,
)
from utils.error_manager import ErrorManager
from utils.errors import GenerationError
from utils.project_store import _merge, _to_dict


# ==========================================================================
# Fakes
# ==========================================================================

class FakeBackend:
    """Records every call. Hooks may raise to simulate backend errors."""

    def __init__(self):
        self.reference_calls: List[Dict[str, Any]] = []
        self.identity_calls: List[Dict[str, Any]] = []
        self.video_calls: List[Dict[str, Any]] = []
        self.status_calls: List[str] = []
        self.downloads: List[str] = []
        self.reference_hook: Optional[Callable[[str, str], None]] = None
        self.identity_hook: Optional[Callable[[str], None]] = None
        self.video_hook: Optional[Callable[[Script], None]] = None
        # task_id → scripted reports (the last one repeats)
        self.status_script: Dict[str, List[TaskStatusReport]] = {}
        self.status_hook: Optional[Callable[[str], Optional[TaskStatusReport]]] = None
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _next(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}-{next(self._ids)}"

    def create_reference_video(self, prompt, duration_tier, resolution, reference_image, model="sora-2"):
        self.reference_calls.append(
            {"prompt": prompt, "seconds": duration_tier, "size": resolution, "image": reference_image, "model": model}
        )
        if self.reference_hook:
            self.reference_hook(prompt, reference_image)
        return self._next("ref")

    def create_identity(self, reference_video_url, timestamps="1,3"):
        self.identity_calls.append({"url": reference_video_url, "timestamps": timestamps})
        if self.identity_hook:
            self.identity_hook(reference_video_url)
        return f"code{len(self.identity_calls)}"

    def create_video(self, script, duration_tier, resolution, model="sora-2"):
        self.video_calls.append({"script": script, "seconds": duration_tier, "size": resolution, "model": model})
        if self.video_hook:
            self.video_hook(script)
        return self._next("task")

    def get_status(self, task_id):
        self.status_calls.append(task_id)
        if self.status_hook:
            report = self.status_hook(task_id)
            if report is not None:
                return report
        script = self.status_script.get(task_id)
        if script:
            return script.pop(0) if len(script) > 1 else script[0]
        return TaskStatusReport(status="completed", progress=100, result_url=f"https://backend.test/{task_id}.mp4")

    def download_artifact(self, task_id):
        self.downloads.append(task_id)
        return f"video:{task_id}".encode()


class FakeStorage:
    def __init__(self):
        self.uploads: List[Dict[str, Any]] = []
        self.fail = False

    def upload(self, data, folder, filename=None, content_type="video/mp4"):
        if self.fail:
            raise GenerationError("R2 upload failed", stage="rehost")
        self.uploads.append({"data": data, "folder": folder, "filename": filename})
        return f"https://cdn.test/{folder}/{filename}"


class MemoryStore:
    """Same interface as JsonFileStore, kept in memory."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.history: List[tuple] = []

    def load(self, kind, record_id):
        record = self.records.get(kind, {}).get(record_id)
        return dict(record) if record is not None else None

    def save(self, kind, record_id, record):
        data = _to_dict(record)
        self.records.setdefault(kind, {})[record_id] = data
        self.history.append((kind, record_id, data.get("status")))
        return data

    def update(self, kind, record_id, fields):
        merged = _merge(self.load(kind, record_id) or {}, _to_dict(fields))
        return self.save(kind, record_id, merged)

    def list(self, kind):
        return [dict(r) for r in self.records.get(kind, {}).values()]


async def no_sleep(_seconds):
    return None


# ==========================================================================
# Builders
# ==========================================================================

def make_character(char_id, name, image=True, code=None, appearance=None, reference_video=None):
    identity = CharacterIdentity(reference_video_url=reference_video)
    if code:
        identity = CharacterIdentity(code=code, status=IdentityStatus.REGISTERED)
    return Character(
        id=char_id,
        name=name,
        description=f"{name} description",
        appearance=appearance or f"{name} appearance",
        reference_images=[f"https://img.test/{char_id}.png"] if image else [],
        identity=identity,
    )


def make_shot(shot_id, order, duration=5, description="", dialogue="", characters=None, scene_id="s1", **kwargs):
    return Shot(
        id=shot_id,
        scene_id=scene_id,
        order=order,
        duration=duration,
        description=description,
        dialogue=dialogue,
        characters=characters or [],
        **kwargs,
    )


# ==========================================================================
# Fixtures
# ==========================================================================

@pytest.fixture(autouse=True)
def error_journal(tmp_path, monkeypatch):
    monkeypatch.setattr(ErrorManager, "LOG_FILE", str(tmp_path / "errors.log"))
    return ErrorManager


@pytest.fixture
def settings():
    return GenerationSettings(poll_interval_sec=0)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def landscape_probe():
    return lambda _source: (1920, 1080)


@pytest.fixture
def scene():
    return Scene(id="s1", name="Opening", location="Rooftop at night")
