"""
JSON 파일 기반 영속화 계층

레코드 종류(kind)별로 outputs/store/<kind>/<id>.json 파일 하나씩 저장합니다.
update()는 기존 레코드에 필드를 병합(partial merge)합니다.
"""

import json
import os
import threading
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from utils.logger import get_logger

logger = get_logger("project_store")

CHARACTER = "characters"
SCENE = "scenes"
TASK = "tasks"


def _to_dict(record: Any) -> Dict[str, Any]:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json")
    return dict(record)


def _merge(base: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    """Nested dicts are merged key by key; everything else is replaced."""
    merged = dict(base)
    for key, value in fields.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class JsonFileStore:
    """Persistence collaborator: load / save / partial-merge update."""

    def __init__(self, base_dir: str = "outputs/store"):
        self.base_dir = base_dir
        self._lock = threading.RLock()

    def _path(self, kind: str, record_id: str) -> str:
        safe_id = str(record_id).replace("/", "_").replace("\\", "_")
        return os.path.join(self.base_dir, kind, f"{safe_id}.json")

    def load(self, kind: str, record_id: str) -> Optional[Dict[str, Any]]:
        path = self._path(kind, record_id)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, kind: str, record_id: str, record: Any) -> Dict[str, Any]:
        """레코드 전체 저장 (덮어쓰기)"""
        data = _to_dict(record)
        path = self._path(kind, record_id)
        with self._lock:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            tmp_path = f"{path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2, default=str)
            os.replace(tmp_path, path)
        return data

    def update(self, kind: str, record_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """기존 레코드에 필드 병합 후 저장"""
        with self._lock:
            existing = self.load(kind, record_id) or {}
            merged = _merge(existing, _to_dict(fields))
            return self.save(kind, record_id, merged)

    def list(self, kind: str) -> List[Dict[str, Any]]:
        directory = os.path.join(self.base_dir, kind)
        if not os.path.isdir(directory):
            return []
        records = []
        for name in sorted(os.listdir(directory)):
            if not name.endswith(".json"):
                continue
            try:
                with open(os.path.join(directory, name), "r", encoding="utf-8") as f:
                    records.append(json.load(f))
            except json.JSONDecodeError as e:
                logger.warning(f"[Store] Skipping corrupted record {kind}/{name}: {e}")
        return records
