"""
SCENECAST Configuration Loader
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

from schemas import GenerationSettings, BackendConfig

# 기본 설정 디렉토리
CONFIG_DIR = Path(__file__).parent


def load_env():
    """Load environment variables from .env file (no-op when python-dotenv finds nothing)."""
    from dotenv import load_dotenv
    load_dotenv()


def load_generation_policy(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    생성 정책 설정 로드.

    Args:
        config_path: 설정 파일 경로 (기본: config/generation_policy.yaml)

    Returns:
        정책 딕셔너리 (파일이 없으면 기본값)
    """
    if config_path is None:
        config_path = CONFIG_DIR / "generation_policy.yaml"

    if not os.path.exists(config_path):
        return get_default_generation_policy()

    with open(config_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    policy = get_default_generation_policy()
    policy.update(config.get("generation_policy") or {})
    return policy


def get_default_generation_policy() -> Dict[str, Any]:
    """기본 생성 정책 반환."""
    return GenerationSettings().model_dump()


def load_generation_settings(config_path: Optional[str] = None) -> GenerationSettings:
    """Typed view of the generation policy."""
    return GenerationSettings(**load_generation_policy(config_path))


def load_backend_config() -> BackendConfig:
    """
    생성 백엔드 접속 설정 (환경 변수).

    Raises:
        RuntimeError: SORA_API_KEY 가 설정되지 않은 경우
    """
    load_env()
    api_key = os.getenv("SORA_API_KEY")
    if not api_key:
        raise RuntimeError("SORA_API_KEY is required. Please set it in your environment variables.")

    return BackendConfig(
        api_key=api_key,
        base_url=os.getenv("SORA_BASE_URL", "https://models.kapon.cloud").rstrip("/"),
        request_timeout_sec=float(os.getenv("SORA_REQUEST_TIMEOUT_SEC", "60")),
        download_timeout_sec=float(os.getenv("SORA_DOWNLOAD_TIMEOUT_SEC", "300")),
    )
