"""
Reference image dimension probe.

원격 이미지는 임시 파일로 내려받아 Pillow로 크기를 읽고,
성공/실패/예외 모든 경로에서 임시 파일을 삭제합니다.
"""

import os
import tempfile
from typing import Tuple
from urllib.parse import urlparse

import requests
from PIL import Image

from utils.errors import TransientNetworkError, ValidationError
from utils.logger import get_logger

logger = get_logger("image_probe")

_VALID_EXTS = (".jpg", ".jpeg", ".png", ".webp")


def _is_remote(source: str) -> bool:
    return str(source).startswith(("http://", "https://"))


def _read_size(path: str) -> Tuple[int, int]:
    with Image.open(path) as img:
        return img.size


def probe_image_size(source: str, timeout: float = 30.0) -> Tuple[int, int]:
    """
    Return (width, height) of a local or remote image.

    Args:
        source: Local file path or http(s) URL
        timeout: Download timeout in seconds

    Returns:
        (width, height)
    """
    if not source:
        raise ValidationError("Reference image source is empty", stage="image_probe")

    if not _is_remote(source):
        if not os.path.exists(source):
            raise ValidationError(f"Reference image not found: {source}", stage="image_probe")
        return _read_size(source)

    ext = os.path.splitext(urlparse(source).path)[1].lower()
    if ext not in _VALID_EXTS:
        ext = ".jpg"

    fd, temp_path = tempfile.mkstemp(prefix="scenecast_ref_", suffix=ext)
    try:
        try:
            response = requests.get(source, timeout=timeout)
        except requests.RequestException as e:
            raise TransientNetworkError(f"Failed to download reference image {source}: {e}", stage="image_probe")
        if response.status_code != 200:
            raise ValidationError(
                f"Failed to download reference image {source}: HTTP {response.status_code}",
                stage="image_probe",
            )
        with os.fdopen(fd, "wb") as f:
            fd = None
            f.write(response.content)
        width, height = _read_size(temp_path)
        logger.info(f"[ImageProbe] Detected {width}x{height} for {source}")
        return width, height
    finally:
        if fd is not None:
            os.close(fd)
        if os.path.exists(temp_path):
            os.remove(temp_path)
            logger.debug(f"[ImageProbe] Cleaned up temp image: {temp_path}")
