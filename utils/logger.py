import logging
import sys
import os

_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _formatter() -> logging.Formatter:
    return logging.Formatter(_FORMAT, datefmt=_DATEFMT)


def get_logger(name: str) -> logging.Logger:
    """
    Component logger ``scenecast.<name>``.

    stdout 핸들러는 항상, SCENECAST_LOG_FILE 이 설정되면 파일 핸들러도 추가합니다.
    레벨은 LOG_LEVEL (기본 INFO).
    """
    logger = logging.getLogger(f"scenecast.{name}")
    if not logger.handlers:
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(_formatter())
        logger.addHandler(stream)

        log_file = os.getenv("SCENECAST_LOG_FILE")
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(_formatter())
            logger.addHandler(file_handler)

        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logger.setLevel(getattr(logging, level, logging.INFO))
        # 루트 로거로 중복 출력하지 않음
        logger.propagate = False
    return logger
