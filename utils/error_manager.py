import json
import os
import datetime
from typing import Dict, Any, List, Optional

from utils.errors import GenerationError
from utils.logger import get_logger

logger = get_logger("error_manager")


class ErrorManager:
    """
    Centralized journal of generation failures.

    Each entry names the component, the stage and (when known) the character
    or task that failed, so an operator can remediate and retry.
    """

    LOG_FILE = os.getenv("SCENECAST_ERROR_LOG", "outputs/generation_errors.log")
    MAX_ENTRIES = 100

    @classmethod
    def log_error(
        cls,
        service: str,
        error_message: str,
        details: Any = None,
        severity: str = "error",
        stage: Optional[str] = None,
        character: Optional[str] = None,
        task_id: Optional[str] = None,
    ):
        """
        Append an error to the journal.

        Args:
            service: Component name (e.g., "IdentityRegistrar", "TaskRunner")
            error_message: Brief error description
            details: Additional context (backend payload, traceback text)
            severity: "warning", "error" or "critical"
            stage: Orchestration stage that failed
            character: Character name involved, if any
            task_id: Backend task ID involved, if any
        """
        entry = {
            "timestamp": datetime.datetime.now().isoformat(),
            "service": service,
            "message": error_message,
            "details": str(details) if details else None,
            "severity": severity,
            "stage": stage,
            "character": character,
            "task_id": task_id,
        }

        log_dir = os.path.dirname(cls.LOG_FILE)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        try:
            logs = []
            if os.path.exists(cls.LOG_FILE):
                try:
                    with open(cls.LOG_FILE, 'r', encoding='utf-8') as f:
                        file_content = f.read()
                        if file_content.strip():
                            logs = json.loads(file_content)
                except json.JSONDecodeError:
                    logs = []  # 손상된 로그는 초기화

            logs.append(entry)
            if len(logs) > cls.MAX_ENTRIES:
                logs = logs[-cls.MAX_ENTRIES:]

            with open(cls.LOG_FILE, 'w', encoding='utf-8') as f:
                json.dump(logs, f, indent=2, ensure_ascii=False)

        except OSError as e:
            logger.critical(f"Failed to write to error log: {e}")

        log_fn = getattr(logger, severity, logger.error)
        log_fn(f"[{service}] {error_message}")

    @classmethod
    def log_exception(cls, service: str, exc: BaseException, severity: str = "error"):
        """Journal a GenerationError (or any exception) with its context fields."""
        if isinstance(exc, GenerationError):
            cls.log_error(
                service,
                exc.message,
                details=getattr(exc, "payload", None),
                severity=severity,
                stage=exc.stage,
                character=exc.character,
                task_id=exc.task_id,
            )
        else:
            cls.log_error(service, f"{type(exc).__name__}: {exc}", severity=severity)

    @classmethod
    def get_recent_errors(cls, limit: int = 20) -> List[Dict]:
        """Get recent error entries, newest first."""
        if not os.path.exists(cls.LOG_FILE):
            return []

        try:
            with open(cls.LOG_FILE, 'r', encoding='utf-8') as f:
                logs = json.load(f)
                return sorted(logs, key=lambda x: x['timestamp'], reverse=True)[:limit]
        except (OSError, json.JSONDecodeError):
            return []

    @classmethod
    def clear_logs(cls):
        """Clear the error log file."""
        if os.path.exists(cls.LOG_FILE):
            os.remove(cls.LOG_FILE)
