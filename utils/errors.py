"""
SCENECAST 오류 분류

모든 오류는 어느 캐릭터/단계에서 왜 실패했는지를 운영자가 알 수 있도록
stage / character / task_id 정보를 함께 전달합니다.
"""

from typing import Any, List, Optional


class GenerationError(RuntimeError):
    """Base error for the video-generation engine."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        character: Optional[str] = None,
        task_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.character = character
        self.task_id = task_id

    def __str__(self) -> str:
        prefix = []
        if self.stage:
            prefix.append(f"stage={self.stage}")
        if self.character:
            prefix.append(f"character={self.character}")
        if self.task_id:
            prefix.append(f"task={self.task_id}")
        if prefix:
            return f"[{' '.join(prefix)}] {self.message}"
        return self.message


class ValidationError(GenerationError):
    """Required reference assets are missing. Raised before any backend call."""


class BackendError(GenerationError):
    """Non-retryable HTTP-level error returned by the backend."""

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class PolicyRejectionError(BackendError):
    """The backend refused the request on content-policy grounds."""


class TransientNetworkError(GenerationError):
    """Connection reset, rate limit or 5xx. Retried by the client."""


class BackendTaskFailure(GenerationError):
    """A task reached the terminal ``failed`` state."""

    def __init__(self, message: str, payload: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.payload = payload


class GenerationTimeoutError(GenerationError, TimeoutError):
    """Polling attempt budget exhausted before a terminal state."""


class CharacterRegistrationError(GenerationError):
    """One or more characters could not be registered."""

    def __init__(self, failures: List[GenerationError]):
        names = ", ".join(f.character or "?" for f in failures)
        details = "; ".join(str(f) for f in failures)
        super().__init__(
            f"Character registration failed for: {names}. {details}",
            stage="character_registration",
        )
        self.failures = failures


class SceneGenerationError(GenerationError):
    """Scene-level failure after registration (submission or polling)."""

    def __init__(self, message: str, task_ids: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.task_ids = task_ids or []


POLICY_KEYWORDS = (
    "content_policy",
    "content policy",
    "moderation",
    "policy_violation",
    "violat",
    "sensitive",
    "safety",
    "nsfw",
)


def is_policy_rejection(detail: Any) -> bool:
    """백엔드 오류 메시지/페이로드가 콘텐츠 정책 거부인지 판정"""
    text = str(detail or "").lower()
    return any(keyword in text for keyword in POLICY_KEYWORDS)
