"""
Sora-compatible generation backend client.

- 참조 영상 생성 / 캐릭터 아이덴티티 등록 / 비디오 생성 / 상태 조회 / 결과 다운로드
- 네트워크 오류·429·5xx 는 고정 횟수 + 선형 backoff 로 재시도
- 그 외 HTTP 오류는 즉시 실패 (콘텐츠 정책 거부는 PolicyRejectionError)
"""

import time
from typing import Any, Dict, Optional, Union

import requests

from schemas import BackendConfig, Script, TaskStatusReport
from utils.errors import (
    BackendError,
    PolicyRejectionError,
    TransientNetworkError,
    is_policy_rejection,
)
from utils.logger import get_logger

logger = get_logger("sora_client")

_POLICY_STATUS_CODES = (400, 403, 422)


class SoraClient:
    """HTTP client for the video-generation backend. Credentials are injected, never global."""

    def __init__(
        self,
        config: BackendConfig,
        retry_attempts: int = 3,
        retry_backoff_sec: float = 2.0,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff_sec = retry_backoff_sec
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {config.api_key}"})

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    def _raise_for_response(self, response: requests.Response, stage: str):
        body = response.text[:500]
        status = response.status_code
        message = f"{stage} error: {status} {body}"
        if status == 429 or status >= 500:
            raise TransientNetworkError(message, stage=stage)
        if status in _POLICY_STATUS_CODES and is_policy_rejection(body):
            raise PolicyRejectionError(message, status_code=status, stage=stage)
        raise BackendError(message, status_code=status, stage=stage)

    def _request(
        self,
        method: str,
        path: str,
        stage: str,
        retry_server_errors: bool = True,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        timeout = timeout or self.config.request_timeout_sec
        last_error: Optional[TransientNetworkError] = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                response = self.session.request(method, url, timeout=timeout, **kwargs)
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = TransientNetworkError(f"{stage} network error: {e}", stage=stage)
                # 응답 대기 중 타임아웃: 백엔드가 이미 처리했을 수 있음
                if isinstance(e, requests.ReadTimeout) and not retry_server_errors:
                    raise last_error from e
            else:
                if response.ok:
                    return response
                try:
                    self._raise_for_response(response, stage)
                except TransientNetworkError as e:
                    # 5xx 재시도는 멱등 호출만 (429 는 요청 미수락이므로 항상 재시도)
                    if response.status_code != 429 and not retry_server_errors:
                        raise
                    last_error = e

            if attempt < self.retry_attempts:
                wait = self.retry_backoff_sec * attempt
                logger.warning(f"[SoraClient] {stage} attempt {attempt} failed ({last_error}); retrying in {wait}s")
                time.sleep(wait)

        raise last_error

    # ------------------------------------------------------------------
    # backend contract
    # ------------------------------------------------------------------

    def create_reference_video(
        self,
        prompt: str,
        duration_tier: int,
        resolution: str,
        reference_image: str,
        model: str = "sora-2",
    ) -> str:
        """캐릭터 참조 영상 생성 작업 제출 → task id"""
        payload = {
            "model": model,
            "prompt": prompt,
            "seconds": duration_tier,
            "size": resolution,
            "input_reference": [reference_image],
        }
        response = self._request(
            "POST", "/v1/videos", stage="reference_video_submit", retry_server_errors=False, json=payload
        )
        return self._task_id(response.json(), "reference_video_submit")

    def create_identity(self, reference_video_url: str, timestamps: str = "1,3") -> str:
        """참조 영상 URL로 캐릭터 등록 → identity code"""
        response = self._request(
            "POST",
            "/sora/v1/characters",
            stage="identity_registration",
            retry_server_errors=False,
            json={"url": reference_video_url, "timestamps": timestamps},
        )
        result = response.json()
        code = str(result.get("username") or "").strip()
        if not code:
            raise BackendError(f"identity registration returned no code: {result}", stage="identity_registration")
        return code

    def create_video(
        self,
        script: Union[Script, Dict[str, Any]],
        duration_tier: int,
        resolution: str,
        model: str = "sora-2",
    ) -> str:
        """구조화 스크립트로 비디오 생성 작업 제출 → task id"""
        # 직렬화 경계에서 스키마 검증
        if not isinstance(script, Script):
            script = Script.model_validate(script)
        else:
            script = Script.model_validate(script.model_dump())

        payload = {
            "model": model,
            "prompt": script.to_payload(),
            "seconds": duration_tier,
            "size": resolution,
        }
        response = self._request(
            "POST", "/v1/videos", stage="video_submit", retry_server_errors=False, json=payload
        )
        return self._task_id(response.json(), "video_submit")

    def get_status(self, task_id: str) -> TaskStatusReport:
        response = self._request("GET", f"/v1/videos/{task_id}", stage="status")
        result = response.json()
        return TaskStatusReport(
            status=result.get("status"),
            progress=result.get("progress"),
            result_url=result.get("video_url"),
            error=result.get("error"),
        )

    def download_artifact(self, task_id: str) -> bytes:
        response = self._request(
            "GET",
            f"/v1/videos/{task_id}/content",
            stage="download",
            timeout=self.config.download_timeout_sec,
        )
        if not response.content:
            raise BackendError(f"empty artifact for task {task_id}", stage="download", task_id=task_id)
        return response.content

    @staticmethod
    def _task_id(result: Dict[str, Any], stage: str) -> str:
        task_id = result.get("id")
        if not task_id:
            raise BackendError(f"backend response missing task id: {result}", stage=stage)
        return str(task_id)
