import base64
import os
import re
import uuid
from typing import Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from utils.errors import GenerationError
from utils.logger import get_logger

logger = get_logger("storage")

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)

_EXT_BY_MIME = {
    "video/mp4": ".mp4",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
}


class StorageManager:
    """
    Durable object storage on Cloudflare R2 (S3 compatible).

    Backend artifact URLs expire, so every reference video and finished clip is
    re-hosted here before it is used or recorded.
    """

    def __init__(
        self,
        account_id: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        bucket_name: Optional[str] = None,
        public_base_url: Optional[str] = None,
        s3_client=None,
    ):
        self.account_id = account_id or os.getenv("R2_ACCOUNT_ID")
        self.access_key = access_key or os.getenv("R2_ACCESS_KEY_ID")
        self.secret_key = secret_key or os.getenv("R2_SECRET_ACCESS_KEY")
        self.bucket_name = bucket_name or os.getenv("R2_BUCKET_NAME")
        self.public_base_url = (public_base_url or os.getenv("R2_PUBLIC_URL") or "").rstrip("/")

        self.s3_client = s3_client

        if self.s3_client is None and all([self.account_id, self.access_key, self.secret_key, self.bucket_name]):
            self.s3_client = boto3.client(
                service_name='s3',
                endpoint_url=f'https://{self.account_id}.r2.cloudflarestorage.com',
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name='auto'  # Must be 'auto' for Cloudflare R2
            )
            logger.info(f"[StorageManager] Initialized R2 client for bucket: {self.bucket_name}")
        elif self.s3_client is None:
            logger.warning("[StorageManager] R2 credentials missing. Uploads will fail.")

    @property
    def available(self) -> bool:
        return self.s3_client is not None

    @staticmethod
    def _decode(data: Union[bytes, str], content_type: str):
        """bytes / base64 / data URL → (raw bytes, content type)"""
        if isinstance(data, (bytes, bytearray)):
            return bytes(data), content_type
        match = _DATA_URL_RE.match(data.strip())
        if match:
            return base64.b64decode(match.group("data")), match.group("mime")
        return base64.b64decode(data), content_type

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"https://{self.bucket_name}.{self.account_id}.r2.cloudflarestorage.com/{key}"

    def upload(
        self,
        data: Union[bytes, str],
        folder: str,
        filename: Optional[str] = None,
        content_type: str = "video/mp4",
    ) -> str:
        """
        Upload bytes (or base64 / data URL) into ``folder`` and return the durable URL.

        Args:
            data: Raw bytes, base64 text or a ``data:<mime>;base64,`` URL
            folder: Destination prefix in the bucket
            filename: Object name (generated when omitted)
            content_type: MIME type used when ``data`` carries none

        Returns:
            Public URL of the stored object
        """
        if not self.s3_client:
            raise GenerationError("R2 client not available; cannot re-host artifact", stage="rehost")

        body, content_type = self._decode(data, content_type)
        if not body:
            raise GenerationError("Refusing to upload an empty artifact", stage="rehost")

        if not filename:
            filename = f"{uuid.uuid4().hex}{_EXT_BY_MIME.get(content_type, '')}"
        key = f"{folder.strip('/')}/{filename}"

        try:
            logger.info(f"[StorageManager] Uploading {len(body)} bytes to R2://{self.bucket_name}/{key}...")
            self.s3_client.put_object(Bucket=self.bucket_name, Key=key, Body=body, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise GenerationError(f"R2 upload failed for {key}: {e}", stage="rehost")

        return self.public_url(key)
