"""Receipt storage: file validation plus the MinIO-backed file service."""
import io
import logging
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass

from minio import Minio
from minio.error import S3Error

from orderflow.core.config import settings
from orderflow.core.errors import ExternalDependencyError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_RECEIPT_EXTENSIONS = {".jpg", ".jpeg", ".png", ".pdf"}
ALLOWED_RECEIPT_TYPES = {"image/jpeg", "image/png", "application/pdf"}


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content_type: str
    data: bytes

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename or "")[1].lower()


def _signature_matches(content_type: str, head: bytes) -> bool:
    if "jpeg" in content_type:
        return head[:2] == b"\xff\xd8"
    if "png" in content_type:
        return head[:4] == b"\x89PNG"
    if "pdf" in content_type:
        return head[:4] == b"%PDF"
    return False


def validate_receipt(file: UploadedFile, max_bytes: int = None) -> None:
    max_bytes = max_bytes or settings.RECEIPT_MAX_BYTES
    if not file.data:
        raise ValidationError("No receipt file provided")
    if len(file.data) > max_bytes:
        raise ValidationError(f"Receipt cannot exceed {max_bytes // (1024 * 1024)}MB")
    if file.extension not in ALLOWED_RECEIPT_EXTENSIONS:
        raise ValidationError("Only JPG, PNG or PDF receipts are accepted")
    content_type = (file.content_type or "").lower()
    if content_type not in ALLOWED_RECEIPT_TYPES:
        raise ValidationError("Invalid receipt content type")
    if len(file.data) < 4:
        raise ValidationError("Receipt file too small to validate")
    if not _signature_matches(content_type, file.data[:8]):
        raise ValidationError("Receipt content does not match its declared type")


class FileService(ABC):

    @abstractmethod
    def save(self, file: UploadedFile, folder: str) -> str:
        """Store ``file`` under ``folder`` and return its public URL."""


class MinioFileService(FileService):

    def __init__(self, endpoint: str, access_key: str, secret_key: str, bucket: str, secure: bool = False):
        self._host = endpoint.replace("http://", "").replace("https://", "")
        self._bucket = bucket
        self._secure = secure
        self._client = Minio(self._host, access_key=access_key, secret_key=secret_key, secure=secure)

    @classmethod
    def from_settings(cls) -> "MinioFileService":
        return cls(settings.S3_ENDPOINT, settings.S3_ACCESS_KEY, settings.S3_SECRET_KEY,
                   settings.S3_BUCKET, settings.S3_SECURE)

    def ensure_bucket(self):
        if not self._client.bucket_exists(self._bucket):
            self._client.make_bucket(self._bucket)

    def save(self, file: UploadedFile, folder: str) -> str:
        key = f"{folder}/{uuid.uuid4().hex}{file.extension}"
        try:
            self.ensure_bucket()
            self._client.put_object(self._bucket, key, io.BytesIO(file.data), length=len(file.data),
                                    content_type=file.content_type)
        except (S3Error, OSError) as e:
            logger.error("Receipt upload failed: bucket=%s key=%s error=%s", self._bucket, key, e)
            raise ExternalDependencyError("File storage unavailable") from e
        scheme = "https" if self._secure else "http"
        return f"{scheme}://{self._host}/{self._bucket}/{key}"
