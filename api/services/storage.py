# api/services/storage.py
from typing import Optional

import boto3
from botocore.config import Config
from api.config import settings
import structlog

logger = structlog.get_logger()


class StorageClient:
    """S3-compatible object storage for a single bucket."""

    def __init__(self, bucket: Optional[str] = None, s3=None):
        self.s3 = s3 or boto3.client(
            "s3",
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            aws_access_key_id=settings.STORAGE_ACCESS_KEY_ID,
            aws_secret_access_key=settings.STORAGE_SECRET_ACCESS_KEY,
            config=Config(signature_version="s3v4"),
            region_name=settings.STORAGE_REGION,
        )
        self.bucket = bucket or settings.PAYMENT_PROOF_BUCKET

    def upload(
        self, file_bytes: bytes, key: str, content_type: str = "image/png"
    ) -> str:
        self.s3.put_object(
            Bucket=self.bucket, Key=key, Body=file_bytes, ContentType=content_type
        )
        logger.info("storage_uploaded", bucket=self.bucket, key=key, size=len(file_bytes))
        return key

    def get_presigned_url(self, key: str, expires_in: int = 3600) -> str:
        return self.s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    def delete(self, key: str):
        self.s3.delete_object(Bucket=self.bucket, Key=key)
        logger.info("storage_deleted", bucket=self.bucket, key=key)


_proof_storage: Optional[StorageClient] = None


def get_proof_storage() -> StorageClient:
    """FastAPI dependency: storage client for the payment-proof bucket."""
    global _proof_storage
    if _proof_storage is None:
        _proof_storage = StorageClient(settings.PAYMENT_PROOF_BUCKET)
    return _proof_storage
