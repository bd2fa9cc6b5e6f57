# app/services/storage_service.py

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from typing import Optional

from app.core.config import settings
from app.core.logger import logger
from app.utils.exceptions import StorageDownloadError


def evidence_path(user_id: str, case_id: str, relative_path: str) -> str:
    """Object key of an evidence file: ``{userId}/{caseId}/{relativePath}``."""
    return f"{user_id}/{case_id}/{relative_path.lstrip('/')}"


class StorageService:
    """
    Evidence bucket access through the S3-compatible Supabase Storage endpoint.
    """

    def __init__(self):
        self.s3_client = boto3.client(
            's3',
            endpoint_url=settings.STORAGE_ENDPOINT_URL or None,
            region_name=settings.STORAGE_REGION,
            aws_access_key_id=settings.STORAGE_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.STORAGE_SECRET_ACCESS_KEY or None,
            config=Config(s3={"addressing_style": "path"}),
        )
        self.bucket = settings.EVIDENCE_BUCKET

    def download(self, key: str, bucket: Optional[str] = None) -> bytes:
        """
        Read a whole object into memory.
        """
        try:
            response = self.s3_client.get_object(
                Bucket=bucket or self.bucket,
                Key=key
            )
            return response['Body'].read()

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to download {key}: {str(e)}")
            raise StorageDownloadError(key, str(e)) from e


# Singleton instance
storage_service = StorageService()
