"""
S3 artifact store for rendered transcripts.
"""

import asyncio
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from docenti.config import logger
from docenti.errors import ArtifactUploadError, FatalConfigError


class ArtifactStore:
    """Uploads public-read objects to one bucket and returns their URLs."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client=None,
    ) -> None:
        """
        Args:
            bucket: S3 bucket name for transcript storage
            region: AWS region of the bucket
            access_key_id / secret_access_key: explicit credentials; when
                omitted boto3's default credential chain is used
            client: pre-built S3 client (tests inject a stub)
        """
        self._bucket = bucket
        self._region = region
        self._client = client or boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    @property
    def base_url(self) -> str:
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/"

    def url_for(self, key: str) -> str:
        return self.base_url + key

    def _put(self, key: str, data: bytes, content_type: str):
        self._client.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            ACL="public-read",
        )

    async def upload(self, filename: str, data: bytes, content_type: str = "application/pdf") -> str:
        """Upload bytes under `filename` and return the object URL."""
        if not self._bucket:
            raise FatalConfigError("AWS_BUCKET_NAME is not configured")

        logger.debug(f"Uploading file to S3: {filename}")
        try:
            await asyncio.to_thread(self._put, filename, data, content_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload file {filename}: {e}")
            raise ArtifactUploadError(f"Failed to upload file: {e}", key=filename) from e

        url = self.url_for(filename)
        logger.debug(f"File uploaded successfully: {url}")
        return url
