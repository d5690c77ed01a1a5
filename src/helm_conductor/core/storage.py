"""Object storage read client for curated chart archives."""

from __future__ import annotations

import logging
from typing import Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from helm_conductor.config.settings import settings
from helm_conductor.errors import StorageError

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    def read(self, path: str) -> bytes: ...


class S3Storage:
    """Reads objects from one bucket of an S3 compatible service."""

    def __init__(
        self,
        bucket: str,
        endpoint: str | None = None,
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ):
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint,
            region_name=region or settings.default_s3_region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    def read(self, path: str) -> bytes:
        key = path.lstrip("/")
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=key)
            return obj["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            logger.error("read %s from bucket %s failed, code: %s", key, self.bucket, code)
            raise StorageError(f"read {key} from bucket {self.bucket} failed: {code or e}") from e
        except BotoCoreError as e:
            logger.error("read %s from bucket %s failed: %s", key, self.bucket, e)
            raise StorageError(f"read {key} from bucket {self.bucket} failed: {e}") from e
