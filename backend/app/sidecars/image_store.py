"""S3-compatible blob storage for bill images."""

from __future__ import annotations

import logging
import mimetypes
import os
import uuid

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


class ImageStoreError(Exception):
    """Upload, lookup or delete failed in the object store."""


class ImageNotFound(ImageStoreError):
    """No object is stored under the key."""


def _normalize_endpoint(endpoint: str | None, secure: bool) -> str | None:
    if not endpoint:
        return None
    endpoint = endpoint.rstrip("/")
    if "://" not in endpoint:
        endpoint = f"{'https' if secure else 'http'}://{endpoint}"
    return endpoint


def get_s3_client(app_config) -> BaseClient:
    """Return a configured S3 client for the MinIO/S3 endpoint in config."""
    timeout = app_config.get("OBJECT_STORE_TIMEOUT_SECONDS", 30)
    return boto3.client(
        "s3",
        endpoint_url=_normalize_endpoint(
            app_config.get("OBJECT_STORE_ENDPOINT"),
            app_config.get("OBJECT_STORE_SECURE", False),
        ),
        aws_access_key_id=app_config.get("OBJECT_STORE_ACCESS_KEY") or None,
        aws_secret_access_key=app_config.get("OBJECT_STORE_SECRET_KEY") or None,
        region_name=app_config.get("OBJECT_STORE_REGION", "us-east-1"),
        config=Config(
            s3={"addressing_style": "path"},
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={"max_attempts": 2},
        ),
    )


class ImageStore:
    """
    save / url / delete over one bucket. Keys are opaque to callers.
    """

    def __init__(self, client: BaseClient | None = None, bucket: str = "", url_expiry: int = 3600):
        self._client = client
        self.bucket = bucket
        self.url_expiry = url_expiry

    def init_app(self, app, client: BaseClient | None = None) -> None:
        self.bucket = app.config.get("OBJECT_STORE_BUCKET", self.bucket)
        self.url_expiry = app.config.get("OBJECT_STORE_URL_EXPIRY_SECONDS", self.url_expiry)
        # boto3 clients open no connection until the first call.
        self._client = client or get_s3_client(app.config)
        app.extensions["image_store"] = self

    @property
    def client(self) -> BaseClient:
        if self._client is None:
            raise RuntimeError("ImageStore used before init_app().")
        return self._client

    def save(self, data: bytes, filename: str) -> str:
        ext = os.path.splitext(filename or "")[1].lower()
        key = f"bills/{uuid.uuid4().hex}{ext}"
        content_type = mimetypes.guess_type(filename or "")[0] or "application/octet-stream"
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise ImageStoreError(f"failed to upload image: {exc}") from exc
        return key

    def url(self, key: str) -> str:
        """
        Presigned GET URL for `key`.

        Presigning is local and succeeds for any key, so the object is
        checked first; a missing object raises ImageNotFound.
        """
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise ImageNotFound(key) from exc
            raise ImageStoreError(f"failed to stat image: {exc}") from exc
        except BotoCoreError as exc:
            raise ImageStoreError(f"failed to stat image: {exc}") from exc

        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_expiry,
            )
        except (BotoCoreError, ClientError) as exc:
            raise ImageStoreError(f"failed to sign image url: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise ImageStoreError(f"failed to delete image: {exc}") from exc
