"""
Attachment storage backends.
S3-compatible object storage with a local-filesystem fallback, plus the
startup policy that picks one of them.
"""

from __future__ import annotations

import base64
import binascii
import configparser
import html
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, BinaryIO, Protocol, cast

from boto3 import Session
from botocore.client import Config  # type: ignore[reportMissingTypeStubs]
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore[reportMissingTypeStubs]

from .config import Settings
from .exceptions import StorageInitializationError


LOGGER = logging.getLogger(__name__)


class StorageObjectNotFoundError(KeyError):
    """No object stored under the requested key."""


class StorageBackend(Protocol):
    """Blob store used for request attachments."""

    @property
    def name(self) -> str: ...

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str: ...

    def get(self, key: str) -> bytes: ...

    def delete(self, key: str) -> None: ...

    def url_for(self, key: str, expires: int = 300) -> str: ...

    def close(self) -> None: ...


class S3ClientProtocol(Protocol):
    """Subset of S3 client methods used in this module."""

    def put_object(self, *args: Any, **kwargs: Any) -> Any: ...

    def get_object(self, *args: Any, **kwargs: Any) -> dict[str, Any]: ...

    def delete_object(self, *args: Any, **kwargs: Any) -> Any: ...

    def generate_presigned_url(self, *args: Any, **kwargs: Any) -> str: ...


def _normalize_endpoint(url: str | None) -> str | None:
    """Ensure endpoints include a scheme so boto3 accepts them."""
    if not url:
        return None
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"http://{url}"


def _error_code(error: ClientError) -> str:
    response = cast(dict[str, Any], error.response)
    return str(cast(dict[str, Any], response.get("Error", {})).get("Code", ""))


class LocalStorage:
    """Files under ``base_dir``; keys map to relative paths."""

    name = "local"

    def __init__(self, base_dir: str | os.PathLike[str]):
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.base_dir / key.lstrip("/")).resolve()
        if not path.is_relative_to(self.base_dir) or path == self.base_dir:
            raise ValueError(f"Invalid storage key: {key!r}")
        return path

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        LOGGER.debug("[Storage] Wrote %s bytes to %s", len(data), path)
        return str(path)

    def get(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError as e:
            raise StorageObjectNotFoundError(key) from e

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def url_for(self, key: str, expires: int = 300) -> str:
        return str(self._path(key))

    def close(self) -> None:
        pass


class S3Storage:
    """S3/MinIO bucket storage.

    If the boto3 client cannot be built (bad region, unreadable credentials,
    broken endpoint) every call is served by a ``LocalStorage`` under
    ``local_dir`` instead.
    """

    def __init__(
        self,
        bucket: str,
        region: str,
        local_dir: str | os.PathLike[str],
        endpoint_url: str | None = None,
        client: S3ClientProtocol | None = None,
        credentials_file: Path | None = None,
    ):
        self.bucket = bucket
        self.credentials_file = credentials_file
        self.region = region
        self.endpoint_url = _normalize_endpoint(endpoint_url)
        self._fallback: LocalStorage | None = None
        self._client: S3ClientProtocol | None = client

        if self._client is None:
            try:
                self._client = self._build_client()
            except (BotoCoreError, ClientError, ValueError) as e:
                LOGGER.warning(
                    "[Storage] Could not create S3 client (%s); falling back to local storage at %s",
                    e,
                    local_dir,
                )
                self._fallback = LocalStorage(local_dir)

    def _build_client(self) -> S3ClientProtocol:
        # A fresh session picks up AWS_SHARED_CREDENTIALS_FILE set at startup
        session = Session(region_name=self.region)
        return cast(
            S3ClientProtocol,
            session.client(
                "s3",
                endpoint_url=self.endpoint_url,
                config=Config(signature_version="s3v4"),
            ),
        )

    @property
    def name(self) -> str:
        return "local" if self._fallback is not None else "s3"

    @property
    def using_fallback(self) -> bool:
        return self._fallback is not None

    def object_url(self, key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        if self._fallback is not None:
            return self._fallback.put(key, data, content_type)
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = html.escape(content_type)
        cast(S3ClientProtocol, self._client).put_object(**params)
        LOGGER.debug("[Storage] Uploaded %s bytes to s3://%s/%s", len(data), self.bucket, key)
        return self.object_url(key)

    def get(self, key: str) -> bytes:
        if self._fallback is not None:
            return self._fallback.get(key)
        try:
            obj = cast(S3ClientProtocol, self._client).get_object(
                Bucket=self.bucket, Key=key
            )
        except ClientError as e:
            if _error_code(e) in {"NoSuchKey", "404"}:
                raise StorageObjectNotFoundError(key) from e
            raise
        body = obj.get("Body")
        if body is None:
            raise StorageObjectNotFoundError(key)
        return cast(BinaryIO, body).read()

    def delete(self, key: str) -> None:
        if self._fallback is not None:
            self._fallback.delete(key)
            return
        try:
            cast(S3ClientProtocol, self._client).delete_object(
                Bucket=self.bucket, Key=key
            )
        except ClientError as e:
            if _error_code(e) not in {"NoSuchKey", "404"}:
                LOGGER.error("[Storage] Failed to delete S3 object: %s", key)
                raise

    def url_for(self, key: str, expires: int = 300) -> str:
        """Presigned GET URL (or the local path when falling back)."""
        if self._fallback is not None:
            return self._fallback.url_for(key, expires)
        return cast(S3ClientProtocol, self._client).generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires,
            HttpMethod="GET",
        )

    def close(self) -> None:
        """Remove the credentials file this backend was started with."""
        if self.credentials_file is not None:
            self.credentials_file.unlink(missing_ok=True)
            self.credentials_file = None


def materialize_cloud_credentials(settings: Settings) -> Path:
    """Decode STORAGE_CREDENTIALS_B64 into a private credentials file.

    The file is an AWS shared-credentials INI; boto3 is pointed at it through
    ``AWS_SHARED_CREDENTIALS_FILE``.
    """
    encoded = settings.STORAGE_CREDENTIALS_B64
    if not encoded:
        raise StorageInitializationError(
            "STORAGE_CREDENTIALS_B64 environment variable is not set"
        )

    try:
        credentials = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise StorageInitializationError(
            "STORAGE_CREDENTIALS_B64 is not valid base64-encoded text"
        ) from e

    parser = configparser.ConfigParser()
    try:
        parser.read_string(credentials)
    except configparser.Error as e:
        raise StorageInitializationError(
            "Decoded storage credentials are not a credentials file"
        ) from e
    if not any(parser.has_option(s, "aws_access_key_id") for s in parser.sections()):
        raise StorageInitializationError(
            "Decoded storage credentials contain no aws_access_key_id"
        )

    name: str | None = None
    try:
        fd, name = tempfile.mkstemp(prefix="casedesk-credentials-", suffix=".ini")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(credentials)
        os.chmod(name, 0o600)
    except OSError as e:
        if name is not None:
            Path(name).unlink(missing_ok=True)
        raise StorageInitializationError(
            "Could not write storage credentials file"
        ) from e

    os.environ["AWS_SHARED_CREDENTIALS_FILE"] = name
    return Path(name)


def init_storage(settings: Settings) -> StorageBackend:
    """Pick the attachment backend once at startup.

    1. USE_LOCAL_STORAGE -> local, credentials are never touched
    2. credentials decode -> S3 (which can still fall back internally)
    3. decode or write fails -> local if FALLBACK_TO_LOCAL, otherwise fatal
    """
    if settings.USE_LOCAL_STORAGE:
        LOGGER.info("[Storage] Using local storage at %s", settings.LOCAL_STORAGE_DIR)
        return LocalStorage(settings.LOCAL_STORAGE_DIR)

    try:
        credentials_file = materialize_cloud_credentials(settings)
        LOGGER.info("[Storage] Object storage credentials loaded successfully")
    except StorageInitializationError as e:
        if settings.FALLBACK_TO_LOCAL:
            LOGGER.warning(
                "[Storage] Failed to initialize object storage (%s), falling back to local storage",
                e,
            )
            return LocalStorage(settings.LOCAL_STORAGE_DIR)
        LOGGER.critical("[Storage] Storage initialization failed: %s", e)
        raise

    return S3Storage(
        bucket=settings.S3_BUCKET,
        region=settings.S3_REGION,
        local_dir=settings.LOCAL_STORAGE_DIR,
        endpoint_url=settings.S3_ENDPOINT or None,
        credentials_file=credentials_file,
    )
