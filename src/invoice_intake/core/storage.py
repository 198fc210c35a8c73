from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from invoice_intake.core.config import settings
from invoice_intake.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}
_RETRYABLE_CODES = {
    "RequestCanceled",
    "RequestTimeout",
    "Throttling",
    "ThrottlingException",
    "SlowDown",
    "InternalError",
    "ServiceUnavailable",
}


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    byte_size: int


class ObjectStorage:
    """Blob store for uploaded documents.

    ``delete`` is idempotent: removing a key that is already gone is a no-op.
    """

    backend = "none"

    def put(self, *, key: str, body: bytes) -> StoredObject:  # pragma: no cover
        raise NotImplementedError

    def get(self, *, key: str) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def delete(self, *, key: str) -> bool:  # pragma: no cover
        """Return True when an object was removed, False when it was already absent."""
        raise NotImplementedError


def normalize_object_path(path: str) -> str:
    trimmed = path.lstrip("/")
    if not trimmed or ".." in trimmed or "\\" in trimmed:
        raise StorageError("Invalid object path.")
    return trimmed


class LocalObjectStorage(ObjectStorage):
    backend = "local"

    def __init__(self, root: Path):
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self._root / normalize_object_path(key)

    def put(self, *, key: str, body: bytes) -> StoredObject:
        start = time.monotonic()
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except Exception:
            log_exception(
                logger, "storage.put.failure", backend=self.backend, storage_key=key
            )
            raise
        log_event(
            logger,
            "storage.put.success",
            backend=self.backend,
            storage_key=key,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body))

    def get(self, *, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            log_event(logger, "storage.get.missing", backend=self.backend, storage_key=key)
            raise StorageError(f"Object not found: {key}")
        return path.read_bytes()

    def delete(self, *, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        try:
            path.unlink(missing_ok=True)
        except Exception:
            log_exception(
                logger, "storage.delete.failure", backend=self.backend, storage_key=key
            )
            raise
        return True


class S3ObjectStorage(ObjectStorage):
    backend = "s3"

    def __init__(self) -> None:
        self._client = _s3_client(
            Config(
                s3={"addressing_style": "virtual"},
                retries={"max_attempts": 3, "mode": "adaptive"},
                connect_timeout=30,
                read_timeout=60,
            )
        )
        self._bucket = settings.s3_bucket
        try:
            self._client.head_bucket(Bucket=self._bucket)
        except ClientError:
            self._client.create_bucket(Bucket=self._bucket)

    def _should_retry(self, error: Exception) -> bool:
        if isinstance(error, ClientError):
            return _client_error_code(error) in _RETRYABLE_CODES
        return isinstance(error, BotoCoreError)

    def put(self, *, key: str, body: bytes) -> StoredObject:
        start = time.monotonic()
        key = normalize_object_path(key)
        max_attempts = 4
        for attempt in range(1, max_attempts + 1):
            try:
                self._client.put_object(Bucket=self._bucket, Key=key, Body=body)
                break
            except (ClientError, BotoCoreError) as e:
                if attempt < max_attempts and self._should_retry(e):
                    delay_s = min(3.0, 0.25 * (2 ** (attempt - 1)))
                    log_event(
                        logger,
                        "storage.put.retry",
                        backend=self.backend,
                        storage_key=key,
                        attempt=attempt,
                        delay_s=delay_s,
                        error_type=type(e).__name__,
                    )
                    time.sleep(delay_s)
                    continue
                log_exception(
                    logger,
                    "storage.put.failure",
                    backend=self.backend,
                    storage_key=key,
                    attempt=attempt,
                )
                raise StorageError(f"Failed to store object: {key}") from e
        log_event(
            logger,
            "storage.put.success",
            backend=self.backend,
            storage_key=key,
            byte_size=len(body),
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body))

    def get(self, *, key: str) -> bytes:
        key = normalize_object_path(key)
        try:
            resp = self._client.get_object(Bucket=self._bucket, Key=key)
            return resp["Body"].read()
        except (ClientError, BotoCoreError) as e:
            log_event(
                logger,
                "storage.get.failure",
                backend=self.backend,
                storage_key=key,
                error_type=type(e).__name__,
            )
            raise StorageError(f"Object not found: {key}") from e

    def delete(self, *, key: str) -> bool:
        key = normalize_object_path(key)
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _client_error_code(e) in _MISSING_CODES:
                return False
            log_exception(logger, "storage.delete.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Failed to delete object: {key}") from e
        return True


def _client_error_code(error: ClientError) -> str | None:
    return (error.response.get("Error") or {}).get("Code")


def _s3_client(config: Config):
    region = settings.s3_region
    if not region or region.lower() == "auto":
        region = "us-east-1"
    session = boto3.session.Session(
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=settings.s3_secret_access_key,
        region_name=region,
    )
    return session.client("s3", endpoint_url=settings.s3_endpoint_url or None, config=config)


def _local_root() -> Path:
    root = settings.local_storage_path
    if not root.is_absolute():
        root = Path(os.getcwd()) / root
    return root


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    global _storage  # noqa: PLW0603
    if _storage is not None:
        return _storage

    if settings.storage_backend == "s3":
        _storage = S3ObjectStorage()
    else:
        _storage = LocalObjectStorage(_local_root())
    return _storage


def diagnose_storage(*, write_test: bool = False) -> dict[str, Any]:
    """
    Connectivity check for the configured blob store.

    Never returns credentials. With ``write_test`` a small probe object is
    written, read back and deleted.
    """
    result: dict[str, Any] = {"ok": True, "backend": settings.storage_backend}
    if settings.storage_backend == "s3":
        if not settings.s3_access_key_id or not settings.s3_secret_access_key:
            return {"ok": False, "backend": "s3", "error": "missing_s3_credentials"}
        client = _s3_client(Config(retries={"max_attempts": 1}, connect_timeout=5, read_timeout=20))
        start = time.monotonic()
        try:
            client.head_bucket(Bucket=settings.s3_bucket)
        except (ClientError, BotoCoreError) as e:
            result["ok"] = False
            result["head_bucket"] = {"ok": False, "error_type": type(e).__name__}
            return result
        result["head_bucket"] = {"ok": True, "duration_ms": monotonic_ms(start)}
    else:
        result["root"] = str(_local_root())

    if not write_test:
        return result

    key = f"diagnostics/healthz-{time.time_ns()}.txt"
    body = b"ok"
    try:
        storage = get_storage()
        storage.put(key=key, body=body)
        out = storage.get(key=key)
        storage.delete(key=key)
    except Exception as e:  # noqa: BLE001
        result["ok"] = False
        result["write_test"] = {"ok": False, "error_type": type(e).__name__, "error": str(e)}
        return result
    result["write_test"] = {"ok": out == body, "key": key}
    result["ok"] = out == body
    return result
