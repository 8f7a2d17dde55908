from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.fernet import Fernet, InvalidToken

from common.errors import StorageError


logger = logging.getLogger(__name__)


class OptimisticLockError(StorageError):
    """Raised when an ETag precondition fails during a conditional write."""


def _to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a urlsafe base64-encoded 32-byte key."""
    key_bytes = key.encode("utf-8") if isinstance(key, str) else key
    try:
        return Fernet(key_bytes)
    except ValueError as exc:
        raise StorageError("Invalid Fernet key for S3 storage") from exc


def _error_code(exc: ClientError) -> Optional[str]:
    return exc.response.get("Error", {}).get("Code")


@dataclass
class S3ObjectRef:
    bucket: str
    key: str

    def __str__(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class S3KeyValueStorage:
    """
    Durable key/value storage kept as one Fernet-encrypted JSON object in S3.

    Usage
    - The whole document ({ key: value, ... }) is read once and cached along
      with its ETag.
    - Each `set`/`delete` rewrites the full document. When an ETag is known
      the write is conditional (temp key + `copy_object` with `IfMatch`), so a
      concurrent writer is detected instead of silently overwritten. On a lost
      race the document is reloaded, the change re-applied, and the write
      retried once.
    - A missing object is an empty storage. S3 failures, bad ciphertext and
      malformed JSON raise `StorageError`.
    """

    def __init__(
        self,
        *,
        bucket: str,
        key: str,
        fernet_key: str | bytes,
        s3: Optional[object] = None,
        region_name: Optional[str] = None,
    ) -> None:
        self._s3 = s3 or boto3.client("s3", region_name=region_name)
        self._obj = S3ObjectRef(bucket=bucket, key=key)
        self._fernet = _to_fernet(fernet_key)
        self._data: Dict[str, str] = {}
        self._etag: Optional[str] = None
        self._loaded = False

    # -------- Document I/O --------
    def _read_document(self) -> None:
        try:
            resp = self._s3.get_object(Bucket=self._obj.bucket, Key=self._obj.key)
        except ClientError as e:
            if _error_code(e) in ("NoSuchKey", "404"):
                self._data, self._etag, self._loaded = {}, None, True
                return
            raise StorageError(f"Failed to read {self._obj}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read {self._obj}: {e}") from e

        try:
            body = resp["Body"].read()
        except BotoCoreError as e:
            raise StorageError(f"Failed to read body of {self._obj}: {e}") from e

        try:
            plaintext = self._fernet.decrypt(body)
        except InvalidToken as ex:
            raise StorageError(f"Failed to decrypt {self._obj}: invalid Fernet token") from ex

        try:
            raw = json.loads(plaintext.decode("utf-8"))
        except ValueError as ex:
            raise StorageError(f"Failed to parse decrypted document from {self._obj}") from ex
        if not isinstance(raw, dict):
            raise StorageError(f"{self._obj} does not hold a JSON object")

        self._data = {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}
        self._etag = resp.get("ETag")
        self._loaded = True

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self._read_document()

    def _write_document(self, data: Dict[str, str]) -> str:
        # Deterministic JSON: stable key order, no extra whitespace
        plaintext = json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8")
        ciphertext = self._fernet.encrypt(plaintext)

        if self._etag is None:
            try:
                resp = self._s3.put_object(
                    Bucket=self._obj.bucket,
                    Key=self._obj.key,
                    Body=ciphertext,
                    ContentType="application/octet-stream",
                )
            except ClientError as e:
                raise StorageError(f"Failed to write {self._obj}: {e}") from e
            return str(resp.get("ETag"))

        # S3 PutObject does not support If-Match; upload to a temporary key and
        # COPY over the destination with a precondition on its current ETag.
        temp_key = f"{self._obj.key}.tmp-{uuid4().hex}"
        try:
            self._s3.put_object(
                Bucket=self._obj.bucket,
                Key=temp_key,
                Body=ciphertext,
                ContentType="application/octet-stream",
            )
            resp = self._s3.copy_object(
                Bucket=self._obj.bucket,
                Key=self._obj.key,
                CopySource={"Bucket": self._obj.bucket, "Key": temp_key},
                IfMatch=self._etag,
                MetadataDirective="COPY",
            )
        except ClientError as e:
            if _error_code(e) in ("PreconditionFailed", "412"):
                raise OptimisticLockError(f"ETag mismatch for {self._obj}") from e
            raise StorageError(f"Failed to write {self._obj}: {e}") from e
        finally:
            try:
                self._s3.delete_object(Bucket=self._obj.bucket, Key=temp_key)
            except ClientError:
                logger.warning("Could not delete temporary object %s/%s", self._obj.bucket, temp_key)

        return str(resp.get("ETag"))

    def _mutate(self, change: Callable[[Dict[str, str]], Dict[str, str]]) -> None:
        self._ensure_loaded()
        try:
            updated = change(self._data)
            etag = self._write_document(updated)
        except OptimisticLockError:
            logger.info("Concurrent update on %s; reloading and retrying once", self._obj)
            self._read_document()
            updated = change(self._data)
            etag = self._write_document(updated)
        self._data, self._etag = updated, etag

    # -------- KeyValueStorage --------
    def get(self, key: str) -> Optional[str]:
        self._ensure_loaded()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._mutate(lambda data: {**data, key: value})

    def delete(self, key: str) -> None:
        self._ensure_loaded()
        if key not in self._data:
            return
        self._mutate(lambda data: {k: v for k, v in data.items() if k != key})

    def reload(self) -> None:
        """Drop the cached document; the next access re-reads S3."""
        self._loaded = False


__all__ = ["S3KeyValueStorage", "OptimisticLockError"]
