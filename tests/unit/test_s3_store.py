from __future__ import annotations

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, IncompleteReadError
from cryptography.fernet import Fernet

from common.errors import StorageError
from state.s3_store import OptimisticLockError, S3KeyValueStorage


class _FakeBody:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def read(self) -> bytes:
        return self._data


class _FakeS3:
    def __init__(self) -> None:
        self._store = {}  # (bucket, key) -> {Body: bytes, ETag: str}
        self._version = 0

    def _next_etag(self) -> str:
        self._version += 1
        return f'"fake-{self._version}"'

    def put_object(self, *, Bucket: str, Key: str, Body: bytes, ContentType: str):
        etag = self._next_etag()
        self._store[(Bucket, Key)] = {"Body": Body, "ETag": etag}
        return {"ETag": etag}

    def get_object(self, *, Bucket: str, Key: str):
        item = self._store.get((Bucket, Key))
        if not item:
            raise ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        return {"Body": _FakeBody(item["Body"]), "ETag": item["ETag"]}

    def copy_object(self, *, Bucket: str, Key: str, CopySource, IfMatch=None, MetadataDirective=None):
        dest_item = self._store.get((Bucket, Key))
        if IfMatch is not None and (not dest_item or dest_item.get("ETag") != IfMatch):
            raise ClientError({"Error": {"Code": "PreconditionFailed"}}, "CopyObject")
        src_item = self._store.get((CopySource["Bucket"], CopySource["Key"]))
        if not src_item:
            raise ClientError({"Error": {"Code": "NoSuchKey"}}, "CopyObject")
        etag = self._next_etag()
        self._store[(Bucket, Key)] = {"Body": src_item["Body"], "ETag": etag}
        return {"ETag": etag}

    def delete_object(self, *, Bucket: str, Key: str):
        self._store.pop((Bucket, Key), None)
        return {}

    def keys(self):
        return sorted(k for (_b, k) in self._store)


class _BrokenS3(_FakeS3):
    def get_object(self, *, Bucket: str, Key: str):
        raise ClientError({"Error": {"Code": "AccessDenied"}}, "GetObject")


@pytest.fixture()
def fernet_key() -> bytes:
    return Fernet.generate_key()


def _storage(s3, fernet_key) -> S3KeyValueStorage:
    return S3KeyValueStorage(s3=s3, bucket="b", key="quotes.json", fernet_key=fernet_key)


def test_missing_object_is_empty_storage(fernet_key):
    storage = _storage(_FakeS3(), fernet_key)
    assert storage.get("quotes") is None


def test_set_get_roundtrip_is_encrypted_at_rest(fernet_key):
    s3 = _FakeS3()
    _storage(s3, fernet_key).set("quotes", '[{"text":"A","category":"X"}]')

    raw = s3.get_object(Bucket="b", Key="quotes.json")["Body"].read()
    assert b"category" not in raw

    fresh = _storage(s3, fernet_key)
    assert fresh.get("quotes") == '[{"text":"A","category":"X"}]'


def test_conditional_writes_clean_up_temp_objects(fernet_key):
    s3 = _FakeS3()
    storage = _storage(s3, fernet_key)
    storage.set("quotes", "[]")
    storage.set("lastFilter", "Life")
    storage.delete("lastFilter")

    assert s3.keys() == ["quotes.json"]
    assert _storage(s3, fernet_key).get("lastFilter") is None


def test_lost_race_reloads_and_retries_once(fernet_key):
    s3 = _FakeS3()
    first = _storage(s3, fernet_key)
    second = _storage(s3, fernet_key)
    first.set("quotes", "[]")
    assert second.get("quotes") == "[]"  # second caches the current ETag

    first.set("lastFilter", "Work")
    second.set("quotes", '["changed"]')  # stale ETag, then reload + retry

    final = _storage(s3, fernet_key)
    assert final.get("quotes") == '["changed"]'
    assert final.get("lastFilter") == "Work"


def test_wrong_key_raises_storage_error(fernet_key):
    s3 = _FakeS3()
    _storage(s3, fernet_key).set("quotes", "[]")
    with pytest.raises(StorageError):
        _storage(s3, Fernet.generate_key()).get("quotes")


def test_s3_errors_are_wrapped(fernet_key):
    with pytest.raises(StorageError):
        _storage(_BrokenS3(), fernet_key).get("quotes")


def test_invalid_fernet_key_is_rejected():
    with pytest.raises(StorageError):
        _storage(_FakeS3(), b"not-a-key")


def test_optimistic_lock_error_is_a_storage_error():
    assert issubclass(OptimisticLockError, StorageError)


class _TruncatedBody:
    def read(self) -> bytes:
        raise IncompleteReadError(actual_bytes=3, expected_bytes=120)


class _TruncatingS3(_FakeS3):
    def get_object(self, *, Bucket: str, Key: str):
        return {"Body": _TruncatedBody(), "ETag": '"fake-1"'}


class _UnreachableS3(_FakeS3):
    def get_object(self, *, Bucket: str, Key: str):
        raise EndpointConnectionError(endpoint_url="https://s3.example.test")


def test_streaming_body_errors_are_wrapped(fernet_key):
    with pytest.raises(StorageError) as ei:
        _storage(_TruncatingS3(), fernet_key).get("quotes")
    assert isinstance(ei.value.__cause__, IncompleteReadError)


def test_connection_errors_are_wrapped(fernet_key):
    with pytest.raises(StorageError) as ei:
        _storage(_UnreachableS3(), fernet_key).get("quotes")
    assert isinstance(ei.value.__cause__, EndpointConnectionError)


def test_reload_picks_up_changes_from_another_writer(fernet_key):
    s3 = _FakeS3()
    reader = _storage(s3, fernet_key)
    assert reader.get("lastFilter") is None

    _storage(s3, fernet_key).set("lastFilter", "Life")
    assert reader.get("lastFilter") is None  # cached document

    reader.reload()
    assert reader.get("lastFilter") == "Life"
