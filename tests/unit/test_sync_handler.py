from __future__ import annotations

import json

import pytest

from common.config import Settings
from common.remote import HttpRemoteCollection, InMemoryRemoteCollection
from state.models import Quote
from state.s3_store import S3KeyValueStorage
from state.storage import QUOTES_KEY, JsonFileStorage, MemoryStorage


class _ClosableRemote(InMemoryRemoteCollection):
    closed = False

    def close(self) -> None:
        self.closed = True


def _patch_remote(monkeypatch: pytest.MonkeyPatch, remote) -> None:
    from sync import handler

    monkeypatch.setattr(handler, "HttpRemoteCollection", lambda *_a, **_k: remote)


def test_run_once_without_remote_skips_sync(tmp_path):
    from sync import handler

    out = handler.run_once(Settings(storage_path=str(tmp_path / "s.json")))

    assert out["ok"] is True
    assert out["size"] == 8
    assert "skipped" in out["note"]


def test_run_once_syncs_file_storage_and_closes_remote(monkeypatch: pytest.MonkeyPatch, tmp_path):
    from sync import handler

    path = tmp_path / "s.json"
    JsonFileStorage(path).set(QUOTES_KEY, json.dumps([{"text": "A", "category": "X"}]))
    remote = _ClosableRemote([Quote(text="A", category="Y"), Quote(text="B", category="Y")])
    _patch_remote(monkeypatch, remote)

    out = handler.run_once(Settings(storage_path=str(path), remote_url="https://example.test/q"))

    assert out["ok"] is True
    assert out["conflicts"] == 1
    assert out["added_from_remote"] == 1
    assert out["pushed"] is True
    assert out["size"] == 2
    assert out["message"].startswith("Quotes synced with server")
    assert remote.closed is True
    stored = json.loads(JsonFileStorage(path).get(QUOTES_KEY) or "[]")
    assert stored == [{"text": "A", "category": "Y"}, {"text": "B", "category": "Y"}]


def test_lambda_handler_reads_environment(monkeypatch: pytest.MonkeyPatch, tmp_path):
    from sync import handler

    remote = _ClosableRemote([])
    _patch_remote(monkeypatch, remote)
    monkeypatch.setenv("QUOTES_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("QUOTES_REMOTE_URL", "https://example.test/q")
    monkeypatch.setenv("QUOTES_SYNC_PUSH", "0")
    monkeypatch.delenv("QUOTES_PARAM_PREFIX", raising=False)

    out = handler.lambda_handler({}, None)

    assert out["local_only"] == 8
    assert out["pushed"] is False
    assert remote.push_count == 0


def test_build_storage_selects_backend(tmp_path):
    from sync import handler

    assert isinstance(handler.build_storage(Settings(storage_backend="memory")), MemoryStorage)
    assert isinstance(handler.build_storage(Settings(storage_path=str(tmp_path / "x.json"))), JsonFileStorage)
    with pytest.raises(RuntimeError):
        handler.build_storage(Settings(storage_backend="s3"))


def test_build_storage_s3(monkeypatch: pytest.MonkeyPatch):
    from cryptography.fernet import Fernet

    from sync import handler

    monkeypatch.setattr("state.s3_store.boto3.client", lambda *_a, **_k: object())
    storage = handler.build_storage(
        Settings(storage_backend="s3", state_bucket="b", fernet_key=Fernet.generate_key().decode("ascii"))
    )
    assert isinstance(storage, S3KeyValueStorage)


def test_build_remote_uses_http_client():
    from sync import handler

    assert handler.build_remote(Settings()) is None
    remote = handler.build_remote(Settings(remote_url="https://example.test/q", http_timeout=3.0))
    assert isinstance(remote, HttpRemoteCollection)
    remote.close()
