from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Iterable, Optional


# Environment variable names
ENV_STORAGE_BACKEND = "QUOTES_STORAGE_BACKEND"
ENV_STORAGE_PATH = "QUOTES_STORAGE_PATH"
ENV_STATE_BUCKET = "QUOTES_STATE_BUCKET"
ENV_STATE_KEY = "QUOTES_STATE_KEY"  # optional; defaults to "quotes.json"
ENV_FERNET_KEY = "QUOTES_FERNET_KEY"
ENV_PARAM_PREFIX = "QUOTES_PARAM_PREFIX"  # optional SSM prefix for secrets
ENV_REMOTE_URL = "QUOTES_REMOTE_URL"
ENV_SYNC_INTERVAL = "QUOTES_SYNC_INTERVAL"
ENV_SYNC_PUSH = "QUOTES_SYNC_PUSH"
ENV_HTTP_TIMEOUT = "QUOTES_HTTP_TIMEOUT"
ENV_LOG_LEVEL = "QUOTES_LOG_LEVEL"

BACKENDS = ("file", "s3", "memory")

DEFAULT_STORAGE_PATH = os.path.join(".quotes", "storage.json")
DEFAULT_STATE_KEY = "quotes.json"
DEFAULT_SYNC_INTERVAL = 60.0
DEFAULT_HTTP_TIMEOUT = 15.0


@dataclass(frozen=True)
class Settings:
    """Runtime configuration resolved from the environment.

    Attributes
    - storage_backend: "file", "s3" or "memory"
    - storage_path: JSON file used by the file backend
    - state_bucket / state_key: S3 location used by the s3 backend
    - fernet_key: urlsafe base64 Fernet key for the s3 backend
    - remote_url: remote collection endpoint; None disables sync
    - sync_interval: seconds between periodic cycles
    - sync_push: push the merged collection back after each cycle
    - http_timeout: per-request timeout for the remote endpoint
    - log_level: logging level name
    """

    storage_backend: str = "file"
    storage_path: str = DEFAULT_STORAGE_PATH
    state_bucket: Optional[str] = None
    state_key: str = DEFAULT_STATE_KEY
    fernet_key: Optional[str] = None
    remote_url: Optional[str] = None
    sync_interval: float = DEFAULT_SYNC_INTERVAL
    sync_push: bool = True
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    log_level: str = "INFO"


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _require(v: Optional[str], what: str) -> str:
    if not v:
        raise RuntimeError(f"Missing required configuration: {what}")
    return v


def _positive_float(raw: Optional[str], what: str, default: float) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Invalid number for {what}: {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"{what} must be > 0 (got {raw!r})")
    return value


def _parse_bool(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def _load_ssm_params(prefix: str, names: Iterable[str]) -> Dict[str, Optional[str]]:
    import boto3
    from botocore.exceptions import ClientError

    ssm = boto3.client("ssm")
    out: Dict[str, Optional[str]] = {k: None for k in names}
    for name in names:
        try:
            resp = ssm.get_parameter(Name=f"{prefix}{name}", WithDecryption=True)
        except ClientError as e:
            # Leave as None if parameter missing or access denied
            code = e.response.get("Error", {}).get("Code")
            if code in ("ParameterNotFound", "AccessDeniedException"):
                continue
            raise
        val = resp.get("Parameter", {}).get("Value")
        out[name] = val if isinstance(val, str) and val != "" else None
    return out


def load_settings() -> Settings:
    """Resolve `Settings` from environment variables (and SSM, if a prefix is set)."""
    backend = (_getenv(ENV_STORAGE_BACKEND, "file") or "file").strip().lower()
    if backend not in BACKENDS:
        raise RuntimeError(
            f"Unsupported {ENV_STORAGE_BACKEND}={backend!r}; expected one of {', '.join(BACKENDS)}"
        )

    fernet_key = _getenv(ENV_FERNET_KEY)
    remote_url = _getenv(ENV_REMOTE_URL)

    prefix = _getenv(ENV_PARAM_PREFIX)
    if prefix and (fernet_key is None or remote_url is None):
        params = _load_ssm_params(prefix, ["fernet_key", "remote_url"])
        fernet_key = fernet_key or params.get("fernet_key")
        remote_url = remote_url or params.get("remote_url")

    bucket = _getenv(ENV_STATE_BUCKET)
    if backend == "s3":
        bucket = _require(bucket, ENV_STATE_BUCKET)
        fernet_key = _require(fernet_key, ENV_FERNET_KEY)

    return Settings(
        storage_backend=backend,
        storage_path=_getenv(ENV_STORAGE_PATH, DEFAULT_STORAGE_PATH) or DEFAULT_STORAGE_PATH,
        state_bucket=bucket,
        state_key=_getenv(ENV_STATE_KEY, DEFAULT_STATE_KEY) or DEFAULT_STATE_KEY,
        fernet_key=fernet_key,
        remote_url=remote_url,
        sync_interval=_positive_float(_getenv(ENV_SYNC_INTERVAL), ENV_SYNC_INTERVAL, DEFAULT_SYNC_INTERVAL),
        sync_push=_parse_bool(_getenv(ENV_SYNC_PUSH), True),
        http_timeout=_positive_float(_getenv(ENV_HTTP_TIMEOUT), ENV_HTTP_TIMEOUT, DEFAULT_HTTP_TIMEOUT),
        log_level=_getenv(ENV_LOG_LEVEL, "INFO") or "INFO",
    )


__all__ = ["Settings", "load_settings"]
