from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

import httpx
from pydantic import ValidationError as PydanticValidationError

from common.errors import TransportError
from state.models import Quote


logger = logging.getLogger(__name__)


@runtime_checkable
class RemoteCollection(Protocol):
    """Opaque remote counterpart of the quote store.

    `fetch` returns the whole remote snapshot; `push` replaces it wholesale.
    Both raise `TransportError` on failure.
    """

    def fetch(self) -> List[Quote]:
        ...

    def push(self, quotes: Sequence[Quote]) -> None:
        ...


def parse_remote_quotes(payload: Any) -> List[Quote]:
    """Turn a remote payload into quotes.

    Accepts a JSON array of quote objects or an object with a "quotes" array.
    Elements that fail validation are skipped.
    """
    items = payload.get("quotes") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise TransportError("Malformed remote payload: expected a list of quotes")

    quotes: List[Quote] = []
    skipped = 0
    for item in items:
        try:
            quotes.append(Quote.model_validate(item))
        except PydanticValidationError:
            skipped += 1
    if skipped:
        logger.warning("Remote snapshot contained %d invalid record(s); skipped", skipped)
    return quotes


class InMemoryRemoteCollection:
    """
    Simulated server holding one snapshot.

    Snapshots are copied on the way in and out so neither side can mutate the
    other's collection.
    """

    def __init__(self, quotes: Iterable[Quote] = ()) -> None:
        self._snapshot: List[Quote] = [q.model_copy() for q in quotes]
        self.fetch_count = 0
        self.push_count = 0

    @property
    def snapshot(self) -> List[Quote]:
        return [q.model_copy() for q in self._snapshot]

    def fetch(self) -> List[Quote]:
        self.fetch_count += 1
        return self.snapshot

    def push(self, quotes: Sequence[Quote]) -> None:
        self.push_count += 1
        self._snapshot = [q.model_copy() for q in quotes]


class HttpRemoteCollection:
    """
    Remote collection served over HTTP as a JSON document.

    Notes
    - `GET {url}` returns the snapshot; `PUT {url}` with the full JSON array
      replaces it. No authentication or versioning.
    - Transport errors, timeouts, 429 and 5xx are retried with exponential
      backoff; other HTTP errors fail immediately.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 15.0,
        max_attempts: int = 4,
        backoff: float = 1.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        self._url = url
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._backoff = backoff
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self._timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpRemoteCollection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def fetch(self) -> List[Quote]:
        resp = self._request("GET")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise TransportError("Failed to parse JSON from remote collection") from exc
        return parse_remote_quotes(payload)

    def push(self, quotes: Sequence[Quote]) -> None:
        self._request("PUT", json_body=[q.to_record() for q in quotes])

    # --------------- Internal ---------------
    def _request(self, method: str, *, json_body: Optional[List[Dict[str, Any]]] = None) -> httpx.Response:
        attempt = 0
        backoff = self._backoff
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = self._client.request(method, self._url, json=json_body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if 200 <= resp.status_code < 300:
                    return resp
                if resp.status_code in (429, 500, 502, 503, 504):
                    last_exc = TransportError(f"HTTP {resp.status_code} from {self._url}")
                else:
                    raise TransportError(
                        f"HTTP {resp.status_code} from {self._url}: {resp.text[:200]}"
                    )

            attempt += 1
            if attempt < self._max_attempts:
                logger.debug("%s %s failed (%s); retry %d in %.1fs", method, self._url, last_exc, attempt, backoff)
                time.sleep(backoff)
                backoff = min(backoff * 2, 8.0)

        raise TransportError(f"{method} {self._url} failed after {self._max_attempts} attempt(s)") from last_exc


__all__ = [
    "HttpRemoteCollection",
    "InMemoryRemoteCollection",
    "RemoteCollection",
    "parse_remote_quotes",
]
