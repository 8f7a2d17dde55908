from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Set

from pydantic import ValidationError as PydanticValidationError

from common.errors import DuplicateQuoteError, EmptyCollectionError, StorageError, ValidationError

from .models import ALL_CATEGORIES, DEFAULT_QUOTES, Quote, QuoteKey, quote_key
from .storage import (
    LAST_FILTER_KEY,
    LAST_QUOTE_CATEGORY_KEY,
    LAST_QUOTE_TEXT_KEY,
    QUOTES_KEY,
    KeyValueStorage,
    MemoryStorage,
)


logger = logging.getLogger(__name__)

NO_QUOTES_MESSAGE = "No quotes available for this category. Add some!"


@dataclass(frozen=True)
class ImportResult:
    """Outcome of `QuoteStore.import_many`.

    Attributes
    - added: records appended to the store
    - skipped: records rejected by validation
    - duplicates: valid records already present (in the store or the batch)
    """

    added: int
    skipped: int
    duplicates: int = 0


def pick_random(quotes: Sequence[Quote], rng: Optional[random.Random] = None) -> Quote:
    """Return one quote chosen uniformly at random.

    Raises EmptyCollectionError when `quotes` is empty.
    """
    if not quotes:
        raise EmptyCollectionError("no quotes to choose from")
    return (rng or random).choice(quotes)


def _validate(record: Any) -> Quote:
    if isinstance(record, Quote):
        return record
    try:
        return Quote.model_validate(record)
    except PydanticValidationError as exc:
        raise ValidationError(f"invalid quote record: {exc.error_count()} error(s)") from exc


def _dedup(quotes: Iterable[Quote]) -> List[Quote]:
    seen: Set[QuoteKey] = set()
    out: List[Quote] = []
    for q in quotes:
        k = quote_key(q)
        if k not in seen:
            seen.add(k)
            out.append(q)
    return out


def encode_quotes(quotes: Iterable[Quote], *, indent: Optional[int] = None) -> str:
    return json.dumps([q.to_record() for q in quotes], indent=indent, ensure_ascii=False)


def decode_quotes(raw: str | bytes) -> List[Any]:
    """Parse a JSON array of quote-like records (elements are not validated)."""
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise ValidationError(f"not valid JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ValidationError("expected a JSON array of quote objects")
    return data


class QuoteStore:
    """
    Authoritative local collection of quotes.

    - Owns its list exclusively; callers get copies or read-only iteration.
    - Every mutation writes the full collection to durable storage under
      `QUOTES_KEY`. Storage failures are logged, remembered in
      `last_storage_error`, and do not undo the in-memory change.
    - No two quotes share an identity (`quote_key`).
    - Display helpers mirror the page behaviour: last-selected category in
      durable storage, last-viewed quote in session storage.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        session: Optional[KeyValueStorage] = None,
        defaults: Iterable[Quote] = DEFAULT_QUOTES,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._storage = storage
        self._session = session if session is not None else MemoryStorage()
        self._rng = rng
        self.last_storage_error: Optional[StorageError] = None
        self._quotes: List[Quote] = self._load(list(defaults))

    # -------- Persistence --------
    def _load(self, defaults: List[Quote]) -> List[Quote]:
        try:
            raw = self._storage.get(QUOTES_KEY)
        except StorageError as exc:
            self._report(exc)
            return _dedup(defaults)
        if raw is None:
            return _dedup(defaults)

        try:
            records = decode_quotes(raw)
        except ValidationError as exc:
            logger.warning("Stored quotes are unreadable, using defaults: %s", exc)
            return _dedup(defaults)

        loaded: List[Quote] = []
        for rec in records:
            try:
                loaded.append(_validate(rec))
            except ValidationError:
                logger.warning("Dropping invalid stored quote record: %r", rec)
        return _dedup(loaded)

    def _report(self, exc: StorageError) -> None:
        logger.warning("Storage unavailable, continuing in memory: %s", exc)
        self.last_storage_error = exc

    def _write(self, storage: KeyValueStorage, key: str, value: Optional[str]) -> bool:
        try:
            if value is None:
                storage.delete(key)
            else:
                storage.set(key, value)
        except StorageError as exc:
            self._report(exc)
            return False
        return True

    def _persist(self) -> bool:
        return self._write(self._storage, QUOTES_KEY, encode_quotes(self._quotes))

    # -------- Read-only views --------
    def __len__(self) -> int:
        return len(self._quotes)

    def __iter__(self) -> Iterator[Quote]:
        return iter(tuple(self._quotes))

    def __contains__(self, quote: object) -> bool:
        if not isinstance(quote, Quote):
            return False
        k = quote_key(quote)
        return any(quote_key(q) == k for q in self._quotes)

    def list_quotes(self, category: str = ALL_CATEGORIES) -> List[Quote]:
        """Quotes in `category`, or every quote for the "all" sentinel. May be empty."""
        if category == ALL_CATEGORIES:
            return list(self._quotes)
        return [q for q in self._quotes if q.category == category]

    def categories(self) -> List[str]:
        """Distinct categories in first-seen order."""
        return list(dict.fromkeys(q.category for q in self._quotes))

    # -------- Mutations --------
    def add(self, text: str, category: str) -> Quote:
        """Append a new quote and persist.

        Raises ValidationError for empty text/category, DuplicateQuoteError
        when a quote with the same text already exists.
        """
        quote = _validate({"text": text, "category": category})
        k = quote_key(quote)
        if any(quote_key(q) == k for q in self._quotes):
            raise DuplicateQuoteError(f"quote already exists: {quote.text!r}")
        self._quotes = [*self._quotes, quote]
        self._persist()
        logger.info("Quote added in %r", quote.category)
        return quote

    def import_many(self, records: Iterable[Any]) -> ImportResult:
        """Validate and merge records; invalid ones are skipped, duplicates ignored."""
        known = {quote_key(q) for q in self._quotes}
        incoming: List[Quote] = []
        skipped = duplicates = 0
        for rec in records:
            try:
                quote = _validate(rec)
            except ValidationError:
                skipped += 1
                continue
            k = quote_key(quote)
            if k in known:
                duplicates += 1
                continue
            known.add(k)
            incoming.append(quote)

        if incoming:
            self._quotes = [*self._quotes, *incoming]
            self._persist()
        if skipped:
            logger.warning("Import skipped %d invalid record(s)", skipped)
        return ImportResult(added=len(incoming), skipped=skipped, duplicates=duplicates)

    def import_json(self, data: str | bytes) -> ImportResult:
        """Import a JSON array as produced by `export_all`."""
        return self.import_many(decode_quotes(data))

    def export_all(self) -> bytes:
        """Full collection as a pretty-printed UTF-8 JSON array."""
        return encode_quotes(self._quotes, indent=2).encode("utf-8")

    def replace_all(self, quotes: Iterable[Quote]) -> bool:
        """Swap in a new collection in one assignment and persist it.

        Returns False when the collection could not be written to storage
        (the in-memory collection is replaced either way).
        """
        self._quotes = _dedup(quotes)
        return self._persist()

    # -------- Display helpers --------
    def select_category(self, category: str) -> None:
        self._write(self._storage, LAST_FILTER_KEY, category)

    def selected_category(self) -> str:
        """Last selected filter; falls back to "all" if its category is gone."""
        try:
            saved = self._storage.get(LAST_FILTER_KEY)
        except StorageError as exc:
            self._report(exc)
            return ALL_CATEGORIES
        if saved and (saved == ALL_CATEGORIES or saved in self.categories()):
            return saved
        return ALL_CATEGORIES

    def show_random(self, category: Optional[str] = None) -> Optional[Quote]:
        """Pick a quote to display and remember it in session storage.

        Returns None (and clears the session entry) when the filtered set is
        empty; callers display `NO_QUOTES_MESSAGE` instead.
        """
        subset = self.list_quotes(category if category is not None else self.selected_category())
        try:
            quote = pick_random(subset, self._rng)
        except EmptyCollectionError:
            self._write(self._session, LAST_QUOTE_TEXT_KEY, None)
            self._write(self._session, LAST_QUOTE_CATEGORY_KEY, None)
            return None
        self._write(self._session, LAST_QUOTE_TEXT_KEY, quote.text)
        self._write(self._session, LAST_QUOTE_CATEGORY_KEY, quote.category)
        return quote

    def last_viewed(self) -> Optional[Quote]:
        try:
            text = self._session.get(LAST_QUOTE_TEXT_KEY)
            category = self._session.get(LAST_QUOTE_CATEGORY_KEY)
        except StorageError as exc:
            self._report(exc)
            return None
        if not text or not category:
            return None
        return Quote(text=text, category=category)


__all__ = [
    "ImportResult",
    "NO_QUOTES_MESSAGE",
    "QuoteStore",
    "decode_quotes",
    "encode_quotes",
    "pick_random",
]
