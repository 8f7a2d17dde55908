from __future__ import annotations


class QuoteError(RuntimeError):
    """Base error for the quote store and sync engine."""


class ValidationError(QuoteError, ValueError):
    """A quote record is missing its text or category."""


class DuplicateQuoteError(ValidationError):
    """A quote with the same identity is already in the store."""


class EmptyCollectionError(QuoteError, LookupError):
    """No quotes to choose from."""


class StorageError(QuoteError):
    """Durable or session storage is unavailable, full, or corrupt."""


class TransportError(QuoteError):
    """Remote fetch or push failed."""


__all__ = [
    "QuoteError",
    "ValidationError",
    "DuplicateQuoteError",
    "EmptyCollectionError",
    "StorageError",
    "TransportError",
]
