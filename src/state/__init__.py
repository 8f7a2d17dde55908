"""
Quote models, the local quote store, and its storage backends.

The store keeps the authoritative ordered collection in memory and mirrors
it into a `KeyValueStorage` (JSON file, encrypted S3 object, or memory)
after every mutation.
"""

from .models import ALL_CATEGORIES, DEFAULT_QUOTES, Quote, quote_key
from .store import ImportResult, QuoteStore, pick_random

__all__ = [
    "ALL_CATEGORIES",
    "DEFAULT_QUOTES",
    "ImportResult",
    "Quote",
    "QuoteStore",
    "pick_random",
    "quote_key",
]
