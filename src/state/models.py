from __future__ import annotations

from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


ALL_CATEGORIES = "all"


class Quote(BaseModel):
    """
    A single quote record, the unit of storage, display and sync.

    Fields
    - id: optional identifier assigned by a remote side; carried but not used
      for identity.
    - text: the quote itself; surrounding whitespace is trimmed, must be non-empty.
    - category: free-form label used for filtering; trimmed, must be non-empty.

    Notes
    - Identity for deduplication and conflict detection is `quote_key()`:
      the normalized text. Two quotes with the same key but a different
      category or id are "the same quote" in conflicting versions.
    - Instances are frozen; a modified quote is a new instance.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Optional[str] = Field(default=None, description="Optional remote identifier")
    text: str = Field(..., description="Quote text")
    category: str = Field(..., description="Quote category")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, v: Any) -> Any:
        # Remote payloads frequently carry numeric ids
        if isinstance(v, bool):
            return v
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("text", "category")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    def to_record(self) -> dict:
        """Plain dict for JSON encoding; `id` is omitted when absent."""
        return self.model_dump(exclude_none=True)


QuoteKey = str


def normalize_text(text: str) -> str:
    return " ".join(text.split())


def quote_key(quote: Quote) -> QuoteKey:
    """Identity of a quote: its text with whitespace runs collapsed."""
    return normalize_text(quote.text)


DEFAULT_QUOTES: Tuple[Quote, ...] = (
    Quote(text="The only way to do great work is to love what you do.", category="Work"),
    Quote(text="Strive not to be a success, but rather to be of value.", category="Inspiration"),
    Quote(text="The mind is everything. What you think you become.", category="Mindfulness"),
    Quote(text="The future belongs to those who believe in the beauty of their dreams.", category="Dreams"),
    Quote(text="It is during our darkest moments that we must focus to see the light.", category="Inspiration"),
    Quote(
        text="The greatest glory in living lies not in never falling, but in rising every time we fall.",
        category="Life",
    ),
    Quote(text="The way to get started is to quit talking and begin doing.", category="Action"),
    Quote(
        text=(
            "If you look at what you have in life, you'll always have more. "
            "If you look at what you don't have in life, you'll never have enough."
        ),
        category="Gratitude",
    ),
)


__all__ = [
    "ALL_CATEGORIES",
    "DEFAULT_QUOTES",
    "Quote",
    "QuoteKey",
    "normalize_text",
    "quote_key",
]
