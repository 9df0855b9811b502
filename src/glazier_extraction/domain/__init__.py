"""Domain records and normalization for glazier items."""

from .models import (
    ExtractionResult,
    FileLog,
    Item,
    PageImage,
    PageOutcome,
    PageResult,
    Summary,
    TokenUsage,
)
from .normalize import coerce_item, coerce_quantity, dedup_key

__all__ = [
    "ExtractionResult",
    "FileLog",
    "Item",
    "PageImage",
    "PageOutcome",
    "PageResult",
    "Summary",
    "TokenUsage",
    "coerce_item",
    "coerce_quantity",
    "dedup_key",
]
