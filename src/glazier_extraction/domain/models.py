from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Item:
    """One glass element found on a page (shower screen, mirror, ...)."""

    floor: str
    room: str
    type: str
    dimensions: str
    code: Optional[str] = None
    specs: Optional[str] = None
    quantity: int = 1
    notes: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "floor": self.floor,
            "room": self.room,
            "type": self.type,
            "code": self.code,
            "specs": self.specs,
            "dimensions": self.dimensions,
            "quantity": self.quantity,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class TokenUsage:
    input: int = 0
    output: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(self.input + other.input, self.output + other.output)

    @classmethod
    def from_usage(cls, usage: Any) -> "TokenUsage":
        """Build from an OpenAI-style usage object; anything missing counts as 0."""
        if not isinstance(usage, dict):
            return cls()

        def _int(v: Any) -> int:
            if isinstance(v, bool):
                return 0
            try:
                return max(int(v), 0)
            except (TypeError, ValueError):
                return 0

        return cls(_int(usage.get("prompt_tokens")), _int(usage.get("completion_tokens")))


class PageOutcome(enum.Enum):
    SUCCEEDED = "succeeded"
    EMPTY = "empty"
    FAILED_EXHAUSTED = "failed_exhausted"


@dataclass
class PageResult:
    items: List[Item]
    tokens: TokenUsage
    outcome: PageOutcome
    attempts: int = 0
    error: Optional[str] = None
    raw_content: Optional[str] = None


@dataclass(frozen=True)
class PageImage:
    """A rasterized page; owned by the flow for exactly one extraction."""

    path: str
    page_number: int

    def discard(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass


@dataclass
class FileLog:
    file: str
    pages: int = 0
    items: int = 0
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"file": self.file, "pages": self.pages, "items": self.items}
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class Summary:
    unique_items: int
    total: int
    by_floor: Dict[str, int] = field(default_factory=dict)
    by_type: Dict[str, int] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "unique_items": self.unique_items,
            "by_floor": dict(self.by_floor),
            "by_type": dict(self.by_type),
        }


@dataclass
class ExtractionResult:
    project: Dict[str, Any]
    items: List[Item]
    summary: Summary
    extraction_log: Dict[str, Any]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "project": dict(self.project),
            "items": [item.as_dict() for item in self.items],
            "summary": self.summary.as_dict(),
            "extraction_log": dict(self.extraction_log),
        }
