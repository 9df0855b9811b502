"""Token, page and cost bookkeeping for a run."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..config import Pricing
from ..domain.models import FileLog, TokenUsage
from ..logging import get_logger

LOG = get_logger("pipeline-accounting")


def compute_cost(tokens_input: int, tokens_output: int, pricing: Pricing) -> float:
    """USD estimate from per-million prices, rounded to 4 decimals."""
    cost = (
        tokens_input * pricing.input_per_million / 1_000_000
        + tokens_output * pricing.output_per_million / 1_000_000
    )
    return round(cost, 4)


class RunAccountant:
    """Accumulates per-page usage and per-file statistics across a run."""

    def __init__(self, *, model: str, pricing: Pricing) -> None:
        self.model = model
        self.pricing = pricing
        self.pages_processed = 0
        self.tokens = TokenUsage()
        self.files: List[FileLog] = []
        self._current: Optional[FileLog] = None

    def start_file(self, name: str) -> FileLog:
        self._current = FileLog(file=name)
        self.files.append(self._current)
        return self._current

    def record_pages(self, count: int) -> None:
        if self._current is not None:
            self._current.pages = count

    def record_page(self, tokens: Optional[TokenUsage], item_count: int) -> None:
        """Count one extractor invocation, whatever its outcome."""
        self.pages_processed += 1
        if tokens is not None:
            self.tokens = self.tokens + tokens
        if self._current is not None:
            self._current.items += item_count

    def record_file_failure(self, error: str) -> None:
        if self._current is None:
            return
        self._current.pages = 0
        self._current.items = 0
        self._current.error = error

    @property
    def cost_usd(self) -> float:
        return compute_cost(self.tokens.input, self.tokens.output, self.pricing)

    def as_log(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "pages_processed": self.pages_processed,
            "tokens_used": self.tokens.input + self.tokens.output,
            "tokens_input": self.tokens.input,
            "tokens_output": self.tokens.output,
            "cost_usd": self.cost_usd,
            "files": [f.as_dict() for f in self.files],
        }
