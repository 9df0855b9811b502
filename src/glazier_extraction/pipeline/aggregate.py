"""Deduplicate, merge and sort items collected from every page of a run."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Dict, Iterable, List

from ..domain.models import Item, Summary
from ..domain.normalize import DedupKey, collapse_ws, dedup_key
from ..logging import get_logger

LOG = get_logger("pipeline-aggregate")

FLOOR_RANK: Dict[str, int] = {
    "basement": 0,
    "ground floor": 1,
    "first floor": 2,
}
UNKNOWN_FLOOR_RANK = 99
UNKNOWN_LABEL = "Unknown"


@dataclass
class Aggregation:
    items: List[Item]
    summary: Summary


def merge(base: Item, incoming: Item) -> Item:
    """Fold a later duplicate into the first occurrence of its key.

    - code/specs are backfilled only while empty on the base.
    - quantity is upgraded only from exactly 1 to a larger incoming value.
    Every other field keeps the first occurrence's value.
    """
    changes = {}
    if not base.code and incoming.code:
        changes["code"] = incoming.code
    if not base.specs and incoming.specs:
        changes["specs"] = incoming.specs
    if base.quantity == 1 and incoming.quantity > 1:
        changes["quantity"] = incoming.quantity
    if not changes:
        return base
    return dataclasses.replace(base, **changes)


def dedupe_items(items: Iterable[Item]) -> List[Item]:
    seen: Dict[DedupKey, Item] = {}
    for item in items:
        key = dedup_key(item)
        existing = seen.get(key)
        if existing is None:
            seen[key] = item
        else:
            seen[key] = merge(existing, item)
    return list(seen.values())


def floor_rank(floor: str) -> int:
    return FLOOR_RANK.get(collapse_ws(floor).casefold(), UNKNOWN_FLOOR_RANK)


def sort_items(items: Iterable[Item]) -> List[Item]:
    """Basement, Ground Floor, First Floor, then anything else; rooms A-Z."""
    return sorted(items, key=lambda item: (floor_rank(item.floor), (item.room or "").casefold()))


def summarize(items: List[Item]) -> Summary:
    by_floor: Dict[str, int] = {}
    by_type: Dict[str, int] = {}
    total = 0
    for item in items:
        qty = item.quantity or 1
        total += qty
        floor = item.floor or UNKNOWN_LABEL
        item_type = item.type or UNKNOWN_LABEL
        by_floor[floor] = by_floor.get(floor, 0) + qty
        by_type[item_type] = by_type.get(item_type, 0) + qty
    return Summary(unique_items=len(items), total=total, by_floor=by_floor, by_type=by_type)


def aggregate(items: Iterable[Item]) -> Aggregation:
    """Pure: dedup (first occurrence wins), then stable sort, then summary."""
    raw = list(items)
    unique = dedupe_items(raw)
    ordered = sort_items(unique)
    LOG.info(f"Aggregated {len(raw)} raw item(s) into {len(ordered)} unique item(s)")
    return Aggregation(items=ordered, summary=summarize(ordered))
