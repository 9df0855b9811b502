import math
import re
from typing import Any, Optional, Tuple

from ..logging import get_logger
from .models import Item

_LOG = get_logger("normalize")

DedupKey = Tuple[str, str, str, str]

_QTY_RE = re.compile(r"(?:qty\s*[:=x]?\s*)?(\d+(?:[.,]\d+)?)", re.IGNORECASE)


def collapse_ws(value: Optional[str]) -> str:
    """Trim and collapse internal whitespace runs to a single space."""
    if not value:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def dedup_key(item: Item) -> DedupKey:
    """Identity of a physical item across pages and files.

    floor/room/type compare case-insensitively with whitespace collapsed;
    dimensions also drop all whitespace ("600 x 900 mm" == "600x900mm").
    """
    return (
        collapse_ws(item.floor).casefold(),
        collapse_ws(item.room).casefold(),
        collapse_ws(item.type).casefold(),
        re.sub(r"\s+", "", item.dimensions or "").casefold(),
    )


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    s = str(value).strip()
    return s or None


def coerce_quantity(value: Any) -> int:
    """Return an integer quantity >= 1.

    Accepts ints, floats, numeric strings and QTY notation ("QTY:48").
    Anything missing or unusable becomes 1.
    """
    if value is None or isinstance(value, bool):
        return 1
    if isinstance(value, float) and not math.isfinite(value):
        return 1
    if isinstance(value, (int, float)):
        qty = int(value)
        return qty if qty >= 1 else 1
    if isinstance(value, str):
        m = _QTY_RE.search(value)
        if m:
            try:
                qty = int(float(m.group(1).replace(",", ".")))
            except ValueError:
                return 1
            return qty if qty >= 1 else 1
    return 1


def coerce_item(raw: Any) -> Optional[Item]:
    """Turn one model-produced JSON object into an Item, or None if unusable."""
    if not isinstance(raw, dict):
        _LOG.debug(f"Skipping non-object item entry: {raw!r}")
        return None

    floor = _text(raw.get("floor")) or ""
    room = _text(raw.get("room")) or _text(raw.get("location")) or ""
    item_type = _text(raw.get("type")) or ""
    dimensions = _text(raw.get("dimensions")) or ""
    if not any((floor, room, item_type, dimensions)):
        _LOG.debug(f"Skipping item without identifying fields: {raw!r}")
        return None

    return Item(
        floor=floor,
        room=room,
        type=item_type,
        dimensions=dimensions,
        code=_text(raw.get("code")),
        specs=_text(raw.get("specs")),
        quantity=coerce_quantity(raw.get("quantity")),
        notes=_text(raw.get("notes")),
    )
