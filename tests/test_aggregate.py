import os
import sys

# Ensure src/ is importable when tests run from repo root
sys.path.insert(0, os.path.abspath("src"))

from glazier_extraction.domain.models import Item
from glazier_extraction.pipeline.aggregate import aggregate, merge, sort_items


def _item(**kw):
    base = {"floor": "Ground Floor", "room": "WC", "type": "Mirror", "dimensions": "600x900mm"}
    base.update(kw)
    return Item(**base)


def test_dedup_normalizes_case_and_whitespace():
    a = _item(floor="Ground Floor", room="wc", type="Mirror", dimensions="600x900mm")
    b = _item(floor="ground floor", room="WC", type="mirror", dimensions="600 x 900 mm")

    result = aggregate([a, b])

    assert len(result.items) == 1
    assert result.items[0] == a


def test_merge_backfills_only_empty_fields():
    base = _item(code=None, specs="A")
    incoming = _item(code="GL01", specs="B")

    merged = merge(base, incoming)

    assert merged.code == "GL01"
    assert merged.specs == "A"


def test_first_occurrence_keeps_other_fields():
    base = _item(room="Powder Room", notes="Front Only")
    incoming = _item(room="POWDER  room", notes="Corner", code="MIR02")

    result = aggregate([base, incoming])

    assert len(result.items) == 1
    only = result.items[0]
    assert only.room == "Powder Room"
    assert only.notes == "Front Only"
    assert only.code == "MIR02"


def test_quantity_upgrade_only_from_one():
    assert merge(_item(quantity=1), _item(quantity=48)).quantity == 48
    assert merge(_item(quantity=5), _item(quantity=48)).quantity == 5
    assert merge(_item(quantity=3), _item(quantity=1)).quantity == 3


def test_merge_does_not_mutate_inputs():
    base = _item(code=None)
    merge(base, _item(code="GL02", quantity=4))
    assert base.code is None
    assert base.quantity == 1


def test_sort_by_floor_rank_then_room():
    items = [
        _item(floor="Roof Terrace", room="Deck"),
        _item(floor="First Floor", room="Bathroom"),
        _item(floor="Ground Floor", room="wc"),
        _item(floor="Basement", room="Sauna"),
        _item(floor="Ground Floor", room="Laundry"),
    ]

    ordered = sort_items(items)

    assert [(i.floor, i.room) for i in ordered] == [
        ("Basement", "Sauna"),
        ("Ground Floor", "Laundry"),
        ("Ground Floor", "wc"),
        ("First Floor", "Bathroom"),
        ("Roof Terrace", "Deck"),
    ]


def test_summary_counts_are_quantity_weighted():
    items = [
        _item(floor="Basement", room="WC", type="Glass Door", dimensions="820 x 2040mm"),
        _item(floor="Ground Floor", room="Ensuite", type="Mirror", quantity=48),
        _item(floor="", room="Stair", type="Glass Balustrade", dimensions="4800 x 1000mm"),
    ]

    summary = aggregate(items).summary

    assert summary.unique_items == 3
    assert summary.total == 50
    assert summary.by_floor == {"Basement": 1, "Ground Floor": 48, "Unknown": 1}
    assert summary.by_type == {"Glass Door": 1, "Mirror": 48, "Glass Balustrade": 1}


def test_aggregate_is_idempotent():
    items = [
        _item(floor="First Floor", room="Master Ensuite", type="Shower Screen", dimensions="1200 x 2000mm"),
        _item(floor="Ground Floor", room="wc"),
        _item(floor="ground floor", room="WC", dimensions="600 x 900 mm", code="MIR02", quantity=2),
        _item(floor="Mezzanine", room="Office", type="Glass Panel", dimensions="900x2100"),
        _item(floor="Basement", room="Pool Equipment", type="Glass Door", dimensions="820x2040"),
    ]

    once = aggregate(items)
    twice = aggregate(once.items)

    assert [i.as_dict() for i in twice.items] == [i.as_dict() for i in once.items]
    assert twice.summary == once.summary
