"""
Families component - derive variant families from a window of asset records.

A family is one base record plus every variant whose `base_video_id`
points at it. Families are never stored; they are recomputed from whatever
records the caller has loaded.

Invariants:
- Every input record appears in exactly one family
- Output order follows the first sighting of either side of a family
- Variants keep their input order inside a family
"""

from __future__ import annotations

from collections.abc import Iterable

from src.domain.entities import AssetRecord, Family


def _attach_target(record: AssetRecord, by_id: dict[str, AssetRecord]) -> str | None:
    """Id of the base this record joins, or None if it stands alone."""
    if not record.is_variant or not record.base_video_id:
        return None
    if record.base_video_id == record.id:
        return None
    target = by_id.get(record.base_video_id)
    # Families are one level deep: a variant never hosts other variants.
    if target is None or target.is_variant:
        return None
    return target.id


def find_orphans(records: Iterable[AssetRecord]) -> list[str]:
    """Ids of variants whose base is missing from the window (or is itself a variant)."""
    items = list(records)
    by_id = {r.id: r for r in items}
    return [r.id for r in items if r.is_variant and _attach_target(r, by_id) is None]


def group_families(records: Iterable[AssetRecord]) -> list[Family]:
    """
    Group records into families.

    Orphaned variants, self-referencing records and variants pointing at
    another variant each become a single-member family of their own, so no
    record is ever dropped.
    """
    items = list(records)
    by_id: dict[str, AssetRecord] = {}
    for record in items:
        # First occurrence wins if a window repeats a record.
        by_id.setdefault(record.id, record)

    families: dict[str, Family] = {}
    placed: set[str] = set()

    for record in items:
        if record.id in placed:
            continue
        placed.add(record.id)

        target = _attach_target(record, by_id)
        if target is None:
            families[record.id] = Family(base=record)
            continue

        family = families.get(target)
        if family is None:
            # Variant sighted before its base: the base takes this slot.
            family = Family(base=by_id[target])
            families[target] = family
            placed.add(target)
        family.variants.append(record)

    return list(families.values())
