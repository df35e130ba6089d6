"""
Variant reconciliation internals - expected state, field diffs, plan simulation.

Everything here is pure: records in, dicts and plans out. No store access.

Key behaviors:
- A family's records are keyed by skill level (base first, then rank order)
- Expected fields depend on the record's role (base or variant)
- Unspecified shared attributes follow the current base
- A built plan is simulated and checked before it is returned
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from src.domain.entities import AssetRecord, Family, SkillLevel
from src.domain.levels import level_rank, strip_level_suffix, variant_title

from .models import (
    CreateOp,
    DeleteOp,
    DesiredVariantSet,
    InvariantViolation,
    PlanOperation,
    PromoteOp,
    SharedAttributes,
    UpdateOp,
)

SHARED_FIELDS = ("description", "category", "exercise_type", "position_specific")

# Per-record content a new variant inherits from its base.
INHERITED_FIELDS = (
    "description",
    "category",
    "exercise_type",
    "position_specific",
    "target_audience",
    "training_type",
    "age_group",
    "instructions",
    "goals",
    "tags",
    "required_equipment",
    "expected_duration",
    "binary_ref",
    "thumbnail_ref",
    "status",
    "file_name",
    "file_size",
    "format",
    "duration",
)


@dataclass
class KeyedFamily:
    """A family split into the record holding each level and the extras to discard."""

    base: AssetRecord
    by_level: dict[SkillLevel, AssetRecord]
    extras: list[AssetRecord]

    def variants(self) -> list[AssetRecord]:
        return [r for r in self.by_level.values() if r.id != self.base.id]


def key_family(family: Family) -> KeyedFamily:
    """
    Key records by skill level.

    The base always keeps its level. Among variants sharing a level, the
    first one in input order keeps it and the rest become extras.
    """
    by_level: dict[SkillLevel, AssetRecord] = {family.base.skill_level: family.base}
    extras: list[AssetRecord] = []
    for record in sorted(family.variants, key=lambda r: level_rank(r.skill_level)):
        if record.id == family.base.id:
            continue
        if record.skill_level in by_level:
            extras.append(record)
        else:
            by_level[record.skill_level] = record
    return KeyedFamily(base=family.base, by_level=by_level, extras=extras)


def root_title(base: AssetRecord, shared: SharedAttributes) -> str:
    return strip_level_suffix(shared.title if shared.title is not None else base.title)


def shared_values(base: AssetRecord, shared: SharedAttributes) -> dict[str, Any]:
    """Target values for the family-level attributes (in document form)."""
    values: dict[str, Any] = {}
    for name in SHARED_FIELDS:
        wanted = getattr(shared, name)
        if wanted is None:
            wanted = getattr(base, name)
        if name == "position_specific":
            wanted = sorted(set(wanted))
        values[name] = wanted
    return values


def expected_fields(
    *,
    role: str,
    level: SkillLevel,
    threshold: int,
    root: str,
    base_id: str | None,
    shared: dict[str, Any],
) -> dict[str, Any]:
    """Fields a record must carry to sit in the family at `level` in `role`."""
    fields: dict[str, Any] = {
        "skill_level": level,
        "difficulty_level": threshold,
        **shared,
    }
    if role == "base":
        fields.update(is_variant=False, base_video_id=None, title=root)
    else:
        fields.update(is_variant=True, base_video_id=base_id, title=variant_title(root, level))
    return fields


def diff_fields(record: AssetRecord, expected: dict[str, Any]) -> dict[str, Any]:
    """The subset of `expected` that differs from what the record holds."""
    current = record.model_dump(mode="json")
    return {name: value for name, value in expected.items() if current.get(name) != value}


def inherited_data(base: AssetRecord) -> dict[str, Any]:
    return base.model_dump(mode="json", include=set(INHERITED_FIELDS))


# --- Simulation ---


def simulate(family: Family, operations: list[PlanOperation]) -> dict[str, dict[str, Any]]:
    """Apply operations to an in-memory copy of the family documents."""
    docs = {r.id: r.model_dump(mode="json") for r in family.records()}
    for index, op in enumerate(operations):
        if isinstance(op, DeleteOp):
            if op.record_id not in docs:
                raise InvariantViolation(f"Delete of unknown record {op.record_id}")
            del docs[op.record_id]
        elif isinstance(op, UpdateOp):
            if op.record_id not in docs:
                raise InvariantViolation(f"Update of unknown record {op.record_id}")
            docs[op.record_id].update(op.changes)
        elif isinstance(op, CreateOp):
            docs[f"new-{index}"] = dict(op.data)
        elif isinstance(op, PromoteOp):
            if op.record_id not in docs:
                raise InvariantViolation(f"Promote of unknown record {op.record_id}")
            docs[op.record_id].update(op.changes)
            for sibling in op.sibling_ids:
                if sibling not in docs:
                    raise InvariantViolation(f"Re-point of unknown record {sibling}")
                docs[sibling]["base_video_id"] = op.record_id
    return docs


def check_outcome(
    docs: dict[str, dict[str, Any]],
    desired: DesiredVariantSet,
) -> None:
    """
    Verify a simulated family.

    Raises:
        InvariantViolation: If the outcome has no single base, a dangling or
            foreign back-reference, a repeated level, or the wrong level set
    """
    enabled = desired.enabled_levels()
    if not enabled:
        if docs:
            raise InvariantViolation(f"Family deletion left records behind: {sorted(docs)}")
        return

    bases = [doc_id for doc_id, doc in docs.items() if not doc.get("is_variant")]
    if len(bases) != 1:
        raise InvariantViolation(f"Expected exactly one base, found {len(bases)}")
    base_id = bases[0]

    for doc_id, doc in docs.items():
        if doc_id == base_id:
            continue
        if doc.get("base_video_id") != base_id:
            raise InvariantViolation(
                f"Variant {doc_id} references {doc.get('base_video_id')}, not base {base_id}"
            )

    levels = [doc["skill_level"] for doc in docs.values()]
    if len(levels) != len(set(levels)):
        raise InvariantViolation(f"Skill level repeated within family: {levels}")
    if set(levels) != set(enabled):
        raise InvariantViolation(f"Family levels {sorted(levels)} differ from {sorted(enabled)}")
    for doc_id, doc in docs.items():
        if doc["difficulty_level"] != enabled[doc["skill_level"]]:
            raise InvariantViolation(f"Record {doc_id} carries the wrong threshold")
