"""
Variants component - reconcile a family against a desired set of skill levels.

Planning is pure and deterministic; execution is sequential against the
store with no rollback.

Invariants:
- A variant's base_video_id always resolves to the family base
- At most one record per skill level within a family
- Plan order is deletes, updates, creates, then at most one promote
- A non-empty desired set leaves exactly one base
- An empty desired set deletes every record of the family
"""

from __future__ import annotations

import logging
from typing import Any

from src.adapters.clock import SystemClock
from src.core.ports.clock import ClockPort
from src.core.ports.store import StoreClientPort, StoreError
from src.domain.entities import AssetRecord, Family, SkillLevel

from ._impl import (
    check_outcome,
    diff_fields,
    expected_fields,
    inherited_data,
    key_family,
    root_title,
    shared_values,
    simulate,
)
from .models import (
    CreateOp,
    DeleteOp,
    DesiredVariantSet,
    ExecutionResult,
    FailedOperation,
    InvariantViolation,
    PlanOperation,
    PromoteOp,
    SharedAttributes,
    UpdateOp,
    VariantPlan,
)

logger = logging.getLogger(__name__)


def plan_reconciliation(family: Family, desired: DesiredVariantSet) -> VariantPlan:
    """
    Compute the operations that move `family` to `desired`.

    When the base's own level is no longer wanted, the base is never simply
    deleted: it is re-tagged in place to the first level being created, or,
    with nothing to create, the lowest surviving variant is promoted.

    Raises:
        InvariantViolation: If the computed plan would break family integrity
    """
    keyed = key_family(family)
    base = keyed.base
    enabled = desired.enabled_levels()

    deletes: list[DeleteOp] = [DeleteOp(r.id, r.skill_level) for r in keyed.extras]

    if not enabled:
        deletes.extend(DeleteOp(r.id, r.skill_level) for r in keyed.variants())
        deletes.append(DeleteOp(base.id, base.skill_level))
        plan = VariantPlan(family_base_id=base.id, operations=list(deletes), deletes_family=True)
        _verify(family, plan, desired)
        return plan

    root = root_title(base, desired.shared)
    shared = shared_values(base, desired.shared)

    survivors = [r for r in keyed.variants() if r.skill_level in enabled]
    deletes.extend(
        DeleteOp(r.id, r.skill_level) for r in keyed.variants() if r.skill_level not in enabled
    )
    to_create = [level for level in enabled if level not in keyed.by_level]

    updates: list[UpdateOp] = []
    creates: list[CreateOp] = []
    promote: PromoteOp | None = None

    if base.skill_level in enabled or to_create:
        retagged_from = None
        base_level = base.skill_level
        if base_level not in enabled:
            # Move the base in place to the first new level.
            retagged_from = base_level
            base_level = to_create.pop(0)

        changes = diff_fields(
            base,
            expected_fields(
                role="base",
                level=base_level,
                threshold=enabled[base_level],
                root=root,
                base_id=None,
                shared=shared,
            ),
        )
        if changes:
            updates.append(UpdateOp(base.id, base_level, changes, retagged_from=retagged_from))

        for record in survivors:
            changes = diff_fields(record, _variant_expected(record, enabled, root, base.id, shared))
            if changes:
                updates.append(UpdateOp(record.id, record.skill_level, changes))

        inherited = inherited_data(base)
        for level in to_create:
            data: dict[str, Any] = {
                **inherited,
                **expected_fields(
                    role="variant",
                    level=level,
                    threshold=enabled[level],
                    root=root,
                    base_id=base.id,
                    shared=shared,
                ),
            }
            creates.append(CreateOp(level, enabled[level], base.id, data))
    else:
        # Nothing to create and the base's level is gone: promote the lowest survivor.
        if not survivors:
            raise InvariantViolation(f"No promotion path for family {base.id}")
        promoted, siblings = survivors[0], survivors[1:]
        deletes.append(DeleteOp(base.id, base.skill_level))

        for record in siblings:
            expected = _variant_expected(record, enabled, root, promoted.id, shared)
            # The promote step re-points siblings.
            expected.pop("base_video_id")
            changes = diff_fields(record, expected)
            if changes:
                updates.append(UpdateOp(record.id, record.skill_level, changes))

        promote_changes = diff_fields(
            promoted,
            expected_fields(
                role="base",
                level=promoted.skill_level,
                threshold=enabled[promoted.skill_level],
                root=root,
                base_id=None,
                shared=shared,
            ),
        )
        promote = PromoteOp(
            promoted.id,
            promoted.skill_level,
            promote_changes,
            sibling_ids=tuple(r.id for r in siblings),
        )

    operations: list[PlanOperation] = [*deletes, *updates, *creates]
    if promote is not None:
        operations.append(promote)

    plan = VariantPlan(family_base_id=base.id, operations=operations)
    _verify(family, plan, desired)
    return plan


def _variant_expected(
    record: AssetRecord,
    enabled: dict[SkillLevel, int],
    root: str,
    base_id: str,
    shared: dict[str, Any],
) -> dict[str, Any]:
    return expected_fields(
        role="variant",
        level=record.skill_level,
        threshold=enabled[record.skill_level],
        root=root,
        base_id=base_id,
        shared=shared,
    )


def _verify(family: Family, plan: VariantPlan, desired: DesiredVariantSet) -> None:
    check_outcome(simulate(family, plan.operations), desired)


# --- Execution ---


async def execute_plan(
    plan: VariantPlan,
    *,
    store: StoreClientPort,
    collection: str = "videos",
    clock: ClockPort | None = None,
) -> ExecutionResult:
    """
    Apply a plan operation by operation.

    The first failing operation stops the run; nothing after it is attempted
    and nothing before it is undone. Re-load the family and plan again to
    converge.

    Raises:
        PlanAlreadyConsumed: If the plan was executed before
    """
    plan.mark_consumed()
    clock = clock or SystemClock()
    result = ExecutionResult(applied_count=0)

    for index, op in enumerate(plan.operations):
        try:
            await _apply(op, store=store, collection=collection, clock=clock, result=result)
        except (StoreError, TimeoutError) as e:
            logger.warning(
                "Plan for family %s stopped at operation %d (%s): %s",
                plan.family_base_id,
                index,
                op.describe(),
                e,
            )
            result.failed_at = FailedOperation(index=index, operation=op, error=e)
            return result
        result.applied_count += 1
        logger.info("Applied %s for family %s", op.describe(), plan.family_base_id)

    return result


async def _apply(
    op: PlanOperation,
    *,
    store: StoreClientPort,
    collection: str,
    clock: ClockPort,
    result: ExecutionResult,
) -> None:
    stamp = clock.now_utc().isoformat()

    if isinstance(op, DeleteOp):
        await store.delete_document(collection, op.record_id)
    elif isinstance(op, UpdateOp):
        await store.update_document(collection, op.record_id, {**op.changes, "updated_at": stamp})
    elif isinstance(op, CreateOp):
        doc_id = await store.create_document(
            collection, {**op.data, "created_at": stamp, "updated_at": stamp}
        )
        result.created_ids[op.skill_level] = doc_id
    elif isinstance(op, PromoteOp):
        # Siblings first: until the flip, every record still reaches the old
        # base id through the promoted record.
        for sibling_id in op.sibling_ids:
            await store.update_document(
                collection, sibling_id, {"base_video_id": op.record_id, "updated_at": stamp}
            )
        await store.update_document(collection, op.record_id, {**op.changes, "updated_at": stamp})


async def create_variant(
    store: StoreClientPort,
    base: AssetRecord,
    level: SkillLevel,
    threshold: int,
    *,
    collection: str = "videos",
    clock: ClockPort | None = None,
) -> AssetRecord:
    """
    Create one variant of `base` at `level`, reusing the base's stored binary.

    Raises:
        ValueError: If `base` is itself a variant
        StoreError: If the store rejects the create
    """
    if base.is_variant:
        raise ValueError(f"Record {base.id} is a variant and cannot host variants")
    stamp = (clock or SystemClock()).now_utc().isoformat()
    data: dict[str, Any] = {
        **inherited_data(base),
        **expected_fields(
            role="variant",
            level=level,
            threshold=threshold,
            root=root_title(base, SharedAttributes()),
            base_id=base.id,
            shared=shared_values(base, SharedAttributes()),
        ),
        "created_at": stamp,
        "updated_at": stamp,
    }
    doc_id = await store.create_document(collection, data)
    logger.info("Created %s variant %s of %s", level, doc_id, base.id)
    return AssetRecord.from_document(doc_id, data)
