"""
Family service - loads families from the store and reconciles them.

Ties the pure grouper/reconciler to the store: fetch, plan, execute, then
re-fetch so the caller always sees the actual state (also after a partial
failure, when re-running with the same desired set converges).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from src.adapters.clock import SystemClock
from src.components.families import find_orphans, group_families
from src.components.variants import (
    DesiredVariantSet,
    ExecutionResult,
    PromoteOp,
    VariantPlan,
    execute_plan,
    plan_reconciliation,
)
from src.core.ports.clock import ClockPort
from src.core.ports.store import NotFoundError, SortSpec, StoreClientPort
from src.domain.entities import AssetRecord, Family
from src.domain.levels import level_rank
from src.rules.models import Rules

logger = logging.getLogger(__name__)


@dataclass
class FamilyPage:
    families: list[Family]
    orphan_ids: list[str] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False


@dataclass
class ReconcileOutcome:
    plan: VariantPlan
    result: ExecutionResult
    # Re-fetched family; None once the whole family is gone.
    family: Family | None

    @property
    def succeeded(self) -> bool:
        return self.result.succeeded


class FamilyService:
    def __init__(
        self,
        store: StoreClientPort,
        rules: Rules | None = None,
        clock: ClockPort | None = None,
        collection: str | None = None,
    ):
        self.store = store
        self.rules = rules or Rules()
        self.clock = clock or SystemClock()
        self.collection = collection or self.rules.store.collection

    async def list_families(
        self, *, page_size: int | None = None, cursor: str | None = None
    ) -> FamilyPage:
        """
        Group one window of records, newest first.

        Variants whose base lies outside the window show up as their own
        family and are listed in `orphan_ids`.
        """
        page = await self.store.list_documents(
            self.collection,
            sort=SortSpec("created_at", "desc"),
            page_size=page_size or self.rules.store.page_size,
            cursor=cursor,
        )
        records = [AssetRecord.from_document(doc_id, data) for doc_id, data in page.items]
        return FamilyPage(
            families=group_families(records),
            orphan_ids=find_orphans(records),
            next_cursor=page.next_cursor,
            has_more=page.has_more,
        )

    async def get_record(self, record_id: str) -> AssetRecord:
        data = await self.store.get_document(self.collection, record_id)
        if data is None:
            raise NotFoundError(self.collection, record_id)
        return AssetRecord.from_document(record_id, data)

    async def load_family(self, record_id: str) -> Family:
        """
        Load the whole family of any member, across all pages.

        A variant id resolves to its base. If the base is gone or is itself a
        variant (an interrupted promotion), every record hanging off it is
        gathered and the lowest-level one stands in as base so a reconcile
        can repair them.

        Raises:
            NotFoundError: If record_id does not exist
        """
        record = await self.get_record(record_id)
        if not record.is_variant or not record.base_video_id or record.base_video_id == record.id:
            return Family(base=record, variants=await self._variants_of(record.id))

        base_data = await self.store.get_document(self.collection, record.base_video_id)
        if base_data is not None and not base_data.get("is_variant"):
            base = AssetRecord.from_document(record.base_video_id, base_data)
            return Family(base=base, variants=await self._variants_of(base.id))

        logger.warning(
            "Record %s references %s base %s; regrouping strays",
            record.id,
            "missing" if base_data is None else "variant",
            record.base_video_id,
        )
        return await self._regroup(record)

    async def _regroup(self, record: AssetRecord) -> Family:
        # Climb back-references to the first id that is missing, not a
        # variant, or already visited.
        visited = {record.id}
        top = record.base_video_id
        top_data = await self.store.get_document(self.collection, top)
        while (
            top_data is not None
            and top_data.get("is_variant")
            and top_data.get("base_video_id")
            and top_data["base_video_id"] not in visited
        ):
            visited.add(top)
            top = top_data["base_video_id"]
            top_data = await self.store.get_document(self.collection, top)

        members: dict[str, AssetRecord] = {}
        frontier = [top]
        while frontier:
            parent = frontier.pop(0)
            for child in await self._variants_of(parent):
                if child.id != top and child.id not in members:
                    members[child.id] = child
                    frontier.append(child.id)

        ordered = sorted(members.values(), key=lambda r: level_rank(r.skill_level))
        if top_data is not None:
            top_record = AssetRecord.from_document(top, top_data)
            if not top_record.is_variant:
                return Family(base=top_record, variants=ordered)
            ordered = sorted([top_record, *ordered], key=lambda r: level_rank(r.skill_level))
        return Family(base=ordered[0], variants=ordered[1:])

    async def preview(self, record_id: str, desired: DesiredVariantSet) -> VariantPlan:
        return plan_reconciliation(await self.load_family(record_id), desired)

    async def reconcile(self, record_id: str, desired: DesiredVariantSet) -> ReconcileOutcome:
        """Plan against the current family, execute, then re-fetch the result."""
        family = await self.load_family(record_id)
        plan = plan_reconciliation(family, desired)
        result = await execute_plan(
            plan, store=self.store, collection=self.collection, clock=self.clock
        )

        if result.succeeded:
            logger.info(
                "Reconciled family %s: %d operation(s) applied",
                plan.family_base_id,
                result.applied_count,
            )
        else:
            logger.warning(
                "Reconciling family %s stopped after %d of %d operation(s)",
                plan.family_base_id,
                result.applied_count,
                len(plan),
            )

        if plan.deletes_family and result.succeeded:
            return ReconcileOutcome(plan=plan, result=result, family=None)
        return ReconcileOutcome(
            plan=plan, result=result, family=await self._reload(plan, family, result)
        )

    async def delete_family(self, record_id: str) -> ReconcileOutcome:
        """Delete every record of the family (variants first, then the base)."""
        return await self.reconcile(record_id, DesiredVariantSet())

    async def _variants_of(self, base_id: str) -> list[AssetRecord]:
        variants: list[AssetRecord] = []
        cursor: str | None = None
        while True:
            page = await self.store.list_documents(
                self.collection,
                filters={"base_video_id": base_id},
                sort=SortSpec("created_at", "asc"),
                page_size=self.rules.store.page_size,
                cursor=cursor,
            )
            for doc_id, data in page.items:
                if doc_id != base_id and data.get("is_variant"):
                    variants.append(AssetRecord.from_document(doc_id, data))
            if not page.has_more or page.next_cursor is None:
                variants.sort(key=lambda r: level_rank(r.skill_level))
                return variants
            cursor = page.next_cursor

    async def _reload(
        self, plan: VariantPlan, before: Family, result: ExecutionResult
    ) -> Family | None:
        candidates: list[str] = []
        promotes = [op for op in plan.operations if isinstance(op, PromoteOp)]
        if promotes and result.succeeded:
            candidates.append(promotes[0].record_id)
        candidates.append(plan.family_base_id)
        candidates.extend(r.id for r in before.records())
        candidates.extend(result.created_ids.values())

        for candidate in dict.fromkeys(candidates):
            try:
                return await self.load_family(candidate)
            except NotFoundError:
                continue
        return None
