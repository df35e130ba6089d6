"""
Admin Videos API Routes.

Admin endpoints for browsing training-video families and reconciling their
skill-level variants. Authentication is handled in front of this router.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from src.api.deps import get_family_service
from src.components.variants import (
    DesiredLevel,
    DesiredVariantSet,
    PlanOperation,
    SharedAttributes,
    VariantPlan,
)
from src.core.ports.store import NotFoundError
from src.domain.entities import Family, SkillLevel
from src.services.families import FamilyService, ReconcileOutcome

router = APIRouter()


class DesiredLevelRequest(BaseModel):
    skill_level: SkillLevel
    threshold: int = Field(..., ge=0)
    enabled: bool = True


class DesiredVariantRequest(BaseModel):
    """
    Desired variant set.

    Give `levels` for explicit thresholds, or `enabled_levels` to use the
    configured default thresholds. Shared attributes left out are kept.
    """

    levels: list[DesiredLevelRequest] | None = None
    enabled_levels: list[SkillLevel] | None = None
    title: str | None = None
    description: str | None = None
    category: str | None = None
    exercise_type: str | None = None
    position_specific: list[str] | None = None


class FamilyPageResponse(BaseModel):
    families: list[Family]
    orphan_ids: list[str]
    next_cursor: str | None = None
    has_more: bool = False


class PlanResponse(BaseModel):
    family_base_id: str
    deletes_family: bool
    operations: list[dict[str, Any]]


class ReconcileResponse(BaseModel):
    applied_count: int
    operations: list[dict[str, Any]]
    created_ids: dict[str, str]
    family: Family | None = None


# --- Helper Functions ---


def _operation_to_dict(op: PlanOperation) -> dict[str, Any]:
    return {"kind": op.kind, "description": op.describe(), **dataclasses.asdict(op)}


def _plan_to_response(plan: VariantPlan) -> PlanResponse:
    return PlanResponse(
        family_base_id=plan.family_base_id,
        deletes_family=plan.deletes_family,
        operations=[_operation_to_dict(op) for op in plan.operations],
    )


def _to_desired(request: DesiredVariantRequest, service: FamilyService) -> DesiredVariantSet:
    shared = SharedAttributes(
        title=request.title,
        description=request.description,
        category=request.category,
        exercise_type=request.exercise_type,
        position_specific=(
            frozenset(request.position_specific)
            if request.position_specific is not None
            else None
        ),
    )
    try:
        if request.levels is not None:
            return DesiredVariantSet(
                levels=tuple(
                    DesiredLevel(lvl.skill_level, lvl.threshold, lvl.enabled)
                    for lvl in request.levels
                ),
                shared=shared,
            )
        if request.enabled_levels is not None:
            return DesiredVariantSet.with_defaults(
                request.enabled_levels, service.rules.variants, shared
            )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    raise HTTPException(status_code=400, detail="Provide levels or enabled_levels")


def _outcome_to_response(outcome: ReconcileOutcome) -> ReconcileResponse:
    """Successful outcome as response; a partial failure becomes a 409."""
    failed = outcome.result.failed_at
    if failed is not None:
        raise HTTPException(
            status_code=409,
            detail={
                "applied_count": outcome.result.applied_count,
                "failed_at": {
                    "index": failed.index,
                    "operation": _operation_to_dict(failed.operation),
                    "error": str(failed.error),
                },
                "family": (
                    outcome.family.model_dump(mode="json") if outcome.family else None
                ),
            },
        )
    return ReconcileResponse(
        applied_count=outcome.result.applied_count,
        operations=[_operation_to_dict(op) for op in outcome.plan.operations],
        created_ids=dict(outcome.result.created_ids),
        family=outcome.family,
    )


# --- Routes ---


@router.get("/families", response_model=FamilyPageResponse)
async def list_families(
    page_size: int | None = Query(None, ge=1, le=100),
    cursor: str | None = None,
    service: FamilyService = Depends(get_family_service),
) -> FamilyPageResponse:
    """List one page of records grouped into families."""
    page = await service.list_families(page_size=page_size, cursor=cursor)
    return FamilyPageResponse(
        families=page.families,
        orphan_ids=page.orphan_ids,
        next_cursor=page.next_cursor,
        has_more=page.has_more,
    )


@router.get(
    "/families/{record_id}",
    response_model=Family,
    responses={404: {"description": "Record not found"}},
)
async def get_family(
    record_id: str,
    service: FamilyService = Depends(get_family_service),
) -> Family:
    """Get the family of any member record."""
    try:
        return await service.load_family(record_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail="Record not found") from e


@router.post(
    "/families/{record_id}/plan",
    response_model=PlanResponse,
    responses={400: {"description": "Invalid desired set"}, 404: {"description": "Record not found"}},
)
async def preview_plan(
    record_id: str,
    request: DesiredVariantRequest,
    service: FamilyService = Depends(get_family_service),
) -> PlanResponse:
    """Compute the reconciliation plan without applying it."""
    desired = _to_desired(request, service)
    try:
        plan = await service.preview(record_id, desired)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail="Record not found") from e
    return _plan_to_response(plan)


@router.post(
    "/families/{record_id}/reconcile",
    response_model=ReconcileResponse,
    responses={
        400: {"description": "Invalid desired set"},
        404: {"description": "Record not found"},
        409: {"description": "Plan partially applied; re-run to converge"},
    },
)
async def reconcile_family(
    record_id: str,
    request: DesiredVariantRequest,
    service: FamilyService = Depends(get_family_service),
) -> ReconcileResponse:
    """Apply the desired variant set to the family."""
    desired = _to_desired(request, service)
    try:
        outcome = await service.reconcile(record_id, desired)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail="Record not found") from e
    return _outcome_to_response(outcome)


@router.delete(
    "/families/{record_id}",
    response_model=ReconcileResponse,
    responses={
        404: {"description": "Record not found"},
        409: {"description": "Family partially deleted; re-run to finish"},
    },
)
async def delete_family(
    record_id: str,
    service: FamilyService = Depends(get_family_service),
) -> ReconcileResponse:
    """Delete the whole family, variants first."""
    try:
        outcome = await service.delete_family(record_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail="Record not found") from e
    return _outcome_to_response(outcome)
