"""
Variants component - skill-level variant reconciliation for asset families.
"""

from .component import create_variant, execute_plan, plan_reconciliation
from .models import (
    CreateOp,
    DeleteOp,
    DesiredLevel,
    DesiredVariantSet,
    ExecutionResult,
    FailedOperation,
    InvariantViolation,
    PlanAlreadyConsumed,
    PlanExecutionError,
    PlanOperation,
    PromoteOp,
    SharedAttributes,
    UpdateOp,
    VariantPlan,
)

__all__ = [
    # Entry points
    "create_variant",
    "execute_plan",
    "plan_reconciliation",
    # Desired state
    "DesiredLevel",
    "DesiredVariantSet",
    "SharedAttributes",
    # Plan
    "CreateOp",
    "DeleteOp",
    "PlanOperation",
    "PromoteOp",
    "UpdateOp",
    "VariantPlan",
    # Execution
    "ExecutionResult",
    "FailedOperation",
    # Errors
    "InvariantViolation",
    "PlanAlreadyConsumed",
    "PlanExecutionError",
]
