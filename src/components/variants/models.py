"""
Variants component models: desired variant sets, plan operations, results.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from src.core.ports.store import StoreError
from src.domain.entities import SkillLevel
from src.domain.levels import LEVEL_ORDER, sort_levels
from src.rules.models import VariantsRules

# --- Desired state ---


@dataclass(frozen=True)
class DesiredLevel:
    """One skill level the administrator wants (or does not want) in the family."""

    skill_level: SkillLevel
    threshold: int
    enabled: bool = True


@dataclass(frozen=True)
class SharedAttributes:
    """
    Family-level attributes copied onto every record.

    None means "keep what the base currently has".
    """

    title: str | None = None
    description: str | None = None
    category: str | None = None
    exercise_type: str | None = None
    position_specific: frozenset[str] | None = None


@dataclass(frozen=True)
class DesiredVariantSet:
    """The administrator's target for a family."""

    levels: tuple[DesiredLevel, ...] = ()
    shared: SharedAttributes = field(default_factory=SharedAttributes)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for level in self.levels:
            if level.skill_level not in LEVEL_ORDER:
                raise ValueError(f"Unknown skill level: {level.skill_level}")
            if level.skill_level in seen:
                raise ValueError(f"Skill level listed twice: {level.skill_level}")
            if level.threshold < 0:
                raise ValueError(f"Threshold must be non-negative: {level.skill_level}")
            seen.add(level.skill_level)

    def enabled_levels(self) -> dict[SkillLevel, int]:
        """Enabled levels in canonical order, mapped to their thresholds."""
        enabled = {lvl.skill_level: lvl.threshold for lvl in self.levels if lvl.enabled}
        return {level: enabled[level] for level in sort_levels(enabled)}

    @property
    def is_empty(self) -> bool:
        return not self.enabled_levels()

    @classmethod
    def from_thresholds(
        cls,
        thresholds: Mapping[SkillLevel, int],
        shared: SharedAttributes | None = None,
    ) -> DesiredVariantSet:
        """Every level in `thresholds` is enabled."""
        return cls(
            levels=tuple(
                DesiredLevel(skill_level=level, threshold=thresholds[level])
                for level in sort_levels(thresholds)
            ),
            shared=shared or SharedAttributes(),
        )

    @classmethod
    def with_defaults(
        cls,
        enabled: Iterable[SkillLevel],
        rules: VariantsRules,
        shared: SharedAttributes | None = None,
    ) -> DesiredVariantSet:
        """Enable `enabled` using the configured default thresholds."""
        wanted = set(enabled)
        missing = sorted(wanted - set(rules.default_thresholds))
        if missing:
            raise ValueError(f"No default threshold configured for: {', '.join(missing)}")
        return cls(
            levels=tuple(
                DesiredLevel(
                    skill_level=level,
                    threshold=rules.default_thresholds[level],
                    enabled=level in wanted,
                )
                for level in LEVEL_ORDER
                if level in rules.default_thresholds
            ),
            shared=shared or SharedAttributes(),
        )


# --- Plan operations ---


@dataclass(frozen=True)
class DeleteOp:
    record_id: str
    skill_level: SkillLevel

    kind = "delete"

    def describe(self) -> str:
        return f"Delete({self.record_id})"


@dataclass(frozen=True)
class UpdateOp:
    """
    Partial update of an existing record.

    `retagged_from` is set when the base record is moved in place to a new
    skill level instead of a new record being created.
    """

    record_id: str
    skill_level: SkillLevel
    changes: dict[str, Any]
    retagged_from: SkillLevel | None = None

    kind = "update"

    def describe(self) -> str:
        return f"Update({self.record_id})"


@dataclass(frozen=True)
class CreateOp:
    """A new variant record referencing `base_video_id`."""

    skill_level: SkillLevel
    threshold: int
    base_video_id: str
    data: dict[str, Any]

    kind = "create"

    def describe(self) -> str:
        return f"Create({self.skill_level})"


@dataclass(frozen=True)
class PromoteOp:
    """Turn a surviving variant into the family base and re-point its siblings."""

    record_id: str
    skill_level: SkillLevel
    changes: dict[str, Any]
    sibling_ids: tuple[str, ...] = ()

    kind = "promote"

    def describe(self) -> str:
        return f"Promote({self.record_id})"


PlanOperation = DeleteOp | UpdateOp | CreateOp | PromoteOp


class PlanAlreadyConsumed(RuntimeError):
    """Raised when a plan is handed to the executor a second time."""


@dataclass
class VariantPlan:
    """
    Ordered operations: deletes, then updates, then creates, then at most one promote.

    Consumed exactly once by the executor.
    """

    family_base_id: str
    operations: list[PlanOperation] = field(default_factory=list)
    deletes_family: bool = False
    consumed: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.operations

    def __len__(self) -> int:
        return len(self.operations)

    def mark_consumed(self) -> None:
        if self.consumed:
            raise PlanAlreadyConsumed(f"Plan for family {self.family_base_id} already executed")
        self.consumed = True

    def describe(self) -> list[str]:
        return [op.describe() for op in self.operations]


# --- Execution ---


@dataclass(frozen=True)
class FailedOperation:
    index: int
    operation: PlanOperation
    error: StoreError | TimeoutError


class PlanExecutionError(Exception):
    """A plan stopped at one operation; earlier operations stay applied."""

    def __init__(self, failed: FailedOperation, applied_count: int) -> None:
        self.failed = failed
        self.applied_count = applied_count
        super().__init__(
            f"Operation {failed.index} ({failed.operation.describe()}) failed after "
            f"{applied_count} applied: {failed.error}"
        )


@dataclass
class ExecutionResult:
    applied_count: int
    failed_at: FailedOperation | None = None
    created_ids: dict[SkillLevel, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.failed_at is None

    def raise_for_failure(self) -> None:
        if self.failed_at is not None:
            raise PlanExecutionError(self.failed_at, self.applied_count)


class InvariantViolation(AssertionError):
    """The reconciler produced a plan that would break family integrity (a bug)."""
