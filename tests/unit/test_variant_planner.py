"""
Tests for the variant reconciler (plan_reconciliation).

Covers the set-difference over skill levels, operation ordering, base
preservation (in-place re-tag and promotion), shared attributes and the
integrity self-check.
"""

from __future__ import annotations

import pytest

from src.components.variants import (
    CreateOp,
    DeleteOp,
    DesiredLevel,
    DesiredVariantSet,
    InvariantViolation,
    PromoteOp,
    SharedAttributes,
    UpdateOp,
    plan_reconciliation,
)
from src.components.variants._impl import check_outcome, simulate
from src.domain.entities import Family
from src.rules.loader import parse_rules
from src.rules.models import VariantsRules
from tests.factories import make_family, make_record


def desired(**thresholds: int) -> DesiredVariantSet:
    return DesiredVariantSet.from_thresholds(thresholds)


# --- Desired sets ---


class TestDesiredVariantSet:
    def test_enabled_levels_in_canonical_order(self) -> None:
        d = DesiredVariantSet(
            levels=(
                DesiredLevel("advanced", 60),
                DesiredLevel("beginner", 10),
                DesiredLevel("intermediate", 30, enabled=False),
            )
        )
        assert list(d.enabled_levels().items()) == [("beginner", 10), ("advanced", 60)]

    def test_duplicate_level_rejected(self) -> None:
        with pytest.raises(ValueError, match="twice"):
            DesiredVariantSet(levels=(DesiredLevel("beginner", 10), DesiredLevel("beginner", 20)))

    def test_negative_threshold_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            DesiredVariantSet(levels=(DesiredLevel("beginner", -1),))

    def test_with_defaults_uses_configured_thresholds(self, rules) -> None:
        d = DesiredVariantSet.with_defaults(["advanced", "beginner"], rules.variants)
        assert d.enabled_levels() == {"beginner": 10, "advanced": 60}
        assert len(d.levels) == 3

    def test_with_defaults_from_partial_thresholds_file(self) -> None:
        rules = parse_rules("variants:\n  default_thresholds:\n    beginner: 15\n")

        d = DesiredVariantSet.with_defaults(["beginner", "advanced"], rules.variants)

        assert d.enabled_levels() == {"beginner": 15, "advanced": 60}

    def test_with_defaults_names_level_without_threshold(self) -> None:
        variants = VariantsRules.model_construct(
            default_thresholds={"beginner": 10}, batch_transfer_weight=0.9
        )

        d = DesiredVariantSet.with_defaults(["beginner"], variants)
        assert d.enabled_levels() == {"beginner": 10}
        with pytest.raises(ValueError, match="advanced"):
            DesiredVariantSet.with_defaults(["beginner", "advanced"], variants)

    def test_empty_set(self) -> None:
        assert DesiredVariantSet().is_empty
        assert not desired(beginner=10).is_empty


# --- Basic diffs ---


class TestPlanDiff:
    def test_matching_family_yields_empty_plan(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        plan = plan_reconciliation(family, desired(beginner=10, intermediate=30))
        assert plan.is_empty
        assert not plan.deletes_family

    def test_threshold_change_updates_record(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        plan = plan_reconciliation(family, desired(beginner=10, intermediate=35))
        assert plan.operations == [
            UpdateOp("intermediate", "intermediate", {"difficulty_level": 35})
        ]

    def test_new_level_creates_variant(self) -> None:
        family = make_family({"beginner": 10})
        plan = plan_reconciliation(family, desired(beginner=10, advanced=60))

        assert len(plan.operations) == 1
        op = plan.operations[0]
        assert isinstance(op, CreateOp)
        assert op.skill_level == "advanced"
        assert op.threshold == 60
        assert op.base_video_id == "beginner"
        assert op.data["title"] == "Cone Weave (Advanced)"
        assert op.data["is_variant"] is True
        assert op.data["base_video_id"] == "beginner"
        assert op.data["difficulty_level"] == 60
        # The binary is shared with the base
        assert op.data["binary_ref"] == family.base.binary_ref
        assert op.data["position_specific"] == ["midfielder"]

    def test_removed_level_deletes_variant(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        plan = plan_reconciliation(family, desired(beginner=10))
        assert plan.operations == [DeleteOp("intermediate", "intermediate")]

    def test_disabled_level_counts_as_removed(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        d = DesiredVariantSet(
            levels=(DesiredLevel("beginner", 10), DesiredLevel("intermediate", 30, enabled=False))
        )
        plan = plan_reconciliation(family, d)
        assert plan.operations == [DeleteOp("intermediate", "intermediate")]

    def test_operation_order_is_delete_update_create(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        plan = plan_reconciliation(family, desired(beginner=15, advanced=60))
        assert [op.kind for op in plan.operations] == ["delete", "update", "create"]
        assert plan.describe() == ["Delete(intermediate)", "Update(beginner)", "Create(advanced)"]

    def test_creates_follow_level_order(self) -> None:
        family = make_family({"beginner": 10})
        plan = plan_reconciliation(family, desired(advanced=60, beginner=10, intermediate=30))
        assert [op.skill_level for op in plan.operations] == ["intermediate", "advanced"]

    def test_planning_does_not_mutate_family(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        before = family.model_dump()
        plan_reconciliation(family, desired(intermediate=40, advanced=60))
        assert family.model_dump() == before


# --- Base preservation ---


class TestBasePreservation:
    def test_base_retagged_in_place_when_levels_are_created(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        plan = plan_reconciliation(family, desired(intermediate=30, advanced=60))

        assert plan.operations == [
            UpdateOp(
                "beginner",
                "advanced",
                {"skill_level": "advanced", "difficulty_level": 60},
                retagged_from="beginner",
            )
        ]

    def test_retag_takes_first_new_level_and_creates_the_rest(self) -> None:
        family = make_family({"advanced": 60})
        plan = plan_reconciliation(family, desired(beginner=10, intermediate=30))

        update, create = plan.operations
        assert isinstance(update, UpdateOp)
        assert update.record_id == "advanced"
        assert update.skill_level == "beginner"
        assert update.retagged_from == "advanced"
        assert isinstance(create, CreateOp)
        assert create.skill_level == "intermediate"
        assert create.base_video_id == "advanced"

    def test_retag_drops_level_suffix_from_base_title(self) -> None:
        base = make_record("b", title="Cone Weave (Beginner)", skill_level="beginner")
        plan = plan_reconciliation(Family(base=base), desired(advanced=60))

        (update,) = plan.operations
        assert update.changes["title"] == "Cone Weave"
        assert update.changes["skill_level"] == "advanced"

    def test_lowest_survivor_promoted_when_nothing_to_create(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30, "advanced": 60})
        plan = plan_reconciliation(family, desired(intermediate=30, advanced=60))

        assert plan.operations[0] == DeleteOp("beginner", "beginner")
        promote = plan.operations[-1]
        assert isinstance(promote, PromoteOp)
        assert promote.record_id == "intermediate"
        assert promote.sibling_ids == ("advanced",)
        assert promote.changes == {
            "is_variant": False,
            "base_video_id": None,
            "title": "Cone Weave",
        }
        assert len(plan.operations) == 2

    def test_promotion_with_threshold_changes(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30, "advanced": 60})
        plan = plan_reconciliation(family, desired(intermediate=35, advanced=65))

        assert [op.kind for op in plan.operations] == ["delete", "update", "promote"]
        sibling_update = plan.operations[1]
        assert sibling_update == UpdateOp("advanced", "advanced", {"difficulty_level": 65})
        assert plan.operations[2].changes["difficulty_level"] == 35

    def test_single_survivor_promoted_without_siblings(self) -> None:
        family = make_family({"beginner": 10, "advanced": 60})
        plan = plan_reconciliation(family, desired(advanced=60))

        assert plan.operations[0] == DeleteOp("beginner", "beginner")
        assert isinstance(plan.operations[1], PromoteOp)
        assert plan.operations[1].sibling_ids == ()

    def test_variant_base_never_deleted_while_others_survive(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        for d in (desired(intermediate=30), desired(intermediate=30, advanced=60)):
            docs = simulate(family, plan_reconciliation(family, d).operations)
            bases = [doc for doc in docs.values() if not doc["is_variant"]]
            assert len(bases) == 1


# --- Family deletion ---


class TestFamilyDeletion:
    def test_empty_set_deletes_variants_then_base(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30, "advanced": 60})
        plan = plan_reconciliation(family, DesiredVariantSet())

        assert plan.deletes_family
        assert plan.operations == [
            DeleteOp("intermediate", "intermediate"),
            DeleteOp("advanced", "advanced"),
            DeleteOp("beginner", "beginner"),
        ]

    def test_all_levels_disabled_deletes_family(self) -> None:
        family = make_family({"beginner": 10})
        d = DesiredVariantSet(levels=(DesiredLevel("beginner", 10, enabled=False),))
        plan = plan_reconciliation(family, d)
        assert plan.deletes_family
        assert plan.operations == [DeleteOp("beginner", "beginner")]


# --- Shared attributes ---


class TestSharedAttributes:
    def test_position_change_updates_every_record(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        d = DesiredVariantSet.from_thresholds(
            {"beginner": 10, "intermediate": 30},
            SharedAttributes(position_specific=frozenset({"winger", "striker"})),
        )
        plan = plan_reconciliation(family, d)

        assert plan.operations == [
            UpdateOp("beginner", "beginner", {"position_specific": ["striker", "winger"]}),
            UpdateOp("intermediate", "intermediate", {"position_specific": ["striker", "winger"]}),
        ]

    def test_title_change_keeps_level_suffixes(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        d = DesiredVariantSet.from_thresholds(
            {"beginner": 10, "intermediate": 30}, SharedAttributes(title="Slalom")
        )
        plan = plan_reconciliation(family, d)

        changes = {op.record_id: op.changes for op in plan.operations}
        assert changes == {
            "beginner": {"title": "Slalom"},
            "intermediate": {"title": "Slalom (Intermediate)"},
        }

    def test_unspecified_attributes_follow_base(self) -> None:
        family = make_family({"beginner": 10, "intermediate": 30})
        family.variants[0].description = "Stale copy"
        plan = plan_reconciliation(family, desired(beginner=10, intermediate=30))
        assert plan.operations == [
            UpdateOp("intermediate", "intermediate", {"description": "Weave through six cones"})
        ]

    def test_created_variant_carries_new_shared_values(self) -> None:
        family = make_family({"beginner": 10})
        d = DesiredVariantSet.from_thresholds(
            {"beginner": 10, "advanced": 60},
            SharedAttributes(category="fitness", exercise_type="agility"),
        )
        plan = plan_reconciliation(family, d)
        create = next(op for op in plan.operations if isinstance(op, CreateOp))
        assert create.data["category"] == "fitness"
        assert create.data["exercise_type"] == "agility"


# --- Irregular families ---


class TestIrregularFamilies:
    def test_duplicate_level_variant_deleted(self) -> None:
        base = make_record("b", skill_level="beginner")
        first = make_record(
            "i1",
            title="Cone Weave (Intermediate)",
            skill_level="intermediate",
            difficulty_level=30,
            is_variant=True,
            base_video_id="b",
        )
        second = first.model_copy(update={"id": "i2"})
        family = Family(base=base, variants=[first, second])

        plan = plan_reconciliation(family, desired(beginner=10, intermediate=30))
        assert plan.operations == [DeleteOp("i2", "intermediate")]

    def test_variant_sharing_base_level_deleted(self) -> None:
        base = make_record("b", skill_level="beginner")
        clash = make_record(
            "v",
            title="Cone Weave (Beginner)",
            skill_level="beginner",
            is_variant=True,
            base_video_id="b",
        )
        plan = plan_reconciliation(Family(base=base, variants=[clash]), desired(beginner=10))
        assert plan.operations == [DeleteOp("v", "beginner")]

    def test_orphaned_variant_normalised_to_base(self) -> None:
        orphan = make_record(
            "o",
            title="Cone Weave (Beginner)",
            is_variant=True,
            base_video_id="gone",
        )
        plan = plan_reconciliation(Family(base=orphan), desired(beginner=10))
        assert plan.operations == [
            UpdateOp(
                "o",
                "beginner",
                {"is_variant": False, "base_video_id": None, "title": "Cone Weave"},
            )
        ]

    def test_stray_siblings_repointed_to_stand_in_base(self) -> None:
        stand_in = make_record(
            "i",
            title="Cone Weave (Intermediate)",
            skill_level="intermediate",
            difficulty_level=30,
            is_variant=True,
            base_video_id="gone",
        )
        sibling = make_record(
            "a",
            title="Cone Weave (Advanced)",
            skill_level="advanced",
            difficulty_level=60,
            is_variant=True,
            base_video_id="gone",
        )
        family = Family(base=stand_in, variants=[sibling])
        plan = plan_reconciliation(family, desired(intermediate=30, advanced=60))

        changes = {op.record_id: op.changes for op in plan.operations}
        assert changes["i"]["is_variant"] is False
        assert changes["a"] == {"base_video_id": "i"}


# --- Self-check ---


class TestOutcomeCheck:
    def test_two_bases_rejected(self) -> None:
        docs = {
            "a": {"is_variant": False, "skill_level": "beginner", "difficulty_level": 10},
            "b": {"is_variant": False, "skill_level": "advanced", "difficulty_level": 60},
        }
        with pytest.raises(InvariantViolation, match="exactly one base"):
            check_outcome(docs, desired(beginner=10, advanced=60))

    def test_dangling_reference_rejected(self) -> None:
        docs = {
            "a": {"is_variant": False, "skill_level": "beginner", "difficulty_level": 10},
            "b": {
                "is_variant": True,
                "base_video_id": "gone",
                "skill_level": "advanced",
                "difficulty_level": 60,
            },
        }
        with pytest.raises(InvariantViolation, match="references gone"):
            check_outcome(docs, desired(beginner=10, advanced=60))

    def test_repeated_level_rejected(self) -> None:
        docs = {
            "a": {"is_variant": False, "skill_level": "beginner", "difficulty_level": 10},
            "b": {
                "is_variant": True,
                "base_video_id": "a",
                "skill_level": "beginner",
                "difficulty_level": 10,
            },
        }
        with pytest.raises(InvariantViolation, match="repeated"):
            check_outcome(docs, desired(beginner=10))

    def test_leftovers_after_family_deletion_rejected(self) -> None:
        with pytest.raises(InvariantViolation, match="left records"):
            check_outcome({"a": {"is_variant": False}}, DesiredVariantSet())

    def test_simulating_unknown_record_rejected(self) -> None:
        family = make_family({"beginner": 10})
        with pytest.raises(InvariantViolation, match="unknown record"):
            simulate(family, [DeleteOp("missing", "beginner")])
