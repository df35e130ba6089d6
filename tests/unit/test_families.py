"""
Tests for the family grouper.

Grouping never drops a record; variants whose base is outside the window
degrade to their own single-record family.
"""

from __future__ import annotations

from src.components.families import find_orphans, group_families
from tests.factories import make_record


def variant(record_id: str, base_id: str | None, level: str = "intermediate"):
    return make_record(
        record_id,
        title=f"Cone Weave ({level.title()})",
        skill_level=level,
        is_variant=True,
        base_video_id=base_id,
    )


def partition(families) -> list[tuple[str, list[str]]]:
    return [(f.base.id, [v.id for v in f.variants]) for f in families]


class TestGroupFamilies:
    def test_empty_input(self) -> None:
        assert group_families([]) == []

    def test_standalone_records(self) -> None:
        records = [make_record("a"), make_record("b")]
        assert partition(group_families(records)) == [("a", []), ("b", [])]

    def test_variants_attach_to_base(self) -> None:
        records = [
            make_record("a"),
            variant("a-int", "a"),
            make_record("b"),
            variant("a-adv", "a", "advanced"),
        ]
        assert partition(group_families(records)) == [("a", ["a-int", "a-adv"]), ("b", [])]

    def test_variant_before_base_places_family_at_first_sighting(self) -> None:
        records = [make_record("x"), variant("a-int", "a"), make_record("a")]
        assert partition(group_families(records)) == [("x", []), ("a", ["a-int"])]

    def test_orphan_variant_becomes_own_family(self) -> None:
        records = [make_record("a"), variant("o", "off-page")]
        families = group_families(records)

        assert partition(families) == [("a", []), ("o", [])]
        assert families[1].base.is_variant

    def test_variant_pointing_at_variant_stands_alone(self) -> None:
        records = [make_record("a"), variant("v1", "a"), variant("v2", "v1", "advanced")]
        assert partition(group_families(records)) == [("a", ["v1"]), ("v2", [])]

    def test_self_reference_stands_alone(self) -> None:
        assert partition(group_families([variant("s", "s")])) == [("s", [])]

    def test_base_id_without_variant_flag_is_ignored(self) -> None:
        stray = make_record("n", base_video_id="a")
        records = [make_record("a"), stray]
        assert partition(group_families(records)) == [("a", []), ("n", [])]

    def test_no_record_dropped(self) -> None:
        records = [
            variant("o1", "gone"),
            make_record("a"),
            variant("a1", "a"),
            variant("o2", "o1"),
            variant("s", "s"),
        ]
        families = group_families(records)
        grouped = sorted(r.id for f in families for r in f.records())
        assert grouped == sorted(r.id for r in records)

    def test_repeated_record_placed_once(self) -> None:
        a = make_record("a")
        families = group_families([a, variant("a1", "a"), a])
        assert partition(families) == [("a", ["a1"])]

    def test_grouping_is_idempotent(self) -> None:
        records = [
            make_record("a"),
            variant("a1", "a"),
            variant("o", "gone"),
            make_record("b"),
            variant("b1", "b", "advanced"),
            variant("a2", "a", "advanced"),
        ]
        first = group_families(records)
        flattened = [r for f in first for r in f.records()]
        second = group_families(flattened)

        assert partition(second) == partition(first)


class TestFindOrphans:
    def test_reports_unresolved_variants(self) -> None:
        records = [
            make_record("a"),
            variant("a1", "a"),
            variant("o", "gone"),
            variant("v", "a1", "advanced"),
        ]
        assert find_orphans(records) == ["o", "v"]

    def test_no_orphans(self) -> None:
        assert find_orphans([make_record("a"), variant("a1", "a")]) == []
