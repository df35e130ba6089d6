"""
Skill-level ordering and the level-specific title convention.

A family shares one root title; the base carries it bare and every variant
carries it with its level suffix, e.g. "Cone Weave (Advanced)".
"""

from __future__ import annotations

from collections.abc import Iterable

from src.domain.entities import SkillLevel

LEVEL_ORDER: tuple[SkillLevel, ...] = ("beginner", "intermediate", "advanced")

LEVEL_LABELS: dict[SkillLevel, str] = {
    "beginner": "Beginner",
    "intermediate": "Intermediate",
    "advanced": "Advanced",
}


def level_rank(level: SkillLevel) -> int:
    return LEVEL_ORDER.index(level)


def sort_levels(levels: Iterable[SkillLevel]) -> list[SkillLevel]:
    return sorted(levels, key=level_rank)


def level_suffix(level: SkillLevel) -> str:
    return f" ({LEVEL_LABELS[level]})"


def strip_level_suffix(title: str) -> str:
    """Remove a trailing level suffix, if any. Only one suffix is removed."""
    for level in LEVEL_ORDER:
        suffix = level_suffix(level)
        if title.endswith(suffix):
            return title[: -len(suffix)]
    return title


def variant_title(root_title: str, level: SkillLevel) -> str:
    return f"{strip_level_suffix(root_title)}{level_suffix(level)}"
