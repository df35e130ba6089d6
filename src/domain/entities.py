from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# --- Enums / Literals ---
SkillLevel = Literal["beginner", "intermediate", "advanced"]
AssetStatus = Literal["pending", "processing", "published", "failed"]
TargetAudience = Literal["youth", "amateur", "professional"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


# --- Assets ---

class AssetRecord(BaseModel):
    """
    One physical training video at one skill level.

    `base_video_id` is a weak back-reference: a variant points at its base,
    the base never points at its variants.
    """

    id: str
    title: str
    description: str = ""
    category: str = "training-exercise"
    exercise_type: str = "dribbling"
    skill_level: SkillLevel = "beginner"
    difficulty_level: int = 10
    position_specific: list[str] = Field(default_factory=list)

    is_variant: bool = False
    base_video_id: str | None = None

    binary_ref: str | None = None
    thumbnail_ref: str | None = None
    status: AssetStatus = "pending"

    # Training metadata
    target_audience: TargetAudience = "youth"
    training_type: str = "general-training"
    age_group: str = "u10"
    instructions: str = ""
    goals: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    required_equipment: list[str] = Field(default_factory=list)
    expected_duration: int = 0

    # File facts
    file_name: str | None = None
    file_size: int = 0
    format: str | None = None
    duration: float | None = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("position_specific")
    @classmethod
    def _sorted_unique_positions(cls, value: list[str]) -> list[str]:
        # Stored as a set; kept sorted so documents compare stably.
        return sorted(set(value))

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "AssetRecord":
        return cls.model_validate({**data, "id": doc_id})

    def to_document(self) -> dict[str, Any]:
        """Serialize for the document store (the id lives in the key, not the body)."""
        return self.model_dump(mode="json", exclude={"id"})


# --- Families (derived, never persisted) ---

class Family(BaseModel):
    base: AssetRecord
    variants: list[AssetRecord] = Field(default_factory=list)

    def records(self) -> list[AssetRecord]:
        return [self.base, *self.variants]

    def ids(self) -> set[str]:
        return {r.id for r in self.records()}

    def levels(self) -> list[SkillLevel]:
        return [r.skill_level for r in self.records()]
