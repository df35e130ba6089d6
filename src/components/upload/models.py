"""
Upload component models: stages, draft metadata, file selections, results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict, Field

from src.core.ports.store import StoreError
from src.domain.entities import AssetRecord, SkillLevel, TargetAudience

# --- Stages ---


class UploadStage(str, Enum):
    """Upload session stages, in order."""

    METADATA_BASIC = "metadata-basic"
    METADATA_TRAINING = "metadata-training"
    METADATA_DETAILS = "metadata-details"
    VIDEO = "video"
    THUMBNAIL = "thumbnail"
    COMPLETED = "completed"


STAGE_ORDER: tuple[UploadStage, ...] = tuple(UploadStage)


def next_stage(stage: UploadStage) -> UploadStage:
    index = STAGE_ORDER.index(stage)
    return STAGE_ORDER[min(index + 1, len(STAGE_ORDER) - 1)]


def previous_stage(stage: UploadStage) -> UploadStage:
    index = STAGE_ORDER.index(stage)
    return STAGE_ORDER[max(index - 1, 0)]


# --- Validation Error ---


@dataclass(frozen=True)
class UploadValidationError:
    """Stage-gate or file-constraint violation with actionable message."""

    code: str
    message: str
    field: str | None = None


# --- Session errors (programming/usage errors, not validation) ---


class SessionBusyError(RuntimeError):
    """Raised when the session is asked to do something while a stage is running."""


class SessionClosedError(RuntimeError):
    """Raised when a disposed session is used."""


# --- Inputs ---


@dataclass(frozen=True)
class SelectedFile:
    """A file chosen by the administrator."""

    name: str
    mime_type: str
    data: bytes = field(repr=False)
    duration_seconds: float | None = None  # None when no probe is available

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return PurePosixPath(self.name).suffix.lstrip(".").lower()


class MetadataDraft(BaseModel):
    """Metadata entered across the three metadata stages."""

    model_config = ConfigDict(extra="forbid")

    title: str = ""
    description: str = ""
    category: str = "training-exercise"
    exercise_type: str = "dribbling"
    skill_level: SkillLevel = "beginner"
    difficulty_level: int = 1
    target_audience: TargetAudience = "youth"
    training_type: str = "general-training"
    age_group: str = "u10"
    position_specific: list[str] = Field(default_factory=list)
    instructions: str = ""
    goals: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    required_equipment: list[str] = Field(default_factory=list)
    expected_duration: int = 0


# --- Outputs ---


@dataclass
class StageResult:
    """Outcome of advance()/skip_thumbnail()."""

    stage: UploadStage
    advanced: bool
    errors: list[UploadValidationError] = field(default_factory=list)
    error: StoreError | None = None
    cancelled: bool = False
    record: AssetRecord | None = None

    @property
    def ok(self) -> bool:
        return self.advanced and not self.errors and self.error is None
