from pydantic import BaseModel, Field, field_validator

from src.domain.entities import SkillLevel


class VideoUploadRules(BaseModel):
    allowed_mime_prefix: str = "video/"
    allowed_extensions: list[str] = Field(
        default_factory=lambda: ["mp4", "mov", "avi", "webm"]
    )
    max_upload_bytes: int = 500 * 1024 * 1024
    max_duration_seconds: int = 600
    storage_prefix: str = "videos"

class ThumbnailUploadRules(BaseModel):
    allowed_mime_prefix: str = "image/"
    max_upload_bytes: int = 5 * 1024 * 1024
    storage_prefix: str = "thumbnails"

class UploadsRules(BaseModel):
    video: VideoUploadRules = Field(default_factory=VideoUploadRules)
    thumbnail: ThumbnailUploadRules = Field(default_factory=ThumbnailUploadRules)

class MetadataRules(BaseModel):
    title_max: int = 100
    description_max: int = 500

DEFAULT_THRESHOLDS: dict[SkillLevel, int] = {"beginner": 10, "intermediate": 30, "advanced": 60}


class VariantsRules(BaseModel):
    default_thresholds: dict[SkillLevel, int] = Field(
        default_factory=lambda: dict(DEFAULT_THRESHOLDS)
    )
    # Share of the batch progress bar given to the single binary transfer.
    batch_transfer_weight: float = Field(default=0.9, gt=0.0, le=1.0)

    @field_validator("default_thresholds")
    @classmethod
    def fill_missing_levels(cls, v: dict[SkillLevel, int]) -> dict[SkillLevel, int]:
        """Levels left out of the file keep their built-in threshold."""
        if any(threshold < 0 for threshold in v.values()):
            raise ValueError("Thresholds must be non-negative")
        return {**DEFAULT_THRESHOLDS, **v}

class StoreRules(BaseModel):
    collection: str = "videos"
    page_size: int = Field(default=20, ge=1)

class Rules(BaseModel):
    uploads: UploadsRules = Field(default_factory=UploadsRules)
    metadata: MetadataRules = Field(default_factory=MetadataRules)
    variants: VariantsRules = Field(default_factory=VariantsRules)
    store: StoreRules = Field(default_factory=StoreRules)
