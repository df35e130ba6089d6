"""
Stage gates and file constraints for the upload flow.

Validators never raise; they return a list of errors (empty if valid).
"""

from __future__ import annotations

import re
from datetime import datetime

from src.rules.models import MetadataRules, ThumbnailUploadRules, VideoUploadRules

from .models import MetadataDraft, SelectedFile, UploadValidationError

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


# --- Formatting ---


def format_file_size(size_bytes: int) -> str:
    """Human-readable size, e.g. 1536 -> '1.5 KB'."""
    if size_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    value = float(size_bytes)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{round(value, 2):g} {units[unit]}"


def format_duration(seconds: float) -> str:
    """Format seconds as m:ss."""
    minutes, remaining = divmod(int(seconds), 60)
    return f"{minutes}:{remaining:02d}"


# --- Object paths ---


def sanitize_file_name(name: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", name)


def build_object_path(prefix: str, file_name: str, now: datetime) -> str:
    """
    Generate the storage path for an upload.

    Format: {prefix}/{epoch_ms}_{sanitized_name}
    """
    return f"{prefix}/{int(now.timestamp() * 1000)}_{sanitize_file_name(file_name)}"


# --- Stage gates ---


def validate_basic_metadata(
    draft: MetadataDraft, rules: MetadataRules
) -> list[UploadValidationError]:
    errors: list[UploadValidationError] = []

    if not draft.title.strip():
        errors.append(UploadValidationError("title_required", "Title is required", "title"))
    elif len(draft.title) > rules.title_max:
        errors.append(
            UploadValidationError(
                "title_too_long",
                f"Title is too long (maximum {rules.title_max} characters)",
                "title",
            )
        )

    if not draft.description.strip():
        errors.append(
            UploadValidationError("description_required", "Description is required", "description")
        )
    elif len(draft.description) > rules.description_max:
        errors.append(
            UploadValidationError(
                "description_too_long",
                f"Description is too long (maximum {rules.description_max} characters)",
                "description",
            )
        )

    return errors


def validate_training_metadata(draft: MetadataDraft) -> list[UploadValidationError]:
    errors: list[UploadValidationError] = []

    if not draft.training_type.strip():
        errors.append(
            UploadValidationError(
                "training_type_required", "Select a training type", "training_type"
            )
        )
    if not draft.age_group.strip():
        errors.append(UploadValidationError("age_group_required", "Select an age group", "age_group"))
    if not [p for p in draft.position_specific if p.strip()]:
        errors.append(
            UploadValidationError(
                "position_required", "Select at least one position", "position_specific"
            )
        )

    return errors


def validate_details_metadata(draft: MetadataDraft) -> list[UploadValidationError]:
    errors: list[UploadValidationError] = []

    if not draft.instructions.strip():
        errors.append(
            UploadValidationError(
                "instructions_required", "Instructions are required", "instructions"
            )
        )
    if not [g for g in draft.goals if g.strip()]:
        errors.append(UploadValidationError("goal_required", "Add at least one goal", "goals"))

    return errors


# --- File constraints ---


def validate_video_file(
    file: SelectedFile, rules: VideoUploadRules
) -> list[UploadValidationError]:
    """Type, extension, size and (when known) duration ceilings. Nothing is truncated."""
    errors: list[UploadValidationError] = []

    if not file.mime_type.startswith(rules.allowed_mime_prefix):
        errors.append(
            UploadValidationError(
                "invalid_mime_type",
                f"File must be a video (got '{file.mime_type or 'unknown'}')",
                "video",
            )
        )

    allowed = [ext.lower() for ext in rules.allowed_extensions]
    if file.extension not in allowed:
        errors.append(
            UploadValidationError(
                "invalid_extension",
                f"Unsupported file format. Supported formats: {', '.join(allowed)}",
                "video",
            )
        )

    if file.size_bytes == 0:
        errors.append(UploadValidationError("file_empty", "File is empty", "video"))
    elif file.size_bytes > rules.max_upload_bytes:
        errors.append(
            UploadValidationError(
                "file_too_large",
                f"File is too large. Maximum size: {format_file_size(rules.max_upload_bytes)}",
                "video",
            )
        )

    if file.duration_seconds is not None and file.duration_seconds > rules.max_duration_seconds:
        errors.append(
            UploadValidationError(
                "video_too_long",
                f"Video is too long. Maximum duration: "
                f"{format_duration(rules.max_duration_seconds)}",
                "video",
            )
        )

    return errors


def validate_thumbnail_file(
    file: SelectedFile, rules: ThumbnailUploadRules
) -> list[UploadValidationError]:
    errors: list[UploadValidationError] = []

    if not file.mime_type.startswith(rules.allowed_mime_prefix):
        errors.append(
            UploadValidationError("invalid_mime_type", "Thumbnail must be an image", "thumbnail")
        )

    if file.size_bytes == 0:
        errors.append(UploadValidationError("file_empty", "File is empty", "thumbnail"))
    elif file.size_bytes > rules.max_upload_bytes:
        errors.append(
            UploadValidationError(
                "file_too_large",
                f"Thumbnail is too large (maximum {format_file_size(rules.max_upload_bytes)})",
                "thumbnail",
            )
        )

    return errors
