"""
Upload component - staged training-video submission and batch creation.
"""

from ._validators import (
    build_object_path,
    format_duration,
    format_file_size,
    sanitize_file_name,
    validate_basic_metadata,
    validate_details_metadata,
    validate_thumbnail_file,
    validate_training_metadata,
    validate_video_file,
)
from .batch import BatchUploader, BatchUploadInput, BatchUploadOutput
from .models import (
    STAGE_ORDER,
    MetadataDraft,
    SelectedFile,
    SessionBusyError,
    SessionClosedError,
    StageResult,
    UploadStage,
    UploadValidationError,
    next_stage,
    previous_stage,
)
from .session import SessionProgressCallback, UploadSession

__all__ = [
    # Session
    "SessionProgressCallback",
    "UploadSession",
    "STAGE_ORDER",
    "StageResult",
    "UploadStage",
    "next_stage",
    "previous_stage",
    # Batch
    "BatchUploadInput",
    "BatchUploadOutput",
    "BatchUploader",
    # Inputs
    "MetadataDraft",
    "SelectedFile",
    # Errors
    "SessionBusyError",
    "SessionClosedError",
    "UploadValidationError",
    # Validators and helpers
    "build_object_path",
    "format_duration",
    "format_file_size",
    "sanitize_file_name",
    "validate_basic_metadata",
    "validate_details_metadata",
    "validate_thumbnail_file",
    "validate_training_metadata",
    "validate_video_file",
]
