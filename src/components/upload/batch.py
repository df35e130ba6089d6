"""
Batch upload - one physical file published at several skill levels at once.

The first enabled level creates the base record; every further level gets
its own variant record pointing at the base and reusing the same binary
(one transfer total). Progress is blended: the transfer fills the first
`batch_transfer_weight` of the bar, the record creations share the rest.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from src.adapters.clock import SystemClock
from src.components.variants import create_variant
from src.core.ports.clock import ClockPort
from src.core.ports.store import (
    StoreClientPort,
    StoreError,
    TransferCancelled,
    TransferHandle,
)
from src.domain.entities import AssetRecord, SkillLevel
from src.domain.levels import sort_levels, strip_level_suffix
from src.rules.models import Rules

from ._validators import (
    build_object_path,
    validate_basic_metadata,
    validate_details_metadata,
    validate_training_metadata,
    validate_video_file,
)
from .models import MetadataDraft, SelectedFile, UploadValidationError

logger = logging.getLogger(__name__)


@dataclass
class BatchUploadInput:
    file: SelectedFile
    metadata: MetadataDraft
    # Enabled level -> threshold
    levels: Mapping[SkillLevel, int]


@dataclass
class BatchUploadOutput:
    base: AssetRecord | None = None
    variants: list[AssetRecord] = field(default_factory=list)
    errors: list[UploadValidationError] = field(default_factory=list)
    error: StoreError | None = None
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.base is not None and not self.errors and self.error is None

    def records(self) -> list[AssetRecord]:
        return [self.base, *self.variants] if self.base is not None else []


class BatchUploader:
    """Runs one batch upload at a time; cancel() aborts the binary transfer."""

    def __init__(
        self,
        store: StoreClientPort,
        *,
        rules: Rules | None = None,
        clock: ClockPort | None = None,
        collection: str | None = None,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        self._store = store
        self._rules = rules or Rules()
        self._clock = clock or SystemClock()
        self._collection = collection or self._rules.store.collection
        self._on_progress = on_progress
        self._active: TransferHandle | None = None
        self.progress = 0.0

    def cancel(self) -> bool:
        if self._active is None:
            return False
        return self._active.cancel()

    def validate(self, data: BatchUploadInput) -> list[UploadValidationError]:
        errors = [
            *validate_basic_metadata(data.metadata, self._rules.metadata),
            *validate_training_metadata(data.metadata),
            *validate_details_metadata(data.metadata),
            *validate_video_file(data.file, self._rules.uploads.video),
        ]
        if not data.levels:
            errors.append(
                UploadValidationError("level_required", "Enable at least one skill level", "levels")
            )
        for level, threshold in data.levels.items():
            if threshold < 0:
                errors.append(
                    UploadValidationError(
                        "invalid_threshold",
                        f"Threshold for {level} must be zero or more",
                        "levels",
                    )
                )
        return errors

    async def run(self, data: BatchUploadInput) -> BatchUploadOutput:
        """
        Validate, transfer once, then create the base and each variant in level order.

        A failed creation stops the batch; records created so far stay and
        form a legal family.
        """
        errors = self.validate(data)
        if errors:
            return BatchUploadOutput(errors=errors)

        levels = sort_levels(data.levels)
        weight = self._rules.variants.batch_transfer_weight
        step = (1.0 - weight) / len(levels)
        self._report(0.0)

        def on_transfer(sent: int, total: int) -> None:
            fraction = 1.0 if total == 0 else sent / total
            self._report(fraction * weight * 100.0)

        path = build_object_path(
            self._rules.uploads.video.storage_prefix, data.file.name, self._clock.now_utc()
        )
        handle = self._store.upload_binary(
            path, data.file.data, on_transfer, content_type=data.file.mime_type
        )
        self._active = handle
        try:
            binary_ref = await handle
        except TransferCancelled:
            logger.info("Batch upload of %s cancelled", data.file.name)
            self._report(0.0)
            return BatchUploadOutput(cancelled=True)
        except StoreError as e:
            logger.warning("Batch upload of %s failed: %s", data.file.name, e)
            return BatchUploadOutput(error=e)
        finally:
            self._active = None

        output = BatchUploadOutput()
        first, *rest = levels
        try:
            output.base = await self._create_base(data, first, binary_ref)
            self._report((weight + step) * 100.0)
            for index, level in enumerate(rest, start=2):
                variant = await create_variant(
                    self._store,
                    output.base,
                    level,
                    data.levels[level],
                    collection=self._collection,
                    clock=self._clock,
                )
                output.variants.append(variant)
                self._report((weight + step * index) * 100.0)
        except StoreError as e:
            logger.warning(
                "Batch upload stopped after %d record(s): %s", len(output.records()), e
            )
            output.error = e
            return output

        self._report(100.0)
        return output

    async def _create_base(
        self, data: BatchUploadInput, level: SkillLevel, binary_ref: str
    ) -> AssetRecord:
        stamp = self._clock.now_utc().isoformat()
        document: dict[str, Any] = {
            **data.metadata.model_dump(mode="json"),
            "title": strip_level_suffix(data.metadata.title),
            "skill_level": level,
            "difficulty_level": data.levels[level],
            "is_variant": False,
            "base_video_id": None,
            "binary_ref": binary_ref,
            "status": "published",
            "file_name": data.file.name,
            "file_size": data.file.size_bytes,
            "format": data.file.extension or None,
            "duration": data.file.duration_seconds,
            "created_at": stamp,
            "updated_at": stamp,
        }
        doc_id = await self._store.create_document(self._collection, document)
        logger.info("Created base record %s at %s", doc_id, level)
        return AssetRecord.from_document(doc_id, document)

    def _report(self, percent: float) -> None:
        self.progress = percent
        if self._on_progress is not None:
            self._on_progress(percent)
