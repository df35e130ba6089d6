"""
Upload session - staged, resumable submission of one training video.

Stages (each a validation gate for the next, no skip-ahead):
    metadata-basic -> metadata-training -> metadata-details
    -> video -> thumbnail -> completed

Key behaviors:
- back() never clears entered data
- Advancing `video` transfers the binary, then creates (or rewrites) the
  document; a failed or cancelled transfer keeps the file selection
- A binary already stored for the selected file is reused on retry
- `thumbnail` is optional; its transfer patches the record created in `video`
- Only one transfer runs at a time; cancel() aborts it, close() disposes the
  session and cancels whatever is still in flight
- Validation errors stay inside the session (attached to the current stage);
  store errors are returned in the StageResult
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from src.adapters.clock import SystemClock
from src.core.ports.clock import ClockPort
from src.core.ports.store import (
    StoreClientPort,
    StoreError,
    TransferCancelled,
    TransferHandle,
)
from src.domain.entities import AssetRecord, AssetStatus
from src.rules.models import Rules

from ._validators import (
    build_object_path,
    validate_basic_metadata,
    validate_details_metadata,
    validate_thumbnail_file,
    validate_training_metadata,
    validate_video_file,
)
from .models import (
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

logger = logging.getLogger(__name__)

# (transfer kind, percent 0-100)
SessionProgressCallback = Callable[[str, float], None]


class UploadSession:
    """One in-flight staged submission. Lives in memory only."""

    def __init__(
        self,
        store: StoreClientPort,
        *,
        rules: Rules | None = None,
        clock: ClockPort | None = None,
        collection: str | None = None,
        on_progress: SessionProgressCallback | None = None,
    ) -> None:
        self._store = store
        self._rules = rules or Rules()
        self._clock = clock or SystemClock()
        self._collection = collection or self._rules.store.collection
        self._on_progress = on_progress
        self._closed = False
        # Bumped by reset()/close(); a stage that resumes under a newer
        # generation must not touch the session any more.
        self._generation = 0
        self._clear_state()

    def _clear_state(self) -> None:
        self._stage = UploadStage.METADATA_BASIC
        self._draft = MetadataDraft()
        self._status: AssetStatus = "pending"
        self._selected_file: SelectedFile | None = None
        self._selected_thumbnail: SelectedFile | None = None
        self._progress: dict[str, float] = {"video": 0.0, "thumbnail": 0.0}
        self._errors: list[UploadValidationError] = []
        self._transfer_error: StoreError | None = None
        self._record: AssetRecord | None = None
        self._result: AssetRecord | None = None
        self._video_upload: tuple[SelectedFile, str] | None = None
        self._thumbnail_upload: tuple[SelectedFile, str] | None = None
        self._active: TransferHandle | None = None
        self._busy = False

    # --- Read-only state ---

    @property
    def current_stage(self) -> UploadStage:
        return self._stage

    @property
    def draft(self) -> MetadataDraft:
        return self._draft

    @property
    def status(self) -> AssetStatus:
        return self._status

    @property
    def selected_file(self) -> SelectedFile | None:
        return self._selected_file

    @property
    def selected_thumbnail(self) -> SelectedFile | None:
        return self._selected_thumbnail

    @property
    def progress(self) -> dict[str, float]:
        return dict(self._progress)

    @property
    def errors(self) -> list[UploadValidationError]:
        """Validation errors attached to the current stage."""
        return list(self._errors)

    @property
    def transfer_error(self) -> StoreError | None:
        return self._transfer_error

    @property
    def record(self) -> AssetRecord | None:
        """The stored record, once the video stage has created it."""
        return self._record

    @property
    def result(self) -> AssetRecord | None:
        """The finished record, once completed."""
        return self._result

    @property
    def is_transferring(self) -> bool:
        return self._active is not None

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Editing ---

    def update_metadata(self, **fields: Any) -> MetadataDraft:
        """
        Merge fields into the draft. Unknown fields raise pydantic's ValidationError.

        Errors reported for the edited fields are cleared.
        """
        self._ensure_idle()
        self._draft = MetadataDraft.model_validate({**self._draft.model_dump(), **fields})
        self._errors = [e for e in self._errors if e.field not in fields]
        return self._draft

    def select_file(self, file: SelectedFile) -> list[UploadValidationError]:
        """Select the video. A rejected file clears the previous selection."""
        self._ensure_idle()
        errors = validate_video_file(file, self._rules.uploads.video)
        self._errors = [e for e in self._errors if e.field != "video"] + errors
        self._selected_file = None if errors else file
        return errors

    def select_thumbnail(self, file: SelectedFile) -> list[UploadValidationError]:
        """Select the thumbnail image. A rejected file clears the previous selection."""
        self._ensure_idle()
        errors = validate_thumbnail_file(file, self._rules.uploads.thumbnail)
        self._errors = [e for e in self._errors if e.field != "thumbnail"] + errors
        self._selected_thumbnail = None if errors else file
        return errors

    def clear_thumbnail(self) -> None:
        self._ensure_idle()
        self._selected_thumbnail = None

    # --- Navigation ---

    async def advance(self) -> StageResult:
        """Run the current stage's gate (and transfer, if any) and move forward."""
        self._ensure_idle()
        stage = self._stage

        if stage is UploadStage.COMPLETED:
            return StageResult(stage=stage, advanced=False, record=self._result)

        if stage is UploadStage.VIDEO:
            return await self._run_exclusive(self._advance_video)
        if stage is UploadStage.THUMBNAIL:
            return await self._run_exclusive(self._advance_thumbnail)

        errors = self._gate(stage)
        self._errors = errors
        if errors:
            return StageResult(stage=stage, advanced=False, errors=errors)

        self._stage = next_stage(stage)
        return StageResult(stage=self._stage, advanced=True)

    def back(self) -> bool:
        """Go to the previous stage. Entered data is kept."""
        self._ensure_idle()
        if self._stage in (UploadStage.METADATA_BASIC, UploadStage.COMPLETED):
            return False
        self._stage = previous_stage(self._stage)
        self._errors = []
        self._transfer_error = None
        return True

    async def skip_thumbnail(self) -> StageResult:
        """Finish without a thumbnail."""
        self._ensure_idle()
        if self._stage is not UploadStage.THUMBNAIL:
            error = UploadValidationError(
                "skip_not_allowed",
                f"Thumbnail can only be skipped from the thumbnail stage (at {self._stage.value})",
                "thumbnail",
            )
            return StageResult(stage=self._stage, advanced=False, errors=[error])
        return await self._run_exclusive(self._finalize)

    # --- Lifecycle ---

    def cancel(self) -> bool:
        """Abort the in-flight transfer, if any."""
        if self._active is None:
            return False
        return self._active.cancel()

    def reset(self) -> None:
        """Discard everything and start over at metadata-basic."""
        self._ensure_open()
        self.cancel()
        self._generation += 1
        self._clear_state()

    def close(self) -> None:
        """Dispose the session. In-flight transfers are cancelled."""
        if self._closed:
            return
        if self.cancel():
            logger.info("Upload session closed with a transfer in flight; cancelled")
        self._generation += 1
        self._closed = True
        self._active = None
        self._busy = False

    async def __aenter__(self) -> UploadSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    # --- Internals ---

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Upload session has been closed")

    def _ensure_idle(self) -> None:
        self._ensure_open()
        if self._busy:
            raise SessionBusyError(f"Upload session is busy in stage '{self._stage.value}'")

    def _stored_record(self) -> AssetRecord:
        """The record written by the video stage; later stages patch it."""
        if self._record is None:
            raise RuntimeError(
                f"Stage '{self._stage.value}' needs the record created by the video stage"
            )
        return self._record

    def _gate(self, stage: UploadStage) -> list[UploadValidationError]:
        if stage is UploadStage.METADATA_BASIC:
            return validate_basic_metadata(self._draft, self._rules.metadata)
        if stage is UploadStage.METADATA_TRAINING:
            return validate_training_metadata(self._draft)
        if stage is UploadStage.METADATA_DETAILS:
            return validate_details_metadata(self._draft)
        return []

    async def _run_exclusive(self, step: Callable[[int], Awaitable[StageResult]]) -> StageResult:
        generation = self._generation
        self._busy = True
        try:
            return await step(generation)
        finally:
            if generation == self._generation:
                self._busy = False

    def _stale(self, generation: int) -> bool:
        return generation != self._generation

    def _now(self) -> datetime:
        return self._clock.now_utc()

    async def _transfer(self, kind: str, prefix: str, file: SelectedFile) -> str:
        def on_progress(sent: int, total: int) -> None:
            percent = 100.0 if total == 0 else sent * 100.0 / total
            self._progress[kind] = percent
            if self._on_progress is not None:
                self._on_progress(kind, percent)

        self._progress[kind] = 0.0
        path = build_object_path(prefix, file.name, self._now())
        handle = self._store.upload_binary(
            path, file.data, on_progress, content_type=file.mime_type
        )
        self._active = handle
        try:
            return await handle
        finally:
            if self._active is handle:
                self._active = None

    async def _advance_video(self, generation: int) -> StageResult:
        stage = UploadStage.VIDEO
        file = self._selected_file
        if file is None:
            self._errors = [
                UploadValidationError("video_required", "Select a video file", "video")
            ]
            return StageResult(stage=stage, advanced=False, errors=self.errors)

        errors = validate_video_file(file, self._rules.uploads.video)
        self._errors = errors
        if errors:
            return StageResult(stage=stage, advanced=False, errors=errors)

        self._transfer_error = None
        binary_ref = self._reuse(self._video_upload, file)
        if binary_ref is None:
            self._status = "pending"
            try:
                binary_ref = await self._transfer(
                    "video", self._rules.uploads.video.storage_prefix, file
                )
            except TransferCancelled:
                if not self._stale(generation):
                    self._progress["video"] = 0.0
                    logger.info("Video transfer cancelled; selection kept for retry")
                return StageResult(stage=stage, advanced=False, cancelled=True)
            except StoreError as e:
                if self._stale(generation):
                    return StageResult(stage=stage, advanced=False, error=e)
                logger.warning("Video transfer failed: %s", e)
                self._status = "failed"
                self._transfer_error = e
                return StageResult(stage=stage, advanced=False, error=e)
            if self._stale(generation):
                return StageResult(stage=stage, advanced=False, cancelled=True)
            self._video_upload = (file, binary_ref)

        try:
            record = await self._write_record(file, binary_ref)
        except StoreError as e:
            if not self._stale(generation):
                logger.warning("Writing video record failed: %s", e)
                self._transfer_error = e
            return StageResult(stage=stage, advanced=False, error=e)

        if self._stale(generation):
            return StageResult(stage=stage, advanced=False, cancelled=True)

        self._record = record
        self._status = record.status
        self._stage = UploadStage.THUMBNAIL
        return StageResult(stage=self._stage, advanced=True, record=record)

    async def _write_record(self, file: SelectedFile, binary_ref: str) -> AssetRecord:
        now = self._now()
        fields: dict[str, Any] = {
            **self._draft.model_dump(mode="json"),
            "binary_ref": binary_ref,
            "status": "processing",
            "is_variant": False,
            "base_video_id": None,
            "file_name": file.name,
            "file_size": file.size_bytes,
            "format": file.extension or None,
            "duration": file.duration_seconds,
            "updated_at": now.isoformat(),
        }

        if self._record is None:
            fields["created_at"] = now.isoformat()
            doc_id = await self._store.create_document(self._collection, fields)
            logger.info("Created video record %s", doc_id)
            return AssetRecord.from_document(doc_id, fields)

        # Going back and forth rewrites the same record
        await self._store.update_document(self._collection, self._record.id, fields)
        return AssetRecord.from_document(
            self._record.id, {**self._record.to_document(), **fields}
        )

    async def _advance_thumbnail(self, generation: int) -> StageResult:
        stage = UploadStage.THUMBNAIL
        thumbnail = self._selected_thumbnail
        if thumbnail is None:
            return await self._finalize(generation)

        record = self._stored_record()

        errors = validate_thumbnail_file(thumbnail, self._rules.uploads.thumbnail)
        self._errors = errors
        if errors:
            return StageResult(stage=stage, advanced=False, errors=errors)

        self._transfer_error = None
        thumbnail_ref = self._reuse(self._thumbnail_upload, thumbnail)
        if thumbnail_ref is None:
            try:
                thumbnail_ref = await self._transfer(
                    "thumbnail", self._rules.uploads.thumbnail.storage_prefix, thumbnail
                )
            except TransferCancelled:
                if not self._stale(generation):
                    self._progress["thumbnail"] = 0.0
                    logger.info("Thumbnail transfer cancelled; selection kept for retry")
                return StageResult(stage=stage, advanced=False, cancelled=True)
            except StoreError as e:
                if not self._stale(generation):
                    logger.warning("Thumbnail transfer failed: %s", e)
                    self._transfer_error = e
                return StageResult(stage=stage, advanced=False, error=e)
            if self._stale(generation):
                return StageResult(stage=stage, advanced=False, cancelled=True)
            self._thumbnail_upload = (thumbnail, thumbnail_ref)

        patch = {"thumbnail_ref": thumbnail_ref, "updated_at": self._now().isoformat()}
        try:
            await self._store.update_document(self._collection, record.id, patch)
        except StoreError as e:
            if not self._stale(generation):
                logger.warning("Attaching thumbnail to %s failed: %s", record.id, e)
                self._transfer_error = e
            return StageResult(stage=stage, advanced=False, error=e)

        if self._stale(generation):
            return StageResult(stage=stage, advanced=False, cancelled=True)
        self._record = AssetRecord.from_document(record.id, {**record.to_document(), **patch})
        return await self._finalize(generation)

    async def _finalize(self, generation: int) -> StageResult:
        record = self._stored_record()

        patch = {"status": "published", "updated_at": self._now().isoformat()}
        try:
            await self._store.update_document(self._collection, record.id, patch)
        except StoreError as e:
            if not self._stale(generation):
                logger.warning("Publishing %s failed: %s", record.id, e)
                self._transfer_error = e
            return StageResult(stage=UploadStage.THUMBNAIL, advanced=False, error=e)

        if self._stale(generation):
            return StageResult(stage=UploadStage.THUMBNAIL, advanced=False, cancelled=True)

        finished = AssetRecord.from_document(record.id, {**record.to_document(), **patch})
        self._record = finished
        self._result = finished
        self._status = "published"
        self._errors = []
        self._transfer_error = None
        self._stage = UploadStage.COMPLETED
        logger.info("Upload session completed: %s", finished.id)
        return StageResult(stage=self._stage, advanced=True, record=finished)

    @staticmethod
    def _reuse(upload: tuple[SelectedFile, str] | None, file: SelectedFile) -> str | None:
        if upload is not None and upload[0] == file:
            return upload[1]
        return None
