"""
Module for coordinating one upload attempt from negotiation to confirmation.
"""
import logging
import mimetypes
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .backend import BackendClient
from .config import UploaderConfig
from .errors import (
    AbortError,
    CompletionError,
    InvalidInputError,
    InvalidStateError,
    UploadCancelledError,
    UploadError,
)
from .models import (
    AssetStatus,
    AttemptRecord,
    MultipartPlan,
    MultipartTarget,
    PartResult,
    ProgressCallback,
    ProgressState,
    SessionState,
    SinglePartTarget,
    UploadOutcome,
    UploadTarget,
)
from .planner import jobs_for_target, plan
from .processing import wait_until_ready
from .scheduler import PartScheduler
from .tracker import UploadJournal
from .transport import FileSlice, PresignedTransport

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    SessionState.IDLE: {SessionState.NEGOTIATING, SessionState.FAILED},
    SessionState.NEGOTIATING: {SessionState.UPLOADING, SessionState.FAILED},
    SessionState.UPLOADING: {SessionState.COMPLETING, SessionState.FAILED},
    SessionState.COMPLETING: {SessionState.SUCCEEDED, SessionState.FAILED},
    SessionState.SUCCEEDED: set(),
    SessionState.FAILED: set(),
}


class UploadSession:
    """State machine for a single upload attempt.

    A session runs once. Retrying an upload means creating a new session.
    Exactly one complete-multipart or abort-multipart call is issued per
    session, guarded by a check-and-set flag.
    """

    def __init__(self, backend: BackendClient, transport: PresignedTransport,
                 config: Optional[UploaderConfig] = None,
                 journal: Optional[UploadJournal] = None,
                 scheduler: Optional[PartScheduler] = None):
        self.backend = backend
        self.transport = transport
        self.config = config or UploaderConfig()
        self.journal = journal
        self.scheduler = scheduler or PartScheduler(transport, self.config.concurrency_limit)

        self.attempt_id = uuid.uuid4().hex
        self.state = SessionState.IDLE
        self.target: Optional[UploadTarget] = None
        self.outcome: Optional[UploadOutcome] = None

        self._cancel_event = threading.Event()
        self._state_lock = threading.Lock()
        self._finalize_lock = threading.Lock()
        self._finalized = False

    def cancel(self) -> None:
        """Cancel the upload. Handled like a part failure, including the abort."""
        logger.info(f"Cancelling upload attempt {self.attempt_id}")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _transition(self, new_state: SessionState) -> None:
        with self._state_lock:
            if new_state not in _TRANSITIONS[self.state]:
                raise InvalidStateError(
                    f"Cannot move upload {self.attempt_id} from {self.state.value} to {new_state.value}"
                )
            self.state = new_state
        logger.debug(f"Upload {self.attempt_id} is {new_state.value}")
        if self.journal:
            self.journal.record_state(self.attempt_id, new_state)

    def _claim_finalization(self) -> bool:
        """Return True for the first caller only; later callers must not finalize."""
        with self._finalize_lock:
            if self._finalized:
                return False
            self._finalized = True
            return True

    def run(self, file_path: Union[str, Path], metadata: Optional[Dict[str, Any]] = None,
            on_progress: Optional[ProgressCallback] = None,
            mime_type: Optional[str] = None) -> UploadOutcome:
        """Upload a file and confirm it with the backend.

        Args:
            file_path: File to upload
            metadata: Fields sent with the confirmation (title, description...)
            on_progress: Called with the whole-file percentage, 0..100
            mime_type: MIME type of the file, guessed from the name if omitted

        Returns:
            UploadOutcome with the storage key and asset id

        Raises:
            UploadError: The single terminal failure of this attempt
        """
        self._transition(SessionState.NEGOTIATING)
        file_path = Path(file_path)
        try:
            file_size = self._validate_file(file_path)
            mime_type = (mime_type or mimetypes.guess_type(file_path.name)[0]
                         or self.config.default_mime_type)
            if self.journal:
                self.journal.register_attempt(AttemptRecord(
                    attempt_id=self.attempt_id,
                    file_path=str(file_path),
                    mime_type=mime_type,
                    file_size=file_size,
                    state=self.state.value,
                    metadata=dict(metadata or {}),
                ))

            self.target = self.backend.initiate_upload(mime_type, file_size)
            if self.journal:
                self.journal.record_target(self.attempt_id, self.target)
            self._check_local_policy(file_size, self.target)

            self._transition(SessionState.UPLOADING)
            parts = self._upload(file_path, file_size, mime_type, on_progress)

            self._transition(SessionState.COMPLETING)
            asset_id = self._complete(parts, file_size, mime_type, metadata)
        except BaseException as e:
            self._fail(e)
            raise

        self._transition(SessionState.SUCCEEDED)
        self.outcome = UploadOutcome(storage_key=self.target.storage_key, asset_id=asset_id)
        if self.journal:
            self.journal.mark_succeeded(self.attempt_id, asset_id)
        logger.info(f"Uploaded {file_path.name} as asset {asset_id} ({self.target.storage_key})")
        return self.outcome

    def _validate_file(self, file_path: Path) -> int:
        if not file_path.is_file():
            raise InvalidInputError(f"{file_path} is not a file")
        try:
            file_size = file_path.stat().st_size
            with open(file_path, 'rb'):
                pass
        except OSError as e:
            raise InvalidInputError(f"Cannot read {file_path}: {e}") from e
        if file_size == 0:
            raise InvalidInputError(f"{file_path} is empty")
        return file_size

    def _check_local_policy(self, file_size: int, target: UploadTarget) -> None:
        chunk_size = (target.chunk_size_bytes if isinstance(target, MultipartTarget)
                      else self.config.single_part_threshold_bytes)
        try:
            local = plan(file_size, self.config.single_part_threshold_bytes, chunk_size)
        except InvalidInputError:
            return
        if isinstance(local, MultipartPlan) != isinstance(target, MultipartTarget):
            logger.warning(
                f"Backend issued {type(target).__name__} for {file_size} bytes but the "
                f"local threshold is {self.config.single_part_threshold_bytes}; following the backend"
            )

    def _upload(self, file_path: Path, file_size: int, mime_type: str,
                on_progress: Optional[ProgressCallback]) -> List[PartResult]:
        target = self.target
        try:
            if isinstance(target, SinglePartTarget):
                self._upload_single(target, file_path, file_size, mime_type, on_progress)
                return []
            return self._upload_parts(target, file_path, file_size, on_progress)
        except KeyboardInterrupt as e:
            self.cancel()
            if isinstance(target, MultipartTarget):
                self._abort(target)
            raise UploadCancelledError("Upload interrupted") from e

    def _upload_single(self, target: SinglePartTarget, file_path: Path, file_size: int,
                       mime_type: str, on_progress: Optional[ProgressCallback]) -> None:
        progress = ProgressState.single(file_size, on_progress)
        try:
            self.transport.put_bytes(
                target.url,
                FileSlice(file_path, 0, file_size),
                mime_type,
                on_progress=lambda sent: progress.report(1, sent),
                require_etag=False,
                cancel_event=self._cancel_event,
            )
        except OSError as e:
            raise InvalidInputError(f"Cannot read {file_path}: {e}") from e

    def _upload_parts(self, target: MultipartTarget, file_path: Path, file_size: int,
                      on_progress: Optional[ProgressCallback]) -> List[PartResult]:
        try:
            jobs = jobs_for_target(file_size, target)
            progress = ProgressState(file_size, [job.size for job in jobs], on_progress)
            logger.info(f"Uploading {file_path.name} in {len(jobs)} parts, "
                        f"{self.scheduler.concurrency_limit} at a time")
            parts = self.scheduler.run_all(file_path, jobs, progress,
                                           cancel_event=self._cancel_event)
        except Exception:
            self._abort(target)
            raise

        if self.journal:
            self.journal.record_parts(self.attempt_id, parts)
        return parts

    def _abort(self, target: MultipartTarget) -> None:
        """Best-effort abort of the multipart upload. Never raises."""
        if not self._claim_finalization():
            logger.debug(f"Multipart upload {target.upload_id} already finalized, not aborting")
            return
        try:
            self.backend.abort_multipart(target.storage_key, target.upload_id)
            logger.info(f"Aborted multipart upload {target.upload_id}")
        except Exception as e:
            abort_error = AbortError(f"Error aborting multipart upload {target.upload_id}: {e}")
            logger.error(str(abort_error))

    def _complete(self, parts: List[PartResult], file_size: int, mime_type: str,
                  metadata: Optional[Dict[str, Any]]) -> str:
        target = self.target
        upload_id = target.upload_id if isinstance(target, MultipartTarget) else None

        if isinstance(target, MultipartTarget):
            if not self._claim_finalization():
                raise InvalidStateError(f"Multipart upload {upload_id} was already finalized")
            try:
                self.backend.complete_multipart(target.storage_key, upload_id, parts)
            except UploadError as e:
                raise CompletionError(f"Failed to complete multipart upload: {e}",
                                      storage_key=target.storage_key,
                                      upload_id=upload_id) from e
            if self.journal:
                self.journal.mark_parts_completed(self.attempt_id)

        try:
            return self.backend.confirm_upload(target.storage_key, file_size, mime_type, metadata)
        except UploadError as e:
            raise CompletionError(f"Failed to confirm upload: {e}",
                                  storage_key=target.storage_key,
                                  upload_id=upload_id) from e

    def _fail(self, error: BaseException) -> None:
        with self._state_lock:
            already_terminal = self.state in (SessionState.SUCCEEDED, SessionState.FAILED)
        if not already_terminal:
            self._transition(SessionState.FAILED)
        storage_key = self.target.storage_key if self.target else None
        self.outcome = UploadOutcome(storage_key=storage_key, error=error)
        if self.journal and self.journal.get_attempt(self.attempt_id):
            self.journal.mark_failed(self.attempt_id, error)
        logger.error(f"Upload attempt {self.attempt_id} failed "
                     f"({getattr(error, 'kind', type(error).__name__)}): {error}")


class AssetUploader:
    """Entry point for callers: uploads files and follows up on them."""

    def __init__(self, config: Optional[UploaderConfig] = None,
                 backend: Optional[BackendClient] = None,
                 transport: Optional[PresignedTransport] = None,
                 journal: Optional[UploadJournal] = None):
        self.config = config or UploaderConfig()
        self.backend = backend or BackendClient(
            self.config.api_base_url,
            resource=self.config.resource,
            access_token=self.config.access_token,
            timeout=self.config.api_timeout,
        )
        self.transport = transport or PresignedTransport(timeout=self.config.part_timeout)
        self.journal = journal

    def new_session(self) -> UploadSession:
        return UploadSession(self.backend, self.transport, self.config, self.journal)

    def upload(self, file_path: Union[str, Path], metadata: Optional[Dict[str, Any]] = None,
               on_progress: Optional[ProgressCallback] = None,
               mime_type: Optional[str] = None) -> str:
        """Upload a file in a fresh session and return the asset id."""
        outcome = self.new_session().run(file_path, metadata, on_progress, mime_type)
        return outcome.asset_id

    def resume_completion(self, attempt_id: str) -> str:
        """Finish an attempt that failed after all its bytes were stored.

        Submits the recorded parts to complete-multipart unless that already
        succeeded, then confirms the upload. Nothing is uploaded again.

        Args:
            attempt_id: Journal id of an attempt that failed with a completion error

        Returns:
            The asset id assigned by the platform
        """
        if not self.journal:
            raise InvalidStateError("Resuming completion needs an upload journal")
        record = self.journal.get_attempt(attempt_id)
        if record is None:
            raise InvalidStateError(f"Unknown upload attempt {attempt_id}")
        if record.error_kind != CompletionError.kind or not record.storage_key:
            raise InvalidStateError(
                f"Attempt {attempt_id} did not fail during completion (state: {record.state})"
            )

        try:
            if record.upload_id and not record.parts_completed:
                parts = [PartResult(part_number=p["PartNumber"], etag=p["ETag"])
                         for p in record.parts]
                self.backend.complete_multipart(record.storage_key, record.upload_id, parts)
                self.journal.mark_parts_completed(attempt_id)
            asset_id = self.backend.confirm_upload(record.storage_key, record.file_size,
                                                   record.mime_type, record.metadata)
        except UploadError as e:
            error = CompletionError(f"Completion retry failed: {e}",
                                    storage_key=record.storage_key,
                                    upload_id=record.upload_id)
            self.journal.mark_failed(attempt_id, error)
            raise error from e

        self.journal.mark_succeeded(attempt_id, asset_id)
        logger.info(f"Completed attempt {attempt_id} as asset {asset_id}")
        return asset_id

    def wait_until_ready(self, asset_id: str) -> AssetStatus:
        return wait_until_ready(self.backend, asset_id,
                                poll_interval=self.config.status_poll_interval,
                                timeout=self.config.status_timeout)
