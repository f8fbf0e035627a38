"""
Module for journaling upload attempts to disk.
"""
import json
import logging
import threading
from dataclasses import asdict, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import AttemptRecord, MultipartTarget, PartResult, SessionState, UploadTarget

logger = logging.getLogger(__name__)


class UploadJournal:
    """Tracks and persists upload attempts.

    A completion failure leaves every byte in object storage; the journal
    keeps the storage key, multipart upload id and ETags so completion can be
    retried later without uploading again.
    """

    def __init__(self, log_dir: Optional[Path] = None, state_file: Optional[Path] = None):
        """Initialize the upload journal.

        Args:
            log_dir: Directory to store per-attempt log files. If None, logs to memory only.
            state_file: Path to the state persistence JSON file.
        """
        self.log_dir = log_dir
        if log_dir:
            log_dir.mkdir(parents=True, exist_ok=True)

        self.state_file = state_file or (log_dir / "upload_state.json" if log_dir else None)
        self._attempts: Dict[str, AttemptRecord] = {}
        self._lock = threading.Lock()

        self._load_state()

    def _load_state(self) -> None:
        """Load attempt records from the state file."""
        if not self.state_file or not self.state_file.exists():
            return

        known = {f.name for f in fields(AttemptRecord)}
        try:
            with open(self.state_file, 'r') as f:
                data = json.load(f)

            for record_dict in data.get('attempts', []):
                record = AttemptRecord(**{k: v for k, v in record_dict.items() if k in known})
                self._attempts[record.attempt_id] = record

            logger.info(f"Loaded {len(self._attempts)} upload attempts from {self.state_file}")
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Error loading state file: {e}")

    def _save_state(self) -> None:
        """Save current attempt records to the state file. Caller holds the lock."""
        if not self.state_file:
            return

        try:
            data = {'attempts': [asdict(r) for r in self._attempts.values()]}
            with open(self.state_file, 'w') as f:
                json.dump(data, f, indent=2)

            logger.debug(f"Saved {len(self._attempts)} upload attempts to {self.state_file}")
        except (OSError, TypeError) as e:
            logger.error(f"Error saving state file: {e}")

    def _update(self, attempt_id: str, **changes: Any) -> Optional[AttemptRecord]:
        with self._lock:
            record = self._attempts.get(attempt_id)
            if record is None:
                logger.warning(f"Unknown upload attempt {attempt_id}")
                return None
            for key, value in changes.items():
                setattr(record, key, value)
            self._save_state()
            return record

    def get_attempt(self, attempt_id: str) -> Optional[AttemptRecord]:
        with self._lock:
            return self._attempts.get(attempt_id)

    def list_attempts(self) -> List[AttemptRecord]:
        with self._lock:
            return list(self._attempts.values())

    def register_attempt(self, record: AttemptRecord) -> None:
        """Register a new attempt and write its request log.

        Args:
            record: Freshly created AttemptRecord
        """
        with self._lock:
            self._attempts[record.attempt_id] = record
            self._save_state()

        self._write_log(record.attempt_id, {
            "event": "started",
            "file_path": record.file_path,
            "mime_type": record.mime_type,
            "file_size": record.file_size,
            "metadata": record.metadata,
        })
        logger.info(f"Starting upload attempt {record.attempt_id} for {record.file_path}")

    def record_state(self, attempt_id: str, state: SessionState) -> None:
        self._update(attempt_id, state=state.value)

    def record_target(self, attempt_id: str, target: UploadTarget) -> None:
        upload_id = target.upload_id if isinstance(target, MultipartTarget) else None
        self._update(attempt_id, storage_key=target.storage_key, upload_id=upload_id)

    def record_parts(self, attempt_id: str, parts: List[PartResult]) -> None:
        self._update(attempt_id, parts=[p.to_payload() for p in parts])

    def mark_parts_completed(self, attempt_id: str) -> None:
        self._update(attempt_id, parts_completed=True)

    def mark_succeeded(self, attempt_id: str, asset_id: str) -> None:
        record = self._update(attempt_id, state=SessionState.SUCCEEDED.value,
                              asset_id=asset_id, error_kind=None, error=None)
        if record:
            self._write_log(attempt_id, {"event": "succeeded", "asset_id": asset_id,
                                         "storage_key": record.storage_key})

    def mark_failed(self, attempt_id: str, error: BaseException) -> None:
        kind = getattr(error, "kind", type(error).__name__)
        record = self._update(attempt_id, state=SessionState.FAILED.value,
                              error_kind=kind, error=str(error))
        if record:
            self._write_log(attempt_id, {"event": "failed", "error_kind": kind,
                                         "error": str(error),
                                         "storage_key": record.storage_key,
                                         "upload_id": record.upload_id})

    def pending_completions(self) -> List[AttemptRecord]:
        """Attempts whose bytes are stored but whose completion failed."""
        with self._lock:
            return [r for r in self._attempts.values() if r.error_kind == "completion"]

    def _get_log_path(self, attempt_id: str) -> Optional[Path]:
        """Get the path for a new log file of a specific attempt.

        Args:
            attempt_id: Unique identifier for the attempt

        Returns:
            Path to the log file, or None if logging to memory
        """
        if not self.log_dir:
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        return self.log_dir / f"upload_{attempt_id}_{timestamp}.json"

    def _write_log(self, attempt_id: str, event: Dict[str, Any]) -> None:
        log_data = {"timestamp": datetime.now().isoformat(), "attempt_id": attempt_id, **event}
        if log_path := self._get_log_path(attempt_id):
            try:
                with open(log_path, 'w') as f:
                    json.dump(log_data, f, indent=2)
            except OSError as e:
                logger.error(f"Error writing upload log {log_path}: {e}")
