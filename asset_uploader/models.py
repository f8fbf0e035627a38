"""
Module containing data models for the asset uploader.
"""
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

ProgressCallback = Callable[[int], None]


@dataclass(frozen=True)
class SinglePartTarget:
    """A presigned URL that accepts the whole file in one PUT."""
    url: str
    storage_key: str


@dataclass(frozen=True)
class MultipartTarget:
    """A multipart upload opened by the backend, one presigned URL per part."""
    upload_id: str
    storage_key: str
    part_urls: Tuple[str, ...]
    chunk_size_bytes: int
    total_parts: int


UploadTarget = Union[SinglePartTarget, MultipartTarget]


@dataclass(frozen=True)
class SinglePartPlan:
    file_size: int


@dataclass(frozen=True)
class MultipartPlan:
    total_parts: int
    chunk_size: int
    ranges: Tuple[Tuple[int, int], ...]  # (start, end) pairs, end exclusive


PlanDecision = Union[SinglePartPlan, MultipartPlan]


@dataclass(frozen=True)
class PartJob:
    """One contiguous byte range of the file bound to its presigned URL."""
    part_number: int
    start: int
    end: int
    target_url: str

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class PartResult:
    part_number: int
    etag: str

    def to_payload(self) -> Dict[str, Any]:
        return {"ETag": self.etag, "PartNumber": self.part_number}


class SessionState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class UploadOutcome:
    """Terminal value of one upload attempt."""
    storage_key: Optional[str]
    asset_id: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.asset_id is not None


class ProgressState:
    """Bytes sent per part for one upload attempt.

    Updates come from worker threads. The aggregate is recomputed and the
    caller callback invoked while holding the lock, so percentages reach the
    callback in order and never decrease.
    """

    def __init__(self, total_bytes: int, part_sizes: List[int],
                 callback: Optional[ProgressCallback] = None):
        self.total_bytes = total_bytes
        self._part_sizes = list(part_sizes)
        self._sent = [0] * len(part_sizes)
        self._callback = callback
        self._last_percent = -1
        self._lock = threading.Lock()

    @classmethod
    def single(cls, total_bytes: int,
               callback: Optional[ProgressCallback] = None) -> "ProgressState":
        return cls(total_bytes, [total_bytes], callback)

    def report(self, part_number: int, bytes_sent: int) -> int:
        """Record the bytes sent so far for a part and return the aggregate percent.

        Args:
            part_number: 1-based part number (1 for single-part uploads)
            bytes_sent: Cumulative bytes sent for this part

        Returns:
            Whole-file percentage in the range 0..100, rounded down so 100
            means every byte was sent
        """
        index = part_number - 1
        with self._lock:
            capped = min(max(bytes_sent, 0), self._part_sizes[index])
            if capped > self._sent[index]:
                self._sent[index] = capped
            percent = self._percent()
            if percent > self._last_percent:
                self._last_percent = percent
                if self._callback:
                    self._callback(percent)
            return self._last_percent

    def _percent(self) -> int:
        if self.total_bytes <= 0:
            return 100
        return sum(self._sent) * 100 // self.total_bytes

    @property
    def bytes_sent(self) -> int:
        with self._lock:
            return sum(self._sent)

    @property
    def percent(self) -> int:
        with self._lock:
            return max(self._last_percent, 0)


@dataclass
class AssetStatus:
    """Processing status of an uploaded asset as reported by the platform."""
    asset_id: str
    processing_status: str
    processing_error: Optional[str] = None
    is_ready: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.is_ready or self.processing_status in {"ready", "failed"}


@dataclass
class AttemptRecord:
    """Journal entry for one upload attempt."""
    attempt_id: str
    file_path: str
    mime_type: str
    file_size: int
    state: str = SessionState.IDLE.value
    storage_key: Optional[str] = None
    upload_id: Optional[str] = None
    parts: List[Dict[str, Any]] = field(default_factory=list)
    parts_completed: bool = False
    asset_id: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
