"""
Module for running multipart part uploads on a bounded worker pool.
"""
import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, List, Optional

from .errors import InvalidInputError, TransportError, UploadCancelledError
from .models import PartJob, PartResult, ProgressState
from .transport import OCTET_STREAM, FileSlice, PresignedTransport

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5


class PartScheduler:
    """Uploads part jobs concurrently and fails fast on the first error."""

    def __init__(self, transport: PresignedTransport,
                 concurrency_limit: int = DEFAULT_CONCURRENCY):
        """Initialize the scheduler.

        Args:
            transport: Transport used for every part PUT
            concurrency_limit: Maximum number of parts in flight at once
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be at least 1, got {concurrency_limit}")
        self.transport = transport
        self.concurrency_limit = concurrency_limit

    def _upload_part(self, file_path: Path, job: PartJob, progress: ProgressState,
                     stop: threading.Event,
                     cancel_event: Optional[threading.Event]) -> PartResult:
        if stop.is_set() or (cancel_event is not None and cancel_event.is_set()):
            raise UploadCancelledError(f"Part {job.part_number} skipped after cancellation")

        logger.debug(f"Uploading part {job.part_number} bytes {job.start}-{job.end - 1}")
        try:
            etag = self.transport.put_bytes(
                job.target_url,
                FileSlice(file_path, job.start, job.end),
                OCTET_STREAM,
                on_progress=lambda sent: progress.report(job.part_number, sent),
                require_etag=True,
                cancel_event=cancel_event,
            )
        except TransportError as e:
            if e.part_number is None:
                e.part_number = job.part_number
            raise
        except OSError as e:
            raise InvalidInputError(f"Part {job.part_number} could not be read: {e}") from e

        logger.debug(f"Part {job.part_number} done, ETag {etag}")
        return PartResult(part_number=job.part_number, etag=etag)

    def run_all(self, file_path: Path, jobs: List[PartJob], progress: ProgressState,
                cancel_event: Optional[threading.Event] = None) -> List[PartResult]:
        """Upload every job and return the results sorted by part number.

        Args:
            file_path: File the job byte ranges refer to
            jobs: Planned parts, each consumed exactly once
            progress: Shared progress state for the whole file
            cancel_event: Set by the caller to cancel; interrupts parts that
                are still streaming as well as queued ones

        Returns:
            One PartResult per job, ascending by part number

        Raises:
            UploadError: The first part failure; later failures and any
                results still arriving are discarded
        """
        stop = threading.Event()
        results: Dict[int, PartResult] = {}
        first_error: Optional[BaseException] = None

        executor = ThreadPoolExecutor(max_workers=self.concurrency_limit,
                                      thread_name_prefix="part-upload")
        try:
            pending = {
                executor.submit(self._upload_part, file_path, job, progress, stop,
                                cancel_event): job
                for job in jobs
            }
            while pending:
                done, _ = wait(pending, return_when=FIRST_EXCEPTION)
                for future in done:
                    job = pending.pop(future)
                    if future.cancelled():
                        continue
                    error = future.exception()
                    if error is None:
                        if first_error is None:
                            results[job.part_number] = future.result()
                    elif first_error is None:
                        first_error = error
                        logger.error(f"Part {job.part_number} failed, cancelling remaining parts: {error}")
                        stop.set()
                        for other in pending:
                            other.cancel()
                    else:
                        logger.debug(f"Discarding later failure of part {job.part_number}: {error}")
        except KeyboardInterrupt:
            stop.set()
            if cancel_event is not None:
                cancel_event.set()
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        if first_error is not None:
            raise first_error

        if cancel_event is not None and cancel_event.is_set():
            raise UploadCancelledError("Upload cancelled")

        return [results[number] for number in sorted(results)]
