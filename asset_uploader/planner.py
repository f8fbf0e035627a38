"""
Module for splitting a file into multipart upload parts.
"""
import logging
import math
from typing import List, Tuple

from .errors import InvalidInputError, NegotiationError
from .models import MultipartPlan, MultipartTarget, PartJob, PlanDecision, SinglePartPlan

logger = logging.getLogger(__name__)

DEFAULT_SINGLE_PART_THRESHOLD = 100 * 1024 * 1024


def _ranges(file_size: int, chunk_size: int) -> Tuple[Tuple[int, int], ...]:
    total_parts = math.ceil(file_size / chunk_size)
    return tuple(
        (index * chunk_size, min((index + 1) * chunk_size, file_size))
        for index in range(total_parts)
    )


def plan(file_size: int, single_part_threshold: int = DEFAULT_SINGLE_PART_THRESHOLD,
         chunk_size: int = DEFAULT_SINGLE_PART_THRESHOLD) -> PlanDecision:
    """Decide between a single PUT and a multipart upload.

    Args:
        file_size: Size of the file in bytes
        single_part_threshold: Largest size uploaded with a single PUT
        chunk_size: Part size in bytes for multipart uploads

    Returns:
        SinglePartPlan or MultipartPlan covering [0, file_size)

    Raises:
        InvalidInputError: If the file is empty or the chunk size is not positive
    """
    if file_size <= 0:
        raise InvalidInputError("Refusing to plan an upload for an empty file")
    if file_size <= single_part_threshold:
        return SinglePartPlan(file_size=file_size)
    if chunk_size <= 0:
        raise InvalidInputError(f"Chunk size must be positive, got {chunk_size}")

    ranges = _ranges(file_size, chunk_size)
    return MultipartPlan(total_parts=len(ranges), chunk_size=chunk_size, ranges=ranges)


def jobs_for_target(file_size: int, target: MultipartTarget) -> List[PartJob]:
    """Build the part jobs for a multipart target issued by the backend.

    The backend's chunk size and part count are authoritative; they are
    checked against the file size, never recomputed.
    """
    if file_size <= 0:
        raise InvalidInputError("Refusing to plan an upload for an empty file")
    if target.chunk_size_bytes <= 0:
        raise NegotiationError(f"Backend issued invalid chunk size {target.chunk_size_bytes}")

    ranges = _ranges(file_size, target.chunk_size_bytes)
    if len(ranges) != target.total_parts:
        raise NegotiationError(
            f"Backend issued {target.total_parts} parts but {file_size} bytes "
            f"in {target.chunk_size_bytes} byte chunks needs {len(ranges)}"
        )
    if len(target.part_urls) != target.total_parts:
        raise NegotiationError(
            f"Backend issued {len(target.part_urls)} part URLs for {target.total_parts} parts"
        )

    jobs = [
        PartJob(part_number=index + 1, start=start, end=end, target_url=url)
        for index, ((start, end), url) in enumerate(zip(ranges, target.part_urls))
    ]
    logger.debug(f"Planned {len(jobs)} parts of {target.chunk_size_bytes} bytes "
                 f"for {target.storage_key}")
    return jobs
