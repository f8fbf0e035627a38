"""
Module for waiting on server-side processing of an uploaded asset.
"""
import logging

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

from .backend import BackendClient
from .errors import ProcessingFailedError, ProcessingTimeoutError
from .models import AssetStatus

logger = logging.getLogger(__name__)


def _still_processing(status: AssetStatus) -> bool:
    return not status.is_terminal


def wait_until_ready(backend: BackendClient, asset_id: str,
                     poll_interval: float = 5.0, timeout: float = 600.0) -> AssetStatus:
    """Poll the asset status until it is ready or has failed.

    Only the read-only status endpoint is polled. Backend errors raised by a
    poll are not retried.

    Args:
        backend: Client for the platform API
        asset_id: Asset returned by the upload
        poll_interval: Seconds between polls
        timeout: Seconds to keep polling before giving up

    Returns:
        The final AssetStatus of a ready asset

    Raises:
        ProcessingFailedError: If the platform reports processing failed
        ProcessingTimeoutError: If the asset is still processing after timeout
    """
    retrying = Retrying(
        retry=retry_if_result(_still_processing),
        stop=stop_after_delay(timeout),
        wait=wait_fixed(poll_interval),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
    )

    try:
        status = retrying(backend.get_status, asset_id)
    except RetryError as e:
        last = e.last_attempt.result()
        raise ProcessingTimeoutError(asset_id, last.processing_status) from e

    if status.processing_status == "failed":
        raise ProcessingFailedError(asset_id, status.processing_error)

    logger.info(f"Asset {asset_id} is ready")
    return status
