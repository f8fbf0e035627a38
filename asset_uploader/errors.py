"""
Error types raised by the asset uploader.

Every error carries a machine-readable ``kind`` so callers can branch on the
failure without matching exception classes.
"""
from typing import Optional


class UploadError(Exception):
    """Base class for all upload failures."""
    kind = "upload"


class BackendError(UploadError):
    """A call to the platform API failed or returned an unsuccessful envelope."""
    kind = "backend"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidInputError(UploadError):
    """The file is empty, missing or unreadable. Raised before any network call."""
    kind = "invalid_input"


class NegotiationError(UploadError):
    """The backend refused to issue an upload target or returned a malformed one."""
    kind = "negotiation"


class TransportError(UploadError):
    """A PUT against a presigned URL failed."""
    kind = "transport"

    def __init__(self, message: str, status_code: Optional[int] = None,
                 part_number: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.part_number = part_number


class MissingETagError(TransportError):
    """A part PUT succeeded but the object store sent no ETag header."""
    kind = "missing_etag"


class UploadCancelledError(UploadError):
    """The caller cancelled the upload while parts were in flight."""
    kind = "cancelled"


class CompletionError(UploadError):
    """Completing or confirming an upload failed after every byte was stored.

    The storage key and multipart upload id are kept so completion can be
    retried without re-uploading.
    """
    kind = "completion"

    def __init__(self, message: str, storage_key: str,
                 upload_id: Optional[str] = None):
        super().__init__(message)
        self.storage_key = storage_key
        self.upload_id = upload_id


class AbortError(UploadError):
    """Aborting a multipart upload failed. Logged, never raised to callers."""
    kind = "abort"


class InvalidStateError(UploadError):
    kind = "invalid_state"


class ProcessingFailedError(UploadError):
    """The platform reported that processing of an uploaded asset failed."""
    kind = "processing_failed"

    def __init__(self, asset_id: str, reason: Optional[str] = None):
        super().__init__(f"Processing failed for asset {asset_id}: {reason or 'unknown error'}")
        self.asset_id = asset_id
        self.reason = reason


class ProcessingTimeoutError(UploadError):
    kind = "processing_timeout"

    def __init__(self, asset_id: str, last_status: Optional[str] = None):
        super().__init__(
            f"Asset {asset_id} not ready in time (last status: {last_status})"
        )
        self.asset_id = asset_id
        self.last_status = last_status
