"""
Module for PUT requests against presigned object storage URLs.
"""
import io
import logging
import threading
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Tuple, Union

import requests

from .errors import MissingETagError, TransportError, UploadCancelledError

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
DEFAULT_TIMEOUT = (10.0, 300.0)
BLOCK_SIZE = 64 * 1024


class FileSlice:
    """Read-only window onto bytes [start, end) of a file on disk."""

    def __init__(self, path: Path, start: int, end: int):
        self.path = Path(path)
        self.start = start
        self.end = end

    def __len__(self) -> int:
        return self.end - self.start

    def open(self) -> BinaryIO:
        f = open(self.path, "rb")
        f.seek(self.start)
        return f


class ProgressReader:
    """File-like body that reports cumulative bytes read to a callback.

    Exposes ``__len__`` so requests sends a Content-Length instead of
    falling back to chunked transfer encoding, which presigned PUTs reject.
    """

    def __init__(self, source: BinaryIO, length: int,
                 on_progress: Optional[Callable[[int], None]] = None,
                 cancel_event: Optional[threading.Event] = None):
        self._source = source
        self._length = length
        self._on_progress = on_progress
        self._cancel_event = cancel_event
        self.bytes_read = 0

    def __len__(self) -> int:
        return self._length

    def read(self, size: int = -1) -> bytes:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise UploadCancelledError("Upload cancelled while sending")

        remaining = self._length - self.bytes_read
        if remaining <= 0:
            return b""
        if size is None or size < 0 or size > remaining:
            size = remaining

        data = self._source.read(size)
        if data:
            self.bytes_read += len(data)
            if self._on_progress:
                self._on_progress(min(self.bytes_read, self._length))
        return data


class PresignedTransport:
    """Sends bytes to presigned URLs with a shared requests session."""

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: Tuple[float, float] = DEFAULT_TIMEOUT):
        """Initialize the transport.

        Args:
            session: Session used for the PUTs. Must not carry auth headers,
                presigned URLs are authorized by their query string.
            timeout: (connect, read) timeout in seconds applied to every PUT
        """
        self.session = session or requests.Session()
        self.timeout = timeout

    def put_bytes(self, url: str, body: Union[bytes, FileSlice], content_type: str,
                  on_progress: Optional[Callable[[int], None]] = None,
                  require_etag: bool = True,
                  cancel_event: Optional[threading.Event] = None) -> Optional[str]:
        """Upload a body with a single PUT.

        Args:
            url: Presigned URL
            body: Raw bytes or a FileSlice streamed from disk
            content_type: Value for the Content-Type header
            on_progress: Called with the cumulative bytes sent
            require_etag: Treat a missing ETag response header as an error
            cancel_event: Stops the body stream when set

        Returns:
            The ETag response header, or None when absent and not required

        Raises:
            TransportError: On network failure, timeout or a non-2xx status
            MissingETagError: On a 2xx response without an ETag when required
            UploadCancelledError: If cancel_event was set while sending
        """
        length = len(body)
        if isinstance(body, FileSlice):
            source = body.open()
        else:
            source = io.BytesIO(body)

        headers = {"Content-Type": content_type, "Content-Length": str(length)}
        reader = ProgressReader(source, length, on_progress, cancel_event)

        try:
            response = self.session.put(url, data=reader, headers=headers,
                                        timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"PUT failed: {e}") from e
        finally:
            source.close()

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"PUT returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        etag = response.headers.get("ETag")
        if not etag and require_etag:
            raise MissingETagError(
                f"Object store returned HTTP {response.status_code} without an ETag",
                status_code=response.status_code,
            )

        if on_progress and reader.bytes_read < length:
            on_progress(length)
        logger.debug(f"PUT {length} bytes, ETag {etag}")
        return etag
