"""
Client for the platform API that issues upload targets and records assets.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from .errors import BackendError, NegotiationError
from .models import AssetStatus, MultipartTarget, PartResult, SinglePartTarget, UploadTarget

logger = logging.getLogger(__name__)

DEFAULT_RESOURCE = "admin/recordings"


def _first(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def parse_target(data: Dict[str, Any]) -> UploadTarget:
    """Build an UploadTarget from an upload-url response payload.

    Args:
        data: The ``data`` member of the response envelope

    Returns:
        MultipartTarget when an upload id is present, SinglePartTarget otherwise

    Raises:
        NegotiationError: If required fields are missing or malformed
    """
    storage_key = _first(data, "storageKey", "s3Key")
    if not storage_key:
        raise NegotiationError("Upload target has no storage key")

    upload_id = data.get("uploadId")
    if upload_id is None:
        url = data.get("uploadUrl")
        if not url:
            raise NegotiationError("Single-part upload target has no uploadUrl")
        return SinglePartTarget(url=url, storage_key=storage_key)

    part_urls = data.get("partUrls")
    chunk_size = _first(data, "chunkSizeBytes", "chunkSize")
    total_parts = _first(data, "totalParts")
    if not part_urls or not isinstance(part_urls, list):
        raise NegotiationError(f"Multipart target {upload_id} has no part URLs")
    if total_parts is None:
        total_parts = len(part_urls)
    try:
        chunk_size = int(chunk_size)
        total_parts = int(total_parts)
    except (TypeError, ValueError) as e:
        raise NegotiationError(f"Multipart target {upload_id} has invalid sizes: {e}") from e

    return MultipartTarget(
        upload_id=upload_id,
        storage_key=storage_key,
        part_urls=tuple(part_urls),
        chunk_size_bytes=chunk_size,
        total_parts=total_parts,
    )


class BackendClient:
    """Calls the upload endpoints of one platform resource (recordings, videos...)."""

    def __init__(self, base_url: str, resource: str = DEFAULT_RESOURCE,
                 access_token: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 timeout: float = 30.0):
        """Initialize the backend client.

        Args:
            base_url: API root, e.g. https://api.example.com/api/v1
            resource: Resource path the upload endpoints live under
            access_token: Bearer token sent with every request
            session: Optional requests session to reuse
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.resource = resource.strip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if access_token:
            self.session.headers["Authorization"] = f"Bearer {access_token}"

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{self.resource}/{path.lstrip('/')}"

    def _request(self, method: str, path: str,
                 payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and unwrap the ``{success, message, data}`` envelope."""
        url = self._url(path)
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise BackendError(f"{method} {url} failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.ok:
            message = body.get("message") if isinstance(body, dict) else None
            raise BackendError(
                f"{method} {url} returned HTTP {response.status_code}: "
                f"{message or response.reason}",
                status_code=response.status_code,
            )
        if not isinstance(body, dict) or body.get("success") is False:
            message = body.get("message") if isinstance(body, dict) else None
            raise BackendError(f"{method} {url} was rejected: {message or 'no message'}",
                               status_code=response.status_code)

        data = body.get("data")
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise BackendError(f"{method} {url} returned a non-object data member: {type(data).__name__}",
                               status_code=response.status_code)
        return data

    def initiate_upload(self, mime_type: str, file_size: int) -> UploadTarget:
        """Ask for an upload target. The backend picks single-part or multipart."""
        try:
            data = self._request("POST", "upload-url", {
                "mimeType": mime_type,
                "fileSizeBytes": file_size,
            })
        except BackendError as e:
            raise NegotiationError(f"Failed to get upload URL: {e}") from e
        target = parse_target(data)
        logger.debug(f"Backend issued {type(target).__name__} for {target.storage_key}")
        return target

    def complete_multipart(self, storage_key: str, upload_id: str,
                           parts: List[PartResult]) -> None:
        """Ask the backend to assemble the uploaded parts, listed in part order."""
        ordered = sorted(parts, key=lambda p: p.part_number)
        self._request("POST", "upload-url/multipart/complete", {
            "storageKey": storage_key,
            "uploadId": upload_id,
            "parts": [p.to_payload() for p in ordered],
        })

    def abort_multipart(self, storage_key: str, upload_id: str) -> None:
        self._request("POST", "upload-url/multipart/abort", {
            "storageKey": storage_key,
            "uploadId": upload_id,
        })

    def confirm_upload(self, storage_key: str, file_size: int, mime_type: str,
                       metadata: Optional[Dict[str, Any]] = None) -> str:
        """Register the stored object and return the new asset id.

        Args:
            storage_key: Object key returned with the upload target
            file_size: Size of the uploaded file in bytes
            mime_type: MIME type of the uploaded file
            metadata: Caller fields (title, description, session_id...)

        Returns:
            The asset id assigned by the platform
        """
        payload = {k: v for k, v in (metadata or {}).items() if v is not None}
        payload.update({
            "storageKey": storage_key,
            "fileSizeBytes": file_size,
            "mimeType": mime_type,
        })
        data = self._request("POST", "confirm-upload", payload)

        asset_id = _first(data, "assetId", "id", "_id")
        if asset_id is None:
            asset_id = next((v for k, v in data.items() if k.endswith("_id") and v), None)
        if asset_id is None:
            raise BackendError(f"confirm-upload for {storage_key} returned no asset id")
        return str(asset_id)

    def get_status(self, asset_id: str) -> AssetStatus:
        data = self._request("GET", f"{asset_id}/status")
        return AssetStatus(
            asset_id=asset_id,
            processing_status=data.get("processing_status", "unknown"),
            processing_error=data.get("processing_error"),
            is_ready=bool(data.get("is_ready", False)),
        )
