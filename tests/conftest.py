"""
Test fixtures for the asset uploader.
"""
import json
import threading
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import List
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws as moto_mock_aws

from asset_uploader.backend import BackendClient
from asset_uploader.config import UploaderConfig
from asset_uploader.models import (
    AttemptRecord,
    MultipartTarget,
    PartResult,
    SessionState,
    SinglePartTarget,
)
from asset_uploader.tracker import UploadJournal
from asset_uploader.transport import PresignedTransport

MiB = 1024 * 1024


@pytest.fixture
def tmp_upload_dir(tmp_path):
    """Create a temporary directory for test files."""
    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir()
    return upload_dir


@pytest.fixture
def tmp_log_dir(tmp_path):
    """Create a temporary directory for logs."""
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    return log_dir


@pytest.fixture
def tmp_state_file(tmp_path):
    """Create a temporary state file path."""
    return tmp_path / "upload_state.json"


@pytest.fixture
def make_file(tmp_upload_dir):
    """Factory for test files of a given size.

    Sizes above 1 MiB are created sparse so large files cost no disk space.
    """
    def _make(name: str, size: int, content: bytes = None) -> Path:
        path = tmp_upload_dir / name
        if content is not None:
            path.write_bytes(content)
        elif size > MiB:
            with open(path, "wb") as f:
                f.truncate(size)
        else:
            path.write_bytes(bytes(i % 251 for i in range(size)))
        return path
    return _make


@pytest.fixture
def upload_journal(tmp_log_dir, tmp_state_file):
    """Create a test upload journal."""
    return UploadJournal(log_dir=tmp_log_dir, state_file=tmp_state_file)


@pytest.fixture
def attempt_record(tmp_upload_dir):
    """Create a test attempt record."""
    return AttemptRecord(
        attempt_id=f"test-{uuid.uuid4().hex[:8]}",
        file_path=str(tmp_upload_dir / "lecture.mp4"),
        mime_type="video/mp4",
        file_size=12 * MiB,
        metadata={"title": "Lecture 1"},
    )


@pytest.fixture
def prepopulated_state_file(tmp_state_file, attempt_record):
    """Create a state file with an attempt that failed during completion."""
    attempt_record.state = SessionState.FAILED.value
    attempt_record.storage_key = "recordings/lecture.mp4"
    attempt_record.upload_id = "mpu-123"
    attempt_record.parts = [{"ETag": '"e1"', "PartNumber": 1},
                            {"ETag": '"e2"', "PartNumber": 2}]
    attempt_record.error_kind = "completion"
    attempt_record.error = "Failed to complete multipart upload"

    with open(tmp_state_file, 'w') as f:
        json.dump({'attempts': [asdict(attempt_record)]}, f)

    return attempt_record


@pytest.fixture
def config():
    return UploaderConfig(api_base_url="https://api.test/api/v1", log_dir=None, state_file=None)


@pytest.fixture
def mock_backend():
    """Backend double that records every call."""
    backend = MagicMock(spec=BackendClient)
    backend.confirm_upload.return_value = "asset-123"
    return backend


def multipart_target(file_size: int, chunk_size: int, upload_id: str = "mpu-1",
                     storage_key: str = "recordings/test.mp4") -> MultipartTarget:
    total_parts = -(-file_size // chunk_size)
    return MultipartTarget(
        upload_id=upload_id,
        storage_key=storage_key,
        part_urls=tuple(f"https://bucket.test/{storage_key}?partNumber={n}"
                        for n in range(1, total_parts + 1)),
        chunk_size_bytes=chunk_size,
        total_parts=total_parts,
    )


@pytest.fixture
def make_target():
    """Factory for multipart targets with fake part URLs."""
    return multipart_target


class RecordingTransport:
    """Transport double: reports progress in steps and returns a per-part ETag.

    ``failures`` maps a URL substring to the exception raised for it.
    """

    def __init__(self, delay: float = 0.0, steps: int = 4, failures=None):
        self.delay = delay
        self.steps = steps
        self.failures = failures or {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def put_bytes(self, url, body, content_type, on_progress=None,
                  require_etag=True, cancel_event=None):
        with self._lock:
            self.calls.append((url, len(body), content_type))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            length = len(body)
            for step in range(1, self.steps + 1):
                if self.delay:
                    threading.Event().wait(self.delay / self.steps)
                if on_progress:
                    on_progress(length * step // self.steps)
            for marker, error in self.failures.items():
                if marker in url:
                    raise error
            return f'"etag-{uuid.uuid5(uuid.NAMESPACE_URL, url).hex[:8]}"'
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def mock_aws(aws_credentials):
    """Mock S3 client using moto."""
    with moto_mock_aws():
        s3 = boto3.client('s3', region_name='us-east-1')
        # Create test bucket
        s3.create_bucket(Bucket='test-bucket')
        yield s3


class S3Backend:
    """Stand-in for the platform API that mints presigned URLs against moto S3."""

    def __init__(self, s3, bucket: str = "test-bucket",
                 single_part_threshold: int = 8 * MiB, chunk_size: int = 5 * MiB):
        self.s3 = s3
        self.bucket = bucket
        self.single_part_threshold = single_part_threshold
        self.chunk_size = chunk_size
        self.completed: List[dict] = []
        self.aborted: List[str] = []
        self.confirmed: List[dict] = []

    def initiate_upload(self, mime_type, file_size):
        key = f"recordings/{uuid.uuid4().hex}"
        if file_size <= self.single_part_threshold:
            url = self.s3.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": mime_type},
                ExpiresIn=3600,
            )
            return SinglePartTarget(url=url, storage_key=key)

        upload_id = self.s3.create_multipart_upload(
            Bucket=self.bucket, Key=key, ContentType=mime_type)["UploadId"]
        total_parts = -(-file_size // self.chunk_size)
        part_urls = tuple(
            self.s3.generate_presigned_url(
                "upload_part",
                Params={"Bucket": self.bucket, "Key": key,
                        "UploadId": upload_id, "PartNumber": number},
                ExpiresIn=3600,
            )
            for number in range(1, total_parts + 1)
        )
        return MultipartTarget(upload_id=upload_id, storage_key=key, part_urls=part_urls,
                               chunk_size_bytes=self.chunk_size, total_parts=total_parts)

    def complete_multipart(self, storage_key, upload_id, parts: List[PartResult]):
        payload = [p.to_payload() for p in sorted(parts, key=lambda p: p.part_number)]
        self.completed.append({"storage_key": storage_key, "parts": payload})
        self.s3.complete_multipart_upload(
            Bucket=self.bucket, Key=storage_key, UploadId=upload_id,
            MultipartUpload={"Parts": payload},
        )

    def abort_multipart(self, storage_key, upload_id):
        self.aborted.append(upload_id)
        self.s3.abort_multipart_upload(Bucket=self.bucket, Key=storage_key, UploadId=upload_id)

    def confirm_upload(self, storage_key, file_size, mime_type, metadata=None):
        head = self.s3.head_object(Bucket=self.bucket, Key=storage_key)
        assert head["ContentLength"] == file_size
        self.confirmed.append({"storage_key": storage_key, "metadata": metadata})
        return f"asset-{len(self.confirmed)}"


@pytest.fixture
def s3_backend(mock_aws):
    return S3Backend(mock_aws)


@pytest.fixture
def presigned_transport():
    return PresignedTransport(timeout=(5, 30))
