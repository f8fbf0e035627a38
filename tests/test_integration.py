"""
Integration tests for the asset uploader against a mocked S3 bucket.
"""
import os

import pytest

from asset_uploader.config import UploaderConfig
from asset_uploader.coordinator import AssetUploader
from asset_uploader.errors import CompletionError, TransportError
from asset_uploader.transport import PresignedTransport

MiB = 1024 * 1024


@pytest.fixture
def uploader(s3_backend, presigned_transport, upload_journal):
    config = UploaderConfig(single_part_threshold_bytes=8 * MiB, concurrency_limit=3,
                            log_dir=None, state_file=None)
    return AssetUploader(config, backend=s3_backend, transport=presigned_transport,
                         journal=upload_journal)


def test_end_to_end_single_part(uploader, s3_backend, mock_aws, make_file):
    """Test that a small file lands in the bucket with its content type."""
    content = os.urandom(256 * 1024)
    path = make_file("clip.mp4", len(content), content=content)
    seen = []

    session = uploader.new_session()
    outcome = session.run(path, {"title": "Clip"}, on_progress=seen.append)

    assert outcome.success
    obj = mock_aws.get_object(Bucket="test-bucket", Key=outcome.storage_key)
    assert obj["Body"].read() == content
    assert obj["ContentType"] == "video/mp4"
    assert s3_backend.completed == []
    assert s3_backend.confirmed == [{"storage_key": outcome.storage_key,
                                     "metadata": {"title": "Clip"}}]
    assert seen[-1] == 100


def test_end_to_end_multipart(uploader, s3_backend, mock_aws, make_file, upload_journal):
    """Test that a multipart upload assembles the parts in order."""
    content = os.urandom(12 * MiB)
    path = make_file("lecture.mp4", len(content), content=content)
    seen = []

    session = uploader.new_session()
    outcome = session.run(path, on_progress=seen.append)

    assert outcome.success
    obj = mock_aws.get_object(Bucket="test-bucket", Key=outcome.storage_key)
    assert obj["Body"].read() == content

    assert len(s3_backend.completed) == 1
    assert [p["PartNumber"] for p in s3_backend.completed[0]["parts"]] == [1, 2, 3]
    assert s3_backend.aborted == []
    assert seen == sorted(seen)
    assert seen[-1] == 100

    record = upload_journal.get_attempt(session.attempt_id)
    assert record.state == "succeeded"
    assert record.asset_id == outcome.asset_id


def test_part_failure_leaves_no_multipart_upload(uploader, s3_backend, mock_aws, make_file):
    """Test that a failed part aborts the multipart upload in the bucket."""
    path = make_file("lecture.mp4", 12 * MiB)

    class FlakyTransport(PresignedTransport):
        def put_bytes(self, url, body, content_type, **kwargs):
            if "partNumber=2" in url:
                raise TransportError("connection reset", status_code=None)
            return super().put_bytes(url, body, content_type, **kwargs)

    uploader.transport = FlakyTransport(timeout=(5, 30))

    with pytest.raises(TransportError) as excinfo:
        uploader.upload(path)

    assert excinfo.value.part_number == 2
    assert len(s3_backend.aborted) == 1
    assert s3_backend.completed == []
    assert "Uploads" not in mock_aws.list_multipart_uploads(Bucket="test-bucket")
    assert mock_aws.list_objects_v2(Bucket="test-bucket").get("KeyCount", 0) == 0


def test_completion_retry_after_confirm_failure(uploader, s3_backend, mock_aws, make_file,
                                                upload_journal):
    """Test that a stored upload is confirmed later without uploading again."""
    path = make_file("lecture.mp4", 12 * MiB)
    confirm = s3_backend.confirm_upload
    calls = []

    def flaky_confirm(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise CompletionError("platform unavailable", storage_key=args[0])
        return confirm(*args, **kwargs)

    s3_backend.confirm_upload = flaky_confirm

    session = uploader.new_session()
    with pytest.raises(CompletionError) as excinfo:
        session.run(path)

    storage_key = excinfo.value.storage_key
    assert mock_aws.head_object(Bucket="test-bucket", Key=storage_key)["ContentLength"] == 12 * MiB

    asset_id = uploader.resume_completion(session.attempt_id)

    assert asset_id == "asset-1"
    assert len(s3_backend.completed) == 1
    assert upload_journal.get_attempt(session.attempt_id).state == "succeeded"
