"""
Command-line interface for the asset uploader.
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .config import UploaderConfig, load_config
from .coordinator import AssetUploader
from .errors import UploadError
from .tracker import UploadJournal

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application.

    Args:
        verbose: Whether to enable debug logging
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def parse_fields(values: Optional[List[str]]) -> Dict[str, str]:
    """Turn repeated ``key=value`` arguments into a dict."""
    fields = {}
    for value in values or []:
        key, sep, val = value.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {value!r}")
        fields[key] = val
    return fields


def build_config(args: argparse.Namespace) -> UploaderConfig:
    """Load the config file and apply command line overrides.

    Args:
        args: Command line arguments

    Returns:
        The effective UploaderConfig
    """
    config = load_config(args.config)
    if getattr(args, 'api_url', None):
        config.api_base_url = args.api_url
    if getattr(args, 'resource', None):
        config.resource = args.resource
    if getattr(args, 'token', None):
        config.access_token = args.token
    if getattr(args, 'concurrency', None):
        config.concurrency_limit = args.concurrency
    return config


def create_uploader(args: argparse.Namespace) -> AssetUploader:
    config = build_config(args)
    journal = UploadJournal(log_dir=config.log_path, state_file=config.state_path)
    return AssetUploader(config=config, journal=journal)


def _print_progress(percent: int) -> None:
    sys.stderr.write(f"\rUploading... {percent:3d}%")
    if percent >= 100:
        sys.stderr.write("\n")
    sys.stderr.flush()


def handle_upload(args: argparse.Namespace) -> None:
    """Handle the upload command.

    Args:
        args: Command line arguments
    """
    uploader = create_uploader(args)

    metadata = parse_fields(args.field)
    if args.title:
        metadata['title'] = args.title
    if args.description:
        metadata['description'] = args.description

    outcome = uploader.new_session().run(Path(args.file), metadata,
                                         on_progress=_print_progress,
                                         mime_type=args.mime_type)

    print(outcome.asset_id)
    if args.wait:
        status = uploader.wait_until_ready(outcome.asset_id)
        logger.info(f"Asset {outcome.asset_id} processing status: {status.processing_status}")


def handle_status(args: argparse.Namespace) -> None:
    uploader = create_uploader(args)
    if args.wait:
        status = uploader.wait_until_ready(args.asset_id)
    else:
        status = uploader.backend.get_status(args.asset_id)
    print(f"{status.asset_id}: {status.processing_status}"
          + (f" ({status.processing_error})" if status.processing_error else ""))


def handle_complete(args: argparse.Namespace) -> None:
    """Handle the complete command: retry completion of a stored upload."""
    uploader = create_uploader(args)
    print(uploader.resume_completion(args.attempt_id))


def handle_list(args: argparse.Namespace) -> None:
    """Handle the list command.

    Args:
        args: Command line arguments
    """
    uploader = create_uploader(args)
    attempts = uploader.journal.list_attempts()
    if args.pending:
        attempts = uploader.journal.pending_completions()

    if not attempts:
        print("No upload attempts found")
        return

    for record in attempts:
        print(f"\nAttempt ID: {record.attempt_id}")
        print(f"File: {record.file_path} ({record.file_size} bytes)")
        print(f"State: {record.state}")
        if record.storage_key:
            print(f"Storage key: {record.storage_key}")
        if record.upload_id:
            print(f"Multipart upload: {record.upload_id} ({len(record.parts)} parts)")
        if record.asset_id:
            print(f"Asset ID: {record.asset_id}")
        if record.error_kind:
            print(f"Error ({record.error_kind}): {record.error}")


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Upload video assets through presigned URLs")
    parser.add_argument('-v', '--verbose', action='store_true',
                        help="Enable verbose logging")
    parser.add_argument('-c', '--config', type=Path,
                        help="Path to config file")
    parser.add_argument('--api-url', type=str,
                        help="Platform API base URL")
    parser.add_argument('--resource', type=str,
                        help="Resource path, e.g. admin/recordings or admin/videos")
    parser.add_argument('--token', type=str,
                        help="Bearer token for the platform API")

    subparsers = parser.add_subparsers(dest='command', required=True)

    # Upload command
    upload_parser = subparsers.add_parser('upload',
                                          help="Upload a file and confirm it")
    upload_parser.add_argument('file', type=str,
                               help="File to upload")
    upload_parser.add_argument('-t', '--title', type=str,
                               help="Asset title")
    upload_parser.add_argument('-d', '--description', type=str,
                               help="Asset description")
    upload_parser.add_argument('-f', '--field', action='append', metavar='KEY=VALUE',
                               help="Extra metadata field, repeatable")
    upload_parser.add_argument('-m', '--mime-type', type=str,
                               help="MIME type, guessed from the file name by default")
    upload_parser.add_argument('-j', '--concurrency', type=int,
                               help="Parts uploaded at once")
    upload_parser.add_argument('-w', '--wait', action='store_true',
                               help="Wait for processing to finish")

    # Status command
    status_parser = subparsers.add_parser('status',
                                          help="Show processing status of an asset")
    status_parser.add_argument('asset_id', type=str,
                               help="Asset ID")
    status_parser.add_argument('-w', '--wait', action='store_true',
                               help="Poll until the asset is ready or failed")

    # Complete command
    complete_parser = subparsers.add_parser('complete',
                                            help="Retry completion of a stored upload")
    complete_parser.add_argument('attempt_id', type=str,
                                 help="Attempt ID from the list command")

    # List command
    list_parser = subparsers.add_parser('list',
                                        help="List recorded upload attempts")
    list_parser.add_argument('-p', '--pending', action='store_true',
                             help="Only attempts waiting for completion")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    handlers = {
        'upload': handle_upload,
        'status': handle_status,
        'complete': handle_complete,
        'list': handle_list,
    }

    try:
        handlers[args.command](args)
    except KeyboardInterrupt:
        sys.exit(130)
    except (UploadError, ValueError) as e:
        logger.error(f"Error ({getattr(e, 'kind', 'invalid_argument')}): {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
