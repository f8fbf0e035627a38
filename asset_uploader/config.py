"""
Configuration for the asset uploader.
"""
import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Tuple

from .backend import DEFAULT_RESOURCE
from .planner import DEFAULT_SINGLE_PART_THRESHOLD
from .scheduler import DEFAULT_CONCURRENCY

logger = logging.getLogger(__name__)


@dataclass
class UploaderConfig:
    """Settings shared by the CLI and programmatic callers."""
    api_base_url: str = "http://localhost:5000/api/v1"
    resource: str = DEFAULT_RESOURCE
    access_token: Optional[str] = None
    concurrency_limit: int = DEFAULT_CONCURRENCY
    single_part_threshold_bytes: int = DEFAULT_SINGLE_PART_THRESHOLD
    connect_timeout: float = 10.0
    read_timeout: float = 300.0
    api_timeout: float = 30.0
    default_mime_type: str = "video/mp4"
    log_dir: Optional[str] = "logs"
    state_file: Optional[str] = "upload_state.json"
    status_poll_interval: float = 5.0
    status_timeout: float = 1800.0

    @property
    def part_timeout(self) -> Tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)

    @property
    def log_path(self) -> Optional[Path]:
        return Path(self.log_dir) if self.log_dir else None

    @property
    def state_path(self) -> Optional[Path]:
        return Path(self.state_file) if self.state_file else None


def load_config(config_file: Optional[Path] = None) -> UploaderConfig:
    """Load configuration from a JSON file.

    Unknown keys are ignored. A missing or unreadable file yields the defaults.

    Args:
        config_file: Path to config file

    Returns:
        UploaderConfig with values from the file applied
    """
    if not config_file:
        return UploaderConfig()

    try:
        with open(config_file) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Error loading config file: {e}")
        return UploaderConfig()

    known = {f.name for f in fields(UploaderConfig)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
    return UploaderConfig(**{k: v for k, v in data.items() if k in known})
