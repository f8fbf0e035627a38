from .backend import BackendClient
from .config import UploaderConfig, load_config
from .coordinator import AssetUploader, UploadSession
from .errors import (
    CompletionError,
    InvalidInputError,
    MissingETagError,
    NegotiationError,
    TransportError,
    UploadCancelledError,
    UploadError,
)
from .models import MultipartTarget, SinglePartTarget, UploadOutcome
from .planner import plan
from .tracker import UploadJournal

__version__ = "0.1.0"

__all__ = [
    "AssetUploader",
    "UploadSession",
    "BackendClient",
    "UploaderConfig",
    "load_config",
    "UploadJournal",
    "UploadOutcome",
    "SinglePartTarget",
    "MultipartTarget",
    "plan",
    "UploadError",
    "InvalidInputError",
    "NegotiationError",
    "TransportError",
    "MissingETagError",
    "UploadCancelledError",
    "CompletionError",
]
