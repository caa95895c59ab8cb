from .client import UploadClient
from .config import UploaderConfig, resolve_config
from .const import DEFAULT_CHUNK_SIZE, MINIMUM_CHUNK_SIZE
from .exceptions import (
    Cancelled,
    ConfigurationError,
    IntegrityError,
    NotModified,
    PreconditionFailed,
    TransientUploadFailure,
    UploadError,
    UploadRejected,
)
from .models import ObjectDestination, UploadResult
from .options import PredefinedAcl, UploadOptions
from .progress_reporter import TqdmProgressObserver, UploadProgress, UploadStatus

__version__ = "0.3.0"

__all__ = [
    "UploadClient",
    "UploaderConfig",
    "resolve_config",
    "DEFAULT_CHUNK_SIZE",
    "MINIMUM_CHUNK_SIZE",
    "UploadError",
    "ConfigurationError",
    "PreconditionFailed",
    "NotModified",
    "TransientUploadFailure",
    "IntegrityError",
    "Cancelled",
    "UploadRejected",
    "ObjectDestination",
    "UploadResult",
    "PredefinedAcl",
    "UploadOptions",
    "TqdmProgressObserver",
    "UploadProgress",
    "UploadStatus",
]
