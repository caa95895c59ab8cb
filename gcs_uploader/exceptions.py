"""Exception classes for the upload workflow."""


class UploadError(Exception):
    """Base error for the upload workflow.

    Attributes:
        status_code: HTTP status returned by the store, when one was observed.
    """

    def __init__(self, message: str, status_code: int | None = None):
        """Initialize UploadError.

        Args:
            message: Human readable description of the failure.
            status_code: Remote status code that caused the failure, if any.
        """
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(UploadError, ValueError):
    """Raised when upload options are invalid or contradictory."""


class PreconditionFailed(UploadError):
    """Raised when the store rejects a generation/metageneration match."""


class NotModified(UploadError):
    """Raised when a no-match precondition hits and the store does nothing."""


class TransientUploadFailure(UploadError):
    """Raised when network or server errors outlast the retry ceiling."""


class IntegrityError(UploadError):
    """Raised when the finalized object does not match the bytes sent."""


class Cancelled(UploadError):
    """Raised when the caller cancels an upload between chunks."""


class UploadRejected(UploadError):
    """Raised for non-retryable remote statuses outside the other kinds."""


class TransportError(Exception):
    """Network-level failure reported by a transport.

    Sessions convert this into a resume attempt or a
    ``TransientUploadFailure``; it never reaches callers of the client.
    """
