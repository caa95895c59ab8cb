"""Constants for the resumable uploader."""

import os

API_URL = os.getenv("GCS_UPLOADER_API_URL", "https://storage.googleapis.com")
UPLOAD_PATH = "/upload/storage/v1/b/{bucket}/o"

# The resumable protocol only accepts non-final chunks sized in 256 KiB units
MINIMUM_CHUNK_SIZE = 256 * 1024
DEFAULT_CHUNK_SIZE = 32 * MINIMUM_CHUNK_SIZE  # (8MiB)
DEFAULT_CONTENT_TYPE = "application/octet-stream"

MAX_RETRIES = 5
BACKOFF_BASE_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 300
REQUEST_TIMEOUT_SECONDS = 300
STATUS_TIMEOUT_SECONDS = 30

FINAL_SUCCESS_CODES = {200, 201}
RESUME_INCOMPLETE_CODE = 308
NOT_MODIFIED_CODE = 304
PRECONDITION_FAILED_CODE = 412
SESSION_GONE_CODES = {404, 410}
RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

LOG_URI_MAX_CHARS = 80
