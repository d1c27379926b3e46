"""Error hierarchy for object uploads.

Caller mistakes (bad configuration, unknown upload IDs) are raised.
Failures that happen while talking to the storage service are captured
in ``UploadResult.error`` so the caller can decide whether to resume.
"""

from typing import Optional


class UploadError(Exception):
    """Base class for all upload errors."""

    pass


class ConfigurationError(UploadError):
    """Raised for invalid part sizes, missing fields or bad config sources."""

    pass


class SessionCreationError(UploadError):
    """Raised when the service does not hand out an upload ID.

    Not retryable: no session exists that could be resumed.
    """

    pass


class PartUploadError(UploadError):
    """A single part could not be uploaded."""

    def __init__(
        self,
        message: str,
        part_number: Optional[int] = None,
        attempts: int = 0,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.part_number = part_number
        self.attempts = attempts
        self.cause = cause


class ChecksumMismatchError(PartUploadError):
    """The service rejected a part's declared digest."""

    pass


class CommitError(UploadError):
    """The service refused to assemble the uploaded parts."""

    pass


class ResumeNotFoundError(UploadError):
    """The upload ID is unknown to the manager or to the service."""

    def __init__(self, upload_id: str, message: Optional[str] = None):
        super().__init__(message or f"Multipart upload not found: {upload_id}")
        self.upload_id = upload_id


class ObjectUploadError(UploadError):
    """The single-request upload path failed."""

    pass
