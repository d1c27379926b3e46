"""Data models for object uploads."""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from objtransfer.sources import ContentSource

MiB = 1024 * 1024

# Defaults mirror the OCI transfer helpers
DEFAULT_FILE_PART_SIZE = 128 * MiB
DEFAULT_STREAM_PART_SIZE = 10 * MiB

# S3 minimum part size (all parts but the last)
DEFAULT_MIN_PART_SIZE = 5 * MiB

DEFAULT_MAX_WORKERS = 5

# Service limit on parts per multipart upload
MAX_PARTS = 10000


class PartStatus(Enum):
    """Upload status of a single part."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"


class SessionStatus(Enum):
    """Status of a multipart upload session."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ABORTED = "aborted"
    RESUMABLE_FAILED = "resumable_failed"


class UploadStatus(Enum):
    """Final status of an upload call."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ProviderConfig:
    """Connection settings for an S3-compatible object storage provider."""

    key: str
    provider_name: str
    endpoint_url: str
    aws_access_key_id: str
    aws_secret_access_key: str
    region_name: str
    namespace: Optional[str] = None
    compartment_id: Optional[str] = None
    addressing_style: str = "path"
    presigned_parts: bool = False
    enabled: bool = True


@dataclass(frozen=True)
class RetryPolicy:
    """Per-request retry allowance.

    ``delays[i]`` is slept after the (i + 1)-th failed attempt; the last
    delay is reused when there are more attempts than delays.
    """

    max_attempts: int = 3
    delays: tuple[float, ...] = (1.0, 2.0, 4.0)


@dataclass
class TransferConfig:
    """Defaults applied by the upload manager."""

    part_size: int = DEFAULT_FILE_PART_SIZE
    stream_part_size: int = DEFAULT_STREAM_PART_SIZE
    min_part_size: int = DEFAULT_MIN_PART_SIZE
    max_workers: int = DEFAULT_MAX_WORKERS
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass
class PartResult:
    """Progress callback payload, one per part outcome."""

    part_number: int
    total_parts: Optional[int]
    size: int
    checksum: Optional[str] = None
    etag: Optional[str] = None
    error: Optional[Exception] = None
    attempts: int = 0
    upload_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


ProgressCallback = Callable[[PartResult], None]


@dataclass(frozen=True)
class UploadRequest:
    """An immutable description of what to upload and where."""

    namespace: str
    bucket: str
    object_name: str
    source: "ContentSource"
    content_length: Optional[int] = None
    part_size: Optional[int] = None
    metadata: Optional[dict[str, str]] = None
    allow_multipart: bool = True
    allow_parallel: bool = True
    verify_checksum: bool = False
    callback: Optional[ProgressCallback] = None


@dataclass
class UploadedPart:
    """A part as acknowledged by the storage service."""

    part_number: int
    etag: str
    size: Optional[int] = None


@dataclass
class UploadPart:
    """A contiguous byte range of the object and its upload state."""

    part_number: int
    offset: int
    size: int
    checksum: Optional[str] = None
    etag: Optional[str] = None
    status: PartStatus = PartStatus.PENDING
    attempts: int = 0
    error: Optional[Exception] = None


class MultipartUploadSession:
    """A server-tracked multipart upload and the local view of its parts.

    Part state is mutated by upload workers; every mutation goes through
    the methods below, which hold ``lock``.
    """

    def __init__(
        self,
        upload_id: str,
        request: UploadRequest,
        part_size: int,
        parts: Optional[list[UploadPart]] = None,
    ):
        self._upload_id = upload_id
        self.request = request
        self.part_size = part_size
        self.parts: list[UploadPart] = parts or []
        self.status = SessionStatus.ACTIVE
        self.total_parts: Optional[int] = len(self.parts) or None
        self.lock = threading.Lock()

    @property
    def upload_id(self) -> str:
        return self._upload_id

    @property
    def namespace(self) -> str:
        return self.request.namespace

    @property
    def bucket(self) -> str:
        return self.request.bucket

    @property
    def object_name(self) -> str:
        return self.request.object_name

    def add_part(self, part: UploadPart) -> None:
        with self.lock:
            self.parts.append(part)

    def get_part(self, part_number: int) -> UploadPart:
        return self.parts[part_number - 1]

    def mark_in_flight(self, part_number: int) -> None:
        with self.lock:
            part = self.get_part(part_number)
            part.status = PartStatus.IN_FLIGHT
            part.error = None

    def mark_done(self, part_number: int, etag: str, checksum: Optional[str] = None, attempts: int = 0) -> None:
        with self.lock:
            part = self.get_part(part_number)
            part.status = PartStatus.DONE
            part.etag = etag
            part.error = None
            if checksum is not None:
                part.checksum = checksum
            part.attempts += attempts

    def mark_failed(self, part_number: int, error: Exception, attempts: int = 0) -> None:
        with self.lock:
            part = self.get_part(part_number)
            part.status = PartStatus.FAILED
            part.error = error
            part.attempts += attempts

    def completed_parts(self) -> list[UploadPart]:
        """Parts marked done, in ascending part-number order."""
        with self.lock:
            done = [p for p in self.parts if p.status == PartStatus.DONE]
        return sorted(done, key=lambda p: p.part_number)

    def pending_parts(self) -> list[UploadPart]:
        with self.lock:
            return [p for p in self.parts if p.status != PartStatus.DONE]

    def commit_list(self) -> list[tuple[int, str]]:
        """(part_number, etag) pairs for the commit request."""
        return [(p.part_number, p.etag) for p in self.completed_parts()]

    def __repr__(self) -> str:
        return (
            f"MultipartUploadSession(upload_id={self._upload_id!r}, "
            f"object={self.object_name!r}, status={self.status.value}, "
            f"parts={len(self.completed_parts())}/{len(self.parts)})"
        )


@dataclass
class UploadResult:
    """Outcome of an upload or resume call."""

    status: UploadStatus
    object_name: str
    session: Optional[MultipartUploadSession] = None
    error: Optional[Exception] = None
    etag: Optional[str] = None
    is_multipart: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == UploadStatus.SUCCEEDED

    @property
    def upload_id(self) -> Optional[str]:
        return self.session.upload_id if self.session else None

    @property
    def is_resumable(self) -> bool:
        if self.session is None or self.succeeded:
            return False
        return self.session.status not in (SessionStatus.COMPLETED, SessionStatus.ABORTED)

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error
