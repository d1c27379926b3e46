"""Upload coordination for single-request and multipart uploads.

``UploadManager`` decides how a payload is sent:

- Small payloads (or ``allow_multipart=False``) go up in one put_object call.
- Larger payloads become a multipart session: the content is split into
  parts, parts are uploaded in order or over a bounded thread pool, and the
  session is committed with the parts listed in ascending order.
- A session that fails part way keeps its upload ID and can be resumed;
  resuming skips every part the service already acknowledged.
"""

import dataclasses
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Optional, Union

from objtransfer.checksum import content_md5, etag_matches
from objtransfer.errors import (
    ChecksumMismatchError,
    CommitError,
    ConfigurationError,
    ObjectUploadError,
    PartUploadError,
    ResumeNotFoundError,
    SessionCreationError,
)
from objtransfer.models import (
    MAX_PARTS,
    MultipartUploadSession,
    PartResult,
    PartStatus,
    SessionStatus,
    TransferConfig,
    UploadedPart,
    UploadPart,
    UploadRequest,
    UploadResult,
    UploadStatus,
)
from objtransfer.retry import RetryExhausted, retry_with_backoff
from objtransfer.sources import ContentSource, FileSource, StreamSource, as_source, count_parts, plan_parts
from objtransfer.storage import StorageClient

logger = logging.getLogger(__name__)

SessionRef = Union[str, MultipartUploadSession]


def _is_set(event: Optional[threading.Event]) -> bool:
    return event is not None and event.is_set()


class UploadManager:
    """Uploads objects through a StorageClient.

    Multipart sessions are tracked in ``sessions`` (keyed by upload ID) so
    a failed upload can be resumed with just its ID. Every multipart
    UploadResult also carries its session.
    """

    def __init__(self, client: StorageClient, config: Optional[TransferConfig] = None):
        self.client = client
        self.config = config or TransferConfig()
        self.sessions: dict[str, MultipartUploadSession] = {}
        self._sessions_lock = threading.Lock()

    # Public API

    def upload_file(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        file_path: str,
        cancel_event: Optional[threading.Event] = None,
        **options,
    ) -> UploadResult:
        """Upload a file from disk; parts can be read and sent in parallel."""
        source = FileSource(file_path)
        request = UploadRequest(
            namespace=namespace,
            bucket=bucket,
            object_name=object_name,
            source=source,
            content_length=source.size,
            **options,
        )
        return self.upload(request, cancel_event=cancel_event)

    def upload_stream(
        self,
        namespace: str,
        bucket: str,
        object_name: str,
        stream,
        content_length: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        **options,
    ) -> UploadResult:
        """Upload from a single-pass reader; parts are always sent in order."""
        if isinstance(stream, ContentSource):
            source = stream
        else:
            source = StreamSource(stream, content_length=content_length)
        request = UploadRequest(
            namespace=namespace,
            bucket=bucket,
            object_name=object_name,
            source=source,
            content_length=content_length,
            **options,
        )
        return self.upload(request, cancel_event=cancel_event)

    def upload(
        self,
        request: UploadRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> UploadResult:
        """Upload ``request`` as a single object or as a multipart session.

        Raises:
            ConfigurationError: If the request or transfer config is invalid.
        """
        part_size = self._validate(request)
        length = request.content_length
        if length is None:
            length = request.source.size

        if not request.allow_multipart or (length is not None and length <= part_size):
            body = b"".join(request.source.iter_chunks(part_size))
            return self._upload_single(request, body)

        try:
            if request.source.supports_ranges:
                session = self._start_session(request, part_size, plan_parts(length, part_size))
                self._upload_parts(session, session.pending_parts(), cancel_event)
                return self._finish(session)

            chunks = request.source.iter_chunks(part_size)
            first = next(chunks, b"")
            second = next(chunks, None) if len(first) == part_size else None
            if second is None:
                logger.debug("Stream for %s fits in one part", request.object_name)
                return self._upload_single(request, first)

            total = count_parts(length, part_size) if length is not None else None
            session = self._start_session(request, part_size, [], total_parts=total)
            interrupted = self._upload_stream_parts(session, self._prepend(first, second, chunks), cancel_event)
            return self._finish(session, interrupted=interrupted)
        except SessionCreationError as e:
            logger.error("%s", e)
            return UploadResult(
                status=UploadStatus.FAILED,
                object_name=request.object_name,
                error=e,
                is_multipart=True,
            )

    def resume_upload(
        self,
        upload: SessionRef,
        source=None,
        cancel_event: Optional[threading.Event] = None,
    ) -> UploadResult:
        """Continue a multipart upload, uploading only unacknowledged parts.

        Args:
            upload: Upload ID (looked up in ``sessions``) or session record.
            source: Fresh content for sessions whose source cannot be re-read
                    (streams); must start at the beginning of the content.
            cancel_event: Stops scheduling of new parts when set.

        Raises:
            ResumeNotFoundError: If the upload ID is unknown to the manager
                                 or to the service.
            ConfigurationError: If a stream session is resumed without a
                                fresh source.
        """
        session = self._lookup(upload)
        if session.status in (SessionStatus.COMPLETED, SessionStatus.ABORTED):
            raise ResumeNotFoundError(
                session.upload_id,
                f"Multipart upload {session.upload_id} is already {session.status.value}",
            )

        if source is not None:
            session.request = dataclasses.replace(
                session.request,
                source=as_source(source, content_length=session.request.content_length),
            )
        request = session.request
        if not request.source.supports_ranges and source is None:
            raise ConfigurationError(
                f"Upload {session.upload_id} reads from a stream; pass a fresh source to resume it"
            )

        try:
            uploaded = self.client.list_uploaded_parts(
                session.namespace, session.bucket, session.object_name, session.upload_id
            )
        except ResumeNotFoundError:
            self._forget(session)
            raise
        except Exception as e:
            logger.error("Could not list parts of upload %s: %s", session.upload_id, e)
            return UploadResult(
                status=UploadStatus.FAILED,
                object_name=session.object_name,
                session=session,
                error=e,
                is_multipart=True,
            )
        acknowledged = {part.part_number: part for part in uploaded}
        logger.info(
            "Resuming multipart upload %s: %d parts already acknowledged",
            session.upload_id, len(acknowledged),
        )
        session.status = SessionStatus.ACTIVE
        if not session.parts and acknowledged:
            # Rebuilt record: the service knows the real part size
            session.part_size = self._listed_part_size(acknowledged, session.part_size)

        if request.source.supports_ranges:
            plan = plan_parts(request.source.size, session.part_size)
            with session.lock:
                session.parts = [
                    self._resumed_part(number, offset, size, acknowledged)
                    for number, offset, size in plan
                ]
                session.total_parts = len(plan)
            self._upload_parts(session, session.pending_parts(), cancel_event)
            return self._finish(session)

        with session.lock:
            session.parts = []
        interrupted = self._upload_stream_parts(
            session, request.source.iter_chunks(session.part_size), cancel_event, acknowledged
        )
        return self._finish(session, interrupted=interrupted)

    def abort_upload(self, upload: SessionRef) -> None:
        """Abort a multipart upload on the service and forget the session."""
        session = self._lookup(upload)
        try:
            self.client.abort_multipart_upload(
                session.namespace, session.bucket, session.object_name, session.upload_id
            )
        except ResumeNotFoundError:
            self._forget(session)
            raise
        session.status = SessionStatus.ABORTED
        self._forget(session)

    def get_session(self, upload_id: str) -> MultipartUploadSession:
        return self._lookup(upload_id)

    # Validation and session registry

    def _validate(self, request: UploadRequest) -> int:
        """Check the request and return the effective part size."""
        for field_name in ("namespace", "bucket", "object_name"):
            if not getattr(request, field_name):
                raise ConfigurationError(f"Missing required field: {field_name}")

        if self.config.max_workers < 1:
            raise ConfigurationError("max_workers must be at least 1")
        if self.config.retry.max_attempts < 1:
            raise ConfigurationError("retry max_attempts must be at least 1")

        part_size = request.part_size
        if part_size is None:
            if request.source.supports_ranges:
                part_size = self.config.part_size
            else:
                part_size = self.config.stream_part_size
        if request.allow_multipart and part_size < self.config.min_part_size:
            raise ConfigurationError(
                f"Part size {part_size} is below the minimum of {self.config.min_part_size} bytes"
            )

        length = request.content_length
        if length is None:
            length = request.source.size
        if length is not None and request.allow_multipart and count_parts(length, part_size) > MAX_PARTS:
            raise ConfigurationError(
                f"Part size {part_size} needs more than {MAX_PARTS} parts for {length} bytes"
            )
        return part_size

    def _lookup(self, upload: SessionRef) -> MultipartUploadSession:
        if isinstance(upload, MultipartUploadSession):
            if upload.status not in (SessionStatus.COMPLETED, SessionStatus.ABORTED):
                self._remember(upload)
            return upload
        with self._sessions_lock:
            session = self.sessions.get(upload)
        if session is None:
            raise ResumeNotFoundError(upload)
        return session

    def _remember(self, session: MultipartUploadSession) -> None:
        with self._sessions_lock:
            self.sessions[session.upload_id] = session

    def _forget(self, session: MultipartUploadSession) -> None:
        with self._sessions_lock:
            self.sessions.pop(session.upload_id, None)

    # Single-request path

    def _upload_single(self, request: UploadRequest, body: bytes) -> UploadResult:
        checksum = content_md5(body)
        logger.info("Uploading %s in a single request (%d bytes)", request.object_name, len(body))
        try:
            etag = retry_with_backoff(
                self.client.put_object,
                max_attempts=self.config.retry.max_attempts,
                delays=self.config.retry.delays,
                args=(request.namespace, request.bucket, request.object_name, body),
                kwargs={
                    "content_md5": checksum if request.verify_checksum else None,
                    "metadata": request.metadata,
                },
                description=f"put_object {request.object_name}",
            )
            if request.verify_checksum and not etag_matches(etag, checksum):
                raise ChecksumMismatchError(f"ETag {etag} does not match checksum of {request.object_name}")
        except ChecksumMismatchError as e:
            return UploadResult(status=UploadStatus.FAILED, object_name=request.object_name, error=e)
        except RetryExhausted as e:
            error = ObjectUploadError(f"Upload of {request.object_name} failed: {e.last_error}")
            error.__cause__ = e.last_error
            return UploadResult(status=UploadStatus.FAILED, object_name=request.object_name, error=error)
        except Exception as e:
            error = ObjectUploadError(f"Upload of {request.object_name} failed: {e}")
            error.__cause__ = e
            return UploadResult(status=UploadStatus.FAILED, object_name=request.object_name, error=error)

        return UploadResult(
            status=UploadStatus.SUCCEEDED,
            object_name=request.object_name,
            etag=etag,
        )

    # Multipart path

    def _start_session(
        self,
        request: UploadRequest,
        part_size: int,
        plan: list[tuple[int, int, int]],
        total_parts: Optional[int] = None,
    ) -> MultipartUploadSession:
        try:
            upload_id = self.client.create_multipart_upload(
                request.namespace, request.bucket, request.object_name, metadata=request.metadata
            )
        except Exception as e:
            raise SessionCreationError(
                f"Could not start multipart upload for {request.object_name}: {e}"
            ) from e

        parts = [UploadPart(part_number=n, offset=offset, size=size) for n, offset, size in plan]
        session = MultipartUploadSession(upload_id, request, part_size, parts)
        if total_parts is not None:
            session.total_parts = total_parts
        self._remember(session)
        logger.info(
            "Started multipart upload %s for %s/%s (%s parts of %d bytes)",
            upload_id, request.bucket, request.object_name,
            session.total_parts or "unknown number of", part_size,
        )
        return session

    @staticmethod
    def _prepend(first: bytes, second: bytes, rest: Iterable[bytes]) -> Iterable[bytes]:
        yield first
        yield second
        yield from rest

    @staticmethod
    def _resumed_part(
        part_number: int, offset: int, size: int, acknowledged: dict[int, UploadedPart]
    ) -> UploadPart:
        part = UploadPart(part_number=part_number, offset=offset, size=size)
        ack = acknowledged.get(part_number)
        if ack is not None and (ack.size is None or ack.size == size):
            part.status = PartStatus.DONE
            part.etag = ack.etag
        return part

    @staticmethod
    def _listed_part_size(acknowledged: dict[int, UploadedPart], default: int) -> int:
        first = acknowledged.get(1)
        if first is not None and first.size:
            return first.size
        sizes = [part.size for part in acknowledged.values() if part.size]
        return max(sizes) if sizes else default

    def _upload_parts(
        self,
        session: MultipartUploadSession,
        parts: list[UploadPart],
        cancel_event: Optional[threading.Event],
    ) -> None:
        """Upload range-readable parts, in parallel when allowed."""
        stop = threading.Event()
        parallel = (
            session.request.allow_parallel
            and session.request.source.supports_ranges
            and self.config.max_workers > 1
            and len(parts) > 1
        )

        if not parallel:
            for part in parts:
                if stop.is_set() or _is_set(cancel_event):
                    break
                self._range_task(session, part, stop, cancel_event)
            return

        with ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="upload-part"
        ) as executor:
            futures = [
                executor.submit(self._range_task, session, part, stop, cancel_event)
                for part in parts
            ]
            for future in as_completed(futures):
                future.result()

    def _range_task(
        self,
        session: MultipartUploadSession,
        part: UploadPart,
        stop: threading.Event,
        cancel_event: Optional[threading.Event],
    ) -> None:
        if stop.is_set() or _is_set(cancel_event):
            return
        source = session.request.source
        ok = False
        try:
            ok = self._process_part(
                session, part.part_number, lambda: source.read_range(part.offset, part.size)
            )
        finally:
            if not ok:
                stop.set()

    def _upload_stream_parts(
        self,
        session: MultipartUploadSession,
        chunks: Iterable[bytes],
        cancel_event: Optional[threading.Event],
        acknowledged: Optional[dict[int, UploadedPart]] = None,
    ) -> bool:
        """Upload chunks in order as they are read.

        Returns:
            True if cancellation stopped the upload before the stream ended.
        """
        acknowledged = acknowledged or {}
        offset = 0
        part_number = 0
        for chunk in chunks:
            if _is_set(cancel_event):
                return True
            part_number += 1
            part = self._resumed_part(part_number, offset, len(chunk), acknowledged)
            session.add_part(part)
            offset += len(chunk)
            if part.status == PartStatus.DONE:
                continue
            if not self._process_part(session, part_number, lambda data=chunk: data):
                return False

        with session.lock:
            session.total_parts = part_number
        return False

    def _process_part(
        self,
        session: MultipartUploadSession,
        part_number: int,
        read: Callable[[], bytes],
    ) -> bool:
        """Read, checksum and upload one part, then report it.

        Returns:
            True if the part is done.
        """
        request = session.request
        session.mark_in_flight(part_number)
        checksum = None
        attempts = 0

        def send(data: bytes) -> str:
            nonlocal attempts
            attempts += 1
            return self.client.upload_part(
                session.namespace,
                session.bucket,
                session.object_name,
                session.upload_id,
                part_number,
                data,
                content_md5=checksum if request.verify_checksum else None,
            )

        try:
            try:
                data = read()
            except Exception as e:
                raise PartUploadError(f"Could not read part {part_number}: {e}", part_number, 0, e) from e
            checksum = content_md5(data)
            etag = self._send_with_retry(send, data, part_number)
            if request.verify_checksum and not etag_matches(etag, checksum):
                raise ChecksumMismatchError(
                    f"ETag {etag} of part {part_number} does not match its checksum",
                    part_number=part_number,
                )
        except PartUploadError as e:
            e.part_number = part_number
            e.attempts = attempts
            session.mark_failed(part_number, e, attempts)
            logger.error("Part %d of upload %s failed: %s", part_number, session.upload_id, e)
            self._notify(session, PartResult(
                part_number=part_number,
                total_parts=session.total_parts,
                size=session.get_part(part_number).size,
                checksum=checksum,
                error=e,
                attempts=attempts,
                upload_id=session.upload_id,
            ))
            return False

        session.mark_done(part_number, etag, checksum, attempts)
        logger.debug(
            "Part %d/%s of upload %s done", part_number, session.total_parts or "?", session.upload_id
        )
        self._notify(session, PartResult(
            part_number=part_number,
            total_parts=session.total_parts,
            size=len(data),
            checksum=checksum,
            etag=etag,
            attempts=attempts,
            upload_id=session.upload_id,
        ))
        return True

    def _send_with_retry(self, send: Callable[[bytes], str], data: bytes, part_number: int) -> str:
        try:
            return retry_with_backoff(
                send,
                max_attempts=self.config.retry.max_attempts,
                delays=self.config.retry.delays,
                args=(data,),
                description=f"Part {part_number}",
            )
        except PartUploadError:
            raise
        except RetryExhausted as e:
            raise PartUploadError(
                f"Part {part_number} failed after {e.attempts} attempts: {e.last_error}",
                part_number=part_number,
                attempts=e.attempts,
                cause=e.last_error,
            ) from e.last_error
        except Exception as e:
            raise PartUploadError(
                f"Part {part_number} failed: {e}", part_number=part_number, cause=e
            ) from e

    def _notify(self, session: MultipartUploadSession, result: PartResult) -> None:
        callback = session.request.callback
        if callback is None:
            return
        try:
            callback(result)
        except Exception:
            logger.exception("Progress callback failed for part %d", result.part_number)

    def _finish(self, session: MultipartUploadSession, interrupted: bool = False) -> UploadResult:
        """Turn the state of the parts into an UploadResult, committing if complete."""
        with session.lock:
            failed = [p for p in session.parts if p.status == PartStatus.FAILED]
            unfinished = [p for p in session.parts if p.status != PartStatus.DONE]

        if failed:
            session.status = SessionStatus.RESUMABLE_FAILED
            first = min(failed, key=lambda p: p.part_number)
            logger.warning(
                "Multipart upload %s stopped after part %d failed; it can be resumed",
                session.upload_id, first.part_number,
            )
            return UploadResult(
                status=UploadStatus.FAILED,
                object_name=session.object_name,
                session=session,
                error=first.error,
                is_multipart=True,
            )

        if interrupted or unfinished:
            logger.info("Multipart upload %s cancelled; session left open", session.upload_id)
            return UploadResult(
                status=UploadStatus.CANCELLED,
                object_name=session.object_name,
                session=session,
                is_multipart=True,
            )

        return self._commit(session)

    def _commit(self, session: MultipartUploadSession) -> UploadResult:
        parts = session.commit_list()
        try:
            etag = retry_with_backoff(
                self.client.complete_multipart_upload,
                max_attempts=self.config.retry.max_attempts,
                delays=self.config.retry.delays,
                args=(session.namespace, session.bucket, session.object_name, session.upload_id, parts),
                description=f"Commit of upload {session.upload_id}",
            )
        except Exception as e:
            cause = e.last_error if isinstance(e, RetryExhausted) else e
            error = CommitError(f"Commit of upload {session.upload_id} failed: {cause}")
            error.__cause__ = cause
            logger.error("%s", error)
            self._abort_quietly(session)
            return UploadResult(
                status=UploadStatus.FAILED,
                object_name=session.object_name,
                error=error,
                is_multipart=True,
            )

        session.status = SessionStatus.COMPLETED
        self._forget(session)
        logger.info(
            "Completed multipart upload %s (%d parts) for %s",
            session.upload_id, len(parts), session.object_name,
        )
        return UploadResult(
            status=UploadStatus.SUCCEEDED,
            object_name=session.object_name,
            session=session,
            etag=etag,
            is_multipart=True,
        )

    def _abort_quietly(self, session: MultipartUploadSession) -> None:
        """Abort a session that cannot be committed; abort errors are non-fatal."""
        try:
            self.client.abort_multipart_upload(
                session.namespace, session.bucket, session.object_name, session.upload_id
            )
        except Exception as e:
            logger.warning("Could not abort multipart upload %s: %s", session.upload_id, e)
        session.status = SessionStatus.ABORTED
        self._forget(session)
