"""Example flows against a live object storage provider.

Each flow creates what it needs (bucket, temporary file), performs one
kind of upload and then removes everything again in reverse order:

- put object: one put_object request
- upload file: UploadManager.upload_file, resuming once if it fails
- upload stream: UploadManager.upload_stream over a file read as a stream
"""

import logging
import os
import random
import string
import tempfile
from typing import Optional

from objtransfer.models import MiB, UploadResult
from objtransfer.multipart import UploadManager
from objtransfer.reporters.base import Reporter
from objtransfer.storage import StorageClient

logger = logging.getLogger(__name__)

PUT_OBJECT_SIZE = 1024 * 1000
UPLOAD_FILE_SIZE = 300 * MiB
UPLOAD_FILE_PART_SIZE = 128 * MiB
UPLOAD_STREAM_SIZE = 1024 * 1000 * 130

FILE_OBJECT_NAME = "sampleFileUploadObj"
STREAM_OBJECT_NAME = "sampleStreamUploadObj"


def create_temp_file(size: int) -> str:
    """Create a temporary file with random data.

    Args:
        size: Size of the file in bytes.

    Returns:
        Path to the created temporary file.
    """
    fd, file_path = tempfile.mkstemp()
    try:
        with os.fdopen(fd, "wb") as f:
            # Write in 1 MiB chunks for efficiency
            remaining = size
            while remaining > 0:
                write_size = min(MiB, remaining)
                f.write(os.urandom(write_size))
                remaining -= write_size
    except Exception:
        if os.path.exists(file_path):
            os.remove(file_path)
        raise
    return file_path


def random_bucket_name(length: int = 8) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


class ExampleRunner:
    """Runs the example flows and records the steps taken.

    ``steps`` collects one entry per completed step ("get namespace",
    "create bucket", ...), in order.
    """

    def __init__(
        self,
        client: StorageClient,
        manager: Optional[UploadManager] = None,
        reporter: Optional[Reporter] = None,
        compartment_id: Optional[str] = None,
    ):
        self.client = client
        self.manager = manager or UploadManager(client)
        self.reporter = reporter
        self.compartment_id = compartment_id
        self.steps: list[str] = []

    def _step(self, name: str) -> None:
        logger.info(name)
        self.steps.append(name)

    def get_namespace(self) -> str:
        namespace = self.client.get_namespace()
        self._step("get namespace")
        return namespace

    def create_bucket(self, namespace: str, bucket: str) -> None:
        logger.info("Begin to create bucket: %s", bucket)
        self.client.create_bucket(
            namespace, bucket, compartment_id=self.compartment_id, metadata={}
        )
        self._step("create bucket")

    def delete_bucket(self, namespace: str, bucket: str) -> None:
        self.client.delete_bucket(namespace, bucket)
        self._step("delete bucket")

    def delete_object(self, namespace: str, bucket: str, object_name: str) -> None:
        self.client.delete_object(namespace, bucket, object_name)
        self._step("delete object")

    def run_put_object_example(
        self,
        size: int = PUT_OBJECT_SIZE,
        bucket: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """Upload a temporary file with a single put_object call.

        Returns:
            The ETag of the uploaded object.
        """
        namespace = self.get_namespace()
        bucket = bucket or random_bucket_name()
        self.create_bucket(namespace, bucket)
        try:
            file_path = create_temp_file(size)
            object_name = os.path.basename(file_path)
            try:
                logger.info("Begin to put Object: %s", object_name)
                with open(file_path, "rb") as f:
                    etag = self.client.put_object(
                        namespace, bucket, object_name, f.read(), metadata=metadata
                    )
                self._step("put object")
                self.delete_object(namespace, bucket, object_name)
            finally:
                os.remove(file_path)
        finally:
            self.delete_bucket(namespace, bucket)
        return etag

    def run_upload_file_example(
        self,
        size: int = UPLOAD_FILE_SIZE,
        part_size: int = UPLOAD_FILE_PART_SIZE,
        bucket: Optional[str] = None,
    ) -> UploadResult:
        """Upload a temporary file with the upload manager.

        A resumable failure is resumed once before giving up.
        """
        namespace = self.get_namespace()
        bucket = bucket or random_bucket_name()
        self.create_bucket(namespace, bucket)
        try:
            file_path = create_temp_file(size)
            try:
                if self.reporter:
                    self.reporter.on_upload_start(FILE_OBJECT_NAME, size)
                result = self.manager.upload_file(
                    namespace,
                    bucket,
                    FILE_OBJECT_NAME,
                    file_path,
                    part_size=part_size,
                    verify_checksum=True,
                    callback=self.reporter.on_part_complete if self.reporter else None,
                )
                if not result.succeeded and result.is_resumable:
                    logger.warning("Upload failed, resuming %s", result.upload_id)
                    result = self.manager.resume_upload(result.upload_id)
                if self.reporter:
                    self.reporter.on_upload_complete(result)
                if result.succeeded:
                    self._step("file uploaded")
                    self.delete_object(namespace, bucket, FILE_OBJECT_NAME)
            finally:
                os.remove(file_path)
        finally:
            self.delete_bucket(namespace, bucket)
        return result

    def run_upload_stream_example(
        self,
        size: int = UPLOAD_STREAM_SIZE,
        bucket: Optional[str] = None,
    ) -> UploadResult:
        """Upload a temporary file read as a single-pass stream."""
        namespace = self.get_namespace()
        bucket = bucket or random_bucket_name()
        self.create_bucket(namespace, bucket)
        try:
            file_path = create_temp_file(size)
            try:
                if self.reporter:
                    self.reporter.on_upload_start(STREAM_OBJECT_NAME, size)
                with open(file_path, "rb") as f:
                    result = self.manager.upload_stream(
                        namespace,
                        bucket,
                        STREAM_OBJECT_NAME,
                        f,
                        verify_checksum=True,
                        callback=self.reporter.on_part_complete if self.reporter else None,
                    )
                if self.reporter:
                    self.reporter.on_upload_complete(result)
                if result.succeeded:
                    self._step("stream uploaded")
                    self.delete_object(namespace, bucket, STREAM_OBJECT_NAME)
                else:
                    logger.error("Stream upload failed: %s", result.error)
            finally:
                os.remove(file_path)
        finally:
            self.delete_bucket(namespace, bucket)
        return result
