"""Content sources and part planning.

A source either supports independent range reads (files, seekable file
objects), which allows parts to be uploaded in parallel, or only a single
read cursor (streams), which forces parts to be uploaded in order.
"""

import io
import os
import threading
from typing import IO, Any, Generator, Optional, Union


class ContentSource:
    """Base class for upload content."""

    #: True when ``read_range`` may be called for disjoint ranges concurrently
    supports_ranges = False

    @property
    def size(self) -> Optional[int]:
        """Total content length, or None when unknown."""
        return None

    def read_range(self, offset: int, size: int) -> bytes:
        raise NotImplementedError(f"{type(self).__name__} does not support range reads")

    def iter_chunks(self, chunk_size: int) -> Generator[bytes, None, None]:
        """Yield consecutive chunks of at most ``chunk_size`` bytes."""
        offset = 0
        total = self.size
        while total is None or offset < total:
            length = chunk_size if total is None else min(chunk_size, total - offset)
            chunk = self.read_range(offset, length)
            if not chunk:
                break
            yield chunk
            offset += len(chunk)

    def close(self) -> None:
        pass


class FileSource(ContentSource):
    """A file on disk, opened independently for every range read."""

    supports_ranges = True

    def __init__(self, path: Union[str, os.PathLike]):
        self.path = os.fspath(path)
        if not os.path.isfile(self.path):
            raise FileNotFoundError(f"File not found: {self.path}")

    @property
    def size(self) -> int:
        return os.path.getsize(self.path)

    def read_range(self, offset: int, size: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(offset)
            return f.read(size)

    def __repr__(self) -> str:
        return f"FileSource({self.path!r})"


class SeekableSource(ContentSource):
    """A seekable binary file object shared by all workers.

    Seek and read are done under a lock so concurrent range reads
    never interleave.
    """

    supports_ranges = True

    def __init__(self, fileobj: IO[bytes]):
        self.fileobj = fileobj
        self._lock = threading.Lock()
        self._start = fileobj.tell()
        fileobj.seek(0, io.SEEK_END)
        self._size = fileobj.tell() - self._start
        fileobj.seek(self._start)

    @property
    def size(self) -> int:
        return self._size

    def read_range(self, offset: int, size: int) -> bytes:
        with self._lock:
            self.fileobj.seek(self._start + offset)
            return self.fileobj.read(size)


class StreamSource(ContentSource):
    """A single-pass byte stream; only sequential reads are possible."""

    supports_ranges = False

    def __init__(self, reader: IO[bytes], content_length: Optional[int] = None):
        self.reader = reader
        self.content_length = content_length
        self._consumed = False

    @property
    def size(self) -> Optional[int]:
        return self.content_length

    def iter_chunks(self, chunk_size: int) -> Generator[bytes, None, None]:
        if self._consumed:
            raise RuntimeError("Stream has already been consumed")
        self._consumed = True
        while True:
            chunk = _read_full(self.reader, chunk_size)
            if not chunk:
                break
            yield chunk
            if len(chunk) < chunk_size:
                break


def _read_full(reader: IO[bytes], size: int) -> bytes:
    """Read up to ``size`` bytes, looping over short reads until EOF."""
    buf = bytearray()
    while len(buf) < size:
        data = reader.read(size - len(buf))
        if not data:
            break
        buf.extend(data)
    return bytes(buf)


def as_source(obj: Any, content_length: Optional[int] = None) -> ContentSource:
    """Wrap a path, bytes or file object in the matching ContentSource."""
    if isinstance(obj, ContentSource):
        return obj
    if isinstance(obj, (str, os.PathLike)):
        return FileSource(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return SeekableSource(io.BytesIO(bytes(obj)))
    seekable = getattr(obj, "seekable", None)
    if callable(seekable) and seekable():
        return SeekableSource(obj)
    if hasattr(obj, "read"):
        return StreamSource(obj, content_length=content_length)
    raise TypeError(f"Unsupported content source: {type(obj).__name__}")


def plan_parts(total_size: int, part_size: int) -> list[tuple[int, int, int]]:
    """Split ``total_size`` bytes into parts of ``part_size``.

    Returns:
        List of (part_number, offset, size) tuples. Part numbers start at 1,
        the ranges tile [0, total_size) and only the last part may be short.
    """
    if part_size <= 0:
        raise ValueError("part_size must be positive")
    parts = []
    part_number = 1
    for offset in range(0, total_size, part_size):
        parts.append((part_number, offset, min(part_size, total_size - offset)))
        part_number += 1
    return parts


def count_parts(total_size: int, part_size: int) -> int:
    """ceil(total_size / part_size)."""
    return -(-total_size // part_size)
