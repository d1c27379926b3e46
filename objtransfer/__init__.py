"""
objtransfer: object storage uploads with resumable multipart sessions.

Uploads small payloads in a single request and large ones as multipart
sessions whose parts are checksummed, uploaded in order or in parallel,
and resumable by upload ID.
"""

__version__ = "1.0.0"

from objtransfer.models import TransferConfig, UploadRequest, UploadResult
from objtransfer.multipart import UploadManager
from objtransfer.storage import S3StorageClient, StorageClient

__all__ = [
    "S3StorageClient",
    "StorageClient",
    "TransferConfig",
    "UploadManager",
    "UploadRequest",
    "UploadResult",
    "__version__",
]
