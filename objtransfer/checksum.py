"""Content digests for uploaded parts.

Parts are identified by their base64-encoded MD5, the format expected in
the ``Content-MD5`` (S3) and ``opc-content-md5`` (OCI) request headers.
"""

import base64
import hashlib
import re
from typing import Optional

_HEX_MD5 = re.compile(r"^[0-9a-f]{32}$")


def content_md5(data: bytes) -> str:
    """Return the base64-encoded MD5 digest of ``data``."""
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def md5_hex_from_b64(checksum: str) -> str:
    """Convert a base64 MD5 digest to its hex form."""
    return base64.b64decode(checksum).hex()


def etag_matches(etag: Optional[str], checksum: str) -> bool:
    """Check whether a part ETag agrees with a base64 MD5 digest.

    ETags that are not plain hex MD5s (e.g. SSE-KMS encrypted parts)
    cannot be compared and are treated as matching.
    """
    if not etag:
        return True
    value = etag.strip('"').lower()
    if not _HEX_MD5.match(value):
        return True
    return value == md5_hex_from_b64(checksum)
