"""JSON reporter for structured upload results.

Writes the outcome of an upload, including every part and the upload ID
of a resumable session, so a later ``resume`` run can pick it up.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from objtransfer.models import PartResult, UploadResult
from objtransfer.reporters.base import Reporter


class JsonReporter(Reporter):
    """JSON reporter for structured output.

    Args:
        output_path: Optional file path to write JSON output
    """

    def __init__(self, output_path: Optional[str] = None):
        self.output_path = output_path
        self._object_name: Optional[str] = None
        self._size: Optional[int] = None
        self._parts: list[PartResult] = []
        self._lock = threading.Lock()

    def on_upload_start(self, object_name: str, size: Optional[int]) -> None:
        self._object_name = object_name
        self._size = size
        with self._lock:
            self._parts = []

    def on_part_complete(self, part: PartResult) -> None:
        """Stores the part for final output generation."""
        with self._lock:
            self._parts.append(part)

    def on_upload_complete(self, result: UploadResult) -> dict:
        """Generates the JSON data and writes it if a path was given.

        Returns:
            The generated JSON data as a dictionary
        """
        output = self._generate_output(result)

        if self.output_path:
            self._write_to_file(output)

        return output

    def _generate_output(self, result: UploadResult) -> dict:
        with self._lock:
            parts = sorted(self._parts, key=lambda p: p.part_number)

        part_data = []
        for part in parts:
            entry = {
                "part_number": part.part_number,
                "size": part.size,
                "checksum": part.checksum,
                "etag": part.etag,
                "attempts": part.attempts,
            }
            if part.error is not None:
                entry["error"] = str(part.error)
            part_data.append(entry)

        output = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "object_name": result.object_name,
            "size": self._size,
            "status": result.status.value,
            "multipart": result.is_multipart,
            "etag": result.etag,
            "upload_id": result.upload_id,
            "resumable": result.is_resumable,
            "parts": part_data,
        }
        if result.session is not None:
            output["session_status"] = result.session.status.value
        if result.error is not None:
            output["error"] = str(result.error)
        return output

    def _write_to_file(self, output: dict) -> None:
        path = Path(self.output_path)

        # Create parent directories if needed
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(output, f, indent=2)
