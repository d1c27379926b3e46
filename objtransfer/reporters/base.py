"""Base reporter interface."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from objtransfer.models import PartResult, UploadResult


class Reporter(ABC):
    """Abstract base class for upload progress reporters.

    ``on_part_complete`` has the progress callback signature, so a bound
    method can be passed straight to the upload manager.
    """

    @abstractmethod
    def on_upload_start(self, object_name: str, size: Optional[int]) -> None:
        """Called before an upload starts."""
        pass

    @abstractmethod
    def on_part_complete(self, part: "PartResult") -> None:
        """Called after every part attempt, possibly from a worker thread."""
        pass

    @abstractmethod
    def on_upload_complete(self, result: "UploadResult") -> None:
        """Called when an upload or resume call returns."""
        pass
