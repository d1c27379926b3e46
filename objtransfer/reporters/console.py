"""Console reporter using Rich library for formatted CLI output.

Provides colorful, formatted output during uploads including:
- Upload headers
- Per-part progress lines with pass/fail indicators
- Final summary table for the upload
"""

import threading
from typing import Optional

from rich import box
from rich.console import Console
from rich.rule import Rule
from rich.table import Table

from objtransfer.models import PartResult, UploadResult, UploadStatus
from objtransfer.reporters.base import Reporter


def format_size(num_bytes: Optional[int]) -> str:
    """Human readable size (binary units)."""
    if num_bytes is None:
        return "unknown size"
    if num_bytes < 1024:
        return f"{num_bytes} B"
    size = num_bytes / 1024
    for unit in ("KiB", "MiB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GiB"


class ConsoleReporter(Reporter):
    """Rich-based console reporter for CLI output.

    Args:
        quiet: If True, suppress per-part output (only show summary)
    """

    def __init__(self, quiet: bool = False, console: Optional[Console] = None):
        # Use legacy_windows=True for ASCII-safe output on Windows consoles
        self.console = console or Console(legacy_windows=True)
        self.quiet = quiet
        self.parts_done = 0
        self.parts_failed = 0
        self.bytes_done = 0
        # Parts complete on worker threads
        self._lock = threading.Lock()

    def on_upload_start(self, object_name: str, size: Optional[int]) -> None:
        """Displays a header with the object name and size."""
        with self._lock:
            self.parts_done = 0
            self.parts_failed = 0
            self.bytes_done = 0
        self.console.print()
        self.console.print(
            Rule(
                f"[bold cyan]Uploading: {object_name} ({format_size(size)})[/bold cyan]",
                style="cyan",
                characters="-",
            )
        )

    def on_part_complete(self, part: PartResult) -> None:
        """Displays one progress line per part."""
        with self._lock:
            if part.succeeded:
                self.parts_done += 1
                self.bytes_done += part.size
            else:
                self.parts_failed += 1

        if self.quiet:
            return

        total = part.total_parts if part.total_parts is not None else "?"
        if part.succeeded:
            self.console.print(
                f"  [green][OK][/green] Part {part.part_number} / {total} uploaded "
                f"({format_size(part.size)}, md5 {part.checksum})"
            )
        else:
            self.console.print(
                f"  [red][FAIL][/red] Part {part.part_number} / {total} "
                f"after {part.attempts} attempt(s)"
            )
            self.console.print(f"     [dim]{part.error}[/dim]")

    def on_upload_complete(self, result: UploadResult) -> None:
        """Displays a summary table for the upload."""
        if result.status == UploadStatus.SUCCEEDED:
            status = "[green]SUCCEEDED[/green]"
        elif result.status == UploadStatus.CANCELLED:
            status = "[yellow]CANCELLED[/yellow]"
        else:
            status = "[red]FAILED[/red]"

        table = Table(
            show_header=True,
            header_style="bold magenta",
            border_style="dim",
            box=box.ASCII,
        )
        table.add_column("Object", style="cyan", no_wrap=True)
        table.add_column("Mode", justify="center", no_wrap=True)
        table.add_column("Parts", justify="right", no_wrap=True)
        table.add_column("Uploaded", justify="right", no_wrap=True)
        table.add_column("Status", justify="center", no_wrap=True)

        with self._lock:
            parts = str(self.parts_done) if result.is_multipart else "-"
            uploaded = format_size(self.bytes_done) if result.is_multipart else "-"
        table.add_row(
            result.object_name,
            "multipart" if result.is_multipart else "single",
            parts,
            uploaded,
            status,
        )

        self.console.print()
        self.console.print(table)

        if result.error is not None:
            self.console.print(f"   [dim red]{result.error}[/dim red]")
        if result.is_resumable:
            self.console.print(
                f"   [yellow]Resumable upload ID:[/yellow] {result.upload_id}"
            )
