"""Command-line interface for objtransfer.

Subcommands:
    namespace       Print the provider's namespace
    put             Upload a file with a single put_object request
    upload-file     Upload a file with the upload manager
    upload-stream   Upload a file or stdin as a single-pass stream
    resume          Resume a multipart upload by upload ID
    abort           Abort a multipart upload by upload ID
    demo            Run the example flows (bucket, upload, cleanup)
"""

import argparse
import io
import logging
import os
import sys
from typing import Optional

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from objtransfer.config import load_providers, load_transfer_config
from objtransfer.demo import ExampleRunner
from objtransfer.errors import ConfigurationError, ResumeNotFoundError
from objtransfer.log import setup_logging
from objtransfer.models import MultipartUploadSession, ProviderConfig, UploadRequest, UploadResult
from objtransfer.multipart import UploadManager
from objtransfer.reporters import ConsoleReporter, JsonReporter, Reporter
from objtransfer.sources import FileSource, StreamSource
from objtransfer.storage import S3StorageClient

logger = logging.getLogger(__name__)


class CompositeReporter(Reporter):
    """Reporter that delegates to multiple reporters."""

    def __init__(self, reporters: list[Reporter]):
        self._reporters = reporters

    def on_upload_start(self, object_name: str, size: Optional[int]) -> None:
        for reporter in self._reporters:
            reporter.on_upload_start(object_name, size)

    def on_part_complete(self, part) -> None:
        for reporter in self._reporters:
            reporter.on_part_complete(part)

    def on_upload_complete(self, result) -> None:
        for reporter in self._reporters:
            reporter.on_upload_complete(result)


def _add_target_args(parser: argparse.ArgumentParser, name_required: bool = False) -> None:
    parser.add_argument("-b", "--bucket", required=True, help="Target bucket")
    parser.add_argument(
        "-n", "--name",
        required=name_required,
        help="Object name" + ("" if name_required else " (default: file name)"),
    )
    parser.add_argument("--namespace", help="Namespace (default: provider's namespace)")


def _add_transfer_args(parser: argparse.ArgumentParser, multipart: bool = True) -> None:
    parser.add_argument("--part-size", type=int, metavar="BYTES", help="Part size in bytes")
    if multipart:
        # A resumed upload is multipart already
        parser.add_argument(
            "--no-multipart",
            dest="allow_multipart",
            action="store_false",
            help="Always upload in a single request",
        )
    parser.add_argument(
        "--no-parallel",
        dest="allow_parallel",
        action="store_false",
        help="Upload parts one at a time",
    )
    parser.add_argument(
        "--verify-checksum",
        action="store_true",
        help="Send part MD5 digests for server-side verification",
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="objtransfer",
        description="Upload objects to S3-compatible object storage",
    )

    parser.add_argument(
        "-c", "--config",
        default="config.json",
        help="Path to configuration file (default: config.json)",
    )
    parser.add_argument(
        "-p", "--provider",
        metavar="KEY",
        help="Provider key to use (default: the only configured provider)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress per-part output, show only summary",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "-j", "--json-output",
        metavar="PATH",
        help="Write the upload result as JSON to PATH",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("namespace", help="Print the provider's namespace")

    put = commands.add_parser("put", help="Upload a file in a single request")
    put.add_argument("file", help="File to upload")
    _add_target_args(put)

    upload_file = commands.add_parser("upload-file", help="Upload a file")
    upload_file.add_argument("file", help="File to upload")
    _add_target_args(upload_file)
    _add_transfer_args(upload_file)

    upload_stream = commands.add_parser("upload-stream", help="Upload a stream")
    upload_stream.add_argument("file", help="File to read as a stream, or '-' for stdin")
    upload_stream.add_argument("--size", type=int, metavar="BYTES", help="Content length, if known")
    _add_target_args(upload_stream)
    _add_transfer_args(upload_stream)

    resume = commands.add_parser("resume", help="Resume a multipart upload")
    resume.add_argument("upload_id", help="Upload ID of the interrupted upload")
    resume.add_argument("file", help="File with the original content, or '-' for stdin")
    _add_target_args(resume, name_required=True)
    _add_transfer_args(resume, multipart=False)

    abort = commands.add_parser("abort", help="Abort a multipart upload")
    abort.add_argument("upload_id", help="Upload ID to abort")
    _add_target_args(abort, name_required=True)

    demo = commands.add_parser("demo", help="Run the example flows")
    demo.add_argument(
        "--flow",
        choices=["put", "file", "stream", "all"],
        default="all",
        help="Which example to run (default: all)",
    )
    demo.add_argument("--size", type=int, metavar="BYTES", help="Override the payload size")
    demo.add_argument("--bucket", help="Bucket name (default: random)")

    return parser.parse_args(argv)


def create_reporter(args: argparse.Namespace) -> Reporter:
    """Create the reporter for the parsed command-line arguments."""
    reporters: list[Reporter] = [ConsoleReporter(quiet=args.quiet)]

    if args.json_output:
        reporters.append(JsonReporter(output_path=args.json_output))

    if len(reporters) == 1:
        return reporters[0]
    return CompositeReporter(reporters)


def select_provider(
    providers: dict[str, ProviderConfig],
    key: Optional[str],
) -> ProviderConfig:
    """Pick the provider named by ``key`` or the only configured one.

    Raises:
        ConfigurationError: If the choice is missing or ambiguous.
    """
    if key:
        if key not in providers:
            raise ConfigurationError(f"Unknown provider: {key}")
        return providers[key]
    if len(providers) > 1:
        raise ConfigurationError(
            f"Several providers configured ({', '.join(sorted(providers))}); choose one with --provider"
        )
    return next(iter(providers.values()))


def _transfer_options(args: argparse.Namespace) -> dict:
    return {
        "part_size": args.part_size,
        "allow_multipart": args.allow_multipart,
        "allow_parallel": args.allow_parallel,
        "verify_checksum": args.verify_checksum,
    }


def _session_for(
    args: argparse.Namespace,
    manager: UploadManager,
    namespace: str,
    source=None,
    reporter: Optional[Reporter] = None,
) -> MultipartUploadSession:
    """Rebuild the session record of an upload started by another process.

    Without ``source`` the record holds an empty stream; stream uploads get
    their content from the ``source`` argument of resume_upload.
    """
    request = UploadRequest(
        namespace=namespace,
        bucket=args.bucket,
        object_name=args.name,
        source=source if source is not None else StreamSource(io.BytesIO()),
        callback=reporter.on_part_complete if reporter else None,
        allow_parallel=getattr(args, "allow_parallel", True),
        verify_checksum=getattr(args, "verify_checksum", False),
    )
    part_size = getattr(args, "part_size", None) or manager.config.part_size
    return MultipartUploadSession(args.upload_id, request, part_size)


def run_command(
    args: argparse.Namespace,
    client: S3StorageClient,
    manager: UploadManager,
    reporter: Reporter,
) -> int:
    """Execute the selected subcommand.

    Returns:
        Exit code: 0 for success, 1 for a failed upload
    """
    if args.command == "namespace":
        print(client.get_namespace())
        return 0

    if args.command == "demo":
        runner = ExampleRunner(
            client,
            manager=manager,
            reporter=reporter,
            compartment_id=client.config.compartment_id,
        )
        size = {"size": args.size} if args.size else {}
        ok = True
        if args.flow in ("put", "all"):
            runner.run_put_object_example(bucket=args.bucket, **size)
        if args.flow in ("file", "all"):
            ok = runner.run_upload_file_example(bucket=args.bucket, **size).succeeded and ok
        if args.flow in ("stream", "all"):
            ok = runner.run_upload_stream_example(bucket=args.bucket, **size).succeeded and ok
        for step in runner.steps:
            print(step)
        return 0 if ok else 1

    namespace = args.namespace or client.get_namespace()

    if args.command == "abort":
        session = _session_for(args, manager, namespace)
        manager.abort_upload(session)
        print(f"Aborted upload {args.upload_id}")
        return 0

    use_stdin = args.file == "-" and args.command in ("upload-stream", "resume")
    object_name = args.name or os.path.basename(args.file)
    result: UploadResult

    if args.command == "put":
        with open(args.file, "rb") as f:
            etag = client.put_object(namespace, args.bucket, object_name, f.read())
        print(f"Uploaded {object_name} (ETag {etag})")
        return 0

    if args.command == "upload-file":
        reporter.on_upload_start(object_name, os.path.getsize(args.file))
        result = manager.upload_file(
            namespace,
            args.bucket,
            object_name,
            args.file,
            callback=reporter.on_part_complete,
            **_transfer_options(args),
        )
    elif args.command == "upload-stream":
        reporter.on_upload_start(object_name, args.size)
        if use_stdin:
            result = manager.upload_stream(
                namespace, args.bucket, object_name, sys.stdin.buffer,
                content_length=args.size,
                callback=reporter.on_part_complete,
                **_transfer_options(args),
            )
        else:
            with open(args.file, "rb") as f:
                result = manager.upload_stream(
                    namespace, args.bucket, object_name, f,
                    content_length=args.size,
                    callback=reporter.on_part_complete,
                    **_transfer_options(args),
                )
    else:
        source = None if use_stdin else FileSource(args.file)
        session = _session_for(args, manager, namespace, source=source, reporter=reporter)
        reporter.on_upload_start(args.name, None if use_stdin else source.size)
        result = manager.resume_upload(
            session, source=sys.stdin.buffer if use_stdin else None
        )

    reporter.on_upload_complete(result)
    return 0 if result.succeeded else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code: 0 for success, 1 for failed uploads, 2 for errors
    """
    args = parse_args(argv)

    if args.verbose:
        setup_logging(logging.DEBUG)
    elif args.quiet:
        setup_logging(logging.WARNING)
    else:
        setup_logging(logging.INFO)

    try:
        provider = select_provider(load_providers(args.config), args.provider)
        transfer_config = load_transfer_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    reporter = create_reporter(args)

    with S3StorageClient(provider) as client:
        manager = UploadManager(client, transfer_config)
        try:
            return run_command(args, client, manager, reporter)
        except ConfigurationError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return 2
        except (ResumeNotFoundError, ClientError, BotoCoreError, httpx.HTTPError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2


if __name__ == "__main__":
    sys.exit(main())
