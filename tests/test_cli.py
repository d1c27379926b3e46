"""Tests for CLI entry point.

Tests argument parsing, provider selection and command dispatch.
"""

import logging
from unittest.mock import MagicMock, Mock, patch

import pytest
from botocore.exceptions import ClientError

from fake_storage import FakeStorageClient
from objtransfer.cli import (
    CompositeReporter,
    create_reporter,
    main,
    parse_args,
    run_command,
    select_provider,
)
from objtransfer.errors import ConfigurationError
from objtransfer.models import ProviderConfig, RetryPolicy, TransferConfig
from objtransfer.multipart import UploadManager
from objtransfer.reporters import ConsoleReporter, JsonReporter


def provider(key: str) -> ProviderConfig:
    return ProviderConfig(
        key=key,
        provider_name=key.upper(),
        endpoint_url="https://storage.example.com",
        aws_access_key_id="ak",
        aws_secret_access_key="sk",
        region_name="us-east-1",
        namespace="test-namespace",
    )


class TestParseArgs:
    """Tests for argument parsing."""

    def test_global_defaults(self):
        """Global options have sensible defaults."""
        args = parse_args(["namespace"])

        assert args.command == "namespace"
        assert args.config == "config.json"
        assert args.provider is None
        assert args.quiet is False
        assert args.verbose is False
        assert args.json_output is None

    def test_command_is_required(self):
        """Running without a subcommand is an error."""
        with pytest.raises(SystemExit):
            parse_args([])

    def test_upload_file_options(self):
        """Transfer options map onto request flags."""
        args = parse_args([
            "-c", "custom.json", "-p", "oci", "-j", "out.json",
            "upload-file", "data.bin", "-b", "bucket", "-n", "name",
            "--part-size", "1048576", "--no-parallel", "--verify-checksum",
        ])

        assert args.config == "custom.json"
        assert args.provider == "oci"
        assert args.json_output == "out.json"
        assert args.file == "data.bin"
        assert args.bucket == "bucket"
        assert args.name == "name"
        assert args.part_size == 1048576
        assert args.allow_multipart is True
        assert args.allow_parallel is False
        assert args.verify_checksum is True

    def test_no_multipart(self):
        args = parse_args(["upload-file", "f", "-b", "b", "--no-multipart"])
        assert args.allow_multipart is False

    def test_bucket_is_required(self):
        """Upload commands need a bucket."""
        with pytest.raises(SystemExit):
            parse_args(["upload-file", "data.bin"])

    def test_resume_requires_name(self):
        """Resuming needs the object name of the original upload."""
        with pytest.raises(SystemExit):
            parse_args(["resume", "upload-1", "data.bin", "-b", "bucket"])

        args = parse_args(["resume", "upload-1", "data.bin", "-b", "bucket", "-n", "obj"])
        assert args.upload_id == "upload-1"

    def test_resume_has_no_multipart_switch(self):
        """A resumed upload is always multipart."""
        with pytest.raises(SystemExit):
            parse_args(["resume", "u", "f", "-b", "b", "-n", "obj", "--no-multipart"])

        args = parse_args(["resume", "u", "f", "-b", "b", "-n", "obj", "--no-parallel"])
        assert args.allow_parallel is False
        assert not hasattr(args, "allow_multipart")

    def test_demo_defaults(self):
        args = parse_args(["demo"])
        assert args.flow == "all"
        assert args.size is None
        assert args.bucket is None


class TestSelectProvider:
    """Tests for select_provider."""

    def test_single_provider(self):
        """The only provider is used by default."""
        assert select_provider({"oci": provider("oci")}, None).key == "oci"

    def test_named_provider(self):
        providers = {"oci": provider("oci"), "aws": provider("aws")}
        assert select_provider(providers, "aws").key == "aws"

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            select_provider({"oci": provider("oci")}, "gcs")

    def test_ambiguous_provider(self):
        """Several providers need an explicit choice."""
        providers = {"oci": provider("oci"), "aws": provider("aws")}
        with pytest.raises(ConfigurationError, match="--provider"):
            select_provider(providers, None)


class TestCreateReporter:
    """Tests for reporter creation."""

    def test_console_only(self):
        args = parse_args(["-q", "namespace"])
        reporter = create_reporter(args)

        assert isinstance(reporter, ConsoleReporter)
        assert reporter.quiet is True

    def test_console_and_json(self):
        args = parse_args(["-j", "out.json", "namespace"])
        reporter = create_reporter(args)

        assert isinstance(reporter, CompositeReporter)
        assert [type(r) for r in reporter._reporters] == [ConsoleReporter, JsonReporter]

    def test_composite_delegates(self):
        """CompositeReporter forwards every event."""
        first, second = Mock(), Mock()
        composite = CompositeReporter([first, second])

        composite.on_upload_start("obj", 10)
        composite.on_part_complete("part")
        composite.on_upload_complete("result")

        for reporter in (first, second):
            reporter.on_upload_start.assert_called_once_with("obj", 10)
            reporter.on_part_complete.assert_called_once_with("part")
            reporter.on_upload_complete.assert_called_once_with("result")


class TestRunCommand:
    """Tests for command dispatch against an in-memory store."""

    def test_namespace(self, storage, manager, capsys):
        args = parse_args(["namespace"])
        assert run_command(args, storage, manager, MagicMock()) == 0
        assert capsys.readouterr().out.strip() == "test-namespace"

    def test_put(self, storage, manager, tmp_path):
        """put uploads the file in one request under its base name."""
        path = tmp_path / "small.bin"
        path.write_bytes(b"payload")
        args = parse_args(["put", str(path), "-b", "bucket"])

        assert run_command(args, storage, manager, MagicMock()) == 0
        assert storage.objects[("bucket", "small.bin")] == b"payload"

    def test_upload_file(self, storage, manager, tmp_path):
        """upload-file reports start, parts and result."""
        data = bytes(range(250))
        path = tmp_path / "data.bin"
        path.write_bytes(data)
        reporter = MagicMock()
        args = parse_args(["upload-file", str(path), "-b", "bucket", "-n", "obj"])

        assert run_command(args, storage, manager, reporter) == 0
        assert storage.objects[("bucket", "obj")] == data
        reporter.on_upload_start.assert_called_once_with("obj", 250)
        assert reporter.on_part_complete.call_count == 3
        assert reporter.on_upload_complete.call_args.args[0].succeeded

    def test_upload_file_failure_exit_code(self, storage, manager, tmp_path):
        """A failed upload exits with 1."""
        path = tmp_path / "data.bin"
        path.write_bytes(bytes(250))
        storage.create_error = RuntimeError("denied")
        args = parse_args(["upload-file", str(path), "-b", "bucket"])

        assert run_command(args, storage, manager, MagicMock()) == 1

    def test_upload_stream_from_file(self, storage, manager, tmp_path):
        data = bytes(range(250))
        path = tmp_path / "data.bin"
        path.write_bytes(data)
        args = parse_args(["upload-stream", str(path), "-b", "bucket", "-n", "stream"])

        assert run_command(args, storage, manager, MagicMock()) == 0
        assert storage.objects[("bucket", "stream")] == data

    def test_resume_in_new_process(self, storage, manager, tmp_path):
        """resume rebuilds the session from its ID and finishes the upload."""
        data = bytes(range(250))
        path = tmp_path / "data.bin"
        path.write_bytes(data)
        storage.part_failures[2] = [RuntimeError("denied")]
        failed = run_command(
            parse_args(["upload-file", str(path), "-b", "bucket", "-n", "obj", "--no-parallel"]),
            storage, manager, MagicMock(),
        )
        assert failed == 1

        fresh_manager = UploadManager(storage, manager.config)
        args = parse_args(["resume", "upload-1", str(path), "-b", "bucket", "-n", "obj"])

        assert run_command(args, storage, fresh_manager, MagicMock()) == 0
        assert storage.objects[("bucket", "obj")] == data

    def test_resume_stream_upload_from_file(self, storage, tmp_path):
        """A stream upload resumes from a file with the part size it was started with."""
        config = TransferConfig(
            part_size=128,
            stream_part_size=100,
            min_part_size=1,
            retry=RetryPolicy(max_attempts=3, delays=(0.0,)),
        )
        data = bytes(i % 251 for i in range(500))
        path = tmp_path / "data.bin"
        path.write_bytes(data)
        storage.part_failures[5] = [RuntimeError("denied")]
        failed = run_command(
            parse_args(["upload-stream", str(path), "-b", "bucket", "-n", "obj"]),
            storage, UploadManager(storage, config), MagicMock(),
        )
        assert failed == 1
        storage.part_calls.clear()

        args = parse_args(["resume", "upload-1", str(path), "-b", "bucket", "-n", "obj"])

        assert run_command(args, storage, UploadManager(storage, config), MagicMock()) == 0
        assert storage.part_calls == [5]
        assert storage.objects[("bucket", "obj")] == data

    def test_abort(self, storage, manager, capsys):
        upload_id = storage.create_multipart_upload("test-namespace", "bucket", "obj")
        args = parse_args(["abort", upload_id, "-b", "bucket", "-n", "obj"])

        assert run_command(args, storage, manager, MagicMock()) == 0
        assert storage.abort_calls == [upload_id]
        assert f"Aborted upload {upload_id}" in capsys.readouterr().out


class TestMain:
    """Tests for main entry point."""

    @patch("objtransfer.cli.setup_logging")
    @patch("objtransfer.cli.load_providers")
    def test_configuration_error_exit_code(self, mock_load, mock_logging, capsys):
        """Configuration problems exit with 2."""
        mock_load.side_effect = ConfigurationError("No providers configured")

        assert main(["namespace"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    @patch("objtransfer.cli.setup_logging")
    @patch("objtransfer.cli.S3StorageClient")
    @patch("objtransfer.cli.load_transfer_config")
    @patch("objtransfer.cli.load_providers")
    def test_runs_command(self, mock_load, mock_transfer, mock_client_cls, mock_logging, capsys):
        """main selects the provider and prints the namespace."""
        mock_load.return_value = {"oci": provider("oci")}
        mock_transfer.return_value = TransferConfig()
        mock_client_cls.return_value.__enter__.return_value = FakeStorageClient("ns-1")

        assert main(["namespace"]) == 0
        mock_client_cls.assert_called_once_with(mock_load.return_value["oci"])
        assert "ns-1" in capsys.readouterr().out

    @patch("objtransfer.cli.setup_logging")
    @patch("objtransfer.cli.S3StorageClient")
    @patch("objtransfer.cli.load_transfer_config")
    @patch("objtransfer.cli.load_providers")
    def test_unknown_upload_exit_code(self, mock_load, mock_transfer, mock_client_cls, mock_logging, tmp_path):
        """Resuming an unknown upload exits with 2."""
        path = tmp_path / "data.bin"
        path.write_bytes(bytes(250))
        mock_load.return_value = {"oci": provider("oci")}
        mock_transfer.return_value = TransferConfig(part_size=100, min_part_size=1)
        mock_client_cls.return_value.__enter__.return_value = FakeStorageClient()

        code = main(["resume", "missing", str(path), "-b", "bucket", "-n", "obj"])
        assert code == 2

    @patch("objtransfer.cli.setup_logging")
    @patch("objtransfer.cli.load_providers")
    def test_verbose_sets_debug_logging(self, mock_load, mock_logging):
        """-v enables debug logging."""
        mock_load.side_effect = ConfigurationError("x")
        main(["-v", "namespace"])

        mock_logging.assert_called_once_with(logging.DEBUG)

    @patch("objtransfer.cli.setup_logging")
    @patch("objtransfer.cli.S3StorageClient")
    @patch("objtransfer.cli.load_transfer_config")
    @patch("objtransfer.cli.load_providers")
    def test_storage_error_exit_code(self, mock_load, mock_transfer, mock_client_cls, mock_logging, capsys):
        """Errors from the storage service exit with 2 instead of a traceback."""
        mock_load.return_value = {"oci": provider("oci")}
        mock_transfer.return_value = TransferConfig()
        client = MagicMock()
        client.get_namespace.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetNamespace"
        )
        mock_client_cls.return_value.__enter__.return_value = client

        assert main(["namespace"]) == 2
        assert "AccessDenied" in capsys.readouterr().err

    @patch("objtransfer.cli.setup_logging")
    @patch("objtransfer.cli.S3StorageClient")
    @patch("objtransfer.cli.load_transfer_config")
    @patch("objtransfer.cli.load_providers")
    def test_abort_unknown_upload_exit_code(self, mock_load, mock_transfer, mock_client_cls, mock_logging, capsys):
        """Aborting an upload the service does not know exits with 2."""
        mock_load.return_value = {"oci": provider("oci")}
        mock_transfer.return_value = TransferConfig()
        mock_client_cls.return_value.__enter__.return_value = FakeStorageClient()

        assert main(["abort", "missing", "-b", "bucket", "-n", "obj"]) == 2
        assert "missing" in capsys.readouterr().err
