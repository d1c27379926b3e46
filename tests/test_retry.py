"""Tests for retry module."""

from unittest.mock import MagicMock, patch

import httpx
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError

from objtransfer.errors import ChecksumMismatchError
from objtransfer.retry import (
    RetryExhausted,
    is_retryable_error,
    retry_with_backoff,
)


def client_error(code: str, status: int) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "UploadPart",
    )


def http_status_error(status: int) -> httpx.HTTPStatusError:
    response = MagicMock()
    response.status_code = status
    return httpx.HTTPStatusError("error", request=MagicMock(), response=response)


class TestIsRetryableError:
    """Tests for error classification."""

    def test_endpoint_connection_error_is_retryable(self):
        """botocore connection failures should trigger retry."""
        error = EndpointConnectionError(endpoint_url="https://storage.example.com")
        assert is_retryable_error(error) is True

    def test_read_timeout_is_retryable(self):
        """botocore read timeouts should trigger retry."""
        error = ReadTimeoutError(endpoint_url="https://storage.example.com")
        assert is_retryable_error(error) is True

    def test_httpx_connect_error_is_retryable(self):
        """httpx connection errors on presigned uploads should trigger retry."""
        assert is_retryable_error(httpx.ConnectError("Connection refused")) is True

    @pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
    def test_transient_http_status_is_retryable(self, status):
        """Server errors and throttling should trigger retry."""
        assert is_retryable_error(http_status_error(status)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_http_status_is_not_retryable(self, status):
        """Client errors should NOT trigger retry."""
        assert is_retryable_error(http_status_error(status)) is False

    def test_slow_down_is_retryable(self):
        """SlowDown is throttling even when reported with a 4xx status."""
        assert is_retryable_error(client_error("SlowDown", 400)) is True

    def test_internal_error_is_retryable(self):
        """A 500 ClientError should trigger retry."""
        assert is_retryable_error(client_error("InternalError", 500)) is True

    def test_access_denied_is_not_retryable(self):
        """AccessDenied should NOT trigger retry."""
        assert is_retryable_error(client_error("AccessDenied", 403)) is False

    def test_no_such_upload_is_not_retryable(self):
        """A missing upload will not reappear on retry."""
        assert is_retryable_error(client_error("NoSuchUpload", 404)) is False

    def test_checksum_mismatch_is_not_retryable(self):
        """A rejected digest is permanent."""
        assert is_retryable_error(ChecksumMismatchError("BadDigest")) is False

    def test_generic_exception_is_not_retryable(self):
        """Generic exceptions should NOT trigger retry by default."""
        assert is_retryable_error(ValueError("Some error")) is False


@patch("objtransfer.retry.time.sleep")
class TestRetryWithBackoff:
    """Tests for retry_with_backoff function."""

    def test_success_on_first_attempt(self, mock_sleep):
        """Succeed immediately without retrying."""
        mock_func = MagicMock(return_value="etag")

        assert retry_with_backoff(mock_func) == "etag"
        assert mock_func.call_count == 1
        mock_sleep.assert_not_called()

    def test_success_after_transient_errors(self, mock_sleep):
        """Succeed once the transient errors stop."""
        mock_func = MagicMock(
            side_effect=[
                EndpointConnectionError(endpoint_url="https://x"),
                client_error("SlowDown", 503),
                "etag",
            ]
        )

        assert retry_with_backoff(mock_func, max_attempts=3) == "etag"
        assert mock_func.call_count == 3

    def test_delays_follow_policy(self, mock_sleep):
        """Each retry sleeps for the next configured delay."""
        mock_func = MagicMock(
            side_effect=[httpx.ConnectError("1"), httpx.ConnectError("2"), "ok"]
        )

        retry_with_backoff(mock_func, max_attempts=3, delays=(1.0, 2.0, 4.0))

        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    def test_last_delay_repeats(self, mock_sleep):
        """When attempts outnumber delays, the last delay is reused."""
        mock_func = MagicMock(side_effect=[httpx.ConnectError("x")] * 3 + ["ok"])

        retry_with_backoff(mock_func, max_attempts=4, delays=(0.5,))

        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 0.5, 0.5]

    def test_failure_after_max_attempts(self, mock_sleep):
        """Raise RetryExhausted after all attempts fail."""
        last_error = httpx.ConnectTimeout("Final timeout")
        mock_func = MagicMock(
            side_effect=[httpx.ConnectError("First"), httpx.ConnectError("Second"), last_error]
        )

        with pytest.raises(RetryExhausted) as exc_info:
            retry_with_backoff(mock_func, max_attempts=3, description="Part 7")

        assert mock_func.call_count == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last_error
        assert "Part 7 failed after 3 attempts" in str(exc_info.value)

    def test_non_retryable_error_raises_immediately(self, mock_sleep):
        """Non-retryable errors are raised without retry."""
        mock_func = MagicMock(side_effect=client_error("AccessDenied", 403))

        with pytest.raises(ClientError):
            retry_with_backoff(mock_func, max_attempts=3)

        assert mock_func.call_count == 1
        mock_sleep.assert_not_called()

    def test_single_attempt_policy(self, mock_sleep):
        """max_attempts=1 disables retries."""
        mock_func = MagicMock(side_effect=httpx.ConnectError("x"))

        with pytest.raises(RetryExhausted):
            retry_with_backoff(mock_func, max_attempts=1)

        assert mock_func.call_count == 1

    def test_passes_args_and_kwargs_to_function(self, mock_sleep):
        """Arguments and keyword arguments are passed through."""
        mock_func = MagicMock(return_value="ok")

        retry_with_backoff(
            mock_func,
            args=("ns", "bucket"),
            kwargs={"content_md5": "abc=="},
        )

        mock_func.assert_called_with("ns", "bucket", content_md5="abc==")
