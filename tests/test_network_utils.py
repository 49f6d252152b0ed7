"""Tests for retrieval_core.network_utils module."""

from __future__ import annotations

from unittest.mock import Mock

import pytest
import requests

from retrieval_core.network_utils import (
    _is_retryable_http_exception,
    _is_retryable_os_error,
    _with_retries,
    is_connectivity_error,
)


def _http_error(status_code: int) -> requests.exceptions.HTTPError:
    response = Mock()
    response.status_code = status_code
    return requests.exceptions.HTTPError(response=response)


class TestIsRetryableHttpException:
    """Test _is_retryable_http_exception function."""

    def test_5xx_server_error_is_retryable(self) -> None:
        for status_code in [500, 502, 503, 504]:
            assert _is_retryable_http_exception(_http_error(status_code)) is True

    def test_429_rate_limit_retryable_by_default(self) -> None:
        assert _is_retryable_http_exception(_http_error(429)) is True

    def test_429_not_retryable_when_disabled(self) -> None:
        assert _is_retryable_http_exception(_http_error(429), retry_on_429=False) is False

    def test_4xx_client_errors_not_retryable(self) -> None:
        for status_code in [400, 401, 403, 404]:
            assert _is_retryable_http_exception(_http_error(status_code)) is False, status_code

    def test_http_error_with_none_response(self) -> None:
        exc = requests.exceptions.HTTPError(response=None)
        assert _is_retryable_http_exception(exc) is False

    def test_connection_error_and_timeout_are_retryable(self) -> None:
        assert _is_retryable_http_exception(requests.exceptions.ConnectionError()) is True
        assert _is_retryable_http_exception(requests.exceptions.Timeout()) is True

    def test_generic_exception_not_retryable(self) -> None:
        assert _is_retryable_http_exception(ValueError("boom")) is False


class TestIsConnectivityError:
    def test_connection_failures(self) -> None:
        assert is_connectivity_error(requests.exceptions.ConnectionError())
        assert is_connectivity_error(requests.exceptions.ReadTimeout())

    def test_http_errors_are_not_connectivity(self) -> None:
        assert not is_connectivity_error(_http_error(503))


class TestIsRetryableOsError:
    def test_transient_share_error(self) -> None:
        assert _is_retryable_os_error(PermissionError("busy"))
        assert _is_retryable_os_error(OSError("network name no longer available"))

    def test_plain_miss_is_final(self) -> None:
        assert not _is_retryable_os_error(FileNotFoundError("gone"))
        assert not _is_retryable_os_error(ValueError("not an OSError"))


class TestWithRetries:
    """Test _with_retries function."""

    def test_success_on_first_attempt(self) -> None:
        fn = Mock(return_value="ok")
        sleep = Mock()
        assert _with_retries(fn, sleep=sleep) == "ok"
        assert fn.call_count == 1
        sleep.assert_not_called()

    def test_retries_then_succeeds(self) -> None:
        fn = Mock(side_effect=[requests.exceptions.ConnectionError(), _http_error(503), "ok"])
        sleeps: list[float] = []
        on_retry = Mock()

        assert _with_retries(fn, max_attempts=3, on_retry=on_retry, sleep=sleeps.append) == "ok"
        assert sleeps == [1.0, 2.0]
        assert on_retry.call_count == 2
        assert on_retry.call_args_list[0][0][0] == 1

    def test_backoff_is_capped(self) -> None:
        fn = Mock(side_effect=[requests.exceptions.Timeout()] * 4 + ["ok"])
        sleeps: list[float] = []
        _with_retries(fn, max_attempts=5, backoff_base=10.0, backoff_max=30.0, sleep=sleeps.append)
        assert sleeps == [1.0, 10.0, 30.0, 30.0]

    def test_non_retryable_raises_immediately(self) -> None:
        fn = Mock(side_effect=_http_error(404))
        with pytest.raises(requests.exceptions.HTTPError):
            _with_retries(fn, max_attempts=3, sleep=Mock())
        assert fn.call_count == 1

    def test_raises_last_error_when_exhausted(self) -> None:
        fn = Mock(side_effect=requests.exceptions.ConnectionError("down"))
        with pytest.raises(requests.exceptions.ConnectionError):
            _with_retries(fn, max_attempts=2, sleep=Mock())
        assert fn.call_count == 2

    def test_custom_predicate(self) -> None:
        fn = Mock(side_effect=[PermissionError("busy"), "copied"])
        sleep = Mock()
        assert _with_retries(fn, is_retryable=_is_retryable_os_error, sleep=sleep) == "copied"
        sleep.assert_called_once_with(1.0)
