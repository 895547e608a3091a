import socket

import pytest

from xraytrace.errors import (
    ExecutionNotFoundError,
    GenerationTimeoutError,
    StepNotFoundError,
)
from xraytrace.utils.retry import compute_backoff, is_retryable_error


class APITimeoutError(Exception):
    pass


class CodedError(Exception):
    def __init__(self, message="", code=None, status_code=None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def test_compute_backoff_indexes_by_attempt():
    delays = [1000, 2000, 4000]
    assert compute_backoff(1, delays) == 1.0
    assert compute_backoff(2, delays) == 2.0
    assert compute_backoff(3, delays) == 4.0


def test_compute_backoff_reuses_last_delay():
    assert compute_backoff(7, [100, 250]) == 0.25


@pytest.mark.parametrize(
    "error",
    [
        Exception("read ECONNRESET"),
        Exception("connect ETIMEDOUT 10.0.0.1:443"),
        Exception("getaddrinfo ENOTFOUND api.example.com"),
        Exception("rate_limit_exceeded"),
        Exception("service_unavailable"),
        Exception("Request timeout"),
        Exception("Received HTTP 502"),
        CodedError(code="ETIMEDOUT"),
        CodedError(code=429),
        CodedError(status_code=503),
        ConnectionResetError(),
        TimeoutError(),
        GenerationTimeoutError("fetch", 1.0),
        socket.gaierror(-2, "Name or service not known"),
        ConnectionRefusedError(111, "Connection refused"),
        APITimeoutError("Request timed out."),
        Exception("Rate limit reached for gpt-4o-mini"),
        Exception("Service Unavailable"),
        CodedError(code="etimedout"),
    ],
)
def test_retryable_errors(error):
    assert is_retryable_error(error)


@pytest.mark.parametrize(
    "error",
    [
        ValueError("invalid input format"),
        KeyError("choices"),
        CodedError("bad request", status_code=400),
        ExecutionNotFoundError("exec-1"),
        StepNotFoundError("exec-1", "timeout_check"),
    ],
)
def test_non_retryable_errors(error):
    assert not is_retryable_error(error)
