from __future__ import annotations
import json
import random
from dataclasses import dataclass
from typing import Callable, List, Optional

import requests

from tubelift.config.upload_defaults import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_JITTER_SECONDS,
    FORBIDDEN,
    RATE_LIMIT_REASONS,
    REQUEST_TIMEOUT,
    TOO_MANY_REQUESTS,
    SESSION_GONE,
)
from tubelift.errors import ErrorKind


def _error_reasons(body) -> List[str]:
    """Reason codes from a Google JSON error body (top-level or nested under "error")"""
    if not body:
        return []
    try:
        data = json.loads(body)
    except ValueError:
        return []
    if not isinstance(data, dict):
        return []
    error = data.get("error")
    details = data.get("errors") or []
    if isinstance(error, dict):
        details = details + (error.get("errors") or []) + (error.get("details") or [])
    return [d.get("reason") for d in details if isinstance(d, dict) and d.get("reason")]


def classify_status(status: int, body: Optional[str] = None) -> ErrorKind:
    """
    Map a failed HTTP status onto an error kind.
    YouTube reports quota throttling as 403 with a rate-limit reason in the body.
    """
    if status == TOO_MANY_REQUESTS:
        return ErrorKind.RATE_LIMITED
    if status == FORBIDDEN and RATE_LIMIT_REASONS.intersection(_error_reasons(body)):
        return ErrorKind.RATE_LIMITED
    if status == REQUEST_TIMEOUT:
        return ErrorKind.NETWORK_FAILURE
    if status in SESSION_GONE:
        return ErrorKind.INVALID_SESSION
    if status >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.CLIENT_ERROR


def classify_exception(exc: BaseException) -> Optional[ErrorKind]:
    """Transport exceptions (timeouts included) are network failures"""
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return ErrorKind.NETWORK_FAILURE
    if isinstance(exc, requests.exceptions.ChunkedEncodingError):
        return ErrorKind.NETWORK_FAILURE
    return None


@dataclass(frozen=True)
class Decision:
    retry: bool
    delay: float = 0.0

    @classmethod
    def retry_after(cls, delay: float) -> "Decision":
        return cls(True, delay)

    @classmethod
    def abort(cls) -> "Decision":
        return cls(False)


class RetryPolicy:
    """
    Per-chunk retry decisions with capped exponential backoff plus jitter.

    `attempt` is the number of failures seen so far for the current chunk
    (1 after the first failure). Transient kinds are retried while
    attempt < max_attempts; everything else aborts immediately.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BACKOFF_BASE_SECONDS,
        max_delay: float = DEFAULT_BACKOFF_MAX_SECONDS,
        jitter: float = DEFAULT_JITTER_SECONDS,
        rand: Callable[[], float] = random.random,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.rand = rand

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.UPLOAD_MAX_ATTEMPTS,
            base_delay=settings.UPLOAD_BACKOFF_BASE_SECONDS,
            max_delay=settings.UPLOAD_BACKOFF_MAX_SECONDS,
        )

    def backoff(self, attempt: int) -> float:
        delay = self.base_delay * (2 ** (attempt - 1)) + self.jitter * self.rand()
        return min(delay, self.max_delay)

    def should_retry(self, attempt: int, error: Optional[ErrorKind]) -> Decision:
        if error is None or not error.is_transient:
            return Decision.abort()
        if attempt >= self.max_attempts:
            return Decision.abort()
        return Decision.retry_after(self.backoff(attempt))
