"""
HTTP Retry Policy

Shared request helper for the directory and SCIM clients: transport
failures, 429 and 5xx responses are retried with jittered exponential
backoff via tenacity. Any other error status is raised immediately.
"""

import logging
from typing import Any, Callable, Optional, Type

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from ..errors import AdapterError, HTTPStatusError, TransportError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_MAX = 20.0


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, AdapterError) and exc.retryable


def build_retrying(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_max: float = DEFAULT_BACKOFF_MAX,
) -> Retrying:
    """
    Retry policy for a single outbound call.

    Args:
        max_attempts: Total attempts including the first one
        backoff_max: Upper bound in seconds for one backoff sleep

    Returns:
        tenacity Retrying that re-raises the last error once attempts run out
    """
    return Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_random_exponential(multiplier=0.5, max=backoff_max),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def send_request(
    session: requests.Session,
    method: str,
    url: str,
    timeout: float,
    error_class: Type[HTTPStatusError],
    error_detail: Optional[Callable[[requests.Response], dict]] = None,
    **kwargs: Any,
) -> requests.Response:
    """
    Send one HTTP request and map failures onto the adapter error types.

    Args:
        session: Session carrying auth headers
        method: HTTP method
        url: Absolute URL
        timeout: Per-attempt timeout in seconds
        error_class: HTTPStatusError subclass raised for error statuses
        error_detail: Optional parser returning extra keyword arguments for
            ``error_class`` from an error response
        **kwargs: Passed through to ``session.request``

    Returns:
        The successful response

    Raises:
        TransportError: On connection failures, timeouts and broken responses
        HTTPStatusError: ``error_class`` for any status >= 400
    """
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except requests.RequestException as exc:
        raise TransportError(f"{method} {url} failed: {exc}") from exc

    if response.status_code >= 400:
        extra = error_detail(response) if error_detail else {"detail": response.text[:500] or None}
        raise error_class(response.status_code, method=method, url=url, **extra)

    return response
