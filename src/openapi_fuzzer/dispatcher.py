"""Sends payloads over HTTP, backing off while the server is overloaded."""

import logging
import threading
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Collection

import requests

from openapi_fuzzer.errors import TransportError
from openapi_fuzzer.generator.payload import Payload

logger = logging.getLogger(__name__)

DEFAULT_OVERLOAD_STATUS_CODES = (429, 503)


def retry_after_seconds(value: str | None) -> float | None:
    """Parse a Retry-After header: delay in seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


class Dispatcher:
    """HTTP client for one worker.

    A response whose status is in ``overload_status_codes`` is not a verdict:
    the request is retried after the server's Retry-After hint, or after
    ``backoff_unit * 2**attempt`` seconds, never waiting longer than
    ``max_backoff``. After ``max_backoff_attempts`` retries a TransportError
    is raised. Setting ``stop`` cuts a wait short and also raises
    TransportError. Every other response is returned as is.
    """

    def __init__(
        self,
        base_url: str,
        overload_status_codes: Collection[int] = DEFAULT_OVERLOAD_STATUS_CODES,
        max_backoff_attempts: int = 10,
        backoff_unit: float = 1.0,
        max_backoff: float = 60.0,
        timeout: float = 30.0,
        verify_tls: bool = True,
        session: requests.Session | None = None,
        sleep: Callable[[float], Any] | None = None,
        stop: threading.Event | None = None,
    ):
        self.base_url = base_url
        self.overload_status_codes = set(overload_status_codes)
        self.max_backoff_attempts = max_backoff_attempts
        self.backoff_unit = backoff_unit
        self.max_backoff = max_backoff
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.session = session or requests.Session()
        self.stop = stop
        if sleep is None:
            sleep = stop.wait if stop is not None else time.sleep
        self.sleep = sleep

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self) -> None:
        self.session.close()

    def _request(self, payload: Payload, url: str) -> requests.Response:
        try:
            return self.session.request(
                payload.method,
                url,
                params=payload.query_params,
                headers=dict(payload.header_items()),
                json=payload.body if payload.has_body else None,
                timeout=self.timeout,
                verify=self.verify_tls,
            )
        except (requests.RequestException, ValueError) as e:
            raise TransportError(f"{payload.method} {url}: {e}") from e

    def backoff_delay(self, attempt: int, response: requests.Response) -> float:
        delay = retry_after_seconds(response.headers.get("Retry-After"))
        if delay is None:
            delay = self.backoff_unit * 2**attempt
        return min(self.max_backoff, delay)

    def send(self, payload: Payload) -> requests.Response:
        url = payload.url(self.base_url)
        attempt = 0
        while True:
            response = self._request(payload, url)
            if response.status_code not in self.overload_status_codes:
                return response
            if attempt >= self.max_backoff_attempts:
                raise TransportError(
                    f"{payload.method} {url}: still {response.status_code} after {attempt} backoff attempts"
                )
            delay = self.backoff_delay(attempt, response)
            logger.debug("%s %s answered %d, retrying in %.1fs", payload.method, url, response.status_code, delay)
            self.sleep(delay)
            if self.stop is not None and self.stop.is_set():
                raise TransportError(f"{payload.method} {url}: stopped while backing off")
            attempt += 1
