"""
HTTP Time Source Probe

Samples the server clock with one cache-busted HEAD request and reads the
server's whole-second time from the Date response header.

The whole request, headers included, is time-boxed to whatever remains of
the run budget (never less than 1 ms), so a single slow request cannot hang
the run. Any failure (timeout, transport error, bad URL, missing or
malformed Date) yields None: a failed
probe carries no information and the caller simply tries again later.

Usage:
    probe = HttpTimeProbe("https://example.org")
    result = probe.probe(deadline_ms=monotonic_time_ms() + 2000)
    probe.close()
"""

from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Optional, Tuple
import logging
import math
import secrets
import threading

import httpx

from ..interfaces.messages import ProbeResult
from .clock import monotonic_time_ms

logger = logging.getLogger(__name__)

# Minimum request timeout, even when the deadline has already passed
MIN_REQUEST_TIMEOUT_MS = 1.0


class ProbeError(Exception):
    """Response did not carry a usable server time."""


def request_timeout_s(deadline_ms: float, now_ms: float) -> float:
    """Total time allowed for one request, in seconds."""
    return max(deadline_ms - now_ms, MIN_REQUEST_TIMEOUT_MS) / 1000.0


def parse_date_header(value: Optional[str]) -> int:
    """
    Parse an HTTP Date header into whole Unix seconds.

    Args:
        value: Header value, e.g. "Sun, 06 Nov 1994 08:49:37 GMT"

    Returns:
        Unix time truncated to whole seconds

    Raises:
        ProbeError: Header missing or not a valid HTTP date
    """
    if not value:
        raise ProbeError("Missing Date header")
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError) as e:
        raise ProbeError(f"Unparseable Date header {value!r}: {e}") from e
    if parsed.tzinfo is None:
        raise ProbeError(f"Date header without timezone: {value!r}")
    return math.floor(parsed.timestamp())


class HttpTimeProbe:
    """
    Time source backed by the Date header of an HTTP server.

    Each probe requests a fresh random path below base_url so that no cache
    between us and the server can answer on its behalf.
    """

    PATH_PREFIX = "serverTime"

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = monotonic_time_ms,
    ):
        """
        Initialize probe.

        Args:
            base_url: Server to sample, e.g. "https://example.org"
            client: Optional preconfigured httpx client (tests use MockTransport)
            clock: Local clock in epoch milliseconds
        """
        self.base_url = base_url.rstrip('/')
        self.clock = clock
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=False)
        self.probe_count = 0
        self.failure_count = 0

    def _random_url(self) -> str:
        return f"{self.base_url}/{self.PATH_PREFIX}.{secrets.token_hex(8)}"

    def probe(self, deadline_ms: float) -> Optional[ProbeResult]:
        """
        Perform one round trip against the server.

        Args:
            deadline_ms: Local time by which the run must end

        Returns:
            ProbeResult, or None if the probe failed
        """
        self.probe_count += 1
        url = self._random_url()

        sent_ms = self.clock()
        timeout_s = request_timeout_s(deadline_ms, sent_ms)
        try:
            response, received_ms = self._send(url, timeout_s)
            server_seconds = parse_date_header(response.headers.get('Date'))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self.failure_count += 1
            logger.debug(f"Probe {url} failed: {type(e).__name__}: {e}")
            return None
        except ProbeError as e:
            self.failure_count += 1
            logger.debug(f"Probe {url} unusable: {e}")
            return None

        round_trip_ms = received_ms - sent_ms
        return ProbeResult(
            server_seconds=server_seconds,
            local_sample_time_ms=sent_ms + round_trip_ms / 2,
            round_trip_ms=round_trip_ms,
        )

    def _send(self, url: str, timeout_s: float) -> Tuple[httpx.Response, float]:
        """
        Send the HEAD request with a total time limit.

        httpx timeouts apply to each phase separately (connect, write, every
        read), so a server trickling out its headers can outlast them. The
        request runs on a daemon thread and is abandoned if it has not
        completed within timeout_s.

        Returns:
            (response, local receive time in ms)

        Raises:
            ProbeError: No complete response in time
        """
        outcome: Dict[str, Any] = {}

        def send():
            try:
                outcome['response'] = self._client.head(
                    url,
                    timeout=timeout_s,
                    headers={'Cache-Control': 'no-cache'},
                )
                outcome['received_ms'] = self.clock()
            except Exception as e:
                # Re-raised on the probing thread
                outcome['error'] = e

        thread = threading.Thread(target=send, name="HttpTimeProbe-request", daemon=True)
        thread.start()
        thread.join(timeout_s)

        if thread.is_alive():
            raise ProbeError(f"No complete response within {timeout_s * 1000:.0f}ms")
        if 'error' in outcome:
            raise outcome['error']
        return outcome['response'], outcome['received_ms']

    def close(self):
        """Release the HTTP client if this probe created it."""
        if self._owns_client:
            self._client.close()
