"""HTTP fetching with retry/backoff on transient failures."""

import logging
import threading
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import NameResolutionError

from .errors import FetchCancelled, PermanentFetchError, TransientFetchError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 262144

_TRANSIENT_EXCEPTIONS = (
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


def _is_name_resolution_error(exc: BaseException) -> bool:
    """True if a NameResolutionError sits anywhere in the wrapped exception chain."""
    seen = set()
    stack = [exc]
    while stack:
        e = stack.pop()
        if id(e) in seen:
            continue
        seen.add(id(e))
        if isinstance(e, NameResolutionError):
            return True
        # requests wraps MaxRetryError(reason=NameResolutionError) in its args
        nested = [a for a in e.args if isinstance(a, BaseException)]
        nested.append(getattr(e, "reason", None))
        nested.extend((e.__cause__, e.__context__))
        stack.extend(n for n in nested if isinstance(n, BaseException))
    return False


def build_session(headers: Optional[Dict[str, str]] = None, pool_size: int = 8) -> requests.Session:
    s = requests.Session()
    # retries are handled by FetchClient so they can be classified and cancelled
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    if headers:
        s.headers.update(headers)
    return s


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    v = value.strip()
    if v.isdigit():
        return float(v)
    try:
        dt = parsedate_to_datetime(v)
    except (TypeError, ValueError):
        return None
    if not dt.tzinfo:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, (dt - datetime.now(tz=timezone.utc)).total_seconds())


class FetchClient:
    """
    ``fetch(url) -> bytes`` over a shared requests session.

    Timeouts, connection errors, HTTP 5xx and 429 are retried ``retries`` times
    with ``min(2 ** attempt, backoff_cap)`` seconds between attempts (or the
    server's Retry-After, within the same cap). Other 4xx answers, DNS
    resolution failures and TLS errors fail at once.
    """

    def __init__(self, headers: Optional[Dict[str, str]] = None, timeout: float = 30.0,
                 retries: int = 3, backoff_cap: float = 10.0, pool_size: int = 8,
                 session: Optional[requests.Session] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.session = session if session is not None else build_session(headers, pool_size)
        self.timeout = timeout
        self.retries = retries
        self.backoff_cap = backoff_cap
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()

    def fetch(self, url: str) -> bytes:
        attempt = 0
        while True:
            try:
                return self._fetch_once(url)
            except TransientFetchError as e:
                attempt += 1
                if attempt > self.retries:
                    raise PermanentFetchError(
                        url, f"giving up after {self.retries} retries: {e}", e.status) from e
                delay = min(2 ** attempt, self.backoff_cap)
                if e.retry_after is not None:
                    delay = min(e.retry_after, self.backoff_cap)
                logger.warning("Retry %d/%d in %.1fs: %s (%s)", attempt, self.retries, delay, url, e)
                if self.cancel_event.wait(delay):
                    raise FetchCancelled(url) from e

    def _fetch_once(self, url: str) -> bytes:
        if self.cancel_event.is_set():
            raise FetchCancelled(url)
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as r:
                status = r.status_code
                if status == 429 or status >= 500:
                    raise TransientFetchError(url, f"HTTP {status}", status,
                                              parse_retry_after(r.headers.get("Retry-After")))
                if status >= 400:
                    raise PermanentFetchError(url, f"HTTP {status}", status)
                chunks = []
                for chunk in r.iter_content(CHUNK_SIZE):
                    if self.cancel_event.is_set():
                        raise FetchCancelled(url)
                    if chunk:
                        chunks.append(chunk)
                return b"".join(chunks)
        except requests.exceptions.SSLError as e:
            raise PermanentFetchError(url, f"TLS error: {e}") from e
        except requests.ConnectionError as e:
            if _is_name_resolution_error(e):
                raise PermanentFetchError(url, f"cannot resolve host: {e}") from e
            raise TransientFetchError(url, str(e)) from e
        except _TRANSIENT_EXCEPTIONS as e:
            raise TransientFetchError(url, str(e)) from e
        except requests.RequestException as e:
            raise PermanentFetchError(url, str(e)) from e

    def close(self) -> None:
        self.session.close()
