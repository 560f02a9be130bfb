import threading
from typing import Dict, List, Union

from stream_mirror.errors import PermanentFetchError


class FakeFetcher:
    """In-memory stand-in for FetchClient. Unknown URLs answer 404."""

    def __init__(self, responses: Dict[str, Union[bytes, Exception]]):
        self.responses = dict(responses)
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fetch(self, url: str) -> bytes:
        with self._lock:
            self.calls.append(url)
        value = self.responses.get(url)
        if value is None:
            raise PermanentFetchError(url, "HTTP 404", 404)
        if isinstance(value, Exception):
            raise value
        return value

    def close(self) -> None:
        pass
