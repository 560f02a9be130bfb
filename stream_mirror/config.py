"""Runtime settings for a mirror run."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "stream-mirror/0.1"
DEFAULT_OUTPUT_DIR = "stream_mirror_out"


@dataclass
class MirrorConfig:
    output_root: Path
    concurrency: int = 8
    retries: int = 3
    timeout: float = 30.0
    backoff_cap: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT
    headers: Dict[str, str] = field(default_factory=dict)
    only_domain: Optional[str] = None
    dry_run: bool = False
    skip_existing: bool = False

    def __post_init__(self) -> None:
        self.output_root = Path(self.output_root)
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if self.retries < 0:
            raise ValueError("retries cannot be negative")

    def request_headers(self) -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        headers.update(self.headers)
        return headers


def merge_headers(user_agent: str, raw_headers: Optional[Iterable[str]]) -> Dict[str, str]:
    """Turn repeated ``"Name: value"`` options into a header dict."""
    headers = {"User-Agent": user_agent}
    for h in raw_headers or ():
        if ":" not in h:
            logger.warning("Ignoring bad header: %s", h)
            continue
        k, v = h.split(":", 1)
        headers[k.strip()] = v.strip()
    return headers
