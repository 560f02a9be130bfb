"""Exception hierarchy shared by the mirror components."""

from typing import Optional


class MirrorError(Exception):
    """Base class for every error raised by stream_mirror."""


# ---------------------------------------------------------------------------


class FetchError(MirrorError):
    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status = status


class TransientFetchError(FetchError):
    """Timeout, connection reset, 5xx or 429. Worth another attempt."""

    def __init__(self, url: str, message: str, status: Optional[int] = None,
                 retry_after: Optional[float] = None):
        super().__init__(url, message, status)
        self.retry_after = retry_after


class PermanentFetchError(FetchError):
    """4xx, unusable URL, or a transient error that ran out of retries."""


class FetchCancelled(MirrorError):
    """The run was interrupted while a fetch was in flight."""


# ---------------------------------------------------------------------------


class ManifestParseError(MirrorError):
    """The manifest could not be parsed at the top level."""


class TemplateError(ManifestParseError):
    """A DASH segment template could not be expanded."""


class RewriteError(MirrorError):
    pass


class OutputWriteError(MirrorError):
    def __init__(self, path: str, message: str):
        super().__init__(message)
        self.path = path
