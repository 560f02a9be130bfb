"""Format detection and parser dispatch."""

import posixpath
from typing import Callable, Dict, Optional
from urllib.parse import urlsplit

from . import dash, hls
from .models import ManifestDocument

PARSERS: Dict[str, Callable[[bytes, str], ManifestDocument]] = {
    hls.FORMAT: hls.parse,
    dash.FORMAT: dash.parse,
}


def detect_format(url: str, data: bytes) -> Optional[str]:
    """By extension first, then by the leading bytes. None if neither matches."""
    ext = posixpath.splitext(urlsplit(url).path)[1].lower()
    if ext in hls.PLAYLIST_EXTENSIONS:
        return hls.FORMAT
    if ext == ".mpd":
        return dash.FORMAT
    if hls.looks_like_hls(data):
        return hls.FORMAT
    if dash.looks_like_mpd(data):
        return dash.FORMAT
    return None


def parse_manifest(fmt: str, data: bytes, url: str) -> ManifestDocument:
    return PARSERS[fmt](data, url)
