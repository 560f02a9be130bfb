"""HLS playlist parsing."""

import logging
import posixpath
import re
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

from .errors import ManifestParseError
from .models import ManifestDocument, ResourceReference, Role
from .paths import resolve_url

logger = logging.getLogger(__name__)

FORMAT = "hls"

_BOM = b"\xef\xbb\xbf"

# NAME=VALUE pairs of an attribute list; quoted values may contain commas
_ATTRIBUTE_RE = re.compile(r'([A-Z0-9-]+)\s*=\s*("[^"]*"|[^",]*)')

MASTER_TAGS = frozenset({"EXT-X-STREAM-INF", "EXT-X-I-FRAME-STREAM-INF", "EXT-X-MEDIA"})

URI_ATTRIBUTE_ROLES = {
    "EXT-X-I-FRAME-STREAM-INF": Role.SUB_MANIFEST,
    "EXT-X-MEDIA": Role.SUB_MANIFEST,
    "EXT-X-RENDITION-REPORT": Role.SUB_MANIFEST,
    "EXT-X-KEY": Role.KEY,
    "EXT-X-SESSION-KEY": Role.KEY,
    "EXT-X-MAP": Role.INIT_SEGMENT,
    "EXT-X-PART": Role.MEDIA_SEGMENT,
}

SUBTITLE_EXTENSIONS = frozenset({".vtt", ".webvtt", ".srt", ".ttml", ".dfxp"})
PLAYLIST_EXTENSIONS = frozenset({".m3u8", ".m3u"})


def looks_like_hls(data: bytes) -> bool:
    return data.lstrip(b" \t\r\n").replace(_BOM, b"", 1).startswith(b"#EXTM3U")


def _extension(url: str) -> str:
    return posixpath.splitext(urlsplit(url).path)[1].lower()


def uri_line_role(url: str) -> Role:
    ext = _extension(url)
    if ext in PLAYLIST_EXTENSIONS:
        return Role.SUB_MANIFEST
    if ext in SUBTITLE_EXTENSIONS:
        return Role.TEXT_TRACK
    return Role.MEDIA_SEGMENT


def find_uri_attribute(line: str) -> Optional[Tuple[str, int, int]]:
    """Value and character span of the URI attribute of a tag line."""
    colon = line.find(":")
    if colon < 0:
        return None
    for m in _ATTRIBUTE_RE.finditer(line, colon + 1):
        if m.group(1) != "URI":
            continue
        value = m.group(2)
        start, end = m.start(2), m.end(2)
        if value.startswith('"'):
            start, end = start + 1, end - 1
        return line[start:end], start, end
    return None


def _byte_offset(text: str, index: int) -> int:
    return len(text[:index].encode("utf-8", "surrogateescape"))


def parse(data: bytes, manifest_url: str) -> ManifestDocument:
    if not looks_like_hls(data):
        raise ManifestParseError(f"{manifest_url} is not an HLS playlist (missing #EXTM3U)")

    references: List[ResourceReference] = []
    kind = "media"
    expect_variant = False
    offset = 0

    def add(role: Role, uri: str, line: str, line_start: int, start: int, end: int) -> None:
        resolved = resolve_url(manifest_url, uri)
        if urlsplit(resolved).scheme.lower() not in ("http", "https"):
            logger.debug("Leaving non-HTTP URI untouched: %s", uri)
            return
        span = (line_start + _byte_offset(line, start), line_start + _byte_offset(line, end))
        references.append(ResourceReference(role, uri, resolved, manifest_url, span))

    for raw_line in data.splitlines(keepends=True):
        line_start = offset
        offset += len(raw_line)
        line = raw_line.decode("utf-8", "surrogateescape").rstrip("\r\n")
        stripped = line.strip().lstrip("\ufeff")
        if not stripped:
            continue

        if stripped.startswith("#"):
            if not stripped.startswith("#EXT"):
                continue
            tag = stripped[1:].split(":", 1)[0]
            if tag in MASTER_TAGS:
                kind = "master"
            if tag == "EXT-X-STREAM-INF":
                expect_variant = True
                continue
            role = URI_ATTRIBUTE_ROLES.get(tag)
            if role is None:
                continue
            found = find_uri_attribute(line)
            if found is None or not found[0].strip():
                continue
            uri, start, end = found
            add(role, uri, line, line_start, start, end)
            continue

        start = len(line) - len(line.lstrip())
        end = len(line.rstrip())
        uri = line[start:end]
        if expect_variant:
            role = Role.SUB_MANIFEST
            expect_variant = False
        else:
            role = uri_line_role(resolve_url(manifest_url, uri))
        add(role, uri, line, line_start, start, end)

    if expect_variant:
        logger.warning("%s: EXT-X-STREAM-INF without a URI line", manifest_url)

    return ManifestDocument(url=manifest_url, raw=data, format=FORMAT, kind=kind,
                            references=references)
