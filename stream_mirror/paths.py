"""
URL -> local path mapping.

Every resource lands under ``<host>/<url path>`` inside the output root so that
siblings on the origin stay siblings on disk. Query strings are folded into the
file name::

    https://cdn.example.com/v/seg0.ts?token=abc  ->  cdn.example.com/v/seg0~~token~3Dabc.ts

Characters of the query outside ``[A-Za-z0-9_-]`` become ``~HH`` (one escape per
UTF-8 byte) and the encoded query is joined with ``~~``. Path segments escape a
literal ``~`` as ``~7E``, and an encoded query never contains ``.`` or two
``~`` in a row, so ``~~`` only ever appears as the query delimiter and a plain
file name cannot collide with a synthesized one.
"""

import posixpath
import re
import string
from typing import Callable, List
from urllib.parse import quote, unquote, urldefrag, urljoin, urlsplit

QUERY_DELIMITER = "~~"
INDEX_NAME = "~index"
ORIG_SUFFIX = ".orig"

_QUERY_SAFE = frozenset(string.ascii_letters + string.digits + "-_")
_REFERENCE_SAFE = "/~$-_.!*()=,;@+"
_DEFAULT_PORTS = {"http": 80, "https": 443}

# $$, $Name$ and $Name%0Nd$
TEMPLATE_TOKEN_RE = re.compile(r"(\$\$|\$[A-Za-z]+(?:%0\d+d)?\$)")


def _escape_bytes(text: str) -> str:
    return "".join("~%02X" % b for b in text.encode("utf-8", "surrogatepass"))


def encode_query(query: str) -> str:
    return "".join(ch if ch in _QUERY_SAFE else _escape_bytes(ch) for ch in query)


def _quote(text: str) -> str:
    return quote(text, safe=_REFERENCE_SAFE, errors="surrogateescape")


def _escape_segment(segment: str) -> str:
    decoded = unquote(segment, errors="surrogateescape")
    return decoded.replace("~", "~7E").replace("/", "~2F").replace("\x00", "~00")


def _split_tokens(text: str) -> List[str]:
    # odd indexes are template tokens
    return TEMPLATE_TOKEN_RE.split(text)


def _apply_outside_tokens(text: str, func: Callable[[str], str], dollar: str) -> str:
    pieces = _split_tokens(text)
    out = []
    for idx, piece in enumerate(pieces):
        if idx % 2 == 0:
            out.append(func(piece))
        elif piece == "$$":
            out.append(dollar)
        else:
            out.append(piece)
    return "".join(out)


def _host_dir(url: str) -> str:
    parts = urlsplit(url)
    host = (parts.hostname or "").lower() or "~nohost"
    host = host.replace("~", "~7E").replace(":", "~3A")
    try:
        port = parts.port
    except ValueError:
        port = None
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme.lower()):
        host = f"{host}_{port}"
    return host


def _segments(path: str, escape: Callable[[str], str]) -> List[str]:
    out: List[str] = []
    for raw in path.split("/"):
        seg = escape(raw)
        if seg in ("", "."):
            continue
        if seg == "..":
            if out:
                out.pop()
            continue
        out.append(seg)
    return out


def _is_directory_path(path: str) -> bool:
    if not path or path.endswith("/"):
        return True
    last = path.rsplit("/", 1)[-1]
    return last in (".", "..")


def _with_query(filename: str, encoded_query: str) -> str:
    if not encoded_query:
        return filename
    dot = filename.rfind(".")
    if dot > 0:
        return filename[:dot] + QUERY_DELIMITER + encoded_query + filename[dot:]
    return filename + QUERY_DELIMITER + encoded_query


def _map(url: str, template: bool) -> str:
    parts = urlsplit(url)
    if template:
        def escape(seg: str) -> str:
            return _apply_outside_tokens(seg, _escape_segment, "$$")

        query = _apply_outside_tokens(parts.query, encode_query, encode_query("$"))
    else:
        escape = _escape_segment
        query = encode_query(parts.query)
    segments = [_host_dir(url)] + _segments(parts.path, escape)
    if len(segments) == 1 or _is_directory_path(parts.path):
        segments.append(INDEX_NAME)
    segments[-1] = _with_query(segments[-1], query)
    return "/".join(segments)


# ---------------------------------------------------------------------------


def resolve_url(base: str, ref: str) -> str:
    """Absolute URL of ``ref`` against ``base``, fragment dropped."""
    return urldefrag(urljoin(base, ref))[0]


def map_url(url: str) -> str:
    """Relative local path for an absolute URL. Pure and deterministic."""
    return _map(url, template=False)


def map_template(url: str) -> str:
    """
    Like map_url, for a resolved DASH template URL. Template tokens survive, so
    expanding the mapped template gives the mapping of the expanded URL when the
    substituted values are plain alphanumerics.
    """
    return _map(url, template=True)


def map_directory(url: str) -> str:
    parts = urlsplit(url)
    return "/".join([_host_dir(url)] + _segments(parts.path, _escape_segment))


def is_directory_url(url: str) -> bool:
    return _is_directory_path(urlsplit(url).path)


def base_directory(url: str) -> str:
    """Local directory that references relative to ``url`` resolve against."""
    if is_directory_url(url):
        return map_directory(url)
    return posixpath.dirname(map_url(url))


def relative_reference(target: str, from_dir: str, directory: bool = False,
                       template: bool = False) -> str:
    """Percent-quoted relative URL from ``from_dir`` to ``target``."""
    rel = posixpath.relpath(target, from_dir or ".")
    if directory:
        rel = "./" if rel == "." else rel + "/"
    if template:
        return _apply_outside_tokens(rel, _quote, "$$")
    return _quote(rel)


def orig_path(path: str) -> str:
    return path + ORIG_SUFFIX
