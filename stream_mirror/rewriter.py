"""Splice local paths into manifest bytes."""

import logging
from typing import Callable, Dict, Iterable, Tuple

from .errors import RewriteError
from .models import ResourceReference, Role
from .paths import base_directory, is_directory_url, map_directory, map_template, map_url, relative_reference

logger = logging.getLogger(__name__)


def mapped_path(ref: ResourceReference) -> str:
    """Local path a reference's text should point at."""
    if ref.template is not None:
        return map_template(ref.template)
    if ref.role is Role.BASE_URL and is_directory_url(ref.resolved_url):
        return map_directory(ref.resolved_url)
    return map_url(ref.resolved_url)


def local_reference(ref: ResourceReference,
                    path_for: Callable[[ResourceReference], str] = mapped_path) -> str:
    """Replacement text for a reference, relative to the directory it resolves from."""
    directory = ref.role is Role.BASE_URL and is_directory_url(ref.resolved_url)
    return relative_reference(path_for(ref), base_directory(ref.base_url),
                              directory=directory, template=ref.template is not None)


def rewrite(original: bytes, references: Iterable[ResourceReference],
            path_for: Callable[[ResourceReference], str] = mapped_path) -> bytes:
    """
    Replace every reference's span in ``original`` with its local relative path.

    Spans shared by several references (a SegmentTemplate expands into many
    segments) are substituted once, by the first reference in extraction order.
    Everything outside the spans is copied byte for byte.
    """
    sites: Dict[Tuple[int, int], str] = {}
    for ref in references:
        if ref.span is None:
            continue
        replacement = local_reference(ref, path_for)
        existing = sites.get(ref.span)
        if existing is None:
            sites[ref.span] = replacement
        elif existing != replacement:
            logger.debug("Span %s already rewritten to %s; ignoring %s for %s",
                         ref.span, existing, replacement, ref.resolved_url)

    out = []
    cursor = 0
    for (start, end) in sorted(sites):
        if start < cursor:
            raise RewriteError(f"overlapping rewrite spans at byte {start}")
        out.append(original[cursor:start])
        out.append(sites[(start, end)].encode("utf-8", "surrogateescape"))
        cursor = end
    out.append(original[cursor:])
    return b"".join(out)
