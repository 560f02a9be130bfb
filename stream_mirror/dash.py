"""
MPEG-DASH MPD parsing.

The MPD is parsed into an ElementTree through expat directly so that every
element remembers where its start tag sits in the original bytes. That lets the
rewriter splice attribute values and BaseURL text without re-serializing XML.

BaseURL elements are stacked MPD -> Period -> AdaptationSet -> Representation,
each resolved against the level above. SegmentTemplate attributes, SegmentList
and SegmentBase are inherited Representation > AdaptationSet > Period.
"""

import datetime
import logging
import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from xml.parsers import expat

import isodate

from .errors import ManifestParseError, TemplateError
from .models import ManifestDocument, ResourceReference, Role
from .paths import is_directory_url, resolve_url
from .templates import expand_template, uses_identifier

logger = logging.getLogger(__name__)

FORMAT = "dash"

# segments listed per Representation at most
MAX_SEGMENTS = 100000

_START_TAG_RE = re.compile(
    rb"<[^\s/>]+((?:\s+[^\s=/>]+\s*=\s*(?:\"[^\"]*\"|'[^']*'))*)\s*(/?)>"
)
_ATTR_RE = re.compile(rb"([^\s=/>]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")
_XML_START_RE = re.compile(rb"^\s*(?:<\?xml[^>]*\?>\s*)?(?:<!--.*?-->\s*)*<", re.S)


def looks_like_mpd(data: bytes) -> bool:
    head = data[:4096].lstrip(b"\xef\xbb\xbf")
    return bool(_XML_START_RE.match(head)) and b"MPD" in head


# ---------------------------------------------------------------------------
# XML with byte offsets


@dataclass
class _StartTag:
    offset: int
    end: int
    self_closing: bool
    attrs: Dict[str, Tuple[int, int]]


class _OffsetTree:
    def __init__(self, data: bytes):
        self.data = data
        self._starts: Dict[ET.Element, int] = {}
        self._ends: Dict[ET.Element, int] = {}
        self._tags: Dict[ET.Element, Optional[_StartTag]] = {}
        self._builder = ET.TreeBuilder()
        self._parser = expat.ParserCreate(namespace_separator="}")
        self._parser.StartElementHandler = self._start
        self._parser.EndElementHandler = self._end
        self._parser.CharacterDataHandler = self._builder.data
        try:
            self._parser.Parse(data, True)
        except expat.ExpatError as e:
            raise ManifestParseError(f"invalid XML: {e}") from e
        self.root = self._builder.close()

    @staticmethod
    def _clark(name: str) -> str:
        return "{" + name if "}" in name else name

    def _start(self, name: str, attrs: Dict[str, str]) -> None:
        attrs = {self._clark(k): v for k, v in attrs.items()}
        elem = self._builder.start(self._clark(name), attrs)
        self._starts[elem] = self._parser.CurrentByteIndex

    def _end(self, name: str) -> None:
        elem = self._builder.end(self._clark(name))
        self._ends[elem] = self._parser.CurrentByteIndex

    def start_tag(self, elem: ET.Element) -> Optional[_StartTag]:
        if elem in self._tags:
            return self._tags[elem]
        tag = None
        offset = self._starts.get(elem)
        m = _START_TAG_RE.match(self.data, offset) if offset is not None else None
        if m:
            attrs = {}
            for a in _ATTR_RE.finditer(self.data, m.start(1), m.end(1)):
                group = 2 if a.group(2) is not None else 3
                name = a.group(1).decode("utf-8", "replace")
                attrs[name] = (a.start(group), a.end(group))
            tag = _StartTag(offset, m.end(), m.group(2) == b"/", attrs)
        else:
            logger.debug("Could not locate start tag of <%s>", _local(elem.tag))
        self._tags[elem] = tag
        return tag

    def attr_span(self, elem: ET.Element, name: str) -> Optional[Tuple[int, int]]:
        tag = self.start_tag(elem)
        if tag is None:
            return None
        return tag.attrs.get(name)

    def text_span(self, elem: ET.Element) -> Optional[Tuple[int, int]]:
        """Span of the element's text content with surrounding whitespace trimmed."""
        tag = self.start_tag(elem)
        end = self._ends.get(elem)
        if tag is None or tag.self_closing or end is None or end <= tag.end:
            return None
        start = tag.end
        while start < end and self.data[start:start + 1].isspace():
            start += 1
        while end > start and self.data[end - 1:end].isspace():
            end -= 1
        if start == end:
            return None
        return start, end


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(elem: ET.Element, name: str) -> List[ET.Element]:
    return [c for c in elem if isinstance(c.tag, str) and _local(c.tag) == name]


def _child(elem: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if elem is None:
        return None
    found = _children(elem, name)
    return found[0] if found else None


# ---------------------------------------------------------------------------
# durations and timelines


def parse_duration(value: Optional[str]) -> Optional[float]:
    """ISO-8601 duration in seconds, or None."""
    if not value:
        return None
    try:
        d = isodate.parse_duration(value.strip())
    except (isodate.ISO8601Error, ValueError) as e:
        logger.warning("Ignoring bad duration %r: %s", value, e)
        return None
    if isinstance(d, isodate.Duration):
        d = d.totimedelta(start=datetime.datetime(1970, 1, 1))
    return d.total_seconds()


def _int_attr(value: Optional[str], default: Optional[int] = None) -> Optional[int]:
    if value is None or value.strip() == "":
        return default
    return int(value.strip())


def expand_timeline(entries: Sequence[Tuple[Optional[int], int, int]], start_number: int = 1,
                    end_time: Optional[int] = None,
                    max_segments: Optional[int] = None) -> List[Tuple[int, int]]:
    """
    Turn SegmentTimeline ``S`` entries ``(t, d, r)`` into ``(number, time)`` pairs.

    ``r == -1`` repeats up to the next explicit ``t`` or, for the last entry, up
    to ``end_time`` (in timescale units). At most ``max_segments`` pairs are
    returned (default ``MAX_SEGMENTS``).
    """
    cap = MAX_SEGMENTS if max_segments is None else max_segments
    out: List[Tuple[int, int]] = []
    number = start_number
    current: Optional[int] = None
    for idx, (t, d, r) in enumerate(entries):
        if t is not None:
            current = t
        elif current is None:
            current = 0
        if d <= 0:
            raise TemplateError(f"SegmentTimeline entry with non-positive duration {d}")
        if r < 0:
            until = entries[idx + 1][0] if idx + 1 < len(entries) else end_time
            if until is None:
                logger.warning("Open-ended S@r=-1 without a known period end; using one segment")
                r = 0
            else:
                r = max(0, math.ceil((until - current) / d) - 1)
        for _ in range(r + 1):
            if len(out) >= cap:
                logger.warning("SegmentTimeline truncated at %d segments", cap)
                return out
            out.append((number, current))
            number += 1
            current += d
    return out


def _timeline_entries(timeline: ET.Element) -> List[Tuple[Optional[int], int, int]]:
    entries = []
    for s in _children(timeline, "S"):
        d = _int_attr(s.get("d"))
        if d is None:
            raise TemplateError("SegmentTimeline S element without @d")
        entries.append((_int_attr(s.get("t")), d, _int_attr(s.get("r"), 0)))
    return entries


# ---------------------------------------------------------------------------


def _clean_baseurl_text(text: Optional[str]) -> Optional[str]:
    """
    Ignore empty BaseURL values. Everything else, including a bare "/" (the
    host root), is resolved against the parent base.
    """
    if text is None:
        return None
    t = text.strip()
    if t == "":
        return None
    return t


def _is_text_track(*elems: Optional[ET.Element]) -> bool:
    for e in elems:
        if e is None:
            continue
        if (e.get("contentType") or "").lower() == "text":
            return True
        mime = (e.get("mimeType") or "").lower()
        if mime.startswith("text/") or mime.startswith("application/ttml"):
            return True
        codecs = (e.get("codecs") or "").lower()
        if codecs == "wvtt" or codecs.startswith("stpp"):
            return True
    return False


@dataclass
class _BaseSite:
    elem: ET.Element
    raw: str
    resolved: str
    chosen: bool


class _MPDWalker:
    def __init__(self, tree: _OffsetTree, manifest_url: str):
        self.tree = tree
        self.manifest_url = manifest_url
        self.references: List[ResourceReference] = []

    # -- BaseURL -----------------------------------------------------------

    def _base(self, elem: ET.Element, parent_base: str) -> Tuple[str, List[_BaseSite]]:
        sites: List[_BaseSite] = []
        chosen: Optional[str] = None
        for b in _children(elem, "BaseURL"):
            raw = (b.text or "").strip()
            cleaned = _clean_baseurl_text(raw)
            if cleaned is None:
                sites.append(_BaseSite(b, raw, resolve_url(parent_base, "./"), False))
            elif chosen is None:
                chosen = resolve_url(parent_base, cleaned)
                sites.append(_BaseSite(b, raw, chosen, True))
            else:
                sites.append(_BaseSite(b, raw, "", False))
        base = chosen or parent_base
        for site in sites:
            if not site.resolved:
                site.resolved = base
        return base, sites

    def _base_references(self, sites: List[_BaseSite], parent_base: str,
                         leaf_role: Optional[Role] = None) -> List[ResourceReference]:
        refs = []
        for site in sites:
            span = self.tree.text_span(site.elem)
            role = Role.BASE_URL
            if site.chosen and leaf_role is not None and not is_directory_url(site.resolved):
                role = leaf_role
            elif span is None:
                continue
            refs.append(ResourceReference(role, site.raw, site.resolved, parent_base, span))
        return refs

    # -- segment addressing ------------------------------------------------

    def _template_attr(self, chain: List[ET.Element], name: str) -> Optional[Tuple[str, ET.Element]]:
        for st in chain:
            value = st.get(name)
            if value is not None:
                return value, st
        return None

    def _template_ref(self, role: Role, value: str, owner: ET.Element, attr: str,
                      base: str, url: str) -> ResourceReference:
        return ResourceReference(role, value, url, base, self.tree.attr_span(owner, attr),
                                 template=resolve_url(base, value.strip()))

    def _segment_template(self, chain: List[ET.Element], rep: ET.Element, base: str,
                          period_seconds: Optional[float], media_role: Role) -> List[ResourceReference]:
        refs: List[ResourceReference] = []
        rep_id = rep.get("id")
        bandwidth = _int_attr(rep.get("bandwidth"))

        for attr, role in (("initialization", Role.INIT_SEGMENT), ("index", Role.MEDIA_SEGMENT)):
            found = self._template_attr(chain, attr)
            if found and found[0].strip():
                value, owner = found
                url = resolve_url(base, expand_template(value.strip(), rep_id, bandwidth=bandwidth))
                refs.append(self._template_ref(role, value, owner, attr, base, url))

        found = self._template_attr(chain, "media")
        if not found or not found[0].strip():
            return refs
        media, owner = found

        def attr_value(name: str) -> Optional[str]:
            hit = self._template_attr(chain, name)
            return hit[0] if hit else None

        timescale = _int_attr(attr_value("timescale"), 1)
        if timescale <= 0:
            raise TemplateError(f"bad timescale {timescale}")
        start_number = _int_attr(attr_value("startNumber"), 1)
        pto = _int_attr(attr_value("presentationTimeOffset"), 0)
        end_time = None
        if period_seconds is not None:
            end_time = pto + int(round(period_seconds * timescale))

        timeline = None
        for st in chain:
            timeline = _child(st, "SegmentTimeline")
            if timeline is not None:
                break

        if timeline is not None:
            segments = expand_timeline(_timeline_entries(timeline), start_number, end_time)
        elif not (uses_identifier(media, "Number") or uses_identifier(media, "Time")):
            segments = [(start_number, pto)]
        else:
            duration = _int_attr(attr_value("duration"))
            if duration is None or duration <= 0:
                raise TemplateError(f"no SegmentTimeline or @duration for {media!r}")
            end_number = _int_attr(attr_value("endNumber"))
            if end_number is not None:
                count = end_number - start_number + 1
            elif period_seconds is not None:
                count = math.ceil(round(period_seconds * timescale / duration, 6))
            else:
                raise TemplateError(f"cannot determine segment count for {media!r} "
                                    "(no endNumber and no period duration)")
            if count > MAX_SEGMENTS:
                logger.warning("%s: %d segments, keeping the first %d", media, count, MAX_SEGMENTS)
                count = MAX_SEGMENTS
            segments = [(start_number + i, pto + i * duration) for i in range(max(count, 0))]

        for number, time in segments:
            expanded = expand_template(media.strip(), rep_id, number=number, time=time,
                                       bandwidth=bandwidth)
            refs.append(self._template_ref(media_role, media, owner, "media", base,
                                           resolve_url(base, expanded)))
        return refs

    def _source_ref(self, elem: Optional[ET.Element], attr: str, role: Role,
                    base: str) -> List[ResourceReference]:
        if elem is None:
            return []
        value = elem.get(attr)
        if value is None or not value.strip():
            return []
        return [ResourceReference(role, value, resolve_url(base, value.strip()), base,
                                  self.tree.attr_span(elem, attr))]

    def _segment_list(self, seg_list: ET.Element, base: str,
                      media_role: Role) -> Tuple[List[ResourceReference], bool]:
        refs = self._source_ref(_child(seg_list, "Initialization"), "sourceURL",
                                Role.INIT_SEGMENT, base)
        needs_base_file = False
        for su in _children(seg_list, "SegmentURL"):
            if su.get("media") is None or not su.get("media").strip():
                needs_base_file = True
            else:
                refs.extend(self._source_ref(su, "media", media_role, base))
            refs.extend(self._source_ref(su, "index", Role.MEDIA_SEGMENT, base))
        return refs, needs_base_file

    # -- structure -----------------------------------------------------------

    def _representation(self, rep: ET.Element, aset: ET.Element, period: ET.Element,
                        aset_base: str, period_seconds: Optional[float]) -> List[ResourceReference]:
        rep_base, sites = self._base(rep, aset_base)
        text = _is_text_track(aset, rep)
        media_role = Role.TEXT_TRACK if text else Role.MEDIA_SEGMENT
        levels = [rep, aset, period]

        templates = [t for t in (_child(e, "SegmentTemplate") for e in levels) if t is not None]
        seg_list = next((s for s in (_child(e, "SegmentList") for e in levels) if s is not None), None)
        seg_base = next((s for s in (_child(e, "SegmentBase") for e in levels) if s is not None), None)

        refs: List[ResourceReference] = []
        needs_base_file = False
        if templates:
            refs.extend(self._segment_template(templates, rep, rep_base, period_seconds, media_role))
        elif seg_list is not None:
            list_refs, needs_base_file = self._segment_list(seg_list, rep_base, media_role)
            refs.extend(list_refs)
        else:
            if seg_base is not None:
                refs.extend(self._source_ref(_child(seg_base, "Initialization"), "sourceURL",
                                             Role.INIT_SEGMENT, rep_base))
                refs.extend(self._source_ref(_child(seg_base, "RepresentationIndex"), "sourceURL",
                                             Role.MEDIA_SEGMENT, rep_base))
            needs_base_file = True

        leaf_role = None
        if needs_base_file:
            if is_directory_url(rep_base):
                logger.debug("Representation %s has no media URL", rep.get("id"))
            else:
                leaf_role = media_role
        base_refs = self._base_references(sites, aset_base, leaf_role)
        if leaf_role is not None and not any(r.role is leaf_role for r in base_refs):
            # media file named by an outer BaseURL
            base_refs.append(ResourceReference(leaf_role, rep_base, rep_base, aset_base))
        return base_refs + refs

    def _period_durations(self, root: ET.Element, periods: List[ET.Element]) -> List[Optional[float]]:
        total = parse_duration(root.get("mediaPresentationDuration"))
        explicit_starts = [parse_duration(p.get("start")) for p in periods]
        declared = [parse_duration(p.get("duration")) for p in periods]

        starts: List[Optional[float]] = []
        previous_end: Optional[float] = 0.0
        for explicit, duration in zip(explicit_starts, declared):
            start = explicit if explicit is not None else previous_end
            starts.append(start)
            previous_end = start + duration if start is not None and duration is not None else None

        out: List[Optional[float]] = []
        last = len(periods) - 1
        for idx, (start, duration) in enumerate(zip(starts, declared)):
            if duration is None and start is not None:
                if idx < last and explicit_starts[idx + 1] is not None:
                    duration = explicit_starts[idx + 1] - start
                elif idx == last and total is not None:
                    duration = total - start
            out.append(duration)
        return out

    def walk(self) -> None:
        root = self.tree.root
        for loc in _children(root, "Location"):
            raw = (loc.text or "").strip()
            if raw:
                self.references.append(ResourceReference(
                    Role.SUB_MANIFEST, raw, resolve_url(self.manifest_url, raw), self.manifest_url,
                    self.tree.text_span(loc)))

        mpd_base, sites = self._base(root, self.manifest_url)
        self.references.extend(self._base_references(sites, self.manifest_url))

        periods = _children(root, "Period")
        durations = self._period_durations(root, periods)
        for period, period_seconds in zip(periods, durations):
            period_base, sites = self._base(period, mpd_base)
            self.references.extend(self._base_references(sites, mpd_base))
            for aset in _children(period, "AdaptationSet"):
                aset_base, sites = self._base(aset, period_base)
                self.references.extend(self._base_references(sites, period_base))
                for rep in _children(aset, "Representation"):
                    try:
                        self.references.extend(
                            self._representation(rep, aset, period, aset_base, period_seconds))
                    except (TemplateError, ValueError) as e:
                        logger.warning("Skipping Representation %s in %s: %s",
                                       rep.get("id"), self.manifest_url, e)


def parse(data: bytes, manifest_url: str) -> ManifestDocument:
    tree = _OffsetTree(data)
    if _local(tree.root.tag) != "MPD":
        raise ManifestParseError(f"{manifest_url}: root element is <{_local(tree.root.tag)}>, not <MPD>")
    walker = _MPDWalker(tree, manifest_url)
    walker.walk()
    kind = (tree.root.get("type") or "static").strip()
    return ManifestDocument(url=manifest_url, raw=data, format=FORMAT, kind=kind,
                            references=walker.references)
