import pytest

from stream_mirror import dash, hls
from stream_mirror.errors import RewriteError
from stream_mirror.models import ResourceReference, Role
from stream_mirror.rewriter import local_reference, rewrite

MEDIA_URL = "https://example.com/vod/low/index.m3u8"

MEDIA = b"""#EXTM3U
#EXT-X-TARGETDURATION:10
#EXT-X-KEY:METHOD=AES-128,URI="https://keys.example.com/k1?id=5"
#EXT-X-MAP:URI="init.mp4"
#EXTINF:10.0,
seg0.ts?token=abc
#EXTINF:10.0,
seg1.ts?token=abc
#EXT-X-KEY:METHOD=SAMPLE-AES,URI="skd://fairplay-key"
#EXTINF:4.0,
subs/part1.vtt
#EXT-X-ENDLIST
"""

EXPECTED = b"""#EXTM3U
#EXT-X-TARGETDURATION:10
#EXT-X-KEY:METHOD=AES-128,URI="../../../keys.example.com/k1~~id~3D5"
#EXT-X-MAP:URI="init.mp4"
#EXTINF:10.0,
seg0~~token~3Dabc.ts
#EXTINF:10.0,
seg1~~token~3Dabc.ts
#EXT-X-KEY:METHOD=SAMPLE-AES,URI="skd://fairplay-key"
#EXTINF:4.0,
subs/part1.vtt
#EXT-X-ENDLIST
"""


def test_media_playlist_rewrite():
    doc = hls.parse(MEDIA, MEDIA_URL)
    assert rewrite(MEDIA, doc.references) == EXPECTED


def test_master_rewrite_to_other_host():
    data = b"#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\nhttps://cdn.example.com/high/index.m3u8?token=xyz\n"
    doc = hls.parse(data, "https://example.com/vod/master.m3u8")
    assert rewrite(data, doc.references) == (
        b"#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1\n../../cdn.example.com/high/index~~token~3Dxyz.m3u8\n")


def test_rewrite_is_stable():
    doc = hls.parse(MEDIA, MEDIA_URL)
    assert rewrite(MEDIA, doc.references) == rewrite(MEDIA, doc.references)


def test_no_references_copies_bytes():
    data = b"#EXTM3U\n#EXT-X-ENDLIST\n"
    assert rewrite(data, []) == data


def test_mpd_base_url_rewrite():
    data = b"""<?xml version="1.0" encoding="UTF-8"?>
<MPD xmlns="urn:mpeg:dash:schema:mpd:2011" type="static" mediaPresentationDuration="PT10S">
  <BaseURL>https://cdn.example.com/a/</BaseURL>
  <Period>
    <AdaptationSet mimeType="video/mp4">
      <SegmentTemplate media="$RepresentationID$/chunk-$Number$.m4s"
                       initialization="$RepresentationID$/init.mp4" duration="2"/>
      <Representation id="v1" bandwidth="500000">
        <BaseURL>b/</BaseURL>
      </Representation>
    </AdaptationSet>
  </Period>
</MPD>
"""
    doc = dash.parse(data, "https://origin.example.com/live/manifest.mpd")
    out = rewrite(data, doc.references)
    assert out == data.replace(b">https://cdn.example.com/a/<", b">../../cdn.example.com/a/<")


def test_mpd_template_with_query_is_folded():
    data = b"""<MPD type="static" mediaPresentationDuration="PT4S"><Period><AdaptationSet>
<SegmentTemplate media="chunk-$Number$.m4s?tok=1" duration="2"/>
<Representation id="v1"/></AdaptationSet></Period></MPD>"""
    doc = dash.parse(data, "https://origin.example.com/live/manifest.mpd")
    out = rewrite(data, doc.references)
    assert b'media="chunk-$Number$~~tok~3D1.m4s"' in out


def test_overlapping_spans_are_rejected():
    refs = [
        ResourceReference(Role.MEDIA_SEGMENT, "a.ts", "https://h/a.ts", "https://h/x.m3u8", (0, 4)),
        ResourceReference(Role.MEDIA_SEGMENT, "ts", "https://h/ts", "https://h/x.m3u8", (2, 4)),
    ]
    with pytest.raises(RewriteError):
        rewrite(b"a.ts\n", refs)


def test_shared_span_uses_first_reference():
    refs = [
        ResourceReference(Role.MEDIA_SEGMENT, "a.ts", "https://h/a.ts", "https://h/x.m3u8", (0, 4)),
        ResourceReference(Role.MEDIA_SEGMENT, "a.ts", "https://h/b.ts", "https://h/x.m3u8", (0, 4)),
    ]
    assert rewrite(b"a.ts\n", refs) == b"a.ts\n"


def test_local_reference_for_directory_base_url():
    ref = ResourceReference(Role.BASE_URL, "/", "https://h/live/", "https://h/live/m.mpd", (0, 1))
    assert local_reference(ref) == "./"


def test_root_base_url_points_at_host_directory():
    data = b"""<MPD type="static" mediaPresentationDuration="PT4S"><BaseURL>/</BaseURL><Period>
<AdaptationSet><SegmentTemplate media="seg-$Number$.m4s" duration="2"/>
<Representation id="v"/></AdaptationSet></Period></MPD>"""
    doc = dash.parse(data, "https://h/live/x/manifest.mpd")
    out = rewrite(data, doc.references)
    assert b"<BaseURL>../../</BaseURL>" in out
    assert b'media="seg-$Number$.m4s"' in out
