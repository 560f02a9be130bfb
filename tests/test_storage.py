import os

import pytest

from stream_mirror.errors import OutputWriteError
from stream_mirror.storage import OutputWriter


def test_write_creates_parents_and_leaves_no_part(tmp_path):
    writer = OutputWriter(tmp_path)
    dest = writer.write("h/v/seg0.ts", b"data")
    assert dest == tmp_path / "h" / "v" / "seg0.ts"
    assert dest.read_bytes() == b"data"
    assert not (tmp_path / "h" / "v" / "seg0.ts.part").exists()
    assert writer.exists("h/v/seg0.ts")


def test_write_replaces_existing(tmp_path):
    writer = OutputWriter(tmp_path)
    writer.write("h/a.ts", b"old")
    writer.write("h/a.ts", b"new")
    assert (tmp_path / "h" / "a.ts").read_bytes() == b"new"


def test_write_manifest_keeps_original(tmp_path):
    writer = OutputWriter(tmp_path)
    writer.write_manifest("h/m.m3u8", b"rewritten", b"original")
    assert (tmp_path / "h" / "m.m3u8").read_bytes() == b"rewritten"
    assert (tmp_path / "h" / "m.m3u8.orig").read_bytes() == b"original"


def test_identical_original_is_not_rewritten(tmp_path):
    writer = OutputWriter(tmp_path)
    writer.write_manifest("h/m.m3u8", b"rewritten", b"original")
    orig = tmp_path / "h" / "m.m3u8.orig"
    os.utime(orig, ns=(10 ** 9, 10 ** 9))
    writer.write_manifest("h/m.m3u8", b"rewritten", b"original")
    assert orig.stat().st_mtime_ns == 10 ** 9
    writer.write_manifest("h/m.m3u8", b"rewritten", b"changed upstream")
    assert orig.read_bytes() == b"changed upstream"


@pytest.mark.parametrize("relpath", ["../escape.ts", "h/../../escape.ts", "/abs.ts"])
def test_paths_outside_root_are_refused(tmp_path, relpath):
    with pytest.raises(OutputWriteError):
        OutputWriter(tmp_path / "out").write(relpath, b"x")


def test_os_errors_become_write_errors(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"not a directory")
    with pytest.raises(OutputWriteError):
        OutputWriter(blocker).write("h/a.ts", b"x")


def test_file_and_directory_with_same_name_conflict(tmp_path):
    writer = OutputWriter(tmp_path)
    writer.write("h/live", b"extensionless file")
    with pytest.raises(OutputWriteError):
        writer.write("h/live/seg.ts", b"x")
    assert (tmp_path / "h" / "live").read_bytes() == b"extensionless file"
