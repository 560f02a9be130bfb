import pytest

from stream_mirror import cli
from stream_mirror.models import MirrorReport, Role, TaskResult, TaskState

MANIFEST = "https://example.com/vod/master.m3u8"


class _StubScheduler:
    report = MirrorReport()

    def __init__(self, config):
        self.config = config
        type(self).last_config = config

    def run(self, start_url):
        return self.report


@pytest.fixture
def stub_scheduler(monkeypatch):
    monkeypatch.setattr(cli, "CrawlScheduler", _StubScheduler)
    _StubScheduler.report = MirrorReport()
    return _StubScheduler


def test_defaults():
    args = cli.parse_args(["--manifest", MANIFEST])
    config = cli.build_config(args)
    assert str(config.output_root) == "stream_mirror_out"
    assert config.concurrency == 8
    assert config.retries == 3
    assert config.headers == {"User-Agent": "stream-mirror/0.1"}


def test_headers_are_merged():
    args = cli.parse_args(["--manifest", MANIFEST, "--user-agent", "ua/1",
                           "--headers", "Authorization: Bearer x", "--headers", "no-colon"])
    assert cli.build_config(args).headers == {"User-Agent": "ua/1", "Authorization": "Bearer x"}


@pytest.mark.parametrize("argv", [
    ["--manifest", "ftp://example.com/master.m3u8"],
    ["--manifest", "master.m3u8"],
    ["--manifest", MANIFEST, "--concurrency", "0"],
    ["--manifest", MANIFEST, "--retry", "-1"],
    [],
])
def test_usage_errors(argv):
    with pytest.raises(SystemExit) as info:
        cli.parse_args(argv)
    assert info.value.code == 2


def test_success_exit_code(stub_scheduler, tmp_path, capsys):
    stub_scheduler.report.add(TaskResult(MANIFEST, Role.SUB_MANIFEST, TaskState.DONE, "x"))
    assert cli.main(["--manifest", MANIFEST, "--out", str(tmp_path), "--only-domain", "example.com"]) == 0
    assert "Done. Success: 1, Failed: 0" in capsys.readouterr().out
    assert stub_scheduler.last_config.only_domain == "example.com"


def test_failures_exit_non_zero(stub_scheduler, tmp_path, capsys):
    stub_scheduler.report.add(TaskResult(MANIFEST, Role.SUB_MANIFEST, TaskState.DONE, "x"))
    stub_scheduler.report.add(TaskResult("https://example.com/vod/seg.ts", Role.MEDIA_SEGMENT,
                                         TaskState.FAILED, "y", "disk full", "write", MANIFEST))
    assert cli.main(["--manifest", MANIFEST, "--out", str(tmp_path)]) == 1
    err = capsys.readouterr().err
    assert "[FAIL] https://example.com/vod/seg.ts -> disk full (in %s)" % MANIFEST in err
    assert "could not be written" in err


def test_interrupted_exit_code(stub_scheduler, tmp_path):
    stub_scheduler.report.interrupted = True
    assert cli.main(["--manifest", MANIFEST, "--out", str(tmp_path)]) == 130


def test_dry_run_lists_resources(stub_scheduler, tmp_path, capsys):
    stub_scheduler.report.add(TaskResult(MANIFEST, Role.SUB_MANIFEST, TaskState.DONE, "x"))
    stub_scheduler.report.add(TaskResult("https://example.com/vod/seg.ts", Role.MEDIA_SEGMENT,
                                         TaskState.SKIPPED, "y"))
    assert cli.main(["--manifest", MANIFEST, "--out", str(tmp_path), "--dry-run"]) == 0
    out = capsys.readouterr().out
    assert "Discovered 2 resource(s)." in out
    assert "https://example.com/vod/seg.ts" in out
