"""
Command-line entry point.

Usage:
    stream-mirror --manifest https://example.com/path/to/master.m3u8 --out ./mirror

Options:
    --concurrency   Number of parallel downloads (default 8)
    --retry         Number of retries per file on transient errors (default 3)
    --timeout       Per-request timeout seconds (default 30)
    --headers       Extra HTTP headers, e.g. --headers "Authorization: Bearer TOKEN" (repeatable)
    --user-agent    Custom User-Agent string
    --only-domain   Only mirror resources on this host; others stay remote
    --dry-run       Fetch and parse manifests, list resources, write nothing
    --skip-existing Do not download leaf files that are already on disk
    --verbose       Chatty logging
"""

import argparse
import logging
import os
import sys
from typing import List, Optional
from urllib.parse import urlsplit

from .config import DEFAULT_OUTPUT_DIR, DEFAULT_USER_AGENT, MirrorConfig, merge_headers
from .scheduler import CrawlScheduler

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        prog="stream-mirror",
        description="Recursively mirror an HLS (.m3u8) or DASH (.mpd) stream for local hosting",
    )
    ap.add_argument("--manifest", required=True, help="Start manifest URL (master .m3u8 or .mpd)")
    ap.add_argument("--out", default=DEFAULT_OUTPUT_DIR, help="Output directory to mirror into")
    ap.add_argument("--concurrency", type=int, default=8)
    ap.add_argument("--retry", type=int, default=3)
    ap.add_argument("--timeout", type=float, default=30)
    ap.add_argument("--headers", action="append")
    ap.add_argument("--user-agent", default=DEFAULT_USER_AGENT)
    ap.add_argument("--only-domain")
    ap.add_argument("--dry-run", action="store_true")
    ap.add_argument("--skip-existing", action="store_true")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    parts = urlsplit(args.manifest)
    if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
        ap.error(f"--manifest must be an absolute http(s) URL, got {args.manifest!r}")
    if args.concurrency < 1:
        ap.error("--concurrency must be at least 1")
    if args.retry < 0:
        ap.error("--retry cannot be negative")
    return args


def build_config(args: argparse.Namespace) -> MirrorConfig:
    return MirrorConfig(
        output_root=args.out,
        concurrency=args.concurrency,
        retries=args.retry,
        timeout=args.timeout,
        user_agent=args.user_agent,
        headers=merge_headers(args.user_agent, args.headers),
        only_domain=args.only_domain,
        dry_run=args.dry_run,
        skip_existing=args.skip_existing,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )
    # urllib3 connection chatter drowns the per-file lines in verbose mode
    logging.getLogger("urllib3").setLevel(logging.INFO)

    config = build_config(args)
    report = CrawlScheduler(config).run(args.manifest)

    if args.dry_run:
        urls = report.urls()
        print(f"Discovered {len(urls)} resource(s).")
        for url in urls:
            print(url)

    for result in report.failed:
        origin = f" (in {result.parent})" if result.parent else ""
        print(f"[FAIL] {result.url} -> {result.error}{origin}", file=sys.stderr)
    if report.write_failures:
        print(f"{len(report.write_failures)} file(s) could not be written; "
              "check free space and permissions.", file=sys.stderr)

    print(f"Done. Success: {len(report.succeeded)}, Failed: {len(report.failed)}, "
          f"Skipped: {len(report.skipped)}. Output: {os.path.abspath(args.out)}")
    if report.interrupted:
        return 130
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
