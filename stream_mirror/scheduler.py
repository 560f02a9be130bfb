"""
Crawl scheduling.

The crawl is a worklist: a bounded thread pool runs one task per resolved URL
and every task hands back the children it discovered. A URL is claimed in the
VisitedSet before it is queued, which is what keeps shared segments and
manifests that reference each other from being fetched twice.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional
from urllib.parse import urldefrag, urlsplit

from .config import MirrorConfig
from .errors import (FetchCancelled, ManifestParseError, OutputWriteError, PermanentFetchError,
                     RewriteError)
from .fetch import FetchClient
from .manifest import detect_format, parse_manifest
from .models import CrawlTask, ManifestDocument, MirrorReport, ResourceReference, Role, TaskResult, TaskState
from .paths import map_url
from .rewriter import rewrite
from .storage import OutputWriter

logger = logging.getLogger(__name__)

_LOG_PREFIX = {"hls": "[M3U8]", "dash": "[MPD ]"}


class VisitedSet:
    """Resolved URL -> task state, guarded by one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[str, TaskState] = {}

    def claim(self, url: str) -> bool:
        """Insert ``url`` as queued. False if it was already known."""
        with self._lock:
            if url in self._states:
                return False
            self._states[url] = TaskState.QUEUED
            return True

    def set_state(self, url: str, state: TaskState) -> None:
        with self._lock:
            self._states[url] = state

    def state(self, url: str) -> Optional[TaskState]:
        with self._lock:
            return self._states.get(url)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


class CrawlScheduler:
    def __init__(self, config: MirrorConfig, fetcher: Optional[FetchClient] = None,
                 writer: Optional[OutputWriter] = None):
        self.config = config
        self.cancel_event = threading.Event()
        self._owns_fetcher = fetcher is None
        if fetcher is None:
            fetcher = FetchClient(headers=config.request_headers(), timeout=config.timeout,
                                  retries=config.retries, backoff_cap=config.backoff_cap,
                                  pool_size=config.concurrency, cancel_event=self.cancel_event)
        self.fetcher = fetcher
        self.writer = writer if writer is not None else OutputWriter(config.output_root)
        self.visited = VisitedSet()
        self.report = MirrorReport()
        self._report_lock = threading.Lock()

    # -- helpers -------------------------------------------------------------

    def in_scope(self, url: str) -> bool:
        if not self.config.only_domain:
            return True
        return urlsplit(url).hostname == self.config.only_domain.lower()

    def _rewritable(self, ref: ResourceReference) -> bool:
        return self.in_scope(ref.template or ref.resolved_url)

    def _record(self, task: CrawlTask, state: TaskState, path: Optional[str] = None,
                error: Optional[BaseException] = None, error_kind: Optional[str] = None) -> None:
        self.visited.set_state(task.url, state)
        result = TaskResult(task.url, task.role, state, path,
                            str(error) if error is not None else None, error_kind, task.parent)
        with self._report_lock:
            self.report.add(result)

    def _discover(self, doc: ManifestDocument) -> List[CrawlTask]:
        children = []
        for ref in doc.fetchable_references():
            if not self.in_scope(ref.resolved_url):
                logger.debug("Out of scope, leaving remote: %s", ref.resolved_url)
                continue
            if self.visited.claim(ref.resolved_url):
                children.append(CrawlTask(ref.resolved_url, ref.role, doc.url))
        return children

    # -- task bodies ---------------------------------------------------------

    def _leaf(self, task: CrawlTask, path: str, data: Optional[bytes] = None) -> List[CrawlTask]:
        if data is None:
            if self.config.dry_run:
                logger.info("[DRY ] %s", task.url)
                self._record(task, TaskState.SKIPPED, path)
                return []
            if self.config.skip_existing and self.writer.exists(path):
                logger.debug("[SKIP] %s already at %s", task.url, path)
                self._record(task, TaskState.SKIPPED, path)
                return []
            self.visited.set_state(task.url, TaskState.FETCHING)
            data = self.fetcher.fetch(task.url)
        logger.info("[BIN ] %s -> %s", task.url, path)
        if not self.config.dry_run:
            self.writer.write(path, data)
        self._record(task, TaskState.DONE, path)
        return []

    def _manifest(self, task: CrawlTask, path: str) -> List[CrawlTask]:
        self.visited.set_state(task.url, TaskState.FETCHING)
        data = self.fetcher.fetch(task.url)
        fmt = detect_format(task.url, data)
        if fmt is None:
            logger.warning("%s is neither HLS nor DASH, saving as binary", task.url)
            return self._leaf(task, path, data)

        doc = parse_manifest(fmt, data, task.url)
        self.visited.set_state(task.url, TaskState.PARSED)
        logger.info("%s %s -> %s (%d reference(s))", _LOG_PREFIX[fmt], task.url, path,
                    len(doc.references))

        children = self._discover(doc)
        rewritten = rewrite(data, [r for r in doc.references if self._rewritable(r)])
        self.visited.set_state(task.url, TaskState.REWRITTEN)
        if not self.config.dry_run:
            self.writer.write_manifest(path, rewritten, data)
        self._record(task, TaskState.DONE, path)
        return children

    def _run_task(self, task: CrawlTask) -> List[CrawlTask]:
        path = map_url(task.url)
        try:
            if task.role is Role.SUB_MANIFEST:
                return self._manifest(task, path)
            return self._leaf(task, path)
        except PermanentFetchError as e:
            logger.error("[FAIL] %s -> %s (referenced by %s)", task.url, e,
                         task.parent or "command line")
            self._record(task, TaskState.FAILED, path, e, "fetch")
        except ManifestParseError as e:
            logger.error("[FAIL] %s -> unparseable manifest: %s", task.url, e)
            self._record(task, TaskState.FAILED, path, e, "parse")
        except RewriteError as e:
            logger.error("[FAIL] %s -> %s", task.url, e)
            self._record(task, TaskState.FAILED, path, e, "rewrite")
        except OutputWriteError as e:
            logger.error("[WRITE FAILED] %s -> %s (check disk space and permissions)", task.url, e)
            self._record(task, TaskState.FAILED, path, e, "write")
        except FetchCancelled as e:
            self._record(task, TaskState.FAILED, path, e, "cancelled")
        except Exception as e:
            logger.exception("[FAIL] %s -> unexpected error", task.url)
            self._record(task, TaskState.FAILED, path, e, "internal")
        return []

    # -- driver --------------------------------------------------------------

    def run(self, start_url: str) -> MirrorReport:
        start_url = urldefrag(start_url)[0]
        root = CrawlTask(start_url, Role.SUB_MANIFEST)
        self.visited.claim(start_url)
        pool = ThreadPoolExecutor(max_workers=self.config.concurrency,
                                  thread_name_prefix="stream-mirror")
        pending: Dict[Future, CrawlTask] = {pool.submit(self._run_task, root): root}
        try:
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for fut in done:
                    pending.pop(fut)
                    for child in fut.result():
                        pending[pool.submit(self._run_task, child)] = child
        except KeyboardInterrupt:
            logger.warning("Interrupted, abandoning %d pending task(s)", len(pending))
            self.cancel_event.set()
            for fut in pending:
                fut.cancel()
            self.report.interrupted = True
        finally:
            pool.shutdown(wait=True)
            if self._owns_fetcher:
                self.fetcher.close()
        logger.debug("Visited %d URL(s)", len(self.visited))
        return self.report


def mirror(start_url: str, config: MirrorConfig) -> MirrorReport:
    """Mirror the stream tree rooted at ``start_url`` into ``config.output_root``."""
    return CrawlScheduler(config).run(start_url)
