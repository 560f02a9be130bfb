"""Data model shared by the parsers, the rewriter and the scheduler."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


class Role(str, enum.Enum):
    SUB_MANIFEST = "sub-manifest"
    MEDIA_SEGMENT = "media-segment"
    INIT_SEGMENT = "init-segment"
    KEY = "key"
    TEXT_TRACK = "text-track"
    # DASH BaseURL directory: rewritten in place, never fetched
    BASE_URL = "base-url"

    @property
    def fetchable(self) -> bool:
        return self is not Role.BASE_URL


class TaskState(str, enum.Enum):
    QUEUED = "queued"
    FETCHING = "fetching"
    PARSED = "parsed"
    REWRITTEN = "rewritten"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.DONE, TaskState.FAILED, TaskState.SKIPPED)


@dataclass(frozen=True)
class ResourceReference:
    """A single URI found inside a manifest."""

    role: Role
    raw_uri: str
    resolved_url: str
    base_url: str
    span: Optional[Tuple[int, int]] = None
    template: Optional[str] = None


@dataclass
class ManifestDocument:
    url: str
    raw: bytes
    format: str
    kind: str
    references: List[ResourceReference] = field(default_factory=list)

    def fetchable_references(self) -> List[ResourceReference]:
        return [ref for ref in self.references if ref.role.fetchable]


@dataclass(frozen=True)
class CrawlTask:
    url: str
    role: Role
    parent: Optional[str] = None


@dataclass
class TaskResult:
    url: str
    role: Role
    state: TaskState
    path: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    # manifest that referenced this URL; None for the start manifest
    parent: Optional[str] = None


@dataclass
class MirrorReport:
    """Accumulating result log of a mirror run."""

    results: List[TaskResult] = field(default_factory=list)
    interrupted: bool = False

    def add(self, result: TaskResult) -> None:
        self.results.append(result)

    @property
    def succeeded(self) -> List[TaskResult]:
        return [r for r in self.results if r.state is TaskState.DONE]

    @property
    def failed(self) -> List[TaskResult]:
        return [r for r in self.results if r.state is TaskState.FAILED]

    @property
    def skipped(self) -> List[TaskResult]:
        return [r for r in self.results if r.state is TaskState.SKIPPED]

    @property
    def write_failures(self) -> List[TaskResult]:
        return [r for r in self.failed if r.error_kind == "write"]

    @property
    def ok(self) -> bool:
        return not self.failed and not self.interrupted

    def urls(self) -> List[str]:
        return [r.url for r in self.results]
