"""Mirror HLS and DASH stream trees to local disk with locally rewritten manifests."""

from .config import MirrorConfig
from .models import ManifestDocument, MirrorReport, ResourceReference, Role
from .scheduler import CrawlScheduler, mirror

__version__ = "0.1.0"

__all__ = [
    "CrawlScheduler",
    "ManifestDocument",
    "MirrorConfig",
    "MirrorReport",
    "ResourceReference",
    "Role",
    "mirror",
]
