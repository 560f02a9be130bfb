"""Writing mirrored files under the output root."""

import logging
import os
from pathlib import Path

from .errors import OutputWriteError
from .paths import orig_path

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"


class OutputWriter:
    """
    Writes files at mapped paths below ``root``. Data goes to ``<name>.part``
    first and is moved into place with ``os.replace``, so an interrupted write
    never leaves a truncated file under the final name.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def path_for(self, relpath: str) -> Path:
        dest = (self.root / relpath)
        if ".." in Path(relpath).parts or Path(relpath).is_absolute():
            raise OutputWriteError(str(dest), f"refusing to write outside {self.root}: {relpath}")
        return dest

    def exists(self, relpath: str) -> bool:
        return self.path_for(relpath).is_file()

    def write(self, relpath: str, data: bytes) -> Path:
        dest = self.path_for(relpath)
        tmp = dest.with_name(dest.name + PART_SUFFIX)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            try:
                with open(tmp, "wb") as f:
                    f.write(data)
                os.replace(tmp, dest)
            finally:
                if tmp.exists():
                    tmp.unlink()
        except OSError as e:
            raise OutputWriteError(str(dest), f"cannot write {dest}: {e}") from e
        return dest

    def write_manifest(self, relpath: str, rewritten: bytes, original: bytes) -> Path:
        """Write the rewritten manifest plus its untouched ``.orig`` companion."""
        orig = orig_path(relpath)
        if self._has_content(orig, original):
            logger.debug("%s unchanged, leaving it alone", orig)
        else:
            self.write(orig, original)
        return self.write(relpath, rewritten)

    def _has_content(self, relpath: str, data: bytes) -> bool:
        path = self.path_for(relpath)
        try:
            if path.stat().st_size != len(data):
                return False
            return path.read_bytes() == data
        except OSError:
            return False
