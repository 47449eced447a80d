"""Directory-sharded file storage for oversized cache payloads.

Payloads live at ``<root>/<shard>/<key>.json`` where ``shard`` is the first
two characters of the key, which keeps any single directory small. The
relative path ``<shard>/<key>.json`` is what the cache database records.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from hawkcli.exceptions import CacheIOError


class BlobStore:
    """File store rooted at the cache's ``blobs/`` directory.

    Args:
        root: The blobs directory. Created on demand.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    @staticmethod
    def relpath_for(key: str) -> str:
        """Return the relative blob path for *key*."""
        return f"{key[:2]}/{key}.json"

    def write(self, key: str, data: bytes) -> str:
        """Write *data* for *key*, replacing any previous content.

        The bytes go to a temp file in the shard directory which is then
        renamed over the target, so readers never see a partial blob.

        Returns:
            The relative path to record in the database.

        Raises:
            CacheIOError: If the shard directory or file cannot be written.
        """
        relpath = self.relpath_for(key)
        target = self._root / relpath
        tmp_name: Optional[str] = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{key}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, target)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise CacheIOError(f"Failed to write cache blob {target}: {exc}") from exc
        return relpath

    def read(self, relpath: str) -> Optional[bytes]:
        """Return the blob's bytes, or ``None`` if it cannot be read."""
        try:
            return (self._root / relpath).read_bytes()
        except OSError:
            return None

    def remove(self, relpath: str) -> None:
        """Delete one blob; a file that is already gone is not an error."""
        try:
            (self._root / relpath).unlink(missing_ok=True)
        except OSError as exc:
            raise CacheIOError(f"Failed to remove cache blob {relpath}: {exc}") from exc

    def reset(self) -> None:
        """Remove every blob and recreate an empty root directory."""
        try:
            if self._root.exists():
                shutil.rmtree(self._root)
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheIOError(f"Failed to reset blob directory {self._root}: {exc}") from exc
