"""Deleting (or only counting) files that are no longer referenced."""

from __future__ import annotations

import logging
import posixpath
import threading

import humanize

from .storage import Storage

log = logging.getLogger(__name__)


class Deleter:
    """Counts deletable files and, unless in dry-run mode, removes them."""

    def __init__(self, storage: Storage, delete: bool = False, soft_delete: bool = True) -> None:
        self.storage = storage
        self.delete = delete
        self.soft_delete = soft_delete
        self.links = 0
        self.blobs = 0
        self.other = 0
        self.size = 0
        self._lock = threading.Lock()

    def delete_file(self, path: str, size: int) -> None:
        log.info("DELETE %s %d", path, size)
        name = posixpath.basename(path)
        with self._lock:
            if name == "link":
                self.links += 1
            elif name == "data":
                self.blobs += 1
            else:
                self.other += 1
            self.size += size

        if not self.delete:
            return
        if self.soft_delete:
            self.storage.move(path, posixpath.join("backup", path))
        else:
            self.storage.delete(path)

    def info(self) -> str:
        """Log and return a summary of what was (or would be) deleted."""
        message = (
            f"DELETEABLE INFO: {self.links} links, {self.blobs} blobs, "
            f"{self.other} other, {humanize.naturalsize(self.size)}"
        )
        log.warning(message)
        return message