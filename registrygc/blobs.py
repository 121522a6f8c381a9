"""The set of blobs held by a registry and their reference counts."""

from __future__ import annotations

import logging
import posixpath
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from functools import partial

import humanize

from .deletes import Deleter
from .digest import ALGORITHM, Digest, DigestError
from .jobs import JobRunner
from .storage import FileInfo, Storage, parallel_walk

log = logging.getLogger(__name__)


class BlobError(ValueError):
    """Raised for unknown blobs or unparseable blob paths."""


@dataclass
class Blob:
    name: Digest
    size: int = 0
    references: int = 0
    etag: str = ""

    def path(self) -> str:
        return posixpath.join("blobs", self.name.scoped_path(), "data")


class Blobs(Mapping):
    """Blobs found in storage, keyed by digest."""

    def __init__(
        self,
        storage: Storage,
        runner: JobRunner,
        deleter: Deleter,
        ignore_blobs: bool = False,
        soft_errors: bool = False,
    ) -> None:
        self.storage = storage
        self.runner = runner
        self.deleter = deleter
        self.ignore_blobs = ignore_blobs
        self.soft_errors = soft_errors
        self._blobs: dict[Digest, Blob] = {}
        self._lock = threading.Lock()

    def __getitem__(self, digest: Digest) -> Blob:
        return self._blobs[digest]

    def __iter__(self) -> Iterator[Digest]:
        return iter(self._blobs)

    def __len__(self) -> int:
        return len(self._blobs)

    def mark(self, digest: Digest) -> None:
        if self.ignore_blobs:
            return
        with self._lock:
            blob = self._blobs.get(digest)
            if blob is None:
                raise BlobError(f"blob not found: {digest}")
            blob.references += 1

    def etag(self, digest: Digest) -> str:
        blob = self._blobs.get(digest)
        return blob.etag if blob is not None else ""

    def size(self, digest: Digest) -> int:
        blob = self._blobs.get(digest)
        return blob.size if blob is not None else 0

    def _sweep_blob(self, blob: Blob) -> None:
        if blob.references > 0:
            return
        self.deleter.delete_file(blob.path(), blob.size)

    def sweep(self) -> None:
        """Delete every blob that nothing references."""
        group = self.runner.group()
        for blob in list(self._blobs.values()):
            group.dispatch(partial(self._sweep_blob, blob))
        group.finish()

    def add_blob(self, segments: list[str], info: FileInfo) -> None:
        if len(segments) != 4:
            raise BlobError(f"unparseable path: {segments}")
        if segments[3] != "data":
            raise BlobError(f"file needs to be data: {segments}")
        digest = Digest.from_scoped_path(segments[0:3])
        if segments[0] != ALGORITHM:
            raise BlobError(f"path needs to start with {ALGORITHM}: {segments}")
        with self._lock:
            self._blobs[digest] = Blob(name=digest, size=info.size, etag=info.etag)

    def walk_path(self, walk_path: str) -> None:
        log.info("BLOBS DIR: %s", walk_path)
        for path, info in self.storage.walk(walk_path, "blobs"):
            try:
                self.add_blob(path.split("/"), info)
            except (BlobError, DigestError) as exc:
                log.error("BLOB: %s : %s", path, exc)
                if self.soft_errors:
                    continue
                raise
            log.info("BLOB: %s", path)

    def walk(self, parallel: bool, walk_runner: JobRunner | None = None) -> None:
        log.info("Walking BLOBS...")
        if parallel:
            parallel_walk(
                self.storage,
                walk_runner or self.runner,
                posixpath.join("blobs", ALGORITHM),
                self.walk_path,
            )
        else:
            self.walk_path("blobs")

    def info(self) -> str | None:
        """Log and return a usage summary; None when blobs are ignored."""
        if self.ignore_blobs:
            return None
        used = [b for b in self._blobs.values() if b.references > 0]
        unused = [b for b in self._blobs.values() if b.references == 0]
        used_size = sum(b.size for b in used)
        unused_size = sum(b.size for b in unused)
        message = (
            f"BLOBS INFO: Objects/Unused: {len(used)} / {len(unused)} "
            f"Data/Unused: {humanize.naturalsize(used_size)} / "
            f"{humanize.naturalsize(unused_size)}"
        )
        log.info(message)
        return message