"""Storage backends holding a registry's files."""

from __future__ import annotations

import os
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Callable, Iterator

from .jobs import JobRunner


@dataclass(frozen=True)
class FileInfo:
    """What a storage backend knows about one entry."""

    full_path: str = ""
    size: int = 0
    etag: str = ""
    last_modified: datetime | None = None
    directory: bool = False


class Storage(ABC):
    """A registry storage; paths are relative to the registry's v2 root."""

    @abstractmethod
    def walk(self, path: str, base_path: str) -> Iterator[tuple[str, FileInfo]]:
        """Yield every file under ``path``, named relative to ``base_path``."""

    @abstractmethod
    def list(self, path: str) -> Iterator[tuple[str, FileInfo]]:
        """Yield the entries directly under ``path``."""

    @abstractmethod
    def read(self, path: str, etag: str) -> bytes:
        """Return a file's content."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove a file."""

    @abstractmethod
    def move(self, path: str, new_path: str) -> None:
        """Move a file into the backup area under ``new_path``."""

    def info(self) -> None:
        """Report backend statistics."""


def _iter_files(directory: str) -> Iterator[tuple[str, int]]:
    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda e: e.name)
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            yield from _iter_files(entry.path)
        else:
            yield entry.path, entry.stat(follow_symlinks=False).st_size


class FilesystemStorage(Storage):
    """A registry kept in a local directory tree."""

    def __init__(self, root_directory: str) -> None:
        self.root_directory = root_directory

    def full_path(self, path: str) -> str:
        return os.path.join(self.root_directory, "docker", "registry", "v2", path)

    def backup_path(self, path: str) -> str:
        return os.path.join(self.root_directory, "docker_backup", "registry", "v2", path)

    def walk(self, path: str, base_path: str) -> Iterator[tuple[str, FileInfo]]:
        root = os.path.abspath(self.full_path(path))
        base = os.path.abspath(self.full_path(base_path)) + os.sep
        for full, size in _iter_files(root):
            relative = full[len(base):] if full.startswith(base) else full
            relative = relative.replace(os.sep, "/")
            if not relative:
                continue
            yield relative, FileInfo(full_path=full, size=size)

    def list(self, path: str) -> Iterator[tuple[str, FileInfo]]:
        root = os.path.abspath(self.full_path(path))
        with os.scandir(root) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            size = entry.stat(follow_symlinks=False).st_size
            directory = entry.is_dir(follow_symlinks=False)
            yield entry.name, FileInfo(full_path=entry.path, size=size, directory=directory)

    def read(self, path: str, etag: str = "") -> bytes:
        with open(self.full_path(path), "rb") as handle:
            return handle.read()

    def delete(self, path: str) -> None:
        os.remove(self.full_path(path))

    def move(self, path: str, new_path: str) -> None:
        target = self.backup_path(new_path)
        os.makedirs(os.path.dirname(target), mode=0o700, exist_ok=True)
        os.rename(self.full_path(path), target)

    def info(self) -> None:
        return None


def parallel_walk(
    storage: Storage,
    runner: JobRunner,
    root_path: str,
    fn: Callable[[str], object],
) -> None:
    """Call ``fn`` on each directory directly under ``root_path`` in parallel."""
    group = runner.group()
    for list_path, info in storage.list(root_path):
        if not info.directory:
            continue
        walk_path = posixpath.normpath(posixpath.join(root_path, list_path))
        group.dispatch(partial(fn, walk_path))
    group.finish()