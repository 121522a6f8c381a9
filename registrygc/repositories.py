"""All repositories of a registry, walked, marked and swept together."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from functools import partial

from .blobs import Blobs
from .deletes import Deleter
from .jobs import JobGroup, JobRunner
from .manifest import Manifests
from .repository import Repository, RepositoryError
from .storage import FileInfo, Storage, parallel_walk

log = logging.getLogger(__name__)

CSV_LABELS = (
    "Repository",
    "Tags",
    "TagVersions",
    "Manifests",
    "ManifestsUnused",
    "Layers",
    "LayersUnused",
    "Data",
    "DataUnused",
    "Data-MB",
    "DataUnused-MB",
)

_HANDLERS = {
    "_layers": Repository.add_layer,
    "_manifests": Repository.add_manifest,
    "_uploads": Repository.add_upload,
}


class Repositories(Mapping):
    """Repositories found in storage, keyed by their slash-joined name."""

    def __init__(
        self,
        storage: Storage,
        runner: JobRunner,
        deleter: Deleter,
        manifest_cache: Manifests | None = None,
        soft_errors: bool = False,
        delete_old_tag_versions: bool = True,
    ) -> None:
        self.storage = storage
        self.runner = runner
        self.deleter = deleter
        self.manifest_cache = manifest_cache if manifest_cache is not None else Manifests()
        self.soft_errors = soft_errors
        self.delete_old_tag_versions = delete_old_tag_versions
        self._repositories: dict[str, Repository] = {}
        self._lock = threading.Lock()

    def __getitem__(self, name: str) -> Repository:
        return self._repositories[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._repositories)

    def __len__(self) -> int:
        return len(self._repositories)

    def get(self, path: list[str]) -> Repository:
        """Return the repository named by ``path``, creating it on first use."""
        name = "/".join(path)
        with self._lock:
            repository = self._repositories.get(name)
            if repository is None:
                repository = Repository(
                    name,
                    self.storage,
                    self.deleter,
                    manifest_cache=self.manifest_cache,
                    soft_errors=self.soft_errors,
                    delete_old_tag_versions=self.delete_old_tag_versions,
                )
                self._repositories[name] = repository
            return repository

    def process(self, segments: list[str], info: FileInfo) -> None:
        """Record one file found under the repositories directory."""
        for idx, segment in enumerate(segments[:-1]):
            handler = _HANDLERS.get(segment)
            if handler is not None:
                handler(self.get(segments[:idx]), segments[idx + 1:], info)
                return
        raise RepositoryError(f"unparseable path: {segments}")

    def _process_job(self, path: str, info: FileInfo) -> None:
        try:
            self.process(path.split("/"), info)
        except Exception as exc:
            log.error("REPOSITORY: %s : %s", path, exc)
            if self.soft_errors:
                return
            raise

    def walk_path(self, walk_path: str, group: JobGroup) -> None:
        """Queue every file under ``walk_path`` for processing on ``group``."""
        log.info("REPOSITORIES DIR: %s", walk_path)
        for path, info in self.storage.walk(walk_path, "repositories"):
            group.dispatch(partial(self._process_job, path, info))

    def walk(self, parallel: bool, walk_runner: JobRunner | None = None) -> None:
        log.info("Walking REPOSITORIES...")
        group = self.runner.group()
        if parallel:
            parallel_walk(
                self.storage,
                walk_runner or self.runner,
                "repositories",
                partial(self._walk_into, group=group),
            )
        else:
            self.walk_path("repositories", group)
        group.finish()

    def _walk_into(self, walk_path: str, group: JobGroup) -> None:
        self.walk_path(walk_path, group)

    def mark(self, blobs: Blobs) -> None:
        group = self.runner.group()
        for repository in list(self._repositories.values()):
            group.dispatch(partial(repository.mark, blobs))
        group.finish()

    def sweep(self) -> None:
        group = self.runner.group()
        for repository in list(self._repositories.values()):
            group.dispatch(repository.sweep)
        group.finish()

    def info(self, blobs: Blobs, csv_output: str = "") -> list[str]:
        """Log each repository's summary, optionally writing a CSV report."""
        if csv_output:
            try:
                stream = open(csv_output, "w", encoding="utf-8", newline="")
            except OSError as exc:
                log.warning("%s", exc)
            else:
                with stream:
                    stream.write(",".join(CSV_LABELS) + "\n")
                    return [repo.info(blobs, stream) for repo in self._repositories.values()]
        return [repo.info(blobs, None) for repo in self._repositories.values()]