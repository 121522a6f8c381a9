"""A single repository: its layers, manifest revisions, tags and uploads."""

from __future__ import annotations

import contextlib
import logging
import posixpath
import threading
from typing import TYPE_CHECKING, Callable, Iterable, TextIO

import humanize

from .blobs import BlobError
from .deletes import Deleter
from .digest import REFERENCE_SIZE, Digest, DigestError
from .links import LinkError, analyze_link, analyze_link_signature, read_link, verify_link
from .manifest import Manifests
from .storage import FileInfo, Storage

if TYPE_CHECKING:
    from .blobs import Blobs

log = logging.getLogger(__name__)


class RepositoryError(ValueError):
    """Raised for unparseable repository paths or inconsistent references."""


class Tag:
    """A tag of a repository: its current manifest and its index of versions."""

    def __init__(self, repository: Repository, name: str) -> None:
        self.repository = repository
        self.name = name
        self.current = Digest()
        self.versions: list[Digest] = []
        self._lock = threading.Lock()

    def current_link_path(self) -> str:
        return posixpath.join(
            "repositories", self.repository.name, "_manifests", "tags",
            self.name, "current", "link",
        )

    def version_link_path(self, version: Digest) -> str:
        return posixpath.join(
            "repositories", self.repository.name, "_manifests", "tags",
            self.name, "index", version.path(), "link",
        )

    def _old_versions(self) -> list[Digest]:
        return [version for version in self.versions if version != self.current]

    def mark(self, blobs: Blobs) -> None:
        """Mark the manifests this tag keeps alive."""
        if self.current.valid():
            self.repository.mark_manifest(self.current)
        if self.repository.delete_old_tag_versions:
            return
        for version in self._old_versions():
            self.repository.mark_manifest(version)

    def sweep(self) -> None:
        """Delete a dangling current link and, if configured, old version links."""
        deleter = self.repository.deleter
        if not self.current.valid():
            deleter.delete_file(self.current_link_path(), REFERENCE_SIZE)
        if not self.repository.delete_old_tag_versions:
            return
        for version in self._old_versions():
            deleter.delete_file(self.version_link_path(version), REFERENCE_SIZE)

    def set_current(self, info: FileInfo) -> None:
        self.current = read_link(self.repository.storage, self.current_link_path(), info.etag)
        log.info(
            "TAG: %s : %s : is using: %s", self.repository.name, self.name, self.current
        )

    def add_version(self, args: list[str], info: FileInfo) -> None:
        link = analyze_link(args)
        verify_link(self.repository.storage, link, self.version_link_path(link), info.etag)
        with self._lock:
            self.versions.append(link)


class Repository:
    """Everything found under one repository directory, with usage counts."""

    def __init__(
        self,
        name: str,
        storage: Storage,
        deleter: Deleter,
        manifest_cache: Manifests | None = None,
        soft_errors: bool = False,
        delete_old_tag_versions: bool = True,
    ) -> None:
        self.name = name
        self.storage = storage
        self.deleter = deleter
        self.manifest_cache = manifest_cache if manifest_cache is not None else Manifests()
        self.soft_errors = soft_errors
        self.delete_old_tag_versions = delete_old_tag_versions
        self.layers: dict[Digest, int] = {}
        self.manifests: dict[Digest, int] = {}
        self.manifest_signatures: dict[Digest, list[Digest]] = {}
        self.tags: dict[str, Tag] = {}
        self.uploads: list[str] = []
        self._lock = threading.Lock()

    def layer_link_path(self, layer: Digest) -> str:
        return posixpath.join("repositories", self.name, "_layers", layer.path(), "link")

    def manifest_revision_path(self, revision: Digest) -> str:
        return posixpath.join(
            "repositories", self.name, "_manifests", "revisions", revision.path(), "link"
        )

    def manifest_revision_signature_path(self, revision: Digest, signature: Digest) -> str:
        return posixpath.join(
            "repositories", self.name, "_manifests", "revisions", revision.path(),
            "signatures", signature.path(), "link",
        )

    def upload_path(self, upload: str) -> str:
        return posixpath.join("repositories", self.name, "_uploads", upload, "link")

    def tag(self, name: str) -> Tag:
        """Return the named tag, creating it on first use."""
        with self._lock:
            tag = self.tags.get(name)
            if tag is None:
                tag = Tag(self, name)
                self.tags[name] = tag
            return tag

    def mark_manifest(self, revision: Digest) -> None:
        with self._lock:
            self.manifests[revision] = self.manifests.get(revision, 0) + 1

    def mark_manifest_layers(self, blobs: Blobs, revision: Digest) -> None:
        blobs.mark(revision)
        manifest = self.manifest_cache.get(revision, self.storage, blobs)
        with self._lock:
            for layer in manifest.layers:
                if layer not in self.layers:
                    raise RepositoryError(
                        f"layer {layer} not found reference from manifest {revision}"
                    )
                self.layers[layer] += 1

    def mark_manifest_signatures(
        self, blobs: Blobs, revision: Digest, signatures: Iterable[Digest]
    ) -> None:
        if self.manifests.get(revision, 0) == 0:
            return
        for signature in signatures:
            with contextlib.suppress(BlobError):
                blobs.mark(signature)

    def sweep_manifest_signatures(self, revision: Digest, signatures: Iterable[Digest]) -> None:
        if self.manifests.get(revision, 0) > 0:
            return
        for signature in signatures:
            self.deleter.delete_file(
                self.manifest_revision_signature_path(revision, signature), REFERENCE_SIZE
            )

    def mark_layer(self, blobs: Blobs, revision: Digest) -> None:
        blobs.mark(revision)

    def _attempt(self, stage: str, kind: str, item: object, action: Callable[[], None]) -> None:
        try:
            action()
        except Exception as exc:
            if not self.soft_errors:
                raise
            log.error("%s: %s %s: %s ERROR: %s", stage, self.name, kind, item, exc)

    def mark(self, blobs: Blobs) -> None:
        """Count references from tags to manifests and from manifests to blobs."""
        for name, tag in list(self.tags.items()):
            self._attempt("MARK", "TAG", name, lambda t=tag: t.mark(blobs))

        for revision, used in list(self.manifests.items()):
            if used == 0:
                continue
            self._attempt(
                "MARK", "MANIFEST", revision,
                lambda r=revision: self.mark_manifest_layers(blobs, r),
            )

        for revision, signatures in list(self.manifest_signatures.items()):
            self._attempt(
                "MARK", "MANIFEST SIGNATURE", revision,
                lambda r=revision, s=signatures: self.mark_manifest_signatures(blobs, r, s),
            )

        for layer, used in list(self.layers.items()):
            if used == 0:
                continue
            self._attempt("MARK", "LAYER", layer, lambda d=layer: self.mark_layer(blobs, d))

    def sweep(self) -> None:
        """Delete every link that nothing uses any more."""
        for name, tag in list(self.tags.items()):
            self._attempt("SWEEP", "TAG", name, tag.sweep)

        for revision, used in list(self.manifests.items()):
            if used > 0:
                continue
            self._attempt(
                "SWEEP", "MANIFEST", revision,
                lambda r=revision: self.deleter.delete_file(
                    self.manifest_revision_path(r), REFERENCE_SIZE
                ),
            )

        for revision, signatures in list(self.manifest_signatures.items()):
            self._attempt(
                "SWEEP", "MANIFEST SIGNATURES", revision,
                lambda r=revision, s=signatures: self.sweep_manifest_signatures(r, s),
            )

        for layer, used in list(self.layers.items()):
            if used > 0:
                continue
            self._attempt(
                "SWEEP", "LAYER", layer,
                lambda d=layer: self.deleter.delete_file(
                    self.layer_link_path(d), REFERENCE_SIZE
                ),
            )

    def add_layer(self, args: list[str], info: FileInfo) -> None:
        link = analyze_link(args)
        verify_link(self.storage, link, self.layer_link_path(link), info.etag)
        with self._lock:
            self.layers[link] = 0

    def add_manifest_revision(self, args: list[str], info: FileInfo) -> None:
        try:
            link = analyze_link(args)
        except (LinkError, DigestError):
            pass
        else:
            verify_link(self.storage, link, self.manifest_revision_path(link), info.etag)
            with self._lock:
                self.manifests[link] = 0
            return

        link, signature = analyze_link_signature(args)
        verify_link(
            self.storage, signature,
            self.manifest_revision_signature_path(link, signature), info.etag,
        )
        with self._lock:
            self.manifest_signatures.setdefault(link, []).append(signature)

    def add_tag(self, args: list[str], info: FileInfo) -> None:
        if len(args) < 2:
            raise RepositoryError(f"invalid args for tag: {args}")
        tag = self.tag(args[0])
        if args[1] == "current":
            tag.set_current(info)
        elif args[1] == "index":
            tag.add_version(args[2:], info)
        else:
            raise RepositoryError(f"undefined manifest tag type: {args[1]}")

    def add_manifest(self, args: list[str], info: FileInfo) -> None:
        if not args:
            raise RepositoryError(f"invalid args for manifest: {args}")
        if args[0] == "revisions":
            self.add_manifest_revision(args[1:], info)
        elif args[0] == "tags":
            self.add_tag(args[1:], info)
        else:
            raise RepositoryError(f"undefined manifest type: {args[0]}")

    def add_upload(self, args: list[str], info: FileInfo) -> None:
        if not args:
            raise RepositoryError(f"invalid args for uploads: {args}")
        with self._lock:
            self.uploads.append("/".join(args))

    def info(self, blobs: Blobs, stream: TextIO | None = None) -> str:
        """Log a usage summary, write a CSV row to ``stream``, return the summary."""
        layers_used = [d for d, used in self.layers.items() if used > 0]
        layers_unused = [d for d, used in self.layers.items() if used <= 0]
        used_size = sum(blobs.size(d) for d in layers_used)
        unused_size = sum(blobs.size(d) for d in layers_unused)
        manifests_used = sum(1 for used in self.manifests.values() if used > 0)
        manifests_unused = len(self.manifests) - manifests_used
        tag_versions = sum(len(tag.versions) for tag in self.tags.values())

        message = (
            f"REPOSITORY INFO: {self.name} : "
            f"Tags/Versions: {len(self.tags)} / {tag_versions} "
            f"Manifests/Unused: {manifests_used} / {manifests_unused} "
            f"Layers/Unused: {len(layers_used)} / {len(layers_unused)} "
            f"Data/Unused: {humanize.naturalsize(used_size)} / "
            f"{humanize.naturalsize(unused_size)}"
        )
        log.info(message)

        if stream is not None:
            fields = [
                self.name, len(self.tags), tag_versions,
                manifests_used, manifests_unused,
                len(layers_used), len(layers_unused),
                humanize.naturalsize(used_size), humanize.naturalsize(unused_size),
                used_size // 1024 // 1024, unused_size // 1024 // 1024,
            ]
            stream.write(",".join(str(field) for field in fields) + "\n")
        return message