"""Image manifests and the blobs they reference."""

from __future__ import annotations

import json
import logging
import posixpath
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from .digest import Digest
from .storage import Storage

log = logging.getLogger(__name__)

MEDIA_TYPE_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"


class ManifestError(ValueError):
    """Raised when a manifest cannot be understood."""


class _EtagSource(Protocol):
    def etag(self, digest: Digest) -> str: ...


@dataclass(frozen=True)
class ManifestDocument:
    """A parsed manifest: its schema and the digests it references."""

    schema_version: int
    media_type: str
    references: tuple[str, ...]


def _descriptor_digest(descriptor: Any, key: str = "digest") -> str:
    if descriptor is None:
        descriptor = {}
    if not isinstance(descriptor, dict):
        raise ManifestError(f"invalid descriptor: {descriptor!r}")
    return str(descriptor.get(key) or "")


def _descriptors(doc: dict, name: str) -> list:
    value = doc.get(name) or []
    if not isinstance(value, list):
        raise ManifestError(f"{name} must be a list")
    return value


def deserialize_manifest(data: bytes | str) -> ManifestDocument:
    """Parse a schema 1, schema 2 or manifest list document."""
    try:
        doc = json.loads(data)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ManifestError(f"invalid manifest: {exc}") from exc
    if not isinstance(doc, dict):
        raise ManifestError("manifest must be a JSON object")

    version = doc.get("schemaVersion", 0)
    media_type = str(doc.get("mediaType") or "")

    if version == 1:
        references = [
            _descriptor_digest(layer, "blobSum") for layer in _descriptors(doc, "fsLayers")
        ]
    elif version == 2:
        if media_type == MEDIA_TYPE_MANIFEST:
            references = [_descriptor_digest(doc.get("config"))]
            references += [_descriptor_digest(layer) for layer in _descriptors(doc, "layers")]
        elif media_type == MEDIA_TYPE_MANIFEST_LIST:
            references = [
                _descriptor_digest(item) for item in _descriptors(doc, "manifests")
            ]
        else:
            raise ManifestError(f"unrecognized manifest content type {media_type}")
    else:
        raise ManifestError(f"unrecognized manifest schema version {version}")

    return ManifestDocument(int(version), media_type, tuple(references))


class Manifest:
    """A manifest blob, loaded at most once."""

    def __init__(self, digest: Digest) -> None:
        self.digest = digest
        self.layers: list[Digest] = []
        self.loaded = False
        self.load_error: Exception | None = None
        self._lock = threading.Lock()

    def path(self) -> str:
        return posixpath.join("blobs", self.digest.scoped_path(), "data")

    def load(self, storage: Storage, blobs: _EtagSource) -> None:
        log.info("MANIFEST: %s : loading...", self.path())
        data = storage.read(self.path(), blobs.etag(self.digest))
        document = deserialize_manifest(data)
        self.layers.extend(Digest.from_reference(ref) for ref in document.references)

    def ensure_loaded(self, storage: Storage, blobs: _EtagSource) -> None:
        """Load on first use; later calls re-raise the first load's error."""
        if not self.loaded:
            with self._lock:
                if not self.loaded:
                    try:
                        self.load(storage, blobs)
                    except Exception as exc:
                        self.load_error = exc
                    self.loaded = True
        if self.load_error is not None:
            raise self.load_error


class Manifests(Mapping):
    """Manifests shared between repositories, keyed by digest."""

    def __init__(self) -> None:
        self._manifests: dict[Digest, Manifest] = {}
        self._lock = threading.Lock()

    def __getitem__(self, digest: Digest) -> Manifest:
        return self._manifests[digest]

    def __iter__(self) -> Iterator[Digest]:
        return iter(self._manifests)

    def __len__(self) -> int:
        return len(self._manifests)

    def get(self, digest: Digest, storage: Storage, blobs: _EtagSource) -> Manifest:
        """Return the loaded manifest for ``digest``, creating it if needed."""
        with self._lock:
            manifest = self._manifests.get(digest)
            if manifest is None:
                manifest = Manifest(digest)
                self._manifests[digest] = manifest
        manifest.ensure_loaded(storage, blobs)
        return manifest