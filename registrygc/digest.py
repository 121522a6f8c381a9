"""Content digests as used by the registry storage layout."""

from __future__ import annotations

import binascii
import hashlib
import posixpath
from dataclasses import dataclass

ALGORITHM = "sha256"
REFERENCE_PREFIX = "sha256:"
HASH_SIZE = 32
REFERENCE_SIZE = len(REFERENCE_PREFIX) + HASH_SIZE * 2


class DigestError(ValueError):
    """Raised when a digest cannot be parsed."""


@dataclass(frozen=True)
class Digest:
    """A sha256 digest; the all-zero digest stands for "no digest"."""

    raw: bytes = bytes(HASH_SIZE)

    def __post_init__(self) -> None:
        if len(self.raw) != HASH_SIZE:
            raise DigestError(f"digest must be {HASH_SIZE} bytes, got {len(self.raw)}")

    @classmethod
    def from_path(cls, components: list[str]) -> Digest:
        """Parse ``[algorithm, hex]`` path components."""
        if len(components) != 2:
            raise DigestError(
                f"digest components should contain exactly two items: {components}"
            )
        if components[0] != ALGORITHM:
            raise DigestError(f"only {ALGORITHM} is supported: {components[0]}")
        return cls.decode(components[1])

    @classmethod
    def from_scoped_path(cls, components: list[str]) -> Digest:
        """Parse ``[algorithm, prefix, hex]`` path components."""
        if len(components) != 3:
            raise DigestError(
                f"digest components should contain exactly three items: {components}"
            )
        if components[0] != ALGORITHM:
            raise DigestError(f"only {ALGORITHM} is supported: {components[0]}")
        prefix = components[2][:2]
        if components[1] != prefix:
            raise DigestError(f"digest needs to be prefixed with {prefix}: {components}")
        return cls.decode(components[2])

    @classmethod
    def from_reference(cls, data: bytes | str) -> Digest:
        """Parse a ``sha256:<hex>`` reference."""
        if isinstance(data, str):
            data = data.encode()
        prefix = REFERENCE_PREFIX.encode()
        if not data.startswith(prefix):
            raise DigestError(
                f"digest reference should start with: {REFERENCE_PREFIX}, but was: {data!r}"
            )
        return cls.decode(data[len(prefix):])

    @classmethod
    def decode(cls, data: bytes | str) -> Digest:
        """Decode a hex encoded sha256 hash."""
        try:
            raw = binascii.unhexlify(data)
        except (binascii.Error, ValueError) as exc:
            raise DigestError(f"invalid hex encoding: {data!r}") from exc
        if len(raw) != HASH_SIZE:
            raise DigestError(f"component should be valid {ALGORITHM}, but was: {data!r}")
        return cls(raw)

    def hex_hash(self) -> str:
        return self.raw.hex()

    def path(self) -> str:
        return posixpath.join(ALGORITHM, self.hex_hash())

    def scoped_path(self) -> str:
        hex_hash = self.hex_hash()
        return posixpath.join(ALGORITHM, hex_hash[:2], hex_hash)

    def reference(self) -> bytes:
        return (REFERENCE_PREFIX + self.hex_hash()).encode()

    def etag(self) -> str:
        """The quoted md5 of the reference, as storage backends report it."""
        return '"' + hashlib.md5(self.reference()).hexdigest() + '"'

    def valid(self) -> bool:
        return any(self.raw)

    def __str__(self) -> str:
        return self.hex_hash()