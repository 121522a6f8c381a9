"""Parsing and checking of registry link files."""

from __future__ import annotations

import hashlib

from .digest import Digest
from .storage import Storage


class LinkError(ValueError):
    """Raised when a link path or link content is wrong."""


def analyze_link(args: list[str]) -> Digest:
    """Parse ``[algorithm, hex, "link"]``."""
    if len(args) != 3:
        raise LinkError(f"invalid args for link: {args}")
    if args[2] != "link":
        raise LinkError(f"expected link as path component: {args[2]}")
    return Digest.from_path(args[0:2])


def analyze_link_signature(args: list[str]) -> tuple[Digest, Digest]:
    """Parse ``[algorithm, hex, "signatures", algorithm, hex, "link"]``."""
    if len(args) != 6:
        raise LinkError(f"invalid args for signature link: {args}")
    if args[5] != "link":
        raise LinkError(f"expected link as path component: {args[5]}")
    if args[2] != "signatures":
        raise LinkError(f"expected signatures as path component: {args[2]}")
    return Digest.from_path(args[0:2]), Digest.from_path(args[3:5])


def compare_etag(data: bytes, etag: str) -> bool:
    return etag == '"' + hashlib.md5(data).hexdigest() + '"'


def read_link(storage: Storage, path: str, etag: str) -> Digest:
    return Digest.from_reference(storage.read(path, etag))


def verify_link(storage: Storage, link: Digest, path: str, etag: str) -> None:
    """Check that the link file at ``path`` points to ``link``."""
    if etag and link.etag() == etag:
        return
    found = read_link(storage, path, etag)
    if found != link:
        raise LinkError(f"{path}: readed link for {link} is not equal {found}")