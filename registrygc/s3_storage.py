"""A registry kept in an S3 bucket, spoken to over the S3 REST API."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import posixpath
import threading
import xml.etree.ElementTree as ElementTree
from datetime import datetime, timezone
from typing import Iterator
from urllib.parse import quote, urlsplit

import requests

from .links import compare_etag
from .storage import FileInfo, Storage

log = logging.getLogger(__name__)

LIST_MAX = 1000
DEFAULT_REGION = "us-east-1"
_UNRESERVED = "-_.~"


class S3Error(RuntimeError):
    """Raised when an S3 request fails."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(elem: ElementTree.Element, name: str) -> list[ElementTree.Element]:
    return [child for child in elem if _local(child.tag) == name]


def _text(elem: ElementTree.Element, name: str, default: str = "") -> str:
    for child in elem:
        if _local(child.tag) == name:
            return child.text or ""
    return default


def _parse_time(value: str) -> datetime | None:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _with_slash(path: str) -> str:
    if path != "/" and not path.endswith("/"):
        return path + "/"
    return path


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode(), hashlib.sha256).digest()


class S3Storage(Storage):
    """Storage backed by an S3 bucket, with a local read cache keyed by etag."""

    def __init__(
        self,
        bucket: str,
        access_key: str = "",
        secret_key: str = "",
        region: str | None = None,
        region_endpoint: str | None = None,
        root_directory: str = "",
        cache_dir: str = "tmp-cache",
        session: requests.Session | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.bucket = bucket
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region or DEFAULT_REGION
        self.region_endpoint = region_endpoint
        self.root_directory = root_directory
        self.cache_dir = cache_dir
        self.timeout = timeout
        self._session = session or requests.Session()
        if region_endpoint:
            endpoint = region_endpoint
            if "://" not in endpoint:
                endpoint = "https://" + endpoint
        else:
            endpoint = f"https://s3.{self.region}.amazonaws.com"
        self.endpoint = endpoint.rstrip("/")
        self.api_calls = 0
        self.expensive_api_calls = 0
        self.free_api_calls = 0
        self.cache_hits = 0
        self.cache_error = 0
        self.cache_miss = 0
        self._lock = threading.Lock()

    def _count(self, counter: str) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + 1)

    def full_path(self, path: str) -> str:
        return posixpath.normpath(
            posixpath.join(self.root_directory, "docker", "registry", "v2", path)
        )

    def backup_path(self, path: str) -> str:
        return posixpath.normpath(
            posixpath.join(self.root_directory, "docker-backup", "registry", "v2", path)
        )

    def _request(
        self,
        method: str,
        key: str = "",
        query: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        parts = urlsplit(self.endpoint)
        uri = parts.path + "/" + quote(self.bucket, safe=_UNRESERVED)
        if key:
            uri += "/" + quote(key, safe="/" + _UNRESERVED)
        query_string = "&".join(
            f"{quote(name, safe=_UNRESERVED)}={quote(value, safe=_UNRESERVED)}"
            for name, value in sorted((query or {}).items())
        )

        now = datetime.now(timezone.utc)
        amz_date = now.strftime("%Y%m%dT%H%M%SZ")
        datestamp = now.strftime("%Y%m%d")
        payload_hash = hashlib.sha256(b"").hexdigest()

        signed = {name.lower(): value for name, value in (headers or {}).items()}
        signed.update(
            {
                "host": parts.netloc,
                "x-amz-date": amz_date,
                "x-amz-content-sha256": payload_hash,
            }
        )
        names = sorted(signed)
        canonical_headers = "".join(f"{name}:{signed[name].strip()}\n" for name in names)
        signed_headers = ";".join(names)
        canonical_request = "\n".join(
            [method, uri, query_string, canonical_headers, signed_headers, payload_hash]
        )
        scope = f"{datestamp}/{self.region}/s3/aws4_request"
        string_to_sign = "\n".join(
            [
                "AWS4-HMAC-SHA256",
                amz_date,
                scope,
                hashlib.sha256(canonical_request.encode()).hexdigest(),
            ]
        )
        signing_key = _hmac(("AWS4" + self.secret_key).encode(), datestamp)
        for part in (self.region, "s3", "aws4_request"):
            signing_key = _hmac(signing_key, part)
        signature = hmac.new(signing_key, string_to_sign.encode(), hashlib.sha256).hexdigest()

        sent = {name: value for name, value in signed.items() if name != "host"}
        sent["Authorization"] = (
            f"AWS4-HMAC-SHA256 Credential={self.access_key}/{scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        url = f"{parts.scheme}://{parts.netloc}{uri}"
        if query_string:
            url += "?" + query_string
        try:
            response = self._session.request(method, url, headers=sent, timeout=self.timeout)
        except requests.RequestException as exc:
            raise S3Error(f"{method} {url}: {exc}") from exc
        if response.status_code >= 300:
            code = None
            message = response.text
            try:
                root = ElementTree.fromstring(response.content)
                code = _text(root, "Code") or None
                message = _text(root, "Message") or message
            except ElementTree.ParseError:
                pass
            raise S3Error(
                f"{method} {url}: {response.status_code} {code or ''} {message}".strip(),
                status=response.status_code,
                code=code,
            )
        return response

    def _list_objects(self, prefix: str, marker: str | None, delimiter: str | None):
        query = {"prefix": prefix, "max-keys": str(LIST_MAX)}
        if delimiter:
            query["delimiter"] = delimiter
        if marker:
            query["marker"] = marker
        self._count("api_calls")
        response = self._request("GET", query=query)
        try:
            return ElementTree.fromstring(response.content)
        except ElementTree.ParseError as exc:
            raise S3Error(f"unparseable listing for {prefix}: {exc}") from exc

    @staticmethod
    def _file_info(content: ElementTree.Element, directory: bool = False) -> FileInfo:
        key = _text(content, "Key")
        return FileInfo(
            full_path=key,
            size=int(_text(content, "Size", "0") or 0),
            etag=_text(content, "ETag"),
            last_modified=_parse_time(_text(content, "LastModified")),
            directory=directory,
        )

    def walk(self, path: str, base_path: str) -> Iterator[tuple[str, FileInfo]]:
        prefix = _with_slash(self.full_path(path))
        base = _with_slash(self.full_path(base_path))
        marker = None
        while True:
            root = self._list_objects(prefix, marker, None)
            last_key = ""
            for content in _children(root, "Contents"):
                key = _text(content, "Key")
                last_key = key
                relative = key[len(base):] if key.startswith(base) else key
                if not relative:
                    continue
                if relative.endswith("/"):
                    log.debug("S3 Walk: %s for %s", relative, base)
                    continue
                yield relative, self._file_info(content)
            if _text(root, "IsTruncated").lower() != "true":
                return
            marker = last_key

    def list(self, path: str) -> Iterator[tuple[str, FileInfo]]:
        prefix = _with_slash(self.full_path(path))
        marker = None
        while True:
            root = self._list_objects(prefix, marker, "/")
            last = ""
            for content in _children(root, "Contents"):
                key = _text(content, "Key")
                last = key
                relative = key[len(prefix):] if key.startswith(prefix) else key
                if not relative:
                    continue
                yield relative, self._file_info(content, directory=key.endswith("/"))
            for common in _children(root, "CommonPrefixes"):
                full = _text(common, "Prefix")
                last = max(last, full)
                relative = full[len(prefix):] if full.startswith(prefix) else full
                if not relative:
                    continue
                yield relative, FileInfo(full_path=full, directory=True)
            if _text(root, "IsTruncated").lower() != "true":
                return
            marker = _text(root, "NextMarker") or last

    def read(self, path: str, etag: str = "") -> bytes:
        use_cache = bool(etag and self.cache_dir)
        cache_path = os.path.join(self.cache_dir, path) if self.cache_dir else ""
        if use_cache:
            try:
                with open(cache_path, "rb") as handle:
                    cached = handle.read()
            except FileNotFoundError:
                self._count("cache_miss")
                log.info("CACHE MISS: %s", path)
            except OSError:
                pass
            else:
                if compare_etag(cached, etag):
                    self._count("cache_hits")
                    return cached
                self._count("cache_error")

        self._count("api_calls")
        data = self._request("GET", self.full_path(path)).content

        if use_cache:
            try:
                os.makedirs(os.path.dirname(cache_path), mode=0o700, exist_ok=True)
                with open(cache_path, "wb") as handle:
                    handle.write(data)
                os.chmod(cache_path, 0o600)
            except OSError as exc:
                log.debug("cannot cache %s: %s", path, exc)
        return data

    def delete(self, path: str) -> None:
        self._count("free_api_calls")
        self._request("DELETE", self.full_path(path))

    def move(self, path: str, new_path: str) -> None:
        self._count("expensive_api_calls")
        source = quote("/" + self.bucket + "/" + self.full_path(path), safe="/" + _UNRESERVED)
        self._request(
            "PUT",
            self.backup_path(new_path),
            headers={"x-amz-copy-source": source},
        )
        self.delete(path)

    def info(self) -> str:
        """Log and return API call and cache statistics."""
        message = (
            f"S3 INFO: API calls/expensive/free: {self.api_calls} "
            f"{self.expensive_api_calls} {self.free_api_calls} "
            f"Cache (hit/miss/error): {self.cache_hits} {self.cache_miss} {self.cache_error}"
        )
        log.info(message)
        return message