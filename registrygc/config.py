"""Building a storage backend from a registry configuration file."""

from __future__ import annotations

from typing import Any

import yaml

from .s3_storage import S3Storage
from .storage import FilesystemStorage, Storage

SUPPORTED_VERSION = "0.1"


class ConfigError(ValueError):
    """Raised when a registry configuration cannot be used."""


def _version(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _section(storage: dict, name: str) -> dict | None:
    value = storage.get(name)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"storage {name} must be a mapping")
    return value


def storage_from_config(config_file: str, s3_cache_dir: str = "tmp-cache") -> Storage:
    """Read a registry config file and return the storage it describes."""
    with open(config_file, "rb") as handle:
        try:
            config = yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ConfigError(f"invalid config {config_file}: {exc}") from exc

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigError("config must be a mapping")

    if _version(config.get("version")) != SUPPORTED_VERSION:
        raise ConfigError(f"only {SUPPORTED_VERSION} version is supported")

    storage = config.get("storage") or {}
    if not isinstance(storage, dict):
        raise ConfigError("storage must be a mapping")

    filesystem = _section(storage, "filesystem")
    s3 = _section(storage, "s3")

    if filesystem is not None and s3 is not None:
        raise ConfigError("multiple storages defined")
    if filesystem is not None:
        return FilesystemStorage(str(filesystem.get("rootdirectory") or ""))
    if s3 is not None:
        return S3Storage(
            bucket=str(s3.get("bucket") or ""),
            access_key=str(s3.get("accesskey") or ""),
            secret_key=str(s3.get("secretkey") or ""),
            region=s3.get("region"),
            region_endpoint=s3.get("regionendpoint"),
            root_directory=str(s3.get("rootdirectory") or ""),
            cache_dir=s3_cache_dir,
        )
    raise ConfigError("unsupported storage")