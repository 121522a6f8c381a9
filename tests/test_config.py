import pytest

from registrygc.config import ConfigError, storage_from_config
from registrygc.s3_storage import S3Storage
from registrygc.storage import FilesystemStorage


def _write(tmp_path, text):
    path = tmp_path / "config.yml"
    path.write_text(text)
    return str(path)


def test_filesystem_storage(tmp_path):
    config = _write(
        tmp_path,
        "version: 0.1\nstorage:\n  filesystem:\n    rootdirectory: /var/lib/registry\n",
    )
    storage = storage_from_config(config)
    assert isinstance(storage, FilesystemStorage)
    assert storage.root_directory == "/var/lib/registry"


def test_s3_storage(tmp_path):
    config = _write(
        tmp_path,
        "version: '0.1'\n"
        "storage:\n"
        "  s3:\n"
        "    accesskey: placeholder\n"
        "    secretkey: secret\n"
        "    bucket: images\n"
        "    region: eu-west-1\n"
        "    regionendpoint: http://s3.example.com\n"
        "    rootdirectory: /registry\n",
    )
    storage = storage_from_config(config, str(tmp_path / "cache"))
    assert isinstance(storage, S3Storage)
    assert storage.bucket == "images"
    assert storage.access_key == "placeholder"
    assert storage.region == "eu-west-1"
    assert storage.endpoint == "http://s3.example.com"
    assert storage.root_directory == "/registry"
    assert storage.cache_dir == str(tmp_path / "cache")


def test_unsupported_version(tmp_path):
    config = _write(tmp_path, "version: 0.2\nstorage:\n  filesystem:\n    rootdirectory: /x\n")
    with pytest.raises(ConfigError, match="only 0.1 version is supported"):
        storage_from_config(config)


def test_multiple_storages(tmp_path):
    config = _write(
        tmp_path,
        "version: 0.1\nstorage:\n  filesystem:\n    rootdirectory: /x\n  s3:\n    bucket: b\n",
    )
    with pytest.raises(ConfigError, match="multiple storages defined"):
        storage_from_config(config)


def test_no_storage(tmp_path):
    config = _write(tmp_path, "version: 0.1\nstorage:\n  inmemory: {}\n")
    with pytest.raises(ConfigError, match="unsupported storage"):
        storage_from_config(config)


def test_invalid_yaml(tmp_path):
    config = _write(tmp_path, "version: [0.1\n")
    with pytest.raises(ConfigError):
        storage_from_config(config)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        storage_from_config(str(tmp_path / "absent.yml"))