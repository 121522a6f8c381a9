import os
import threading

import pytest

from registrygc.jobs import JobRunner
from registrygc.storage import FilesystemStorage, parallel_walk


def _write(path, content):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


@pytest.fixture
def storage(tmp_path):
    base = tmp_path / "docker" / "registry" / "v2"
    _write(base / "blobs/sha256/ab/abcd/data", b"hello")
    _write(base / "blobs/sha256/cd/cdef/data", b"xy")
    _write(base / "blobs/sha256/readme", b"r")
    return FilesystemStorage(str(tmp_path))


@pytest.fixture
def runner():
    r = JobRunner(3)
    yield r
    r.close()


def test_full_path(storage, tmp_path):
    assert storage.full_path("blobs") == os.path.join(
        str(tmp_path), "docker", "registry", "v2", "blobs"
    )


def test_walk_relative_to_base(storage):
    entries = list(storage.walk("blobs", "blobs"))
    assert [p for p, _ in entries] == [
        "sha256/ab/abcd/data",
        "sha256/cd/cdef/data",
        "sha256/readme",
    ]
    assert [i.size for _, i in entries] == [5, 2, 1]
    assert all(not i.directory for _, i in entries)


def test_walk_subtree(storage):
    assert [p for p, _ in storage.walk("blobs/sha256/cd", "blobs")] == [
        "sha256/cd/cdef/data"
    ]


def test_walk_missing_root(storage):
    with pytest.raises(FileNotFoundError):
        list(storage.walk("repositories", "repositories"))


def test_list(storage):
    entries = [(p, i.directory) for p, i in storage.list("blobs/sha256")]
    assert entries == [("ab", True), ("cd", True), ("readme", False)]


def test_read_and_delete(storage):
    assert storage.read("blobs/sha256/ab/abcd/data", "") == b"hello"
    storage.delete("blobs/sha256/ab/abcd/data")
    with pytest.raises(FileNotFoundError):
        storage.read("blobs/sha256/ab/abcd/data", "")


def test_move_to_backup(storage, tmp_path):
    storage.move("blobs/sha256/ab/abcd/data", "backup/blobs/sha256/ab/abcd/data")
    remaining = [p for p, _ in storage.walk("blobs", "blobs")]
    assert remaining == ["sha256/cd/cdef/data", "sha256/readme"]
    moved = tmp_path / "docker_backup/registry/v2/backup/blobs/sha256/ab/abcd/data"
    assert moved.read_bytes() == b"hello"
    with pytest.raises(FileNotFoundError):
        storage.read("blobs/sha256/ab/abcd/data", "")


def test_parallel_walk_visits_directories(storage, runner):
    visited = []
    lock = threading.Lock()

    def visit(path):
        with lock:
            visited.append(path)

    parallel_walk(storage, runner, "blobs/sha256", visit)
    visited.sort()
    assert visited == ["blobs/sha256/ab", "blobs/sha256/cd"]
    walked = {
        path: [p for p, _ in storage.walk(path, "blobs")] for path in visited
    }
    assert walked == {
        "blobs/sha256/ab": ["sha256/ab/abcd/data"],
        "blobs/sha256/cd": ["sha256/cd/cdef/data"],
    }


def test_parallel_walk_propagates_errors(storage, runner):
    def visit(path):
        raise ValueError(path)

    with pytest.raises(ValueError, match="blobs/sha256"):
        parallel_walk(storage, runner, "blobs/sha256", visit)