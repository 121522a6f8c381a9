import hashlib

import pytest

from registrygc.blobs import Blob, BlobError, Blobs
from registrygc.deletes import Deleter
from registrygc.digest import Digest, DigestError
from registrygc.jobs import JobRunner
from registrygc.storage import FileInfo, FilesystemStorage

HEX_A = hashlib.sha256(b"a").hexdigest()
HEX_B = hashlib.sha256(b"b").hexdigest()
A = Digest.decode(HEX_A)
B = Digest.decode(HEX_B)


def _put_blob(base, hex_hash, content):
    path = base / "blobs" / "sha256" / hex_hash[:2] / hex_hash / "data"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture
def runner():
    r = JobRunner(3)
    yield r
    r.close()


@pytest.fixture
def storage(tmp_path):
    base = tmp_path / "docker" / "registry" / "v2"
    _put_blob(base, HEX_A, b"aaaa")
    _put_blob(base, HEX_B, b"bbbbbbbb")
    return FilesystemStorage(str(tmp_path))


def _blobs(storage, runner, **kwargs):
    deleter = Deleter(storage, delete=kwargs.pop("delete", False), soft_delete=False)
    return Blobs(storage, runner, deleter, **kwargs), deleter


def test_blob_path():
    assert Blob(A).path() == "blobs/sha256/" + HEX_A[:2] + "/" + HEX_A + "/data"


@pytest.mark.parametrize("parallel", [False, True])
def test_walk_finds_blobs(storage, runner, parallel):
    blobs, _ = _blobs(storage, runner)
    blobs.walk(parallel, runner)
    assert set(blobs) == {A, B}
    assert blobs.size(A) == 4
    assert blobs.size(B) == 8
    assert blobs.etag(A) == ""


def test_unknown_digest_defaults(storage, runner):
    blobs, _ = _blobs(storage, runner)
    assert blobs.size(A) == 0
    assert blobs.etag(A) == ""


def test_mark_counts_references(storage, runner):
    blobs, _ = _blobs(storage, runner)
    blobs.walk(False)
    blobs.mark(A)
    blobs.mark(A)
    assert blobs[A].references == 2
    assert blobs[B].references == 0


def test_mark_unknown_blob(storage, runner):
    blobs, _ = _blobs(storage, runner)
    with pytest.raises(BlobError, match="blob not found"):
        blobs.mark(A)


def test_ignore_blobs(storage, runner):
    blobs, _ = _blobs(storage, runner, ignore_blobs=True)
    blobs.mark(A)
    assert len(blobs) == 0
    assert blobs.info() is None


def test_sweep_dry_run_counts_unreferenced(storage, runner):
    blobs, deleter = _blobs(storage, runner)
    blobs.walk(False)
    blobs.mark(A)
    blobs.sweep()
    assert deleter.blobs == 1
    assert deleter.size == 8


def test_sweep_deletes_unreferenced(storage, runner, tmp_path):
    blobs, _ = _blobs(storage, runner, delete=True)
    blobs.walk(False)
    blobs.mark(B)
    blobs.sweep()
    base = tmp_path / "docker" / "registry" / "v2" / "blobs" / "sha256"
    assert not (base / HEX_A[:2] / HEX_A / "data").exists()
    assert (base / HEX_B[:2] / HEX_B / "data").read_bytes() == b"bbbbbbbb"


def test_add_blob_errors(storage, runner):
    blobs, _ = _blobs(storage, runner)
    with pytest.raises(BlobError, match="unparseable"):
        blobs.add_blob(["sha256", HEX_A[:2], HEX_A], FileInfo())
    with pytest.raises(BlobError, match="data"):
        blobs.add_blob(["sha256", HEX_A[:2], HEX_A, "other"], FileInfo())
    with pytest.raises(DigestError):
        blobs.add_blob(["sha256", "zz", HEX_A, "data"], FileInfo())


def test_add_blob_keeps_info(storage, runner):
    blobs, _ = _blobs(storage, runner)
    blobs.add_blob(["sha256", HEX_A[:2], HEX_A, "data"], FileInfo(size=7, etag='"e"'))
    assert blobs.size(A) == 7
    assert blobs.etag(A) == '"e"'


def test_walk_with_stray_file(storage, runner, tmp_path):
    (tmp_path / "docker/registry/v2/blobs/sha256/junk").write_bytes(b"x")
    strict, _ = _blobs(storage, runner)
    with pytest.raises(BlobError):
        strict.walk(False)
    soft, _ = _blobs(storage, runner, soft_errors=True)
    soft.walk(False)
    assert set(soft) == {A, B}


def test_info_summary(storage, runner):
    blobs, _ = _blobs(storage, runner)
    blobs.walk(False)
    blobs.mark(A)
    assert "Objects/Unused: 1 / 1" in blobs.info()