import hashlib

import pytest

from registrygc.digest import REFERENCE_SIZE, Digest, DigestError

HEX = hashlib.sha256(b"layer").hexdigest()


def test_from_reference_round_trip():
    d = Digest.from_reference("sha256:" + HEX)
    assert d.hex_hash() == HEX
    assert d.reference() == ("sha256:" + HEX).encode()
    assert Digest.from_reference(d.reference()) == d


def test_reference_size_matches_reference():
    d = Digest.decode(HEX)
    assert len(d.reference()) == REFERENCE_SIZE


def test_paths():
    d = Digest.decode(HEX)
    assert d.path() == "sha256/" + HEX
    assert d.scoped_path() == "sha256/" + HEX[:2] + "/" + HEX
    assert str(d) == HEX


def test_from_path_and_scoped_path_agree():
    a = Digest.from_path(["sha256", HEX])
    b = Digest.from_scoped_path(["sha256", HEX[:2], HEX])
    assert a == b
    assert {a: 1}[b] == 1


def test_etag_is_quoted():
    etag = Digest.decode(HEX).etag()
    assert etag.startswith('"') and etag.endswith('"')
    assert len(etag) == 34


def test_valid():
    assert not Digest().valid()
    assert Digest.decode(HEX).valid()


@pytest.mark.parametrize(
    "components",
    [
        ["sha256"],
        ["md5", HEX],
        ["sha256", "zz" * 32],
        ["sha256", HEX[:10]],
        ["sha256", HEX + "ab"],
        ["sha256", HEX[:-1]],
    ],
)
def test_from_path_errors(components):
    with pytest.raises(DigestError):
        Digest.from_path(components)


def test_from_scoped_path_prefix_mismatch():
    with pytest.raises(DigestError, match="prefixed"):
        Digest.from_scoped_path(["sha256", "00", HEX if not HEX.startswith("00") else "11" + HEX[2:]])


def test_from_scoped_path_wrong_count():
    with pytest.raises(DigestError, match="three"):
        Digest.from_scoped_path(["sha256", HEX])


def test_from_reference_missing_prefix():
    with pytest.raises(DigestError, match="should start with"):
        Digest.from_reference(HEX)