import pytest

from nextdns.discovery.util import (
    FileInfo,
    SemaphoreMap,
    abs_domain_name,
    append_uniq,
    is_valid_name,
    lower_ascii,
    prepare_host_lookup,
)


@pytest.mark.parametrize(
    "name,want",
    [
        ("iPhone", True),
        ("Android_1", True),
        ("331e87e5-3018-5336-23f3-595cdea48d9b", False),
        ("CC_22_3D_E4_CE_FE", False),
        ("10-0-0-213", False),
    ],
)
def test_is_valid_name(name, want):
    assert is_valid_name(name) == want


def test_is_valid_name_empty():
    assert is_valid_name("") is False
    assert is_valid_name("*") is False


def test_name_helpers():
    assert abs_domain_name("foo") == "foo."
    assert abs_domain_name("foo.") == "foo."
    assert lower_ascii("FoO") == "foo"
    assert prepare_host_lookup("PreserveMe") == "preserveme."


def test_append_uniq():
    assert append_uniq(["a"], "a", "b", "b") == ["a", "b"]
    assert append_uniq(None, "x") == ["x"]


def test_semaphore_map():
    s = SemaphoreMap()
    assert s.acquire("k") is True
    assert s.acquire("k") is False
    s.release("k")
    assert s.acquire("k") is True


def test_file_info(tmp_path):
    p = tmp_path / "f"
    p.write_text("abc")
    fi = FileInfo.from_path(str(p))
    assert fi.size == 3
    assert fi.same_as(str(p))
    assert not fi.same_as(str(tmp_path / "other"))
    p.write_text("abcdef")
    assert not fi.same_as(str(p))


def test_file_info_missing(tmp_path):
    with pytest.raises(OSError):
        FileInfo.from_path(str(tmp_path / "missing"))