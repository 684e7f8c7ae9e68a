import os

import pytest

from sitedrop_backend.errors import PathTraversal
from sitedrop_backend.security import is_safe_basename, is_unsafe_member_name, is_valid_project_id, safe_join


@pytest.mark.parametrize("pid", ["alice-a1b2c3d4", "user_1-0011223344556677", "x-deadbeef"])
def test_valid_project_ids(pid):
    assert is_valid_project_id(pid)


@pytest.mark.parametrize(
    "pid",
    [
        "",
        None,
        42,
        "..",
        "../alice-a1b2c3d4",
        "alice-a1b2c3d4/..",
        "alice/a1b2c3d4",
        "alice\\a1b2c3d4",
        "Alice-a1b2c3d4",
        "alice-a1b2",
        "alice-zzzzzzzz",
        "alice-a1b2c3d4\n",
    ],
)
def test_invalid_project_ids(pid):
    assert not is_valid_project_id(pid)


@pytest.mark.parametrize("name", ["index.html", "style.min.css", "README", "photo 1.png"])
def test_safe_basenames(name):
    assert is_safe_basename(name)


@pytest.mark.parametrize(
    "name",
    ["", ".", "..", "../index.html", "a/b.html", "a\\b.html", "/etc/passwd", "C:evil", "bad\x00name"],
)
def test_unsafe_basenames(name):
    assert not is_safe_basename(name)


@pytest.mark.parametrize(
    "name",
    ["../../etc/passwd", "/abs/path", "\\abs", "C:/windows/x", "a/../../b", "a\\..\\..\\b", "", "  ", "x\x00y"],
)
def test_unsafe_member_names(name):
    assert is_unsafe_member_name(name)


@pytest.mark.parametrize("name", ["index.html", "css/style.css", "a/b/c/d.txt", "dir/", "./index.html"])
def test_safe_member_names(name):
    assert not is_unsafe_member_name(name)


def test_safe_join_inside(tmp_path):
    assert safe_join(tmp_path, "a", "b.txt") == (tmp_path / "a" / "b.txt").resolve()


def test_safe_join_rejects_parent(tmp_path):
    with pytest.raises(PathTraversal):
        safe_join(tmp_path / "root", "..", "x")


def test_safe_join_rejects_symlink_escape(tmp_path):
    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    os.symlink(outside, root / "link")
    with pytest.raises(PathTraversal):
        safe_join(root, "link", "file.txt")


def test_path_traversal_is_a_value_error(tmp_path):
    with pytest.raises(ValueError):
        safe_join(tmp_path, "/etc")
