from pathlib import Path

import pytest

from flatten_select.exceptions import DirPathError, ErrorCode, PathOutsideRootError, RootPathError
from flatten_select.pathing import (
    canonicalize_root,
    entry_sort_key,
    join_key,
    normalize_key,
    parent_keys,
    relpath,
    resolve_dir_under_root,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("", "."),
        (".", "."),
        ("./", "."),
        ("  src/app.py ", "src/app.py"),
        ("./src/", "src"),
        ("src\\pkg\\mod.py", "src/pkg/mod.py"),
        ("/docs/", "docs"),
        ("a/./b/../c", "a/c"),
        ("../outside", "../outside"),
    ],
)
def test_normalize_key(raw: str, expected: str) -> None:
    assert normalize_key(raw) == expected


@pytest.mark.unit
def test_join_and_parent_keys() -> None:
    assert join_key(".", "src") == "src"
    assert join_key("src", "app.py") == "src/app.py"
    assert parent_keys("a/b/c.txt") == ["a", "a/b"]
    assert parent_keys("top.txt") == []
    assert parent_keys(".") == []


@pytest.mark.unit
def test_relpath_uses_posix_and_dot_for_root(tmp_path: Path) -> None:
    assert relpath(tmp_path / "a" / "b.txt", tmp_path) == "a/b.txt"
    assert relpath(tmp_path, tmp_path) == "."


@pytest.mark.unit
def test_canonicalize_root_errors(tmp_path: Path) -> None:
    a_file = tmp_path / "file.txt"
    a_file.write_text("x", encoding="utf-8")

    with pytest.raises(RootPathError) as required:
        canonicalize_root("   ")
    with pytest.raises(RootPathError) as invalid:
        canonicalize_root(str(tmp_path / "missing"))
    with pytest.raises(RootPathError) as not_dir:
        canonicalize_root(str(a_file))

    assert required.value.code is ErrorCode.ROOT_REQUIRED
    assert invalid.value.code is ErrorCode.ROOT_INVALID
    assert not_dir.value.code is ErrorCode.ROOT_NOT_DIR
    assert str(not_dir.value).startswith("[E_ROOT_NOT_DIR] ")


@pytest.mark.unit
def test_resolve_dir_under_root_rejects_traversal(tmp_path: Path) -> None:
    root = tmp_path / "root"
    (root / "sub").mkdir(parents=True)
    (tmp_path / "outside").mkdir()

    with pytest.raises(PathOutsideRootError) as exc:
        resolve_dir_under_root(root.resolve(), "../outside")
    with pytest.raises(PathOutsideRootError):
        resolve_dir_under_root(root.resolve(), "sub/../../outside")
    with pytest.raises(PathOutsideRootError):
        resolve_dir_under_root(root.resolve(), str(tmp_path / "outside"))

    assert str(exc.value).startswith("[E_PATH_OUTSIDE_ROOT]")


@pytest.mark.unit
def test_resolve_dir_under_root_rejects_symlink_escape(tmp_path: Path) -> None:
    root = tmp_path / "root"
    root.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    (root / "escape").symlink_to(outside, target_is_directory=True)

    with pytest.raises(PathOutsideRootError):
        resolve_dir_under_root(root.resolve(), "escape")


@pytest.mark.unit
def test_resolve_dir_under_root_accepts_inner_paths(tmp_path: Path) -> None:
    root = tmp_path.resolve()
    (root / "src" / "pkg").mkdir(parents=True)
    (root / "src" / "file.py").write_text("", encoding="utf-8")

    assert resolve_dir_under_root(root, "./src/pkg/") == ("src/pkg", root / "src" / "pkg")
    assert resolve_dir_under_root(root, str(root / "src")) == ("src", root / "src")
    assert resolve_dir_under_root(root, ".") == (".", root)
    with pytest.raises(DirPathError):
        resolve_dir_under_root(root, "src/file.py")
    with pytest.raises(DirPathError):
        resolve_dir_under_root(root, "missing")


@pytest.mark.unit
def test_entry_sort_key_orders_directories_first_case_insensitively() -> None:
    entries = [("b.txt", False), ("zdir", True), ("A.txt", False), ("Cdir", True)]

    ordered = sorted(entries, key=lambda e: entry_sort_key(e[0], is_dir=e[1]))

    assert [name for name, _ in ordered] == ["Cdir", "zdir", "A.txt", "b.txt"]
