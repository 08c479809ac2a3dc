import os
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from flatten_select import scanner
from flatten_select.config import ExportConfig, TreeNode
from flatten_select.exceptions import DirPathError, ErrorCode, PathOutsideRootError, RootPathError
from flatten_select.scanner import TreeIndex, expand_tree, scan_children, scan_root
from flatten_select.settings import ScanLimits


def _names(nodes: list[TreeNode]) -> list[str]:
    return [n.name for n in nodes]


@pytest.mark.unit
def test_scan_root_returns_one_level(write_tree, project: Path) -> None:
    write_tree({"src/pkg/mod.py": "x = 1\n", "src/app.py": "print()\n", "README.md": "# hi\n", "empty": None})

    root = scan_root(ExportConfig(root_path=str(project)))

    assert root.path == "."
    assert root.name == ""
    assert root.is_dir
    assert root.children_count == 3
    assert _names(root.children) == ["empty", "src", "README.md"]
    empty, src, readme = root.children
    assert (empty.children_count, empty.children) == (0, [])
    assert src.children_count == 2
    assert src.children == []
    assert src.size is None
    assert readme.size == 5
    assert readme.children_count == 0
    assert readme.mtime is not None


@pytest.mark.unit
def test_scan_children_lists_and_orders_one_directory(write_tree, project: Path) -> None:
    write_tree({"src/b.txt": "b", "src/A.txt": "a", "src/zdir/x": "x", "src/Cdir/y": "y"})

    children = scan_children(ExportConfig(root_path=str(project)), "./src/")

    assert _names(children) == ["Cdir", "zdir", "A.txt", "b.txt"]
    assert [c.path for c in children] == ["src/Cdir", "src/zdir", "src/A.txt", "src/b.txt"]


@pytest.mark.unit
def test_scan_annotates_gitignore_only_when_enabled(write_tree, project: Path) -> None:
    write_tree({"a.txt": "0123456789", "b": None, ".gitignore": "b/\n"})

    honored = scan_root(ExportConfig(root_path=str(project)))
    ignored_off = scan_root(ExportConfig(root_path=str(project), use_gitignore=False))

    flags = {n.name: n.ignored_by_gitignore for n in honored.children}
    assert flags == {"b": True, ".gitignore": False, "a.txt": False}
    assert not any(n.ignored_by_gitignore for n in ignored_off.children)


@pytest.mark.unit
def test_children_of_ignored_directory_are_ignored(write_tree, project: Path) -> None:
    write_tree({".gitignore": "build/\n!build/keep.txt\n", "build/keep.txt": "k", "build/out.bin": "o"})

    children = scan_children(ExportConfig(root_path=str(project)), "build")

    assert all(c.ignored_by_gitignore for c in children)


@pytest.mark.unit
def test_scan_children_rejects_traversal(write_tree, project: Path) -> None:
    write_tree({"a.txt": "a"})
    (project.parent / "outside").mkdir()

    with pytest.raises(PathOutsideRootError) as exc:
        scan_children(ExportConfig(root_path=str(project)), "../outside")

    assert str(exc.value).startswith("[E_PATH_OUTSIDE_ROOT]")


@pytest.mark.unit
def test_scan_children_rejects_files(write_tree, project: Path) -> None:
    write_tree({"a.txt": "a"})

    with pytest.raises(DirPathError) as exc:
        scan_children(ExportConfig(root_path=str(project)), "a.txt")

    assert exc.value.code is ErrorCode.DIRPATH_NOT_DIR


@pytest.mark.unit
def test_scan_root_validates_root(tmp_path: Path) -> None:
    with pytest.raises(RootPathError) as exc:
        scan_root(ExportConfig(root_path=""))

    assert exc.value.code is ErrorCode.ROOT_REQUIRED
    with pytest.raises(RootPathError):
        scan_root(ExportConfig(root_path=str(tmp_path / "nope")))


@pytest.mark.unit
def test_broken_symlink_is_a_file_of_unknown_size(write_tree, project: Path) -> None:
    write_tree({"ok.txt": "ok"})
    (project / "dangling").symlink_to(project / "missing-target")

    root = scan_root(ExportConfig(root_path=str(project)))

    dangling = next(n for n in root.children if n.name == "dangling")
    assert not dangling.is_dir
    assert dangling.is_symlink
    assert dangling.size is None
    assert dangling.warning is not None
    assert dangling.warning.startswith("[E_IO_READ]")


@pytest.mark.unit
def test_unreadable_child_directory_becomes_a_file_of_unknown_size(
    write_tree,
    project: Path,
    mocker: MockerFixture,
) -> None:
    write_tree({"locked/secret.txt": "s", "open.txt": "o"})
    mocker.patch.object(scanner, "count_entries", side_effect=PermissionError(13, "Permission denied"))

    root = scan_root(ExportConfig(root_path=str(project)))

    locked, opened = root.children
    assert not locked.is_dir
    assert locked.size is None
    assert locked.warning is not None
    assert locked.warning.startswith("[E_IO_READ] Cannot list directory 'locked'")
    assert "Permission denied" in locked.warning
    assert opened.size == 1


@pytest.mark.unit
def test_ignore_file_problems_are_reported_on_the_ignore_file_node(
    write_tree,
    project: Path,
    mocker: MockerFixture,
) -> None:
    write_tree({".gitignore": "*.tmp\n", "a.tmp": "t"})
    mocker.patch.object(scanner.GitignoreMatcher, "warnings_for", return_value=["Partial .gitignore parse error"])

    root = scan_root(ExportConfig(root_path=str(project)))

    ignore_file = next(n for n in root.children if n.name == ".gitignore")
    assert ignore_file.warning == "Partial .gitignore parse error"


@pytest.mark.unit
def test_tree_index_attaches_fetched_children_once(write_tree, project: Path) -> None:
    write_tree({"src/app.py": "print()\n"})
    config = ExportConfig(root_path=str(project))
    index = TreeIndex(scan_root(config))

    assert index.attach("src", scan_children(config, "src"))
    assert not index.attach("./src/", scan_children(config, "src"))
    assert "src/app.py" in index
    assert len(index.root.children[0].children) == 1
    with pytest.raises(KeyError):
        index.attach("missing", [])
    with pytest.raises(ValueError, match="not a directory"):
        index.attach("src/app.py", [])
    assert [n.path for n in index.walk()] == [".", "src", "src/app.py"]


@pytest.mark.unit
def test_expand_tree_fetches_missing_subtrees_without_mutating_input(write_tree, project: Path) -> None:
    write_tree({"a/b/c.txt": "c", "a/d.txt": "d", "e.txt": "e", ".git/config": "[core]\n"})
    config = ExportConfig(root_path=str(project))
    known = scan_root(config)

    expanded = expand_tree(config, known)

    assert all(not child.children for child in known.children)
    index = TreeIndex(expanded.root)
    assert "a/b/c.txt" in index
    assert "a/d.txt" in index
    assert ".git/config" not in index
    assert index.get(".git").skipped
    assert not index.get("a").skipped
    assert expanded.warnings == []
    assert not expanded.limit_reached


@pytest.mark.unit
def test_expand_tree_respects_depth_limit(write_tree, project: Path) -> None:
    write_tree({"a/b/c.txt": "c", "top.txt": "t"})
    config = ExportConfig(root_path=str(project))

    expanded = expand_tree(config, limits=ScanLimits(max_depth=1))

    assert expanded.warnings == ["Reached maxDepth limit (1). Skipped deeper traversal."]
    a = expanded.root.children[0]
    assert a.path == "a"
    assert a.children == []


@pytest.mark.unit
def test_expand_tree_respects_file_limit(write_tree, project: Path) -> None:
    write_tree({"sub/x.txt": "x", "one.txt": "1", "two.txt": "2", "three.txt": "3"})
    config = ExportConfig(root_path=str(project))

    expanded = expand_tree(config, limits=ScanLimits(max_files=2))

    assert expanded.limit_reached
    assert expanded.warnings == ["Reached maxFiles limit (2). Remaining files were skipped."]
    assert expanded.root.children[0].children == []


@pytest.mark.unit
@pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
def test_expand_tree_skips_symlink_cycles_and_escapes(write_tree, project: Path) -> None:
    write_tree({"sub/file.txt": "f"})
    outside = project.parent / "outside"
    outside.mkdir()
    (outside / "leak.txt").write_text("leak", encoding="utf-8")
    (project / "sub" / "loop").symlink_to(project, target_is_directory=True)
    (project / "escape").symlink_to(outside, target_is_directory=True)

    expanded = expand_tree(ExportConfig(root_path=str(project)))

    assert "Skipped symlink cycle at 'sub/loop'" in expanded.warnings
    assert "Skipped symlink 'escape' pointing outside rootPath" in expanded.warnings
    index = TreeIndex(expanded.root)
    assert "escape/leak.txt" not in index
    assert "sub/file.txt" in index
    assert index.get("sub/loop").skipped
    assert index.get("escape").skipped


@pytest.mark.unit
def test_expand_tree_does_not_enter_excluded_directories(write_tree, project: Path) -> None:
    write_tree(
        {
            ".gitignore": "node_modules/\n",
            "node_modules/a/index.js": "a",
            "node_modules/b.js": "b",
            "vendor/lib.py": "v",
            "vendor/keep/me.py": "k",
            "src/app.py": "app",
        },
    )
    config = ExportConfig(
        root_path=str(project),
        exclude_globs=["vendor/"],
        manual_selections={"vendor/keep/me.py": "include"},
    )

    expanded = expand_tree(config)

    index = TreeIndex(expanded.root)
    assert index.get("node_modules").skipped
    assert "node_modules/b.js" not in index
    assert "vendor/keep/me.py" in index
    assert "src/app.py" in index
    assert expanded.warnings == []


@pytest.mark.unit
def test_files_of_pruned_directories_do_not_count_against_the_file_limit(write_tree, project: Path) -> None:
    tree = {f"node_modules/pkg{i}.js": "x" for i in range(5)}
    write_tree({**tree, ".gitignore": "node_modules/\n", "src/app.py": "app"})

    expanded = expand_tree(ExportConfig(root_path=str(project)), limits=ScanLimits(max_files=4))

    assert not expanded.limit_reached
    assert expanded.warnings == []
    assert "src/app.py" in TreeIndex(expanded.root)
