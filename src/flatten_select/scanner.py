"""Directory Scanner: one level per call, plus full expansion for export.

The scanner is the only component that touches the filesystem for structure.
Every call builds its own ``ScanContext`` (canonical root + ignore matcher), so
concurrent calls for different directories share nothing.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from flatten_select.config import ManualSelection, TreeNode, is_hard_excluded
from flatten_select.exceptions import ErrorCode, FileReadError, coded
from flatten_select.logging import logger
from flatten_select.pathing import (
    ROOT_KEY,
    canonicalize_root,
    entry_sort_key,
    is_within,
    join_key,
    normalize_key,
    resolve_dir_under_root,
)
from flatten_select.resolver import Inherited, effective_state
from flatten_select.rules import IGNORE_FILE, GitignoreMatcher, RuleSet
from flatten_select.settings import ScanLimits

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from flatten_select.config import ExportConfig


@dataclass
class ScanContext:
    """Per-call scanning state: the canonical root and its ignore matcher."""

    root: Path
    gitignore: GitignoreMatcher | None = None

    @classmethod
    def open(cls, config: ExportConfig) -> ScanContext:
        """Validate the root of ``config`` and prepare ignore matching.

        Raises:
            RootPathError: if the root is missing, invalid or not a directory.

        Returns:
            ScanContext: context for one operation call
        """
        root = canonicalize_root(config.root_path)
        return cls(root=root, gitignore=GitignoreMatcher(root) if config.use_gitignore else None)

    def absolute(self, key: str) -> Path:
        """Absolute (lexical) path of a tree key."""
        return self.root if key == ROOT_KEY else self.root / key


def count_entries(directory: Path) -> int:
    """Count the entries of a directory without descending into it."""
    with os.scandir(directory) as entries:
        return sum(1 for _ in entries)


def _make_node(ctx: ScanContext, parent_key: str, entry: os.DirEntry[str]) -> TreeNode:
    key = join_key(parent_key, entry.name)
    warning: str | None = None
    try:
        is_symlink = entry.is_symlink()
    except OSError:
        is_symlink = False
    try:
        # Follows symlinks: a link takes the type of its target.
        is_dir = entry.is_dir()
    except OSError:
        is_dir = False

    size: int | None = None
    mtime: float | None = None
    children_count: int | None = 0
    try:
        st = entry.stat()
        mtime = st.st_mtime
        if not is_dir:
            size = st.st_size
    except OSError as e:
        is_dir = False
        what = "link target" if is_symlink else "entry"
        warning = coded(ErrorCode.IO_READ, f"Cannot stat {what} '{key}'; size unknown: {e.strerror or e}")

    if is_dir:
        try:
            children_count = count_entries(Path(entry.path))
        except OSError as e:
            is_dir = False
            warning = coded(ErrorCode.IO_READ, f"Cannot list directory '{key}'; size unknown: {e.strerror or e}")

    ignored = ctx.gitignore.is_ignored(key, is_dir=is_dir) if ctx.gitignore is not None else False
    return TreeNode(
        path=key,
        name=entry.name,
        is_dir=is_dir,
        children_count=children_count,
        ignored_by_gitignore=ignored,
        size=size,
        mtime=mtime,
        is_symlink=is_symlink,
        warning=warning,
    )


def list_children(ctx: ScanContext, dir_key: str, directory: Path) -> list[TreeNode]:
    """List the immediate children of one directory, annotated and sorted.

    A child that cannot be inspected becomes a file node of unknown size with a
    ``warning``; it never aborts the listing of its siblings.

    Args:
        ctx (ScanContext): the per-call context
        dir_key (str): tree key of the directory
        directory (Path): filesystem path of the directory

    Raises:
        FileReadError: if the directory itself cannot be listed

    Returns:
        list[TreeNode]: directories first, then case-insensitive name order
    """
    try:
        with os.scandir(directory) as it:
            entries = list(it)
    except OSError as e:
        raise FileReadError(path=dir_key, message=f"Failed to read directory '{dir_key}': {e}") from e
    nodes = [_make_node(ctx, dir_key, entry) for entry in entries]
    nodes.sort(key=lambda n: entry_sort_key(n.name, is_dir=n.is_dir))

    problems = ctx.gitignore.warnings_for(dir_key) if ctx.gitignore is not None else []
    if problems:
        for node in nodes:
            if node.name == IGNORE_FILE and not node.is_dir:
                node.warning = "; ".join([node.warning, *problems] if node.warning else problems)
    return nodes


def scan_root(config: ExportConfig) -> TreeNode:
    """Return the root node with its immediate children only.

    Args:
        config (ExportConfig): provides ``root_path`` and ``use_gitignore``

    Returns:
        TreeNode: the root (``path="."``) with one level of children
    """
    return _root_node(ScanContext.open(config))


def _root_node(ctx: ScanContext) -> TreeNode:
    children = list_children(ctx, ROOT_KEY, ctx.root)
    try:
        mtime: float | None = ctx.root.stat().st_mtime
    except OSError:
        mtime = None
    logger.info("scan_root", root=str(ctx.root), entries=len(children))
    return TreeNode(
        path=ROOT_KEY,
        name="",
        is_dir=True,
        children_count=len(children),
        children=children,
        mtime=mtime,
    )


def scan_children(config: ExportConfig, dir_path: str) -> list[TreeNode]:
    """Return the immediate children of ``dir_path``, which must lie inside the root.

    Raises:
        PathOutsideRootError: if ``dir_path`` escapes the root after canonicalization.
        DirPathError: if ``dir_path`` is not a directory.

    Returns:
        list[TreeNode]: the annotated children
    """
    ctx = ScanContext.open(config)
    key, directory = resolve_dir_under_root(ctx.root, dir_path)
    children = list_children(ctx, key, directory)
    logger.info("scan_children", root=str(ctx.root), dir=key, entries=len(children))
    return children


class TreeIndex:
    """Arena of tree nodes keyed by normalized relative path.

    Merging a freshly fetched directory is a dictionary update on the node that
    owns it, not a rebuild of the tree. Callers merging concurrent
    ``scan_children`` results serialize their own calls to ``attach``.
    """

    def __init__(self, root: TreeNode) -> None:
        self.root = root
        self.nodes: dict[str, TreeNode] = {}
        self._register(root)

    def _register(self, node: TreeNode) -> None:
        stack = [node]
        while stack:
            current = stack.pop()
            self.nodes[current.path] = current
            stack.extend(current.children)

    def __contains__(self, key: str) -> bool:
        return normalize_key(key) in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, key: str) -> TreeNode | None:
        """Node at ``key``, or None when it is not known yet."""
        return self.nodes.get(normalize_key(key))

    def attach(self, dir_key: str, children: Sequence[TreeNode]) -> bool:
        """Attach the result of one fetch to a directory that has no children yet.

        Args:
            dir_key (str): key of the directory the children were fetched for
            children (Sequence[TreeNode]): the complete fetch result

        Raises:
            KeyError: if the directory is not in the index
            ValueError: if the node is a file

        Returns:
            bool: False when the directory already had children (nothing changed)
        """
        node = self.nodes.get(normalize_key(dir_key))
        if node is None:
            raise KeyError(dir_key)
        if not node.is_dir:
            msg = f"{dir_key!r} is not a directory"
            raise ValueError(msg)
        if node.children:
            return False
        node.children = list(children)
        node.children_count = len(node.children)
        for child in node.children:
            self._register(child)
        return True

    def walk(self) -> Iterator[TreeNode]:
        """Yield every known node depth-first, in listing order, root first."""
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))


@dataclass
class ExpandedTree:
    """A fully materialized tree plus what went wrong while materializing it."""

    root: TreeNode
    warnings: list[str] = field(default_factory=list)
    limit_reached: bool = False


def _selected_below(config: ExportConfig, dir_key: str) -> bool:
    prefix = f"{dir_key}/"
    return any(
        state is ManualSelection.INCLUDE and path.startswith(prefix) for path, state in config.manual_selections.items()
    )


def _mark_skipped(node: TreeNode) -> None:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.is_dir and not current.is_expanded:
            current.skipped = True
        stack.extend(current.children)


_Frame = tuple[TreeNode, int, Path, frozenset[Path], Inherited]


def expand_tree(
    config: ExportConfig,
    tree: TreeNode | None = None,
    *,
    limits: ScanLimits | None = None,
    ctx: ScanContext | None = None,
    rules: RuleSet | None = None,
) -> ExpandedTree:
    """Materialize the whole tree under the root, reusing the nodes already known.

    The caller's ``tree`` is deep-copied and never mutated. Directories without
    fetched children are listed, except:

    - hard-excluded directories (``.git``);
    - excluded directories (ignore files, exclude rules, manual excludes) with
      no manual include below them, so their files never count against
      ``max_files``;
    - symlinked directories that point at one of their ancestors, or outside
      the root, each with a warning;
    - directories below ``max_depth``, or that cannot be listed.

    Directories left out this way are flagged ``skipped`` so that resolution
    does not report them as pending.

    Args:
        config (ExportConfig): root, ignore settings, rules and overrides
        tree (TreeNode | None): the tree known so far, if any
        limits (ScanLimits | None): traversal bounds
        ctx (ScanContext | None): an already opened context for the same config
        rules (RuleSet | None): precompiled rules of ``config``

    Raises:
        InvalidGlobError: if ``rules`` is not given and a glob is invalid

    Returns:
        ExpandedTree: the materialized root and traversal warnings
    """
    limits = limits or ScanLimits()
    rules = rules if rules is not None else RuleSet.from_config(config)
    ctx = ctx or ScanContext.open(config)
    root = tree.model_copy(deep=True) if tree is not None else _root_node(ctx)
    index = TreeIndex(root)
    result = ExpandedTree(root=root)
    depth_warned = False
    files_seen = 0
    pruned = 0

    stack: list[_Frame] = [(root, 0, ctx.root, frozenset({ctx.root}), Inherited())]
    while stack:
        node, depth, real, ancestors, inherited = stack.pop()
        if not node.is_expanded:
            if depth >= limits.max_depth:
                node.skipped = True
                if not depth_warned:
                    result.warnings.append(f"Reached maxDepth limit ({limits.max_depth}). Skipped deeper traversal.")
                    depth_warned = True
                continue
            try:
                index.attach(node.path, list_children(ctx, node.path, real))
            except FileReadError as e:
                node.skipped = True
                result.warnings.append(str(e))
                continue

        for child in reversed(node.children):
            if not child.is_dir:
                continue
            if is_hard_excluded(child.path):
                _mark_skipped(child)
                continue
            included, _, passed = effective_state(config, rules, child, inherited)
            if not included and not _selected_below(config, child.path):
                _mark_skipped(child)
                pruned += 1
                continue
            child_real = real / child.name
            if child.is_symlink:
                child_real = ctx.absolute(child.path).resolve()
                if child_real in ancestors:
                    child.skipped = True
                    result.warnings.append(f"Skipped symlink cycle at '{child.path}'")
                    continue
                if not is_within(child_real, ctx.root):
                    child.skipped = True
                    result.warnings.append(f"Skipped symlink '{child.path}' pointing outside rootPath")
                    continue
            stack.append((child, depth + 1, child_real, ancestors | {child_real}, passed))

        files_seen += sum(1 for child in node.children if not child.is_dir)
        if files_seen >= limits.max_files and stack:
            result.warnings.append(f"Reached maxFiles limit ({limits.max_files}). Remaining files were skipped.")
            result.limit_reached = True
            break

    logger.info(
        "expand_tree",
        root=str(ctx.root),
        nodes=len(index),
        files=files_seen,
        pruned=pruned,
        warnings=len(result.warnings),
    )
    return result

