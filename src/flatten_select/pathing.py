from __future__ import annotations

import posixpath
from pathlib import Path

from flatten_select.exceptions import DirPathError, ErrorCode, PathOutsideRootError, RootPathError

ROOT_KEY = "."


def normalize_key(raw: str) -> str:
    """Normalize a user- or UI-supplied relative path into a tree key.

    Strips whitespace, converts backslashes, drops a leading ``./`` and
    surrounding slashes, and collapses ``.``/``..`` segments lexically.

    Args:
        raw (str): the path as typed or sent by the caller

    Returns:
        str: the normalized POSIX key, ``"."`` for the root
    """
    text = (raw or "").strip().replace("\\", "/")
    while text.startswith("./"):
        text = text[2:]
    text = text.strip("/")
    if not text:
        return ROOT_KEY
    return posixpath.normpath(text)


def join_key(parent: str, name: str) -> str:
    """Build the key of ``name`` inside the directory keyed ``parent``."""
    return name if parent == ROOT_KEY else f"{parent}/{name}"


def parent_keys(key: str) -> list[str]:
    """List the keys of every ancestor directory of ``key``, outermost first, root excluded."""
    if key == ROOT_KEY:
        return []
    parts = key.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators,
            ``"."`` for the root itself.
    """
    rel = path.relative_to(root).as_posix()
    return rel if rel not in {"", "."} else ROOT_KEY


def canonicalize_root(root_path: str) -> Path:
    """Resolve the export root to an existing absolute directory.

    Args:
        root_path (str): the root as given by the caller

    Raises:
        RootPathError: with ``E_ROOT_REQUIRED`` when empty, ``E_ROOT_INVALID`` when it
            cannot be resolved, ``E_ROOT_NOT_DIR`` when it is not a directory.

    Returns:
        Path: the canonical root directory
    """
    raw = (root_path or "").strip()
    if not raw:
        raise RootPathError(code=ErrorCode.ROOT_REQUIRED, message="rootPath is required")
    try:
        canonical = Path(raw).expanduser().resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise RootPathError(code=ErrorCode.ROOT_INVALID, message=f"Invalid rootPath {raw!r}: {e}") from e
    if not canonical.is_dir():
        raise RootPathError(code=ErrorCode.ROOT_NOT_DIR, message=f"rootPath must be a directory: {raw!r}")
    return canonical


def is_within(path: Path, root: Path) -> bool:
    """Return whether ``path`` is at or under ``root`` (both canonical)."""
    return path == root or path.is_relative_to(root)


def resolve_dir_under_root(root: Path, dir_path: str) -> tuple[str, Path]:
    """Resolve a directory to scan, making sure it stays inside ``root``.

    Containment is checked on the canonicalized path, so ``..`` segments and
    symlinks pointing outside the root are both rejected.

    Args:
        root (Path): the canonical export root
        dir_path (str): root-relative (or absolute) directory requested by the caller

    Raises:
        PathOutsideRootError: if the directory escapes ``root``
        DirPathError: if it does not exist or is not a directory

    Returns:
        tuple[str, Path]: the lexical tree key and the canonical directory
    """
    raw = (dir_path or "").strip()
    candidate = Path(raw)
    if candidate.is_absolute():
        try:
            key = normalize_key(relpath(candidate, root))
        except ValueError:
            try:
                key = normalize_key(relpath(candidate.resolve(), root))
            except ValueError as e:
                raise PathOutsideRootError(message=f"Path is outside of rootPath: {raw!r}") from e
    else:
        key = normalize_key(raw)
    if key == ".." or key.startswith("../"):
        raise PathOutsideRootError(message=f"Path is outside of rootPath: {raw!r}")

    target = root if key == ROOT_KEY else root / key
    try:
        canonical = target.resolve(strict=False)
    except (OSError, RuntimeError) as e:
        raise DirPathError(message=f"Cannot resolve dirPath {raw!r}: {e}") from e
    if not is_within(canonical, root):
        raise PathOutsideRootError(message=f"Path is outside of rootPath: {raw!r}")
    if not canonical.is_dir():
        raise DirPathError(message=f"dirPath must be a directory: {raw!r}")
    return key, canonical


def entry_sort_key(name: str, *, is_dir: bool) -> tuple[int, str, str]:
    """Sort key for directory listings: directories first, then case-insensitive name."""
    return (0 if is_dir else 1, name.lower(), name)
