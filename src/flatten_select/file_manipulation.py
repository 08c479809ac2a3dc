from __future__ import annotations

import codecs
import stat
from typing import TYPE_CHECKING, Any, BinaryIO

from flatten_select.pathing import entry_sort_key

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from pathlib import Path

CHUNK_SIZE = 16 * 1024
SNIFF_BYTES = 4096
# No path segment can contain a slash.
_FILES = "/"


def is_regular_file(path: Path) -> bool:
    """Check if a file is regular.

    Args:
        path (Path): path to test.

    Returns:
        bool: True if the file is regular, False otherwise.
    """
    try:
        st = path.stat()
    except OSError:
        return False
    return stat.S_ISREG(st.st_mode)


def looks_binary(head: bytes) -> bool:
    """Check whether the first bytes of a file look like binary content.

    Args:
        head (bytes): the first bytes of the file (up to ``SNIFF_BYTES``)

    Returns:
        bool: True if the content should be replaced by a placeholder
    """
    return b"\x00" in head


class NewlineNormalizer:
    """Turn CRLF and lone CR into LF across chunk boundaries."""

    def __init__(self) -> None:
        self._pending_cr = False

    def feed(self, text: str) -> str:
        if self._pending_cr:
            text = "\r" + text
            self._pending_cr = False
        if text.endswith("\r"):
            text = text[:-1]
            self._pending_cr = True
        return text.replace("\r\n", "\n").replace("\r", "\n")

    def flush(self) -> str:
        out = "\n" if self._pending_cr else ""
        self._pending_cr = False
        return out


def iter_text(handle: BinaryIO, head: bytes, limit: int | None = None) -> Iterator[str]:
    """Stream a file as UTF-8 text with LF newlines.

    Invalid sequences become replacement characters. When ``limit`` is set,
    reading stops after ``limit`` raw bytes and a multi-byte character cut by
    the limit is dropped rather than replaced.

    Args:
        handle (BinaryIO): the open file, positioned right after ``head``
        head (bytes): bytes already read from the start of the file
        limit (int | None): maximum number of raw bytes to decode

    Yields:
        str: decoded, newline-normalized text pieces
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    newlines = NewlineNormalizer()
    remaining = limit
    chunk = head
    while chunk:
        if remaining is not None:
            chunk = chunk[:remaining]
            remaining -= len(chunk)
        text = newlines.feed(decoder.decode(chunk))
        if text:
            yield text
        if remaining == 0:
            break
        chunk = handle.read(CHUNK_SIZE)

    if remaining != 0:
        tail = newlines.feed(decoder.decode(b"", final=True))
        if tail:
            yield tail
    tail = newlines.flush()
    if tail:
        yield tail


def make_meta_string(size: int) -> str:
    """Create the metadata string of a file header.

    Args:
        size (int): the size of the file on disk, in bytes

    Returns:
        str: the metadata, e.g. ``size=120 bytes``
    """
    return f"size={size} bytes"


def build_tree_lines(root_name: str, rel_paths: Sequence[str]) -> list[str]:
    """Build a visual tree representation of file paths.

    Directories come before files, then names in case-insensitive order, the
    same order the scanner lists entries in.

    Args:
        root_name (str): the name to use for the root of the tree
        rel_paths (Sequence[str]): the list of file paths relative to the root, using POSIX separators (e.g. "src/main.py")

    Returns:
        list[str]: a list of strings representing the tree structure, suitable for printing
    """
    tree: dict[str, Any] = {}
    for raw in rel_paths:
        rp = raw.strip("/").replace("\\", "/")
        if not rp:
            continue
        cur = tree
        parts = rp.split("/")
        for part in parts[:-1]:
            cur = cur.setdefault(part, {})
        cur.setdefault(_FILES, set()).add(parts[-1])

    lines: list[str] = [root_name]

    def walk(node: dict[str, Any], prefix: str) -> None:
        dirs = sorted((k for k in node if k != _FILES), key=lambda d: entry_sort_key(d, is_dir=True))
        files = sorted(node.get(_FILES, set()), key=lambda f: entry_sort_key(f, is_dir=False))
        entries: list[tuple[str, Any]] = [(d, node[d]) for d in dirs]
        entries.extend((f, None) for f in files)
        for idx, (name, child) in enumerate(entries):
            last = idx == len(entries) - 1
            branch = "└── " if last else "├── "
            lines.append(prefix + branch + name + ("/" if child is not None else ""))
            if child is not None:
                walk(child, prefix + ("    " if last else "│   "))

    walk(tree, "")
    return lines
