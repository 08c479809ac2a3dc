from collections.abc import Callable, Mapping
from pathlib import Path

import pytest

WriteTree = Callable[[Mapping[str, str | bytes | None]], Path]


@pytest.fixture
def project(tmp_path: Path) -> Path:
    root = tmp_path / "proj"
    root.mkdir()
    return root


@pytest.fixture
def write_tree(project: Path) -> WriteTree:
    """Create files under the project root; a ``None`` value creates a directory."""

    def _write(entries: Mapping[str, str | bytes | None]) -> Path:
        for rel, content in entries.items():
            target = project / rel
            if content is None:
                target.mkdir(parents=True, exist_ok=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_bytes(content.encode("utf-8"))
        return project

    return _write
