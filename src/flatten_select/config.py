from __future__ import annotations

from enum import StrEnum, auto
from pathlib import PurePosixPath

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from flatten_select.pathing import ROOT_KEY, normalize_key


class LargeFileStrategy(StrEnum):
    """What to do with files above ``maxFileSizeKB``."""

    TRUNCATE = auto()
    SKIP = auto()


class OutputFormat(StrEnum):
    """Layout of the export artifact."""

    TXT = auto()
    MD = auto()


class ManualSelection(StrEnum):
    """User override stored per path; ``inherit`` is equivalent to no entry."""

    INCLUDE = auto()
    EXCLUDE = auto()
    INHERIT = auto()


class RuleVerdict(StrEnum):
    """Classification of a path by the glob/extension rules alone."""

    INCLUDE = auto()
    EXCLUDE = auto()
    NEUTRAL = auto()


class Reason(StrEnum):
    """Why a path ended up included or excluded."""

    MANUAL_INCLUDE = auto()
    MANUAL_EXCLUDE = auto()
    INHERITED_INCLUDE = auto()
    INHERITED_EXCLUDE = auto()
    GITIGNORE = auto()
    RULE_INCLUDE = auto()
    RULE_EXCLUDE = auto()
    DEFAULT = auto()
    OVERSIZE_SKIP = auto()
    HARD_EXCLUDED = auto()


class FileType(StrEnum):
    """Categorization of file types, used to pick a code fence language."""

    TEXT = auto()
    PYTHON = auto()
    TOML = auto()
    JSON = auto()
    MARKDOWN = auto()
    YAML = auto()
    HTML = auto()
    CSS = auto()
    JAVASCRIPT = auto()
    TYPESCRIPT = auto()
    BASH = auto()
    RUST = auto()
    GO = auto()
    SQL = auto()
    JAVA = auto()
    C = auto()
    CPP = auto()
    XML = auto()
    INI = auto()
    DOCKERFILE = auto()
    MAKEFILE = auto()
    OTHER = auto()


EXT2LANG: dict[str, FileType] = {
    ".bash": FileType.BASH,
    ".c": FileType.C,
    ".cc": FileType.CPP,
    ".cfg": FileType.INI,
    ".conf": FileType.INI,
    ".cpp": FileType.CPP,
    ".css": FileType.CSS,
    ".go": FileType.GO,
    ".h": FileType.C,
    ".hpp": FileType.CPP,
    ".html": FileType.HTML,
    ".ini": FileType.INI,
    ".java": FileType.JAVA,
    ".js": FileType.JAVASCRIPT,
    ".json": FileType.JSON,
    ".jsx": FileType.JAVASCRIPT,
    ".md": FileType.MARKDOWN,
    ".mjs": FileType.JAVASCRIPT,
    ".py": FileType.PYTHON,
    ".rs": FileType.RUST,
    ".sh": FileType.BASH,
    ".sql": FileType.SQL,
    ".toml": FileType.TOML,
    ".ts": FileType.TYPESCRIPT,
    ".tsx": FileType.TYPESCRIPT,
    ".txt": FileType.TEXT,
    ".xml": FileType.XML,
    ".yaml": FileType.YAML,
    ".yml": FileType.YAML,
    ".zsh": FileType.BASH,
}

NAME2LANG: dict[str, FileType] = {
    "dockerfile": FileType.DOCKERFILE,
    "makefile": FileType.MAKEFILE,
}

_FENCE_LANGUAGE: dict[FileType, str] = {
    FileType.PYTHON: "python",
    FileType.TOML: "toml",
    FileType.JSON: "json",
    FileType.MARKDOWN: "markdown",
    FileType.YAML: "yaml",
    FileType.HTML: "html",
    FileType.CSS: "css",
    FileType.JAVASCRIPT: "javascript",
    FileType.TYPESCRIPT: "typescript",
    FileType.BASH: "bash",
    FileType.RUST: "rust",
    FileType.GO: "go",
    FileType.SQL: "sql",
    FileType.JAVA: "java",
    FileType.C: "c",
    FileType.CPP: "cpp",
    FileType.XML: "xml",
    FileType.INI: "ini",
    FileType.DOCKERFILE: "dockerfile",
    FileType.MAKEFILE: "makefile",
}

# Never exported, never descended into, whatever the overrides say.
HARD_EXCLUDED_DIRS = frozenset({".git"})


def guess_file_type(rel: str) -> FileType:
    """Heuristic guess of file type based on name and extension.

    Args:
        rel (str): root-relative POSIX path of the file

    Returns:
        FileType: the guessed file type, or FileType.OTHER if unknown
    """
    path = PurePosixPath(rel)
    by_name = NAME2LANG.get(path.name.lower())
    if by_name is not None:
        return by_name
    return EXT2LANG.get(path.suffix.lower(), FileType.OTHER)


def guess_language(rel: str) -> str:
    """Get the code fence language for a file, or an empty string if none."""
    return _FENCE_LANGUAGE.get(guess_file_type(rel), "")


def is_hard_excluded(rel: str) -> bool:
    """Check whether a root-relative path lies in a hard-excluded directory."""
    return rel.split("/", 1)[0] in HARD_EXCLUDED_DIRS


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExportConfig(_CamelModel):
    """The single configuration object driving scan, evaluate, preview and export.

    Attributes:
        root_path: Absolute filesystem path; every other path is relative to it.
        use_gitignore: Whether ``.gitignore`` files exclude paths by default.
        include_globs: Allow-list globs, rooted at ``root_path``.
        exclude_globs: Deny-list globs, rooted at ``root_path``.
        include_extensions: Allow-list of dotted extensions (case-insensitive).
        exclude_extensions: Deny-list of dotted extensions (case-insensitive).
        max_file_size_kb: Threshold above which a file is oversize.
        large_file_strategy: ``truncate`` or ``skip`` for oversize files.
        manual_selections: Root-relative path to ``include``/``exclude`` overrides.
        output_format: ``txt`` or ``md``.
    """

    model_config = ConfigDict(validate_assignment=True)

    root_path: str = Field(default="", description="Absolute root directory.")
    use_gitignore: bool = Field(default=True, description="Honor .gitignore files.")
    include_globs: list[str] = Field(default_factory=list, description="Include globs.")
    exclude_globs: list[str] = Field(default_factory=list, description="Exclude globs.")
    include_extensions: list[str] = Field(default_factory=list, description="Include extensions.")
    exclude_extensions: list[str] = Field(default_factory=list, description="Exclude extensions.")
    max_file_size_kb: int = Field(
        default=256,
        gt=0,
        alias="maxFileSizeKB",
        validation_alias=AliasChoices("maxFileSizeKB", "maxFileSizeKb", "max_file_size_kb"),
        description="Files above are truncated or skipped.",
    )
    large_file_strategy: LargeFileStrategy = Field(
        default=LargeFileStrategy.TRUNCATE,
        description="Oversize file handling.",
    )
    manual_selections: dict[str, ManualSelection] = Field(
        default_factory=dict,
        description="Per-path include/exclude overrides.",
    )
    output_format: OutputFormat = Field(default=OutputFormat.TXT, description="Output layout.")

    @field_validator("manual_selections")
    @classmethod
    def _normalize_manual_selections(cls, value: dict[str, ManualSelection]) -> dict[str, ManualSelection]:
        out: dict[str, ManualSelection] = {}
        for raw_key, state in value.items():
            if state is ManualSelection.INHERIT:
                continue
            key = normalize_key(raw_key)
            if key == ROOT_KEY:
                msg = f"the root path cannot hold a manual selection (got {raw_key!r})"
                raise ValueError(msg)
            out[key] = state
        return out

    @property
    def max_file_bytes(self) -> int:
        """Oversize threshold in bytes."""
        return self.max_file_size_kb * 1024


class TreeNode(_CamelModel):
    """One filesystem entry relative to a fixed root.

    ``children`` is either empty (leaf, or directory not fetched yet) or the
    complete result of one fetch for that directory.
    """

    path: str = Field(..., description="Root-relative POSIX path, '.' for the root.")
    name: str = Field(default="", description="Last path segment, empty for the root.")
    is_dir: bool = Field(..., description="Whether the entry is a directory.")
    children_count: int | None = Field(
        default=None,
        ge=0,
        description="None when unknown, otherwise the number of directory entries.",
    )
    ignored_by_gitignore: bool = Field(default=False, description="Matched by an ignore file.")
    children: list[TreeNode] = Field(default_factory=list, description="Fetched children.")
    size: int | None = Field(default=None, ge=0, description="File size in bytes, None when unknown.")
    mtime: float | None = Field(default=None, description="POSIX modification time (seconds).")
    is_symlink: bool = Field(default=False, description="Entry is a symbolic link.")
    skipped: bool = Field(default=False, description="Left unexpanded on purpose by a full traversal.")
    warning: str | None = Field(default=None, description="Degraded-scan message.")

    @property
    def is_expanded(self) -> bool:
        """A directory whose children are known (fetched, or known to be empty)."""
        return self.is_dir and (bool(self.children) or self.children_count == 0)


class ResolvedEntry(_CamelModel):
    """Effective inclusion state of one file."""

    model_config = ConfigDict(frozen=True)

    path: str
    included: bool
    reason: Reason
    size: int | None = None
    oversize: bool = False


class PendingDirectory(_CamelModel):
    """A directory whose children were not fetched; its subtree inherits ``included``."""

    model_config = ConfigDict(frozen=True)

    path: str
    included: bool
    reason: Reason
    children_count: int | None = None


class ResolvedSelection(_CamelModel):
    """Resolver output: file entries in scanner order, unfetched directories, warnings."""

    model_config = ConfigDict(frozen=True)

    entries: dict[str, ResolvedEntry] = Field(default_factory=dict)
    pending: list[PendingDirectory] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def included(self) -> list[ResolvedEntry]:
        """Included files, in scanner order."""
        return [entry for entry in self.entries.values() if entry.included]

    @property
    def excluded(self) -> list[ResolvedEntry]:
        """Excluded files, in scanner order."""
        return [entry for entry in self.entries.values() if not entry.included]


class SelectionSummary(_CamelModel):
    """Count-only projection of a resolution over files."""

    model_config = ConfigDict(frozen=True)

    included_files: int = Field(..., ge=0)
    excluded_files: int = Field(..., ge=0)
    warnings: list[str] = Field(default_factory=list)


class PreviewMeta(_CamelModel):
    """Size estimate of an export that has not been written."""

    model_config = ConfigDict(frozen=True)

    included_files: int = Field(..., ge=0)
    estimated_bytes: int = Field(..., ge=0)
    estimated_tokens: int | None = Field(default=None, ge=0)
    warnings: list[str] = Field(default_factory=list)


class ExportResult(_CamelModel):
    """Outcome of a completed export."""

    model_config = ConfigDict(frozen=True)

    output_path: str
    exported_files: int = Field(..., ge=0)
    skipped_files: int = Field(..., ge=0)
    total_bytes_written: int = Field(..., ge=0)
    notes: list[str] = Field(default_factory=list)
