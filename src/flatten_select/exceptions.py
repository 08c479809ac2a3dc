from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path


class ErrorCode(StrEnum):
    """Stable error codes surfaced to callers as ``[CODE] message``."""

    ROOT_REQUIRED = "E_ROOT_REQUIRED"
    ROOT_INVALID = "E_ROOT_INVALID"
    ROOT_NOT_DIR = "E_ROOT_NOT_DIR"
    PATH_OUTSIDE_ROOT = "E_PATH_OUTSIDE_ROOT"
    DIRPATH_NOT_DIR = "E_DIRPATH_NOT_DIR"
    OUTPUT_REQUIRED = "E_OUTPUT_REQUIRED"
    OUTPUT_IS_DIR = "E_OUTPUT_IS_DIR"
    OUTPUT_EXISTS = "E_OUTPUT_EXISTS"
    IO_READ = "E_IO_READ"
    IO_WRITE = "E_IO_WRITE"
    RULE_INVALID_GLOB = "E_RULE_INVALID_GLOB"
    EXPORT_CANCELLED = "E_EXPORT_CANCELLED"


def coded(code: ErrorCode, message: str) -> str:
    """Render a message with its coded prefix.

    Returns:
        str: ``[CODE] message``
    """
    return f"[{code}] {message}"


@dataclass(eq=False)
class FlattenSelectError(Exception):
    """Base exception for errors in the flatten_select module."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return coded(self.code, self.message)


@dataclass(eq=False)
class RootPathError(FlattenSelectError):
    """Raised when the export root is missing, unresolvable or not a directory."""


@dataclass(eq=False)
class PathOutsideRootError(FlattenSelectError):
    """Raised when a requested path escapes the export root."""

    code: ErrorCode = ErrorCode.PATH_OUTSIDE_ROOT
    message: str = "Path is outside of rootPath"


@dataclass(eq=False)
class DirPathError(FlattenSelectError):
    """Raised when a directory to scan is not a directory."""

    code: ErrorCode = ErrorCode.DIRPATH_NOT_DIR
    message: str = "dirPath must be a directory"


@dataclass(eq=False)
class OutputPathError(FlattenSelectError):
    """Raised when the export destination fails validation."""


@dataclass(eq=False)
class InvalidGlobError(FlattenSelectError):
    """Raised when an include/exclude glob cannot be compiled."""

    pattern: str = ""
    code: ErrorCode = ErrorCode.RULE_INVALID_GLOB
    message: str = "Invalid glob"


@dataclass(eq=False)
class FileReadError(FlattenSelectError):
    """Raised when a single file or directory entry cannot be read."""

    path: str = ""
    code: ErrorCode = ErrorCode.IO_READ
    message: str = "Read failed"


@dataclass(eq=False)
class ExportWriteError(FlattenSelectError):
    """Raised when the destination cannot be written; the partial output is kept on disk."""

    partial_output: Path | None = None
    bytes_written: int = 0
    code: ErrorCode = ErrorCode.IO_WRITE
    message: str = "Write failed"


@dataclass(eq=False)
class ExportCancelledError(FlattenSelectError):
    """Raised when an export is cancelled between files.

    The output written so far is left on disk and flagged through ``incomplete``.
    """

    partial_output: Path | None = None
    bytes_written: int = 0
    incomplete: bool = True
    code: ErrorCode = ErrorCode.EXPORT_CANCELLED
    message: str = "Export cancelled"
