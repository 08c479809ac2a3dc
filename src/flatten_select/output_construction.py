"""Export Writer: stream the included files of a resolution into one artifact."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, BinaryIO

from flatten_select.config import ExportResult, LargeFileStrategy, OutputFormat, Reason, guess_language
from flatten_select.exceptions import (
    ErrorCode,
    ExportCancelledError,
    ExportWriteError,
    OutputPathError,
    coded,
)
from flatten_select.file_manipulation import (
    SNIFF_BYTES,
    build_tree_lines,
    is_regular_file,
    iter_text,
    looks_binary,
    make_meta_string,
)
from flatten_select.logging import logger
from flatten_select.pathing import is_within, relpath

if TYPE_CHECKING:
    import threading
    from collections.abc import Sequence
    from pathlib import Path

    from flatten_select.config import ExportConfig, ResolvedSelection

BINARY_PLACEHOLDER = "[BINARY FILE OMITTED]\n"


def truncation_marker(cap: int) -> str:
    return f"[TRUNCATED at {cap} bytes]\n"


class TextLayout:
    """Plain text: ``=== FILE ===`` banners, content unwrapped."""

    def preamble(self, root_name: str, rel_paths: Sequence[str]) -> str:
        tree = "\n".join(build_tree_lines(root_name, rel_paths))
        return f"=== STRUCTURE ===\n{tree}\n\n"

    def file_header(self, rel: str, size: int, *, binary: bool) -> str:  # noqa: ARG002
        return f"=== FILE: {rel} {make_meta_string(size)} ===\n"

    def file_footer(self, rel: str, *, binary: bool) -> str:  # noqa: ARG002
        return f"=== END FILE: {rel} ===\n\n"


class MarkdownLayout:
    """Markdown: one section per file, content in a fenced code block."""

    def preamble(self, root_name: str, rel_paths: Sequence[str]) -> str:
        tree = "\n".join(build_tree_lines(root_name, rel_paths))
        return f"# Export: {root_name}\n\n## Structure\n```text\n{tree}\n```\n\n"

    def file_header(self, rel: str, size: int, *, binary: bool) -> str:
        head = f"## {rel} {make_meta_string(size)}\n"
        if binary:
            return head
        return f"{head}```{guess_language(rel) or 'text'}\n"

    def file_footer(self, rel: str, *, binary: bool) -> str:  # noqa: ARG002
        return "\n" if binary else "```\n\n"


LAYOUTS: dict[OutputFormat, TextLayout | MarkdownLayout] = {
    OutputFormat.TXT: TextLayout(),
    OutputFormat.MD: MarkdownLayout(),
}


class _CountingSink:
    """Encode and write text, counting the bytes handed to the destination."""

    def __init__(self, handle: BinaryIO, path: Path) -> None:
        self.handle = handle
        self.path = path
        self.bytes_written = 0
        self.ends_with_newline = True

    def write(self, text: str) -> None:
        if not text:
            return
        data = text.encode("utf-8")
        try:
            self.handle.write(data)
        except OSError as e:
            raise ExportWriteError(
                partial_output=self.path,
                bytes_written=self.bytes_written,
                message=f"Failed to write {self.path}: {e}",
            ) from e
        self.bytes_written += len(data)
        self.ends_with_newline = text.endswith("\n")


@dataclass
class _Tally:
    exported: int = 0
    skipped: int = 0


def _open_output(output: Path, *, overwrite: bool) -> BinaryIO:
    try:
        return output.open("wb" if overwrite else "xb")
    except FileExistsError as e:
        raise OutputPathError(code=ErrorCode.OUTPUT_EXISTS, message=f"Output file already exists: {output}") from e
    except IsADirectoryError as e:
        raise OutputPathError(code=ErrorCode.OUTPUT_IS_DIR, message=f"outputPath is a directory: {output}") from e
    except OSError as e:
        raise ExportWriteError(message=f"Failed to create {output}: {e}") from e


def _write_file(
    sink: _CountingSink,
    layout: TextLayout | MarkdownLayout,
    source: Path,
    rel: str,
    *,
    cap: int | None,
    notes: list[str],
) -> bool:
    """Write one file section; return whether its content was exported.

    Opening, sizing and sniffing happen before anything is written, so an
    unreadable file leaves no trace in the output besides its note.
    """
    if not is_regular_file(source):
        notes.append(coded(ErrorCode.IO_READ, f"Skipped '{rel}': not a regular file"))
        return False
    try:
        handle = source.open("rb")
    except OSError as e:
        notes.append(coded(ErrorCode.IO_READ, f"Skipped '{rel}': {e.strerror or e}"))
        logger.warning("export_read_failed", path=rel, error=str(e))
        return False

    with handle:
        try:
            size = os.fstat(handle.fileno()).st_size
            head = handle.read(SNIFF_BYTES)
        except OSError as e:
            notes.append(coded(ErrorCode.IO_READ, f"Skipped '{rel}': {e.strerror or e}"))
            logger.warning("export_read_failed", path=rel, error=str(e))
            return False

        binary = looks_binary(head)
        sink.write(layout.file_header(rel, size, binary=binary))
        if binary:
            sink.write(BINARY_PLACEHOLDER)
            sink.write(layout.file_footer(rel, binary=True))
            notes.append(f"Skipped '{rel}': binary file")
            return False

        limit = cap if cap is not None and size > cap else None
        read_error: OSError | None = None
        try:
            for text in iter_text(handle, head, limit):
                sink.write(text)
        except OSError as e:
            read_error = e
        if not sink.ends_with_newline:
            sink.write("\n")
        if limit is not None and read_error is None:
            sink.write(truncation_marker(limit))
            notes.append(f"Truncated '{rel}': wrote first {limit} bytes")
        sink.write(layout.file_footer(rel, binary=False))

    if read_error is not None:
        notes.append(coded(ErrorCode.IO_READ, f"Incomplete '{rel}': read failed mid-file: {read_error}"))
        logger.warning("export_read_failed", path=rel, error=str(read_error))
        return False
    return True


def write_export(
    config: ExportConfig,
    root: Path,
    selection: ResolvedSelection,
    output: Path,
    *,
    overwrite: bool = False,
    cancel_event: threading.Event | None = None,
) -> ExportResult:
    """Write every included file of ``selection`` to ``output``.

    Files are written in selection order (the scanner's order). Degraded cases
    (binary content, unreadable files, oversize skips) are counted in
    ``skipped_files`` and explained in ``notes``; they never abort the export.

    Args:
        config (ExportConfig): format, size threshold and large-file strategy
        root (Path): the canonical export root
        selection (ResolvedSelection): resolution of the fully expanded tree
        output (Path): destination file; its parent directory must exist
        overwrite (bool): replace an existing destination instead of failing
        cancel_event (threading.Event | None): checked between files

    Raises:
        OutputPathError: ``E_OUTPUT_EXISTS`` when the destination appears
            concurrently and ``overwrite`` is off.
        ExportWriteError: on any failure to write the destination; the partial
            file is kept.
        ExportCancelledError: when ``cancel_event`` is set; the partial file is
            kept and flagged incomplete.

    Returns:
        ExportResult: counts, bytes written and notes
    """
    layout = LAYOUTS[config.output_format]
    cap = config.max_file_bytes if config.large_file_strategy is LargeFileStrategy.TRUNCATE else None
    notes = list(selection.warnings)
    tally = _Tally(skipped=sum(1 for e in selection.entries.values() if e.reason is Reason.OVERSIZE_SKIP))

    own_key = relpath(output, root) if is_within(output, root) else None
    planned: list[str] = []
    for entry in selection.included:
        if entry.path == own_key:
            tally.skipped += 1
            notes.append(f"Skipped '{entry.path}': it is the export destination")
            continue
        planned.append(entry.path)

    handle = _open_output(output, overwrite=overwrite)
    sink = _CountingSink(handle, output)
    try:
        try:
            with handle:
                sink.write(layout.preamble(root.name, planned))
                for rel in planned:
                    if cancel_event is not None and cancel_event.is_set():
                        raise ExportCancelledError(partial_output=output, bytes_written=sink.bytes_written)
                    if _write_file(sink, layout, root / rel, rel, cap=cap, notes=notes):
                        tally.exported += 1
                    else:
                        tally.skipped += 1
        except OSError as e:
            # flushing on close
            raise ExportWriteError(
                partial_output=output,
                bytes_written=sink.bytes_written,
                message=f"Failed to write {output}: {e}",
            ) from e
    except (ExportWriteError, ExportCancelledError) as e:
        logger.warning(
            "export_incomplete",
            output=str(output),
            code=str(e.code),
            bytes_written=sink.bytes_written,
            partial_output_kept=True,
        )
        raise

    return ExportResult(
        output_path=str(output),
        exported_files=tally.exported,
        skipped_files=tally.skipped,
        total_bytes_written=sink.bytes_written,
        notes=notes,
    )
