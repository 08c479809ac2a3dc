"""Operation surface consumed by a presentation layer or the command line.

Every operation is stateless: it receives the full configuration (and, where
relevant, the tree known so far) and returns a fresh value object. Failures
raise a ``FlattenSelectError`` whose ``str()`` is the ``[E_CODE] message``
boundary contract; degraded cases come back as ``warnings``/``notes``.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from flatten_select.estimation import DEFAULT_BYTES_PER_TOKEN, estimate, summarize
from flatten_select.exceptions import ErrorCode, ExportCancelledError, ExportWriteError, OutputPathError
from flatten_select.logging import logger
from flatten_select.output_construction import write_export
from flatten_select.resolver import resolve
from flatten_select.rules import RuleSet
from flatten_select.scanner import ScanContext, expand_tree, scan_children, scan_root

if TYPE_CHECKING:
    import threading

    from flatten_select.config import (
        ExportConfig,
        ExportResult,
        PreviewMeta,
        ResolvedSelection,
        SelectionSummary,
        TreeNode,
    )
    from flatten_select.settings import ScanLimits

__all__ = [
    "evaluate_selection",
    "preview_export",
    "resolve_selection",
    "run_export",
    "scan_children",
    "scan_root",
    "validate_output_path",
]


def resolve_selection(
    config: ExportConfig,
    tree: TreeNode | None = None,
    *,
    limits: ScanLimits | None = None,
) -> ResolvedSelection:
    """Resolve ``config`` against the known tree, or the whole tree when none is given.

    Rules are compiled before any filesystem work, so an invalid glob fails
    fast.

    Raises:
        InvalidGlobError: on an invalid include/exclude glob.
        RootPathError: on a missing, invalid or non-directory root.

    Returns:
        ResolvedSelection: the resolution, with traversal warnings first
    """
    rules = RuleSet.from_config(config)
    ctx = ScanContext.open(config)
    if tree is not None:
        return resolve(config, tree, rules)
    expanded = expand_tree(config, limits=limits, ctx=ctx, rules=rules)
    selection = resolve(config, expanded.root, rules)
    return selection.model_copy(update={"warnings": [*expanded.warnings, *selection.warnings]})


def evaluate_selection(
    config: ExportConfig,
    tree: TreeNode | None = None,
    *,
    limits: ScanLimits | None = None,
) -> SelectionSummary:
    """Count included and excluded files.

    Args:
        config (ExportConfig): the export configuration
        tree (TreeNode | None): the tree known so far; None scans the whole root
        limits (ScanLimits | None): bounds of the full traversal

    Returns:
        SelectionSummary: counts over files only, and warnings
    """
    summary = summarize(resolve_selection(config, tree, limits=limits))
    logger.info(
        "evaluate_selection",
        root=config.root_path,
        included=summary.included_files,
        excluded=summary.excluded_files,
        warnings=len(summary.warnings),
    )
    return summary


def preview_export(
    config: ExportConfig,
    tree: TreeNode | None = None,
    *,
    limits: ScanLimits | None = None,
    bytes_per_token: int = DEFAULT_BYTES_PER_TOKEN,
) -> PreviewMeta:
    """Estimate the export without reading file contents or writing anything.

    Args:
        config (ExportConfig): the export configuration
        tree (TreeNode | None): the tree known so far; None scans the whole root
        limits (ScanLimits | None): bounds of the full traversal
        bytes_per_token (int): token heuristic, ``<= 0`` reports no token estimate

    Returns:
        PreviewMeta: included file count, byte and token estimates, warnings
    """
    meta = estimate(config, resolve_selection(config, tree, limits=limits), bytes_per_token=bytes_per_token)
    logger.info(
        "preview_export",
        root=config.root_path,
        included=meta.included_files,
        estimated_bytes=meta.estimated_bytes,
        estimated_tokens=meta.estimated_tokens,
    )
    return meta


def validate_output_path(output_path: str | Path | None, *, overwrite: bool = False) -> Path:
    """Check the export destination before anything is written.

    Args:
        output_path (str | Path | None): destination as given by the caller
        overwrite (bool): whether an existing file may be replaced

    Raises:
        OutputPathError: ``E_OUTPUT_REQUIRED`` when empty, ``E_OUTPUT_IS_DIR``
            when it is a directory, ``E_OUTPUT_EXISTS`` when it exists and
            ``overwrite`` is off.

    Returns:
        Path: the absolute destination
    """
    raw = str(output_path or "").strip()
    if not raw:
        raise OutputPathError(code=ErrorCode.OUTPUT_REQUIRED, message="outputPath is required")
    path = Path(raw).expanduser().resolve()
    if path.is_dir():
        raise OutputPathError(code=ErrorCode.OUTPUT_IS_DIR, message=f"outputPath is a directory: {raw!r}")
    if path.exists() and not overwrite:
        raise OutputPathError(code=ErrorCode.OUTPUT_EXISTS, message=f"Output file already exists: {raw!r}")
    return path


def run_export(
    config: ExportConfig,
    output_path: str | Path | None,
    *,
    tree: TreeNode | None = None,
    overwrite: bool = False,
    cancel_event: threading.Event | None = None,
    limits: ScanLimits | None = None,
) -> ExportResult:
    """Write the selected files under the root into a single artifact.

    The whole tree is traversed, reusing ``tree`` where the caller already
    expanded it, so directories never expanded by the caller are exported
    too. Excluded directories with no manual include below them are not
    entered. Parent directories of the destination are created.

    Args:
        config (ExportConfig): the export configuration
        output_path (str | Path | None): the destination file
        tree (TreeNode | None): the tree known so far (deep-copied, never mutated)
        overwrite (bool): replace an existing destination
        cancel_event (threading.Event | None): set it to abandon the export between files
        limits (ScanLimits | None): bounds of the full traversal

    Raises:
        InvalidGlobError: on an invalid glob, before any scan.
        RootPathError: on an invalid root.
        OutputPathError: on an empty, directory or existing destination.
        ExportWriteError: when the destination cannot be written; partial output is kept.
        ExportCancelledError: when ``cancel_event`` is set; partial output is kept.

    Returns:
        ExportResult: counts, bytes written and notes
    """
    rules = RuleSet.from_config(config)
    ctx = ScanContext.open(config)
    output = validate_output_path(output_path, overwrite=overwrite)

    expanded = expand_tree(config, tree, limits=limits, ctx=ctx, rules=rules)
    selection = resolve(config, expanded.root, rules)
    selection = selection.model_copy(update={"warnings": [*expanded.warnings, *selection.warnings]})
    if cancel_event is not None and cancel_event.is_set():
        raise ExportCancelledError(incomplete=False, message="Export cancelled before writing")

    try:
        output.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExportWriteError(message=f"Cannot create parent directory of {output}: {e}") from e

    result = write_export(config, ctx.root, selection, output, overwrite=overwrite, cancel_event=cancel_event)
    logger.info(
        "run_export",
        root=str(ctx.root),
        output=result.output_path,
        exported=result.exported_files,
        skipped=result.skipped_files,
        bytes_written=result.total_bytes_written,
    )
    return result
