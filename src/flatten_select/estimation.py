from __future__ import annotations

import math
from typing import TYPE_CHECKING

from flatten_select.config import LargeFileStrategy, PreviewMeta, SelectionSummary

if TYPE_CHECKING:
    from flatten_select.config import ExportConfig, ResolvedSelection

DEFAULT_BYTES_PER_TOKEN = 4


def _pending_warning(selection: ResolvedSelection) -> list[str]:
    if not selection.pending:
        return []
    return [f"{len(selection.pending)} directories not expanded yet; counts cover the known tree only"]


def summarize(selection: ResolvedSelection) -> SelectionSummary:
    """Project a resolution onto file counts (directories are not counted).

    Args:
        selection (ResolvedSelection): the resolution to count

    Returns:
        SelectionSummary: included/excluded file counts and warnings
    """
    included = len(selection.included)
    return SelectionSummary(
        included_files=included,
        excluded_files=len(selection.entries) - included,
        warnings=[*selection.warnings, *_pending_warning(selection)],
    )


def estimate_tokens(nbytes: int, bytes_per_token: int = DEFAULT_BYTES_PER_TOKEN) -> int | None:
    """Rough token count of ``nbytes`` of text, None when the heuristic is disabled."""
    if bytes_per_token <= 0:
        return None
    return math.ceil(nbytes / bytes_per_token)


def estimate(
    config: ExportConfig,
    selection: ResolvedSelection,
    *,
    bytes_per_token: int = DEFAULT_BYTES_PER_TOKEN,
) -> PreviewMeta:
    """Estimate the size of the export of ``selection`` without reading any file.

    Known files contribute their size, capped at ``maxFileSizeKB`` under the
    ``truncate`` strategy; unknown sizes count as zero. Included directories
    that were never expanded contribute their entry count times the mean size
    of the included known files.

    Args:
        config (ExportConfig): size threshold and large-file strategy
        selection (ResolvedSelection): the resolution to estimate
        bytes_per_token (int): token heuristic, ``<= 0`` disables it

    Returns:
        PreviewMeta: file count, byte and token estimates, warnings
    """
    truncate = config.large_file_strategy is LargeFileStrategy.TRUNCATE
    cap = config.max_file_bytes

    sizes: list[int] = []
    for entry in selection.included:
        size = entry.size or 0
        sizes.append(min(size, cap) if truncate else size)
    known_bytes = sum(sizes)
    mean = known_bytes / len(sizes) if sizes else 0.0

    warnings = [*selection.warnings, *_pending_warning(selection)]
    guessed = [d for d in selection.pending if d.included]
    pending_bytes = 0
    if guessed:
        pending_bytes = round(sum((d.children_count or 0) * mean for d in guessed))
        warnings.append(f"Estimated {len(guessed)} unexpanded included directories from their entry counts")

    total = known_bytes + pending_bytes
    return PreviewMeta(
        included_files=len(sizes),
        estimated_bytes=total,
        estimated_tokens=estimate_tokens(total, bytes_per_token),
        warnings=warnings,
    )
