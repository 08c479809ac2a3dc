import pytest

from flatten_select.config import ExportConfig, PendingDirectory, Reason, ResolvedEntry, ResolvedSelection
from flatten_select.estimation import estimate, estimate_tokens, summarize


def _selection(*entries: ResolvedEntry, pending: list[PendingDirectory] | None = None) -> ResolvedSelection:
    return ResolvedSelection(entries={e.path: e for e in entries}, pending=pending or [], warnings=["scan warning"])


def _inc(path: str, size: int | None, *, oversize: bool = False) -> ResolvedEntry:
    return ResolvedEntry(path=path, included=True, reason=Reason.DEFAULT, size=size, oversize=oversize)


def _exc(path: str, size: int, reason: Reason = Reason.RULE_EXCLUDE) -> ResolvedEntry:
    return ResolvedEntry(path=path, included=False, reason=reason, size=size)


@pytest.mark.unit
def test_summarize_counts_files_only() -> None:
    selection = _selection(_inc("a.txt", 1), _inc("b.txt", 2), _exc("c.log", 3))

    summary = summarize(selection)

    assert (summary.included_files, summary.excluded_files) == (2, 1)
    assert summary.warnings == ["scan warning"]


@pytest.mark.unit
def test_summarize_flags_pending_directories() -> None:
    pending = [PendingDirectory(path="src", included=True, reason=Reason.DEFAULT, children_count=3)]

    summary = summarize(_selection(_inc("a.txt", 1), pending=pending))

    assert summary.included_files == 1
    assert summary.warnings[-1] == "1 directories not expanded yet; counts cover the known tree only"


@pytest.mark.unit
def test_estimate_caps_oversize_files_under_truncate() -> None:
    selection = _selection(_inc("big.bin", 5000, oversize=True), _inc("small.txt", 100), _inc("unknown", None))

    meta = estimate(ExportConfig(max_file_size_kb=1), selection)

    assert meta.included_files == 3
    assert meta.estimated_bytes == 1024 + 100
    assert meta.estimated_tokens == 281
    assert meta.warnings == ["scan warning"]


@pytest.mark.unit
def test_estimate_ignores_oversize_skipped_files() -> None:
    selection = _selection(_exc("big.bin", 5000, Reason.OVERSIZE_SKIP), _inc("small.txt", 100))

    meta = estimate(ExportConfig(max_file_size_kb=1, large_file_strategy="skip"), selection)

    assert meta.included_files == 1
    assert meta.estimated_bytes == 100


@pytest.mark.unit
def test_estimate_extrapolates_unexpanded_included_directories() -> None:
    pending = [
        PendingDirectory(path="src", included=True, reason=Reason.DEFAULT, children_count=4),
        PendingDirectory(path="docs", included=False, reason=Reason.MANUAL_EXCLUDE, children_count=10),
    ]
    selection = _selection(_inc("a.txt", 100), _inc("b.txt", 300), pending=pending)

    meta = estimate(ExportConfig(), selection)

    assert meta.included_files == 2
    assert meta.estimated_bytes == 400 + 4 * 200
    assert meta.warnings[-1] == "Estimated 1 unexpanded included directories from their entry counts"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("nbytes", "bytes_per_token", "expected"),
    [(0, 4, 0), (1, 4, 1), (8, 4, 2), (9, 4, 3), (9, 0, None), (9, -1, None)],
)
def test_estimate_tokens(nbytes: int, bytes_per_token: int, expected: int | None) -> None:
    assert estimate_tokens(nbytes, bytes_per_token) == expected


@pytest.mark.unit
def test_estimate_without_token_heuristic() -> None:
    meta = estimate(ExportConfig(), _selection(_inc("a.txt", 10)), bytes_per_token=0)

    assert meta.estimated_tokens is None
    assert meta.estimated_bytes == 10
