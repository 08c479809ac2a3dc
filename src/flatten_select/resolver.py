"""Selection Resolver: effective include/exclude state for every known file.

Resolution is one depth-first pass over the tree known so far. The only state
threaded down is what the nearest ancestor imposes on its subtree: a manual
override, or the exclusion of an ancestor directory by ignore files or rules.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from flatten_select.config import (
    LargeFileStrategy,
    ManualSelection,
    PendingDirectory,
    Reason,
    ResolvedEntry,
    ResolvedSelection,
    RuleVerdict,
    is_hard_excluded,
)
from flatten_select.pathing import ROOT_KEY
from flatten_select.rules import IGNORE_FILE, RuleSet

if TYPE_CHECKING:
    from flatten_select.config import ExportConfig, TreeNode

_MANUAL_REASON = {
    ManualSelection.INCLUDE: Reason.MANUAL_INCLUDE,
    ManualSelection.EXCLUDE: Reason.MANUAL_EXCLUDE,
}
_INHERITED_REASON = {
    ManualSelection.INCLUDE: Reason.INHERITED_INCLUDE,
    ManualSelection.EXCLUDE: Reason.INHERITED_EXCLUDE,
}


@dataclass(frozen=True)
class Inherited:
    """What a directory imposes on the descendants that have no override of their own."""

    override: ManualSelection | None = None
    blocked_by: Reason | None = None


_NOTHING = Inherited()


def _default_state(config: ExportConfig, rules: RuleSet, node: TreeNode) -> tuple[bool, Reason]:
    if node.ignored_by_gitignore and config.use_gitignore:
        return False, Reason.GITIGNORE
    verdict = rules.verdict(node.path, is_dir=node.is_dir)
    if verdict is RuleVerdict.EXCLUDE:
        return False, Reason.RULE_EXCLUDE
    if verdict is RuleVerdict.INCLUDE:
        return True, Reason.RULE_INCLUDE
    return True, Reason.DEFAULT


def effective_state(
    config: ExportConfig,
    rules: RuleSet,
    node: TreeNode,
    inherited: Inherited,
) -> tuple[bool, Reason, Inherited]:
    """Decide one node and what it passes down to its children."""
    if node.path != ROOT_KEY and is_hard_excluded(node.path):
        return False, Reason.HARD_EXCLUDED, Inherited(blocked_by=Reason.HARD_EXCLUDED)

    manual = config.manual_selections.get(node.path)
    if manual is not None:
        passed = Inherited(override=manual)
        return manual is ManualSelection.INCLUDE, _MANUAL_REASON[manual], passed
    if inherited.override is not None:
        return inherited.override is ManualSelection.INCLUDE, _INHERITED_REASON[inherited.override], inherited
    if inherited.blocked_by is not None:
        return False, inherited.blocked_by, inherited

    included, reason = _default_state(config, rules, node)
    if node.is_dir and not included:
        return included, reason, Inherited(blocked_by=reason)
    return included, reason, _NOTHING


def resolve(config: ExportConfig, tree: TreeNode, rules: RuleSet | None = None) -> ResolvedSelection:
    """Resolve the effective state of every file node present in ``tree``.

    Precedence, from strongest to weakest:

    1. hard exclusion (``.git``), whatever the overrides say;
    2. a manual override on the node itself;
    3. the nearest ancestor's manual override;
    4. the exclusion of an ancestor directory (ignore files or rules);
    5. the node's own default: ignored by ``.gitignore`` (when enabled), then
       the rule verdict, ``NEUTRAL`` meaning included.

    Oversize files stay included under ``truncate``; under ``skip`` an
    otherwise included file is excluded with a warning naming it.

    While ``use_gitignore`` is on, ``.gitignore`` files are rule inputs and are
    left out of the selection.

    Directories whose children are not fetched yet are reported as ``pending``
    with the state their unscanned subtree inherits, unless a full traversal
    left them out on purpose (``skipped``) or they are hard-excluded.

    Args:
        config (ExportConfig): rules, overrides and size threshold
        tree (TreeNode): the root of the tree known so far
        rules (RuleSet | None): precompiled rules of ``config``

    Raises:
        InvalidGlobError: if ``rules`` is not given and a glob is invalid

    Returns:
        ResolvedSelection: files in scanner order, pending directories, warnings
    """
    rules = rules if rules is not None else RuleSet.from_config(config)
    cap = config.max_file_bytes
    skip_oversize = config.large_file_strategy is LargeFileStrategy.SKIP

    entries: dict[str, ResolvedEntry] = {}
    pending: list[PendingDirectory] = []
    warnings: list[str] = []

    stack: list[tuple[TreeNode, Inherited]] = [(tree, _NOTHING)]
    while stack:
        node, inherited = stack.pop()
        if node.warning:
            warnings.append(node.warning)

        if node.path == ROOT_KEY:
            included, reason, passed = True, Reason.DEFAULT, _NOTHING
        else:
            included, reason, passed = effective_state(config, rules, node, inherited)

        if node.is_dir:
            if not node.is_expanded and not node.skipped and reason is not Reason.HARD_EXCLUDED:
                pending.append(
                    PendingDirectory(
                        path=node.path,
                        included=included,
                        reason=reason,
                        children_count=node.children_count,
                    )
                )
            stack.extend((child, passed) for child in reversed(node.children))
            continue

        if config.use_gitignore and node.path.rsplit("/", 1)[-1] == IGNORE_FILE:
            # consumed as rules, not selectable content
            continue
        oversize = node.size is not None and node.size > cap
        if oversize and skip_oversize and included:
            included, reason = False, Reason.OVERSIZE_SKIP
            warnings.append(f"Skipped '{node.path}': exceeds maxFileSizeKB ({config.max_file_size_kb})")
        entries[node.path] = ResolvedEntry(
            path=node.path,
            included=included,
            reason=reason,
            size=node.size,
            oversize=oversize,
        )

    return ResolvedSelection(entries=entries, pending=pending, warnings=warnings)
