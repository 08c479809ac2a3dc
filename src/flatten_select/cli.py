"""
flatten_select: pick the files of a source tree and flatten them into one artifact.

Overview
--------
Command-line host for the selection engine. Every command takes the export
root, the rules and the manual overrides, and prints its result as camelCase
JSON on stdout:

- ``scan``: one directory level (the root, or ``--dir`` for lazy expansion);
- ``evaluate``: included/excluded file counts;
- ``preview``: included files plus byte and token estimates, nothing written;
- ``export``: write the selected files to ``--output`` (txt or md).

Errors are printed on stderr as ``[E_CODE] message``.

Usage
-----
    - Evaluate a tree honoring .gitignore, Python files only:
        flatten-select evaluate --root . --include-ext .py

    - Preview with a saved profile and one manual override:
        flatten-select preview --config profile.yaml --select docs=exclude

    - Export as markdown, skipping files above 64 KB:
        flatten-select export --root . --output out/export.md --format md --max-file-size-kb 64 --large-file-strategy skip
"""

from __future__ import annotations

import argparse
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, TypeAdapter, ValidationError

from flatten_select import __version__
from flatten_select.api import evaluate_selection, preview_export, run_export, scan_children, scan_root
from flatten_select.config import ExportConfig, ManualSelection, TreeNode
from flatten_select.exceptions import ExportCancelledError, ExportWriteError, FlattenSelectError
from flatten_select.logging import logger, setup_logging
from flatten_select.pathing import normalize_key
from flatten_select.settings import Settings, env_defaults

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

_NODES = TypeAdapter(list[TreeNode])


def _common_options() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(add_help=False)
    p.add_argument("--root", type=str, default=None, help="Root directory (overrides the profile).")
    p.add_argument("--config", dest="config_file", type=str, default=None, help="YAML/JSON ExportConfig profile.")
    p.add_argument("--log-file", type=str, default=None, help="Log file path.")
    p.add_argument("--no-gitignore", action="store_true", default=None, help="Do not honor .gitignore files.")
    p.add_argument(
        "--include-glob",
        action="append",
        default=None,
        help="Include glob (repeatable).",
    )
    p.add_argument(
        "--exclude-glob",
        action="append",
        default=None,
        help="Exclude glob (repeatable).",
    )
    p.add_argument(
        "--include-ext",
        action="append",
        default=None,
        help="Include extension, e.g. .py (repeatable).",
    )
    p.add_argument(
        "--exclude-ext",
        action="append",
        default=None,
        help="Exclude extension (repeatable).",
    )
    p.add_argument(
        "--select",
        action="append",
        default=None,
        metavar="PATH=STATE",
        help="Manual override, STATE is include, exclude or inherit (repeatable).",
    )
    p.add_argument(
        "--max-file-size-kb",
        type=int,
        default=None,
        help="Files above are truncated or skipped.",
    )
    p.add_argument(
        "--large-file-strategy",
        choices=["truncate", "skip"],
        default=None,
        help="Oversize file handling.",
    )
    p.add_argument("--format", choices=["txt", "md"], default=None, help="Output layout.")
    p.add_argument("--max-files", type=int, default=None, help="Max files per full traversal.")
    p.add_argument("--max-depth", type=int, default=None, help="Max directory depth.")
    return p


def build_parser() -> argparse.ArgumentParser:
    common = _common_options()
    p = argparse.ArgumentParser(
        prog="flatten-select",
        description="Select files of a source tree and flatten them into one text artifact.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", parents=[common], help="List one directory level.")
    scan.add_argument("--dir", type=str, default=None, help="Directory to list, relative to the root.")

    sub.add_parser("evaluate", parents=[common], help="Count included and excluded files.")

    preview = sub.add_parser("preview", parents=[common], help="Estimate the export size.")
    preview.add_argument("--bytes-per-token", type=int, default=None, help="Token heuristic; 0 disables it.")

    export = sub.add_parser("export", parents=[common], help="Write the export file.")
    export.add_argument("--output", type=str, default=None, help="Output file.")
    export.add_argument("--overwrite", action="store_true", default=None, help="Replace an existing output file.")
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse command-line arguments on top of ``FLATTEN_SELECT_*`` environment defaults.

    Args:
        argv (Sequence[str] | None): arguments, ``sys.argv[1:]`` when None

    Returns:
        Settings: the merged settings, explicit flags winning
    """
    args = {k: v for k, v in vars(build_parser().parse_args(argv)).items() if v is not None}
    return Settings(**{**env_defaults(), **args})


def load_profile(path: str | Path) -> dict[str, Any]:
    """Load an ExportConfig profile from a YAML (or JSON) file.

    Args:
        path (str | Path): the profile file

    Raises:
        ValueError: if the file does not hold a mapping

    Returns:
        dict[str, Any]: raw profile values, camelCase or snake_case keys
    """
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"profile {path} must contain a mapping, got {type(data).__name__}"
        raise ValueError(msg)  # noqa: TRY004
    return data


def parse_selections(items: Sequence[str]) -> dict[str, str]:
    """Parse ``PATH=STATE`` overrides given on the command line."""
    out: dict[str, str] = {}
    for item in items:
        path, sep, state = item.rpartition("=")
        if not sep or not path.strip():
            msg = f"invalid --select {item!r}, expected PATH=include|exclude|inherit"
            raise ValueError(msg)
        out[path] = state.strip().lower()
    return out


def build_config(settings: Settings) -> ExportConfig:
    """Build the ExportConfig from the profile and the command-line flags.

    Rule lists given on the command line extend the profile's; scalar flags
    replace the profile's values.

    Raises:
        ValueError: on an unreadable profile or invalid values.

    Returns:
        ExportConfig: the validated configuration
    """
    data = ExportConfig.model_validate(load_profile(settings.config_file) if settings.config_file else {}).model_dump()
    if settings.root:
        data["root_path"] = settings.root
    if settings.no_gitignore:
        data["use_gitignore"] = False
    data["include_globs"] += settings.include_glob
    data["exclude_globs"] += settings.exclude_glob
    data["include_extensions"] += settings.include_ext
    data["exclude_extensions"] += settings.exclude_ext
    for path, state in parse_selections(settings.select).items():
        key = normalize_key(path)
        if state == ManualSelection.INHERIT:
            data["manual_selections"].pop(key, None)
        else:
            data["manual_selections"][key] = state
    if settings.max_file_size_kb is not None:
        data["max_file_size_kb"] = settings.max_file_size_kb
    if settings.large_file_strategy:
        data["large_file_strategy"] = settings.large_file_strategy
    if settings.format:
        data["output_format"] = settings.format
    return ExportConfig.model_validate(data)


def _print_model(model: BaseModel) -> None:
    print(model.model_dump_json(by_alias=True, indent=2))


def cmd_scan(config: ExportConfig, settings: Settings) -> int:
    if settings.dir.strip() in {"", "."}:
        _print_model(scan_root(config))
    else:
        print(_NODES.dump_json(scan_children(config, settings.dir), by_alias=True, indent=2).decode())
    return 0


def cmd_evaluate(config: ExportConfig, settings: Settings) -> int:
    _print_model(evaluate_selection(config, limits=settings.limits))
    return 0


def cmd_preview(config: ExportConfig, settings: Settings) -> int:
    _print_model(preview_export(config, limits=settings.limits, bytes_per_token=settings.bytes_per_token))
    return 0


def cmd_export(config: ExportConfig, settings: Settings) -> int:
    """Run the export on a worker thread so that Ctrl-C cancels it between files."""
    cancel = threading.Event()
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="export") as pool:
        future = pool.submit(
            run_export,
            config,
            settings.output,
            overwrite=settings.overwrite,
            cancel_event=cancel,
            limits=settings.limits,
        )
        try:
            result = future.result()
        except KeyboardInterrupt:
            cancel.set()
            logger.warning("export_interrupted", output=settings.output)
            try:
                result = future.result()
            except ExportCancelledError as e:
                print(e, file=sys.stderr)
                if e.partial_output is not None:
                    print(f"Incomplete output kept at {e.partial_output}", file=sys.stderr)
                return EXIT_INTERRUPTED
    _print_model(result)
    return 0


COMMANDS: dict[str, Callable[[ExportConfig, Settings], int]] = {
    "scan": cmd_scan,
    "evaluate": cmd_evaluate,
    "preview": cmd_preview,
    "export": cmd_export,
}


def main(argv: Sequence[str] | None = None) -> int:
    try:
        settings = parse_args(argv)
    except ValidationError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return EXIT_USAGE
    if settings.log_file:
        setup_logging(settings.log_file)

    try:
        config = build_config(settings)
    except (OSError, ValueError, yaml.YAMLError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        return COMMANDS[settings.command](config, settings)
    except (ExportWriteError, ExportCancelledError) as e:
        print(e, file=sys.stderr)
        if e.partial_output is not None:
            print(f"Incomplete output kept at {e.partial_output} ({e.bytes_written} bytes)", file=sys.stderr)
        return EXIT_ERROR
    except FlattenSelectError as e:
        print(e, file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
