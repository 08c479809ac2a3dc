from __future__ import annotations

import os
from pathlib import Path

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field

ENV_FILE = find_dotenv(usecwd=True)
ENV_PREFIX = "FLATTEN_SELECT_"
# Settings a .env file or the environment may provide.
ENV_KEYS = frozenset({"max_files", "max_depth", "bytes_per_token", "log_file", "no_gitignore"})


class ScanLimits(BaseModel):
    """Bounds applied to a full traversal of the root."""

    model_config = ConfigDict(frozen=True)

    max_files: int = Field(default=100_000, gt=0, description="Max file nodes per full traversal.")
    max_depth: int = Field(default=64, gt=0, description="Max directory depth below the root.")


def env_defaults(env_file: str | Path | None = None) -> dict[str, str]:
    """Collect ``FLATTEN_SELECT_*`` values from a ``.env`` file and the environment.

    Process environment variables win over the ``.env`` file. Names outside
    ``ENV_KEYS`` are ignored.

    Args:
        env_file: Optional explicit ``.env`` path; defaults to the one found from the cwd.

    Returns:
        dict[str, str]: lower-cased setting names (prefix removed) to raw values
    """
    source = env_file if env_file is not None else ENV_FILE
    values: dict[str, str | None] = dict(dotenv_values(source)) if source else {}
    values.update(os.environ)
    out: dict[str, str] = {}
    for key, value in values.items():
        name = key[len(ENV_PREFIX) :].lower()
        if key.startswith(ENV_PREFIX) and name in ENV_KEYS and value is not None:
            out[name] = value
    return out


class Settings(BaseModel):
    """Configuration settings for the flatten_select command line."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    command: str = Field(default="evaluate", description="scan, evaluate, preview or export.")
    root: str = Field(default="", description="Root directory to export.")
    config_file: str = Field(default="", description="YAML/JSON ExportConfig profile.")
    dir: str = Field(default=".", description="Directory to list for the scan command.")
    output: str = Field(default="", description="Export destination.")
    overwrite: bool = Field(default=False, description="Replace an existing destination.")
    log_file: str = Field(default="", description="Log file path.")

    no_gitignore: bool = Field(default=False, description="Do not honor .gitignore files.")
    include_glob: list[str] = Field(default_factory=list, description="Include glob.")
    exclude_glob: list[str] = Field(default_factory=list, description="Exclude glob.")
    include_ext: list[str] = Field(default_factory=list, description="Include extension.")
    exclude_ext: list[str] = Field(default_factory=list, description="Exclude extension.")
    select: list[str] = Field(default_factory=list, description="PATH=include|exclude overrides.")
    max_file_size_kb: int | None = Field(default=None, gt=0, description="Oversize threshold.")
    large_file_strategy: str | None = Field(default=None, description="truncate or skip.")
    format: str | None = Field(default=None, description="txt or md.")

    max_files: int = Field(default=100_000, gt=0, description="Max file nodes per traversal.")
    max_depth: int = Field(default=64, gt=0, description="Max directory depth.")
    bytes_per_token: int = Field(default=4, description="Token heuristic; <= 0 disables it.")

    @property
    def limits(self) -> ScanLimits:
        """Scan limits derived from these settings."""
        return ScanLimits(max_files=self.max_files, max_depth=self.max_depth)
