"""Rule Matcher: nested ``.gitignore`` files plus user glob/extension rules.

Both kinds of pattern use git wildmatch syntax as implemented by ``pathspec``.
Paths handed to the matchers are root-relative POSIX keys (see
``flatten_select.pathing``); directories are matched with a trailing slash so
that directory-only patterns (``build/``) behave as in git.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pathspec import GitIgnoreSpec
from pathspec.patterns.gitwildmatch import GitWildMatchPattern, GitWildMatchPatternError

from flatten_select.config import RuleVerdict
from flatten_select.exceptions import InvalidGlobError
from flatten_select.logging import logger
from flatten_select.pathing import ROOT_KEY, parent_keys

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from flatten_select.config import ExportConfig

IGNORE_FILE = ".gitignore"


def _subject(key: str, *, is_dir: bool) -> str:
    return f"{key}/" if is_dir else key


def _matches_any(patterns: Iterable[GitWildMatchPattern], subject: str) -> bool:
    return any(p.match_file(subject) is not None for p in patterns)


class _IgnoreFile:
    """The compiled patterns of one ``.gitignore``.

    Directories are checked against a copy without the ``dir/**`` patterns:
    those match everything inside ``dir`` but never ``dir`` itself.
    """

    def __init__(self, patterns: Sequence[GitWildMatchPattern]) -> None:
        self.files = GitIgnoreSpec(patterns)
        self.dirs = GitIgnoreSpec([p for p in patterns if not _is_contents_only(p)])

    def decide(self, subject: str, *, is_dir: bool) -> bool | None:
        spec = self.dirs if is_dir else self.files
        return spec.check_file(_subject(subject, is_dir=is_dir)).include


def _is_contents_only(pattern: GitWildMatchPattern) -> bool:
    return str(pattern.pattern).rstrip().endswith("/**")


class GitignoreMatcher:
    """Answer "is this path ignored?" for one root, loading ignore files lazily.

    Only the ``.gitignore`` files of the directories on the way to a queried
    path are read, each at most once per matcher. A matcher belongs to a single
    operation call and is not shared between threads.

    Precedence follows git: the deepest ignore file with a matching pattern
    decides, and nothing can be re-included below an ignored directory. Inside
    one file ``pathspec.GitIgnoreSpec`` applies git's own rules, so ``!`` on a
    directory pattern (``!*/``) re-includes directories without re-including
    the files a file pattern (``*``) excluded in them.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._files: dict[str, _IgnoreFile | None] = {}
        self._problems: dict[str, list[str]] = {}
        self._ignored_dirs: dict[str, bool] = {}

    @property
    def warnings(self) -> list[str]:
        """Problems met while reading every ignore file loaded so far."""
        return [msg for problems in self._problems.values() for msg in problems]

    def warnings_for(self, dir_key: str) -> list[str]:
        """Problems met while reading the ignore file of one directory."""
        return list(self._problems.get(dir_key, ()))

    def is_ignored(self, key: str, *, is_dir: bool) -> bool:
        """Check whether a root-relative path is excluded by ignore files.

        Args:
            key (str): root-relative POSIX path
            is_dir (bool): whether the path is a directory

        Returns:
            bool: True if an ignore file (or an ignored ancestor directory) excludes it
        """
        if key == ROOT_KEY:
            return False
        if any(self._dir_ignored(parent) for parent in parent_keys(key)):
            return True
        if is_dir:
            return self._dir_ignored(key)
        return bool(self._decide(key, is_dir=False))

    def _dir_ignored(self, key: str) -> bool:
        cached = self._ignored_dirs.get(key)
        if cached is None:
            cached = bool(self._decide(key, is_dir=True))
            self._ignored_dirs[key] = cached
        return cached

    def _decide(self, key: str, *, is_dir: bool) -> bool | None:
        parts = key.split("/")
        for depth in range(len(parts) - 1, -1, -1):
            ignore_file = self._ignore_file_of("/".join(parts[:depth]) or ROOT_KEY)
            if ignore_file is None:
                continue
            decision = ignore_file.decide("/".join(parts[depth:]), is_dir=is_dir)
            if decision is not None:
                return decision
        return None

    def _ignore_file_of(self, dir_key: str) -> _IgnoreFile | None:
        if dir_key not in self._files:
            self._files[dir_key] = self._load(dir_key)
        return self._files[dir_key]

    def _load(self, dir_key: str) -> _IgnoreFile | None:
        directory = self.root if dir_key == ROOT_KEY else self.root / dir_key
        ignore_file = directory / IGNORE_FILE
        rel = IGNORE_FILE if dir_key == ROOT_KEY else f"{dir_key}/{IGNORE_FILE}"
        try:
            text = ignore_file.read_text(encoding="utf-8", errors="replace")
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as e:
            self._problems[dir_key] = [f"Could not read {rel}: {e}"]
            logger.warning("ignore_file_unreadable", path=rel, error=str(e))
            return None

        patterns: list[GitWildMatchPattern] = []
        problems: list[str] = []
        for lineno, line in enumerate(text.splitlines(), start=1):
            try:
                pattern = GitWildMatchPattern(line)
            except GitWildMatchPatternError as e:
                problems.append(f"Partial .gitignore parse error in {rel} line {lineno}: {e}")
                continue
            if pattern.include is not None:
                patterns.append(pattern)
        if problems:
            self._problems[dir_key] = problems
            logger.warning("ignore_file_partial", path=rel, errors=len(problems))
        return _IgnoreFile(patterns) if patterns else None


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Normalize a sequence of glob patterns by stripping whitespace and
    replacing backslashes with forward slashes.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


def normalize_extensions(extensions: Sequence[str]) -> frozenset[str]:
    """Normalize extensions to lower case with a single leading dot (``PY`` -> ``.py``)."""
    out: set[str] = set()
    for ext in extensions:
        e = (ext or "").strip().lower().lstrip("*")
        if not e or e == ".":
            continue
        out.add(e if e.startswith(".") else f".{e}")
    return frozenset(out)


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternations, which wildmatch itself does not support.

    Args:
        pattern (str): a glob that may contain non-nested ``{...}`` groups

    Raises:
        InvalidGlobError: on unbalanced or nested braces

    Returns:
        list[str]: one pattern per alternative combination
    """
    start = pattern.find("{")
    if start == -1:
        if "}" in pattern:
            raise InvalidGlobError(pattern=pattern, message=f"Invalid glob {pattern!r}: unopened '}}'")
        return [pattern]
    end = pattern.find("}", start)
    if end == -1:
        raise InvalidGlobError(pattern=pattern, message=f"Invalid glob {pattern!r}: unclosed '{{'")
    body = pattern[start + 1 : end]
    if "{" in body:
        raise InvalidGlobError(pattern=pattern, message=f"Invalid glob {pattern!r}: nested alternates")
    if "}" in pattern[:start]:
        raise InvalidGlobError(pattern=pattern, message=f"Invalid glob {pattern!r}: unopened '}}'")
    head, tail = pattern[:start], pattern[end + 1 :]
    return [f"{head}{alt}{rest}" for alt in body.split(",") for rest in expand_braces(tail)]


def _check_char_classes(pattern: str) -> None:
    i = 0
    while i < len(pattern):
        if pattern[i] == "[":
            # "[]" and "[!]" start with a literal "]"
            first = i + 1
            if pattern[first : first + 1] in {"!", "^"}:
                first += 1
            close = pattern.find("]", first + 1)
            if close == -1:
                raise InvalidGlobError(pattern=pattern, message=f"Invalid glob {pattern!r}: unclosed character class")
            i = close
        i += 1


def compile_globs(globs: Sequence[str]) -> tuple[GitWildMatchPattern, ...]:
    """Compile user globs into wildmatch patterns rooted at the export root.

    Args:
        globs (Sequence[str]): raw globs from the configuration

    Raises:
        InvalidGlobError: if any pattern cannot be compiled; no pattern is ever
            silently dropped.

    Returns:
        tuple[GitWildMatchPattern, ...]: the compiled patterns
    """
    compiled: list[GitWildMatchPattern] = []
    for raw in normalize_globs(globs):
        if raw.startswith("!"):
            raise InvalidGlobError(
                pattern=raw,
                message=f"Invalid glob {raw!r}: negation is only supported in ignore files",
            )
        for variant in expand_braces(raw):
            _check_char_classes(variant)
            try:
                pattern = GitWildMatchPattern(variant)
            except GitWildMatchPatternError as e:
                raise InvalidGlobError(pattern=raw, message=f"Invalid glob {raw!r}: {e}") from e
            if pattern.include is None:
                raise InvalidGlobError(pattern=raw, message=f"Invalid glob {raw!r}: matches nothing")
            compiled.append(pattern)
    return tuple(compiled)


@dataclass(frozen=True)
class RuleSet:
    """Compiled glob/extension rules of one configuration.

    - Exclude globs and extensions force ``EXCLUDE``.
    - Non-empty include globs/extensions form one allow-list: any match is
      enough, a file matching none of them is ``EXCLUDE``.
    - When include and exclude both fire, exclude wins.
    - Include lists and extension rules never apply to directories.
    """

    include_globs: tuple[GitWildMatchPattern, ...] = ()
    exclude_globs: tuple[GitWildMatchPattern, ...] = ()
    include_extensions: frozenset[str] = field(default_factory=frozenset)
    exclude_extensions: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_config(cls, config: ExportConfig) -> RuleSet:
        """Compile the rules of ``config``.

        Raises:
            InvalidGlobError: if a glob is invalid.

        Returns:
            RuleSet: the compiled rules
        """
        return cls(
            include_globs=compile_globs(config.include_globs),
            exclude_globs=compile_globs(config.exclude_globs),
            include_extensions=normalize_extensions(config.include_extensions),
            exclude_extensions=normalize_extensions(config.exclude_extensions),
        )

    @property
    def has_allow_list(self) -> bool:
        """Whether include globs or include extensions are configured."""
        return bool(self.include_globs or self.include_extensions)

    def verdict(self, key: str, *, is_dir: bool) -> RuleVerdict:
        """Classify a root-relative path by the rules alone.

        Args:
            key (str): root-relative POSIX path
            is_dir (bool): whether the path is a directory

        Returns:
            RuleVerdict: ``INCLUDE``, ``EXCLUDE`` or ``NEUTRAL``
        """
        subject = _subject(key, is_dir=is_dir)
        if _matches_any(self.exclude_globs, subject):
            return RuleVerdict.EXCLUDE
        if is_dir:
            return RuleVerdict.NEUTRAL

        name = key.rsplit("/", 1)[-1].lower()
        if any(name.endswith(ext) for ext in self.exclude_extensions):
            return RuleVerdict.EXCLUDE
        if not self.has_allow_list:
            return RuleVerdict.NEUTRAL
        if _matches_any(self.include_globs, subject) or any(name.endswith(ext) for ext in self.include_extensions):
            return RuleVerdict.INCLUDE
        return RuleVerdict.EXCLUDE
