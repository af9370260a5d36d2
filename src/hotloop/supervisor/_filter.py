"""Watch filter deciding which changed files trigger a reload.

A path is processed only if it ends with a watched extension and matches
none of the ignore patterns. Patterns are matched against the path relative
to the nearest watch root, with separators normalized to ``/``, so the same
pattern list works on every platform.

Pattern forms:
    - ``**inner**``: the relative path contains ``inner`` anywhere
    - anything containing ``*``: wildcard, ``*`` matches any run of characters
    - anything else: plain substring containment
"""

from __future__ import annotations

import os
import posixpath
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, final

if TYPE_CHECKING:
    from collections.abc import Iterable

    from hotloop.config import ReloadConfig

PatternKind = Literal["contains", "wildcard", "substring"]


def normalize_path(path: str) -> str:
    """Normalize a relative path or pattern for comparison.

    Backslashes become forward slashes and redundant segments are collapsed.
    A trailing slash survives normalization so directory patterns such as
    ``.git/`` keep matching only directory components.
    """
    unified = path.replace("\\", "/")
    if not unified:
        return ""
    normalized = posixpath.normpath(unified)
    if unified.endswith("/") and not normalized.endswith("/"):
        normalized += "/"
    return normalized


@dataclass(frozen=True, slots=True)
class IgnorePattern:
    """A compiled ignore pattern.

    Attributes:
        source: The pattern as configured.
        kind: How the pattern is matched.
        value: Normalized text used for containment checks.
        regex: Compiled expression for wildcard patterns.
    """

    source: str
    kind: PatternKind
    value: str
    regex: re.Pattern[str] | None = None

    @classmethod
    def compile(cls, pattern: str) -> IgnorePattern:
        """Compile a configured pattern."""
        normalized = normalize_path(pattern)
        if (
            len(normalized) > 4  # noqa: PLR2004
            and normalized.startswith("**")
            and normalized.endswith("**")
        ):
            return cls(pattern, "contains", normalized[2:-2])
        if "*" in normalized:
            expression = re.escape(normalized).replace(r"\*", ".*")
            return cls(pattern, "wildcard", normalized, re.compile(expression))
        return cls(pattern, "substring", normalized)

    def matches(self, relative_path: str) -> bool:
        """Check a normalized root-relative path against this pattern."""
        if self.regex is not None:
            return self.regex.search(relative_path) is not None
        return self.value in relative_path


@final
class WatchFilter:
    """Decides whether a changed path should trigger a reload.

    Filtering never raises: paths outside every watch root are made relative
    to the working directory, and if that fails only the base name is used.
    """

    __slots__ = ("_cwd", "_extensions", "_patterns", "_roots")

    def __init__(
        self,
        watch_paths: Iterable[str],
        watch_extensions: Iterable[str],
        ignore_patterns: Iterable[str],
        *,
        cwd: str | None = None,
    ) -> None:
        """Initialize the filter.

        Args:
            watch_paths: Configured watch roots.
            watch_extensions: Allowed file extensions.
            ignore_patterns: Root-relative ignore patterns. Empty entries
                are skipped.
            cwd: Working directory for the fallback (default: current).
        """
        self._cwd = cwd if cwd is not None else os.getcwd()
        self._extensions = tuple(watch_extensions)
        self._patterns = tuple(
            IgnorePattern.compile(p) for p in ignore_patterns if normalize_path(p)
        )
        roots: set[str] = set()
        for root in watch_paths:
            absolute = os.path.abspath(os.path.join(self._cwd, root))
            roots.add(absolute)
            roots.add(os.path.realpath(absolute))
        # Deepest first, so the nearest root wins
        self._roots = tuple(sorted(roots, key=len, reverse=True))

    @classmethod
    def from_config(cls, config: ReloadConfig) -> WatchFilter:
        """Create a filter from a ReloadConfig."""
        return cls(
            config.watch_paths,
            config.watch_extensions,
            config.ignore_patterns,
        )

    @property
    def patterns(self) -> tuple[IgnorePattern, ...]:
        """Return the compiled ignore patterns."""
        return self._patterns

    def should_process(self, path: str) -> bool:
        """Return True if a change to ``path`` should trigger a reload."""
        return self.has_watched_extension(path) and not self.is_ignored(path)

    def has_watched_extension(self, path: str) -> bool:
        """Return True if ``path`` ends with a watched extension."""
        return any(path.endswith(ext) for ext in self._extensions)

    def is_ignored(self, path: str) -> bool:
        """Return True if ``path`` matches any ignore pattern."""
        relative = normalize_path(self.relative_path(path))
        return any(pattern.matches(relative) for pattern in self._patterns)

    def _root_relative(self, path: str) -> str | None:
        absolute = os.path.abspath(os.path.join(self._cwd, path))
        candidates = (absolute, os.path.realpath(absolute))
        for root in self._roots:
            prefix = root.rstrip(os.sep) + os.sep
            for candidate in candidates:
                if candidate == root:
                    return ""
                if candidate.startswith(prefix):
                    return candidate[len(prefix) :]
        return None

    def is_under_root(self, path: str) -> bool:
        """Return True if ``path`` lies inside one of the watch roots."""
        return self._root_relative(path) is not None

    def relative_path(self, path: str) -> str:
        """Return ``path`` relative to its nearest watch root.

        Args:
            path: Absolute or cwd-relative file path.

        Returns:
            The root-relative path, a cwd-relative path when the file lies
            outside every root, or the base name as a last resort.
        """
        relative = self._root_relative(path)
        if relative is not None:
            return relative
        try:
            return os.path.relpath(os.path.join(self._cwd, path), self._cwd)
        except ValueError:
            # Different drives on Windows
            return os.path.basename(path)
