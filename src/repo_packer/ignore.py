from __future__ import annotations

from typing import TYPE_CHECKING

import pathspec

from repo_packer.config import DEFAULT_IGNORE_PATTERNS
from repo_packer.file_manipulation import normalize_globs
from repo_packer.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path


class IgnoreMatcher:
    """Answer "is this normalized path ignored?" with gitignore semantics.

    Patterns are evaluated in order: built-in defaults, configured ignore
    patterns, then the root ``.gitignore`` (so its ``!`` lines can re-include
    earlier matches). ``unignore`` patterns are checked last and always win.
    """

    def __init__(self, patterns: Iterable[str], unignore: Iterable[str] = ()) -> None:
        self._patterns = [p for p in patterns if p.strip()]
        self._unignore = [p for p in unignore if p.strip()]
        self._spec = pathspec.GitIgnoreSpec.from_lines(self._patterns)
        self._unignore_spec = pathspec.GitIgnoreSpec.from_lines(self._unignore)

    @classmethod
    def for_root(
        cls,
        base: Path,
        extra_patterns: Sequence[str] = (),
        unignore: Sequence[str] = (),
        *,
        use_gitignore: bool = True,
    ) -> IgnoreMatcher:
        """Build the matcher for one input root.

        Args:
            base (Path): the root directory; its ``.gitignore`` is read if present.
            extra_patterns (Sequence[str]): configured ignore patterns; backslashes become slashes.
            unignore (Sequence[str]): patterns that re-include ignored paths.
            use_gitignore (bool): whether to read ``base/.gitignore``.

        Returns:
            IgnoreMatcher: the compiled matcher.
        """
        lines = [*DEFAULT_IGNORE_PATTERNS, *normalize_globs(extra_patterns)]
        gitignore = base / ".gitignore"
        if use_gitignore and gitignore.is_file():
            lines.extend(gitignore.read_text(encoding="utf-8", errors="replace").splitlines())
            logger.debug("gitignore_loaded", path=str(gitignore))
        return cls(lines, normalize_globs(unignore))

    @property
    def has_unignore(self) -> bool:
        """Whether unignore patterns are configured (directory pruning must then be disabled)."""
        return bool(self._unignore)

    def is_ignored(self, normalized_path: str) -> bool:
        """Check a normalized path; directories are passed with a trailing ``/``.

        Args:
            normalized_path (str): forward-slash relative path.

        Returns:
            bool: True if the path must be skipped.
        """
        if self._unignore and self._unignore_spec.match_file(normalized_path):
            return False
        return self._spec.match_file(normalized_path)
