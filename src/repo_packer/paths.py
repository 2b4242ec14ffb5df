"""Canonical, platform-independent paths.

Every path that reaches the priority engine or the chunk assembler went through
this module: forward slashes, no ``.``/``..`` segments, NFC unicode, relative to
the processing base.
"""

from __future__ import annotations

import os
import posixpath
import re
import unicodedata
from pathlib import Path

from repo_packer.config import MAX_SYMLINK_HOPS
from repo_packer.exceptions import OutsideBaseError, SymlinkLoopError

_LONG_PATH_PREFIX = re.compile(r"^//[?.]/(?:UNC/[^/]+/[^/]+)?")
_UNC_PREFIX = re.compile(r"^//[^/]+/[^/]+")
_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def to_nfc(text: str) -> str:
    """Return ``text`` in Unicode normalization form C.

    macOS file systems hand back decomposed (NFD) names while most other
    platforms use composed (NFC) ones; comparing NFC strings makes both agree.

    Args:
        text (str): any string.

    Returns:
        str: the NFC form of ``text``.
    """
    return unicodedata.normalize("NFC", text)


def clean_posix(raw: str | os.PathLike[str]) -> str:
    """Lexically normalize a path string without touching the file system.

    Backslashes become forward slashes, Windows drive letters, UNC shares and
    ``\\\\?\\`` prefixes are dropped, ``.`` and ``..`` segments are folded.

    Args:
        raw (str | os.PathLike[str]): a relative or absolute path in any platform syntax.

    Raises:
        OutsideBaseError: if the folded path still starts with ``..``.

    Returns:
        str: a relative forward-slash path, ``"."`` for the base itself.
    """
    text = to_nfc(os.fspath(raw)).replace("\\", "/")
    if text.startswith("//"):
        text = _LONG_PATH_PREFIX.sub("", text, count=1)
        text = _UNC_PREFIX.sub("", text, count=1)
    text = _DRIVE_PREFIX.sub("", text, count=1).lstrip("/")
    if not text:
        return "."
    cleaned = posixpath.normpath(text)
    if cleaned == ".." or cleaned.startswith("../"):
        raise OutsideBaseError(path=os.fspath(raw), base=".")
    return cleaned


def resolve_physical(path: Path, max_hops: int = MAX_SYMLINK_HOPS) -> Path:
    """Resolve ``path`` component by component, following symlinks.

    Unlike :meth:`Path.resolve`, a loop is reported as soon as a symlink is met
    again while its own target is still being expanded, or once more than
    ``max_hops`` links were followed. Crossing the same link twice in sequence
    (``link/../link``) is not a loop.

    Args:
        path (Path): the path to resolve; relative paths are anchored at the cwd.
        max_hops (int): maximum number of symlinks to follow.

    Raises:
        SymlinkLoopError: if a symlink re-enters itself or the hop bound is exceeded.

    Returns:
        Path: the absolute physical path (components that do not exist are kept as is).
    """
    absolute = path if path.is_absolute() else Path.cwd() / path
    resolved = Path(absolute.anchor)
    pending = list(reversed(absolute.parts[1:]))
    # symlink -> size of ``pending`` before its target was pushed
    expanding: dict[Path, int] = {}
    hops = 0
    while pending:
        expanding = {link: depth for link, depth in expanding.items() if depth < len(pending)}
        part = pending.pop()
        if part in {"", "."}:
            continue
        if part == "..":
            resolved = resolved.parent
            continue
        candidate = resolved / part
        if not candidate.is_symlink():
            resolved = candidate
            continue
        hops += 1
        if hops > max_hops or candidate in expanding:
            raise SymlinkLoopError(path=str(path), hops=hops)
        expanding[candidate] = len(pending)
        target = Path(os.readlink(candidate))
        if target.is_absolute():
            resolved = Path(target.anchor)
            pending.extend(reversed(target.parts[1:]))
        else:
            pending.extend(reversed(target.parts))
    return resolved


class PathNormalizer:
    """Normalize native paths against one processing base directory.

    The base is resolved once; each call resolves the candidate physically to
    enforce the security boundary, then reports its lexical location inside the
    base so that a symlink keeps its own name.
    """

    def __init__(self, base: Path) -> None:
        self.base = Path(os.path.abspath(base))
        self.physical_base = resolve_physical(self.base)

    def normalize(self, path: str | os.PathLike[str]) -> str:
        """Normalize ``path`` relative to the base.

        Args:
            path (str | os.PathLike[str]): native path, absolute or relative to the base.

        Raises:
            OutsideBaseError: if the physical target is not inside the base.
            SymlinkLoopError: if resolving symlinks loops.

        Returns:
            str: the canonical forward-slash relative path.
        """
        native = Path(path)
        candidate = native if native.is_absolute() else self.base / native
        physical = resolve_physical(candidate)
        if not physical.is_relative_to(self.physical_base):
            raise OutsideBaseError(path=os.fspath(path), base=str(self.base))

        try:
            lexical = os.path.relpath(os.path.normpath(candidate), self.base)
        except ValueError:
            # different drives on Windows
            lexical = os.pardir
        if lexical == os.pardir or lexical.startswith(os.pardir + os.sep):
            lexical = str(physical.relative_to(self.physical_base))
        return clean_posix(lexical)


def normalize_path(path: str | os.PathLike[str], base: Path) -> str:
    """Normalize a single path; see :meth:`PathNormalizer.normalize`.

    Args:
        path (str | os.PathLike[str]): native path.
        base (Path): processing base directory.

    Returns:
        str: the canonical forward-slash relative path.
    """
    return PathNormalizer(base).normalize(path)
