from __future__ import annotations

import glob
import os
import stat
from pathlib import Path
from typing import TYPE_CHECKING, Any

from repo_packer.config import SNIFF_BYTES
from repo_packer.logging import logger
from repo_packer.paths import clean_posix

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Sequence

_GLOB_CHARS = frozenset("*?[")


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


def is_glob(text: str) -> bool:
    """Check if an input path is a glob pattern.

    Args:
        text (str): the raw input path

    Returns:
        bool: True if it contains ``*``, ``?`` or ``[``
    """
    return any(c in _GLOB_CHARS for c in text)


def glob_base(pattern: str) -> Path:
    """Return the longest leading directory of ``pattern`` without glob characters.

    Args:
        pattern (str): a glob pattern such as ``src/**/*.py``

    Returns:
        Path: the static prefix directory (``.`` when the pattern starts with a wildcard)
    """
    static: list[str] = []
    for part in pattern.replace("\\", "/").split("/")[:-1]:
        if is_glob(part):
            break
        static.append(part)
    if not static:
        return Path()
    return Path("/".join(static) or "/")


def expand_glob(pattern: str) -> list[Path]:
    """Expand a glob pattern to the regular files it matches, sorted.

    Args:
        pattern (str): a glob pattern; ``**`` crosses directories

    Returns:
        list[Path]: matching regular files
    """
    matches = glob.glob(pattern, recursive=True)  # noqa: PTH207
    return sorted(Path(m) for m in matches if is_regular_file(Path(m)) or Path(m).is_symlink())


def is_regular_file(path: Path) -> bool:
    """Check if a file is regular.

    Args:
        path (Path): path to test.

    Returns:
        bool: True if the file is regular, False otherwise.
    """
    try:
        st = path.stat()
        return stat.S_ISREG(st.st_mode)
    except OSError:
        return False


def walk_files(base: Path, is_ignored: Callable[[str], bool], *, prune: bool = True) -> Iterator[Path]:
    """Walk ``base`` and yield candidate files in a stable order.

    Ignored directories are pruned before descending (directory paths are
    checked with a trailing ``/``). Symlinked directories are never followed;
    symlinks to files are yielded and resolved later. FIFOs, sockets and device
    files are never yielded.

    Args:
        base (Path): the root directory to walk
        is_ignored (Callable[[str], bool]): ignore predicate over normalized paths
        prune (bool): prune ignored directories; disabled when unignore patterns
            may re-include something below an ignored directory

    Yields:
        Path: absolute native paths of candidate files
    """
    for root, dirs, files in os.walk(base, followlinks=False):
        rel_root = clean_posix(os.path.relpath(root, base))
        prefix = "" if rel_root == "." else f"{rel_root}/"
        kept: list[str] = []
        for d in sorted(dirs):
            if (Path(root) / d).is_symlink():
                logger.debug("symlinked_directory_skipped", path=prefix + d)
                continue
            if prune and is_ignored(f"{prefix}{d}/"):
                continue
            kept.append(d)
        dirs[:] = kept
        for f in sorted(files):
            candidate = Path(root) / f
            if candidate.is_symlink() or is_regular_file(candidate):
                yield candidate
            else:
                logger.debug("special_file_skipped", path=prefix + f)


def is_binary_content(data: bytes, sniff_bytes: int = SNIFF_BYTES) -> bool:
    """Check for a NUL byte in the first ``sniff_bytes`` bytes.

    Args:
        data (bytes): raw file content
        sniff_bytes (int): size of the inspected prefix

    Returns:
        bool: True if the content looks binary
    """
    return b"\x00" in data[:sniff_bytes]


def decode_text(data: bytes, tolerance: float) -> tuple[str | None, str | None]:
    """Decode UTF-8, recovering lossily from invalid sequences.

    Args:
        data (bytes): raw file content
        tolerance (float): maximum share of U+FFFD characters after lossy decoding

    Returns:
        tuple[str | None, str | None]: the text (None when the file must be treated
            as binary) and an optional warning describing a lossy recovery
    """
    try:
        return data.decode("utf-8"), None
    except UnicodeDecodeError as e:
        text = data.decode("utf-8", errors="replace")
        replaced = text.count("\ufffd")
        ratio = replaced / max(len(text), 1)
        if ratio > tolerance:
            return None, None
        return text, f"invalid UTF-8 at byte {e.start}: {replaced} character(s) replaced"


def add_line_numbers(text: str) -> str:
    """Prefix every line with its right-aligned 1-based number.

    The width is the number of digits of the last line number, at least 3.

    Args:
        text (str): file content

    Returns:
        str: numbered lines joined with ``\\n``
    """
    lines = text.splitlines()
    width = max(3, len(str(len(lines))))
    return "\n".join(f"{i:>{width}} | {line}" for i, line in enumerate(lines, start=1))


def build_tree_lines(root_name: str, rel_paths: Sequence[str]) -> list[str]:
    """Build a visual tree representation of file paths.

    Args:
        root_name (str): the name to use for the root of the tree
        rel_paths (Sequence[str]): the list of file paths relative to the root, using POSIX separators (e.g. "src/main.py")

    Returns:
        list[str]: a list of strings representing the tree structure, suitable for printing
    """
    rels = sorted({p.strip("/").replace("\\", "/") for p in rel_paths if p.strip()})
    tree: dict[str, Any] = {}
    for rp in rels:
        cur = tree
        parts = rp.split("/")
        for i, part in enumerate(parts):
            if i == len(parts) - 1:
                cur.setdefault("__files__", set()).add(part)
            else:
                cur = cur.setdefault(part, {})

    lines: list[str] = [root_name]

    def walk(node: dict[str, Any], prefix: str) -> None:
        dirs = sorted(k for k in node if k != "__files__")
        files = sorted(node.get("__files__", set()))
        entries: list[tuple[str, str, Any]] = []
        entries.extend(("dir", d, node[d]) for d in dirs)
        entries.extend(("file", f, None) for f in files)
        for idx, (kind, name, child) in enumerate(entries):
            last = idx == len(entries) - 1
            branch = "└── " if last else "├── "
            lines.append(prefix + branch + name + ("/" if kind == "dir" else ""))
            if kind == "dir":
                ext = "    " if last else "│   "
                walk(child, prefix + ext)

    walk(tree, "")
    return lines
