"""Git collaborator: last commit time per path."""

from __future__ import annotations

import shutil
import subprocess  # noqa: S404
from typing import TYPE_CHECKING

from repo_packer.exceptions import GitCommandError, NotAGitRepositoryError, OutsideBaseError
from repo_packer.logging import logger
from repo_packer.paths import clean_posix

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

_RECORD_SEPARATOR = "\x1e"


def run_git(args: Sequence[str], cwd: Path) -> str:
    """Run a git command and return its standard output.

    Args:
        args (Sequence[str]): arguments after ``git``.
        cwd (Path): working directory.

    Raises:
        GitCommandError: if git is missing or exits with a non-zero status.

    Returns:
        str: the decoded standard output.
    """
    git = shutil.which("git")
    command = " ".join(["git", *args])
    if git is None:
        raise GitCommandError(command=command, returncode=127, stdout="", stderr="git executable not found")
    out = subprocess.run(  # noqa: S603
        [git, *args],
        cwd=str(cwd),
        capture_output=True,
        check=False,
        encoding="utf-8",
        errors="replace",
    )
    if out.returncode != 0:
        raise GitCommandError(command=command, returncode=out.returncode, stdout=out.stdout, stderr=out.stderr)
    return out.stdout


def ensure_work_tree(folder: Path) -> None:
    """Check that ``folder`` lies inside a git work tree.

    Args:
        folder (Path): directory to check.

    Raises:
        NotAGitRepositoryError: if it does not.
    """
    try:
        inside = run_git(["rev-parse", "--is-inside-work-tree"], cwd=folder).strip()
    except GitCommandError as e:
        raise NotAGitRepositoryError(folder=folder) from e
    if inside != "true":
        raise NotAGitRepositoryError(folder=folder)


def parse_log_output(output: str) -> dict[str, int]:
    """Parse ``git log --name-only --format=%x1e%ct`` output.

    Commits are listed newest first, so the first timestamp seen for a path is
    its last commit time.

    Args:
        output (str): raw git output.

    Returns:
        dict[str, int]: epoch seconds per normalized path.
    """
    timestamps: dict[str, int] = {}
    for record in output.split(_RECORD_SEPARATOR):
        lines = [line for line in record.splitlines() if line.strip()]
        if not lines:
            continue
        try:
            committed_at = int(lines[0].strip())
        except ValueError:
            logger.debug("git_log_record_skipped", header=lines[0])
            continue
        for raw in lines[1:]:
            try:
                path = clean_posix(raw)
            except OutsideBaseError:
                continue
            timestamps.setdefault(path, committed_at)
    return timestamps


def commit_timestamps(base: Path, max_history_depth: int) -> dict[str, int]:
    """Last commit time of every path touched in the recent history of ``base``.

    Paths are relative to ``base``. A directory that is not a git work tree, a
    missing git executable or a failing command all yield an empty mapping.

    Args:
        base (Path): processing base directory.
        max_history_depth (int): number of commits to inspect; 0 disables git.

    Returns:
        dict[str, int]: epoch seconds per normalized path.
    """
    if max_history_depth <= 0:
        return {}
    try:
        ensure_work_tree(base)
        output = run_git(
            [
                "-c",
                "core.quotepath=off",
                "log",
                "--name-only",
                "--relative",
                "--no-renames",
                f"--max-count={max_history_depth}",
                f"--format={_RECORD_SEPARATOR}%ct",
            ],
            cwd=base,
        )
    except (GitCommandError, NotAGitRepositoryError) as e:
        logger.debug("git_history_unavailable", base=str(base), error=str(e))
        return {}
    timestamps = parse_log_output(output)
    logger.debug("git_history_loaded", base=str(base), paths=len(timestamps), depth=max_history_depth)
    return timestamps
