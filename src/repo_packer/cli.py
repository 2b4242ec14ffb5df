"""repo-packer: serialize a repository for a context-limited language model.

Files are ranked by importance (priority rules plus git recency), loaded in
parallel and packed into size-bounded chunks. The least important material
comes first, so the most important files sit at the end of the output, right
before the question asked to the model.

Usage
-----
Run ``repo-packer --help`` for all options. Common examples:
    - Stream the current repository to a pipe:
        repo-packer . | pbcopy

    - 100K-token chunks written to a directory:
        repo-packer src tests --tokens 100K --output-dir out/

    - Boost sources, include a tree header:
        repo-packer --priority-rule "src/**=100" --priority-regex "^docs/=10" --tree-header
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from repo_packer import __version__
from repo_packer.config import PatternKind
from repo_packer.config_loader import load_settings
from repo_packer.exceptions import ConfigurationError, OutputDestinationError, RepoPackerError
from repo_packer.logging import logger, setup_logging
from repo_packer.pipeline import run_pipeline
from repo_packer.tokenizer import TokenizerName

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from repo_packer.settings import Settings

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION = 2


def parse_priority_rule(value: str, kind: PatternKind = PatternKind.GLOB) -> dict[str, Any]:
    """Parse a ``PATTERN=SCORE`` command line value.

    The score is taken after the last ``=`` so patterns may contain ``=``.

    Args:
        value (str): CLI value.
        kind (PatternKind): syntax of the pattern.

    Raises:
        argparse.ArgumentTypeError: If the value is not in ``PATTERN=SCORE`` form.

    Returns:
        dict[str, Any]: rule mapping validated later by ``Settings``.
    """
    pattern, sep, score = value.rpartition("=")
    pattern = pattern.strip()
    try:
        parsed = int(score.strip())
    except ValueError:
        parsed = None
    if not sep or not pattern or parsed is None:
        msg = f"expected PATTERN=SCORE, got: {value}"
        raise argparse.ArgumentTypeError(msg)
    return {"pattern": pattern, "score": parsed, "kind": kind}


def _rule_type(kind: PatternKind) -> Callable[[str], dict[str, Any]]:
    def parse(value: str) -> dict[str, Any]:
        return parse_priority_rule(value, kind)

    parse.__name__ = f"{kind}_rule"
    return parse


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser.

    Every option defaults to ``SUPPRESS`` so that only values actually given on
    the command line override the configuration file and the environment.

    Returns:
        argparse.ArgumentParser: Configured parser.
    """
    p = argparse.ArgumentParser(
        prog="repo-packer",
        description="Serialize a repository into priority-ordered, size-bounded chunks.",
        argument_default=argparse.SUPPRESS,
    )
    p.add_argument("input_paths", nargs="*", help="Files, directories or glob patterns (default: .).")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    size = p.add_argument_group("sizing")
    size.add_argument("--max-size", type=str, help="Chunk budget in bytes, e.g. 10MB, 128KB (default: 10MB).")
    size.add_argument(
        "--tokens",
        type=str,
        nargs="?",
        const="",
        help="Measure in tokens; optional budget such as 100K (default: 128K).",
    )
    size.add_argument("--tokenizer", type=TokenizerName, choices=list(TokenizerName), help="Token counter.")
    size.add_argument("--max-file-size", type=str, help="Skip files above this size (default: 256MB).")
    size.add_argument("--threads", type=int, help="Content loader threads.")

    output = p.add_argument_group("output")
    output.add_argument("--output-dir", type=str, help="Write chunk files to this directory.")
    output.add_argument("--output-name", type=str, help="Write the streamed output to this single file.")
    output.add_argument("--output-template", type=str, help="Per-file template with FILE_PATH and FILE_CONTENT.")
    output.add_argument("--json", dest="json_output", action="store_true", help="Emit a JSON array.")
    output.add_argument("--tree-header", action="store_true", help="Prepend a directory tree.")
    output.add_argument("--tree-only", action="store_true", help="Only print the directory tree.")
    output.add_argument("--line-numbers", action="store_true", help="Prefix lines with their number.")
    output.add_argument(
        "--stream",
        action=argparse.BooleanOptionalAction,
        help="Force streaming to stdout (or forbid it with --no-stream).",
    )

    selection = p.add_argument_group("selection and priority")
    selection.add_argument("--ignore-patterns", nargs="+", action="extend", help="Extra gitignore-style patterns.")
    selection.add_argument("--unignore-patterns", nargs="+", action="extend", help="Re-include patterns.")
    selection.add_argument("--binary-extensions", nargs="+", action="extend", help="Extra binary extensions.")
    selection.add_argument(
        "--priority-rule",
        dest="priority_rules",
        type=_rule_type(PatternKind.GLOB),
        action="append",
        metavar="GLOB=SCORE",
        help="Glob priority rule (repeatable).",
    )
    selection.add_argument(
        "--priority-regex",
        dest="priority_rules",
        type=_rule_type(PatternKind.REGEX),
        action="append",
        metavar="REGEX=SCORE",
        help="Regex priority rule (repeatable).",
    )
    selection.add_argument("--category-weights", action="store_true", help="Rank files by category.")
    selection.add_argument("--max-git-depth", type=int, help="Commits inspected for recency (0 disables git).")
    selection.add_argument("--git-boost-max", type=int, help="Boost of the most recently committed files.")

    misc = p.add_argument_group("configuration and logging")
    misc.add_argument("--config", type=str, help="Configuration file (YAML, TOML or JSON).")
    misc.add_argument("--log-file", type=str, help="Log file path (default: stderr).")
    misc.add_argument("--debug", action="store_true", help="Debug logging and token diagnostics.")
    return p


def parse_cli_values(argv: Sequence[str] | None = None) -> dict[str, Any]:
    """Parse the command line into the values explicitly given.

    Args:
        argv (Sequence[str] | None): Optional CLI args.

    Returns:
        dict[str, Any]: settings values keyed by field name.
    """
    args = build_parser().parse_args(argv)
    values = vars(args)
    if not values.get("input_paths"):
        values.pop("input_paths", None)
    return values


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Resolve settings from the config file, the environment and the command line.

    Args:
        argv (Sequence[str] | None): Optional CLI args.

    Returns:
        Settings: validated settings.
    """
    return load_settings(parse_cli_values(argv))


def _fail(error: RepoPackerError, code: int) -> int:
    logger.error("run_failed", error=str(error), kind=type(error).__name__)
    sys.stderr.write(f"repo-packer: {error}\n")
    return code


def main(argv: Sequence[str] | None = None) -> int:
    """Serialize the inputs and return the process exit code.

    Args:
        argv (Sequence[str] | None): Optional CLI arguments.

    Returns:
        int: 0 on success (skipped files included), 2 for configuration errors,
            1 for other fatal errors.
    """
    try:
        settings = parse_args(argv)
    except ConfigurationError as e:
        return _fail(e, EXIT_CONFIGURATION)

    try:
        setup_logging(settings.log_file or None, debug=settings.debug, force=True)
    except OSError as e:
        return _fail(OutputDestinationError(path=Path(settings.log_file), reason=str(e)), EXIT_FAILURE)
    try:
        run_pipeline(settings)
    except ConfigurationError as e:
        return _fail(e, EXIT_CONFIGURATION)
    except RepoPackerError as e:
        return _fail(e, EXIT_FAILURE)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
