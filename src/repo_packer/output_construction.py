from __future__ import annotations

import json
import re
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from repo_packer.config import CONTENT_PLACEHOLDER, PATH_PLACEHOLDER
from repo_packer.exceptions import OutputDestinationError
from repo_packer.file_manipulation import build_tree_lines
from repo_packer.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from repo_packer.config import Chunk, FileDescriptor
    from repo_packer.settings import Settings

TREE_TITLE = "Directory structure:"
TREE_FILE_NAME = "tree.txt"
STDOUT_PATH = Path("<stdout>")
_PLACEHOLDERS = re.compile(f"{PATH_PLACEHOLDER}|{CONTENT_PLACEHOLDER}")


def expand_template(template: str) -> str:
    """Turn literal ``\\n`` escapes (as typed on a command line) into newlines.

    Args:
        template (str): raw template

    Returns:
        str: the template with real newlines
    """
    return template.replace("\\n", "\n")


def render_file(template: str, path: str, content: str) -> str:
    """Render one file with the template, substituting both placeholders in a single pass.

    A placeholder appearing inside the substituted path or content is left alone.

    Args:
        template (str): expanded template
        path (str): normalized path
        content (str): file content

    Returns:
        str: the rendered block
    """
    values = {PATH_PLACEHOLDER: path, CONTENT_PLACEHOLDER: content}
    return _PLACEHOLDERS.sub(lambda m: values[m.group(0)], template)


def parse_rendered(template: str, text: str) -> tuple[str, str]:
    """Recover ``(path, content)`` from one block rendered with ``template``.

    Args:
        template (str): expanded template holding each placeholder exactly once
        text (str): a block produced by :func:`render_file`

    Raises:
        ValueError: if the template is not invertible or ``text`` does not match it.

    Returns:
        tuple[str, str]: the path and the content
    """
    if template.count(PATH_PLACEHOLDER) != 1 or template.count(CONTENT_PLACEHOLDER) != 1:
        msg = "Template must contain each placeholder exactly once to be parsed"
        raise ValueError(msg)
    pattern = "".join(
        {PATH_PLACEHOLDER: "(?P<path>[^\n]*?)", CONTENT_PLACEHOLDER: "(?P<content>.*)"}.get(part, re.escape(part))
        for part in re.split(f"({PATH_PLACEHOLDER}|{CONTENT_PLACEHOLDER})", template)
    )
    match = re.fullmatch(pattern, text, flags=re.DOTALL)
    if match is None:
        msg = "Text does not match the template"
        raise ValueError(msg)
    return match["path"], match["content"]


def render_text(files: Iterable[FileDescriptor], template: str) -> str:
    """Render files with the template, blocks separated by a newline."""
    expanded = expand_template(template)
    return "\n".join(render_file(expanded, f.normalized_path, f.content) for f in files)


def render_json(files: Iterable[FileDescriptor]) -> str:
    """Render files as an ordered JSON array of ``{"path", "content"}`` objects."""
    payload = [{"path": f.normalized_path, "content": f.content} for f in files]
    return json.dumps(payload, indent=2, ensure_ascii=False)


def render_entry(path: str, content: str, settings: Settings) -> str:
    """Render one file the way it appears in the output.

    Args:
        path (str): normalized path
        content (str): file content
        settings (Settings): resolved settings

    Returns:
        str: the template block, or the file's JSON object in JSON mode
    """
    if settings.json_output:
        return json.dumps({"path": path, "content": content}, indent=2, ensure_ascii=False)
    return render_file(expand_template(settings.output_template), path, content)


def build_tree(paths: Sequence[str]) -> str:
    """Render the directory tree header of the emitted paths.

    Args:
        paths (Sequence[str]): normalized paths

    Returns:
        str: ``Directory structure:`` followed by the tree and a blank line, or
            an empty string when there is nothing to show
    """
    if not paths:
        return ""
    return "\n".join(build_tree_lines(TREE_TITLE, paths)) + "\n\n"


def render_chunk(files: Sequence[FileDescriptor], settings: Settings, *, tree: str = "") -> str:
    """Serialize files according to the settings.

    Args:
        files (Sequence[FileDescriptor]): files in emission order
        settings (Settings): resolved settings
        tree (str): tree header prepended in text mode

    Returns:
        str: the serialization
    """
    if settings.json_output:
        return render_json(files)
    return tree + render_text(files, settings.output_template)


def should_stream(settings: Settings, *, stdout_is_tty: bool) -> bool:
    """Pick streaming or batch mode.

    An explicit ``stream`` setting wins; otherwise an output directory forces
    batch mode and an interactive terminal prefers it.

    Args:
        settings (Settings): resolved settings
        stdout_is_tty (bool): whether stdout is an interactive terminal

    Returns:
        bool: True to stream
    """
    if settings.stream is not None:
        return settings.stream
    if settings.output_name:
        return True
    if settings.output_dir is not None:
        return False
    return not stdout_is_tty


def resolve_output_dir(settings: Settings) -> Path:
    """Create the batch output directory.

    Args:
        settings (Settings): resolved settings

    Raises:
        OutputDestinationError: if the directory cannot be created.

    Returns:
        Path: the configured directory, or a fresh temporary one
    """
    try:
        if settings.output_dir is None:
            return Path(tempfile.mkdtemp(prefix="repo-packer-"))
        settings.output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputDestinationError(path=settings.output_dir or Path(tempfile.gettempdir()), reason=str(e)) from e
    return settings.output_dir


def _write(path: Path, text: str) -> Path:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise OutputDestinationError(path=path, reason=str(e)) from e
    logger.debug("output_written", path=str(path), chars=len(text))
    return path


def _to_stdout(stdout: TextIO, text: str) -> None:
    if text and not text.endswith("\n"):
        text += "\n"
    try:
        stdout.write(text)
        stdout.flush()
    except OSError as e:
        raise OutputDestinationError(path=STDOUT_PATH, reason=str(e)) from e


def emit(chunks: Sequence[Chunk], settings: Settings, *, stdout: TextIO | None = None) -> list[Path]:
    """Write the chunks out, streaming or as numbered chunk files.

    Streaming writes every file of every chunk, in order, to stdout (or to the
    ``output_name`` file). Batch mode writes ``chunk-0.txt``, ``chunk-1.txt``, ...
    (``.json`` in JSON mode) and prints each written path.

    Args:
        chunks (Sequence[Chunk]): chunks in emission order
        settings (Settings): resolved settings
        stdout (TextIO | None): stream for output and reported paths (defaults to ``sys.stdout``)

    Raises:
        OutputDestinationError: if stdout, an output file or the output directory
            cannot be written.

    Returns:
        list[Path]: files written (empty when streaming to stdout)
    """
    out = stdout if stdout is not None else sys.stdout
    files = [f for chunk in chunks for f in chunk.files]
    tree = build_tree([f.normalized_path for f in files])
    header = tree if settings.tree_header else ""
    if settings.json_output and settings.tree_header:
        logger.warning("tree_header_ignored", reason="json output")

    if should_stream(settings, stdout_is_tty=out.isatty()):
        if settings.tree_only:
            text = tree
        else:
            text = render_chunk(files, settings, tree=header)
        if not settings.output_name:
            _to_stdout(out, text)
            return []
        target = Path(settings.output_name)
        if settings.output_dir is not None and not target.is_absolute():
            target = settings.output_dir / target
        written = [_write(target, text)]
    else:
        directory = resolve_output_dir(settings)
        if settings.tree_only:
            written = [_write(directory / TREE_FILE_NAME, tree)]
        else:
            extension = "json" if settings.json_output else "txt"
            written = [
                _write(
                    directory / f"chunk-{chunk.index}.{extension}",
                    render_chunk(chunk.files, settings, tree=header if chunk.index == 0 else ""),
                )
                for chunk in chunks
            ]
        if not written:
            logger.info("nothing_to_write", directory=str(directory))

    _to_stdout(out, "".join(f"{path}\n" for path in written))
    return written
