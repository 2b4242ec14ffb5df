"""Parallel content loading.

Each worker owns exactly one descriptor: it reads, classifies and measures the
file and writes the result into the slot addressed by the descriptor's
``sequence_index``. The order decided by the priority engine is never touched.
"""

from __future__ import annotations

import os
import stat
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from repo_packer.config import ContentStatus, FileDescriptor, MeasureMode
from repo_packer.exceptions import SymlinkLoopError, TooLargeError
from repo_packer.file_manipulation import add_line_numbers, decode_text, is_binary_content
from repo_packer.logging import logger
from repo_packer.output_construction import render_entry
from repo_packer.paths import resolve_physical
from repo_packer.tokenizer import count_tokens

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repo_packer.settings import Settings


def default_thread_count() -> int:
    """Default pool size, as chosen by :class:`ThreadPoolExecutor`."""
    return min(32, (os.cpu_count() or 1) + 4)


def _skip(desc: FileDescriptor, status: ContentStatus, reason: str) -> FileDescriptor:
    logger.warning("file_skipped", path=desc.normalized_path, status=str(status), reason=reason)
    return desc.model_copy(update={"status": status, "content": "", "byte_size": 0})


def load_file(desc: FileDescriptor, settings: Settings) -> FileDescriptor:
    """Read, classify and measure one file.

    Expected per-file failures (unreadable, too large, symlink loop, binary)
    never raise: they are recorded as a skip status on the returned copy.

    Args:
        desc (FileDescriptor): a ranked descriptor.
        settings (Settings): resolved settings.

    Returns:
        FileDescriptor: the populated copy.
    """
    if desc.status != ContentStatus.PENDING:
        return desc

    extension = desc.source.suffix.lstrip(".").lower()
    if extension and extension in settings.binary_extension_set:
        logger.debug("file_skipped", path=desc.normalized_path, status="skipped_binary", reason="extension")
        return desc.model_copy(update={"status": ContentStatus.SKIPPED_BINARY})

    try:
        physical = resolve_physical(desc.source)
        info = physical.stat()
        if not stat.S_ISREG(info.st_mode):
            return _skip(desc, ContentStatus.SKIPPED_UNREADABLE, "not a regular file")
        limit = settings.max_file_size_bytes
        if info.st_size > limit:
            raise TooLargeError(path=desc.normalized_path, size=info.st_size, limit=limit)
        data = physical.read_bytes()
    except SymlinkLoopError as e:
        return _skip(desc, ContentStatus.SKIPPED_SYMLINK_LOOP, str(e))
    except TooLargeError as e:
        return _skip(desc, ContentStatus.SKIPPED_TOO_LARGE, str(e))
    except OSError as e:
        return _skip(desc, ContentStatus.SKIPPED_UNREADABLE, str(e))

    if is_binary_content(data):
        logger.debug("file_skipped", path=desc.normalized_path, status="skipped_binary", reason="nul byte")
        return desc.model_copy(update={"status": ContentStatus.SKIPPED_BINARY})

    text, warning = decode_text(data, settings.replacement_tolerance)
    if text is None:
        logger.debug("file_skipped", path=desc.normalized_path, status="skipped_binary", reason="not utf-8")
        return desc.model_copy(update={"status": ContentStatus.SKIPPED_BINARY})
    warnings = desc.warnings
    if warning:
        logger.warning("lossy_utf8_decoding", path=desc.normalized_path, detail=warning)
        warnings = (*warnings, warning)

    if settings.line_numbers:
        text = add_line_numbers(text)

    update = {
        "status": ContentStatus.TEXT,
        "content": text,
        "byte_size": len(text.encode("utf-8")),
        "warnings": warnings,
        "tokenizer": settings.tokenizer,
    }
    if settings.measure_mode == MeasureMode.TOKENS:
        # token budgets cover the rendered entry, not only the content
        entry = render_entry(desc.normalized_path, text, settings)
        update["rendered_tokens"] = count_tokens(entry, settings.tokenizer)
    loaded = desc.model_copy(update=update)
    if settings.measure_mode == MeasureMode.TOKENS or settings.debug:
        logger.debug(
            "file_measured",
            path=loaded.normalized_path,
            bytes=loaded.byte_size,
            tokens=loaded.token_count,
            rendered_tokens=loaded.rendered_tokens,
        )
    return loaded


def load_contents(ranked: Sequence[FileDescriptor], settings: Settings) -> list[FileDescriptor]:
    """Load every descriptor concurrently, preserving the ranked order.

    Args:
        ranked (Sequence[FileDescriptor]): descriptors whose ``sequence_index``
            equals their position.
        settings (Settings): resolved settings; ``threads`` bounds the pool.

    Raises:
        ValueError: if a descriptor's ``sequence_index`` does not match its position.

    Returns:
        list[FileDescriptor]: populated descriptors, in the same order.
    """
    for position, desc in enumerate(ranked):
        if desc.sequence_index != position:
            msg = f"Descriptor {desc.normalized_path!r} has sequence_index {desc.sequence_index}, expected {position}"
            raise ValueError(msg)

    slots: list[FileDescriptor | None] = [None] * len(ranked)

    def work(desc: FileDescriptor) -> None:
        slots[desc.sequence_index] = load_file(desc, settings)

    workers = settings.threads or default_thread_count()
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="repo-packer-loader") as pool:
        futures = [pool.submit(work, desc) for desc in ranked]
        for future in futures:
            future.result()

    loaded = [slot for slot in slots if slot is not None]
    logger.debug("contents_loaded", files=len(loaded), threads=workers)
    return loaded
