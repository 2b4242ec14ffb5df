from __future__ import annotations

from typing import TYPE_CHECKING

from repo_packer.config import Chunk, FileDescriptor, MeasureMode
from repo_packer.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence


def assemble_chunks(
    files: Sequence[FileDescriptor],
    budget: int,
    mode: MeasureMode = MeasureMode.BYTES,
) -> list[Chunk]:
    """Pack ranked, loaded files into bounded chunks.

    - A chunk only holds files sharing one ``priority_score``.
    - Files are appended in ``sequence_index`` order until the next one would
      exceed ``budget``.
    - A file larger than ``budget`` sits alone in an oversized chunk.
    - Skipped (non-text) files are left out.

    The returned list is in emission order: least important first.

    Args:
        files (Sequence[FileDescriptor]): loaded descriptors in ``sequence_index`` order.
        budget (int): maximum chunk size in the active unit.
        mode (MeasureMode): bytes or tokens.

    Raises:
        ValueError: if the budget is not positive or the input is out of order.

    Returns:
        list[Chunk]: the chunks.
    """
    if budget <= 0:
        msg = f"Chunk budget must be > 0, got {budget}"
        raise ValueError(msg)

    chunks: list[Chunk] = []
    current: list[FileDescriptor] = []
    current_size = 0
    previous_index = -1

    def flush(*, oversized: bool = False) -> None:
        nonlocal current, current_size
        if current:
            chunks.append(
                Chunk(
                    index=len(chunks),
                    score=current[0].priority_score,
                    files=tuple(current),
                    size=current_size,
                    oversized=oversized,
                ),
            )
        current = []
        current_size = 0

    for desc in files:
        if desc.sequence_index <= previous_index:
            msg = f"Files must be in sequence_index order, got {desc.sequence_index} after {previous_index}"
            raise ValueError(msg)
        previous_index = desc.sequence_index
        if not desc.is_text:
            continue

        size = desc.size(mode)
        if current and current[0].priority_score != desc.priority_score:
            flush()
        if size > budget:
            flush()
            current, current_size = [desc], size
            flush(oversized=True)
            logger.warning("oversized_chunk", path=desc.normalized_path, size=size, budget=budget, unit=str(mode))
            continue
        if current and current_size + size > budget:
            flush()
        current.append(desc)
        current_size += size
    flush()

    logger.debug("chunks_assembled", chunks=len(chunks), budget=budget, unit=str(mode))
    return chunks
