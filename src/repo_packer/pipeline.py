"""Orchestration of one run.

Phase 1 (single thread): resolve inputs, discover and normalize paths, rank.
Phase 2 (thread pool): load and measure contents into index-addressed slots.
Phase 3 (single thread): assemble chunks and emit them.
"""

from __future__ import annotations

import os
from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum, auto
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from repo_packer.chunking import assemble_chunks
from repo_packer.config import (
    DEFAULT_CATEGORY_WEIGHTS,
    Chunk,
    ContentStatus,
    FileDescriptor,
    MeasureMode,
    categorize_file,
)
from repo_packer.exceptions import ConfigurationError, SymlinkLoopError
from repo_packer.file_manipulation import expand_glob, glob_base, is_glob, walk_files
from repo_packer.ignore import IgnoreMatcher
from repo_packer.loader import load_contents
from repo_packer.logging import logger
from repo_packer.output_construction import emit
from repo_packer.paths import PathNormalizer, clean_posix
from repo_packer.priority import PriorityEngine, RecencyModel, compile_rules
from repo_packer.vcs import commit_timestamps

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import TextIO

    from repo_packer.priority import PriorityRule
    from repo_packer.settings import Settings


class InputKind(StrEnum):
    """How an input path is expanded into files."""

    DIRECTORY = auto()
    FILE = auto()
    GLOB = auto()


@dataclass(frozen=True)
class InputRoot:
    """One configured input path and the base its files are relative to."""

    index: int
    raw: str
    kind: InputKind
    base: Path
    files: tuple[Path, ...] = ()


def resolve_inputs(input_paths: Sequence[str]) -> list[InputRoot]:
    """Classify input paths as directories, files or globs.

    A directory is its own base; a file is relative to its parent directory; a
    glob is relative to its leading static directory.

    Args:
        input_paths (Sequence[str]): raw input paths.

    Raises:
        ConfigurationError: if a non-glob input does not exist.

    Returns:
        list[InputRoot]: one root per input, in input order.
    """
    roots: list[InputRoot] = []
    for index, raw in enumerate(input_paths):
        if is_glob(raw):
            base = Path(os.path.abspath(glob_base(raw)))
            files = tuple(Path(os.path.abspath(p)) for p in expand_glob(raw))
            roots.append(InputRoot(index=index, raw=raw, kind=InputKind.GLOB, base=base, files=files))
            continue
        path = Path(raw)
        if path.is_dir():
            roots.append(InputRoot(index=index, raw=raw, kind=InputKind.DIRECTORY, base=Path(os.path.abspath(path))))
        elif path.exists() or path.is_symlink():
            absolute = Path(os.path.abspath(path))
            roots.append(
                InputRoot(index=index, raw=raw, kind=InputKind.FILE, base=absolute.parent, files=(absolute,)),
            )
        else:
            raise ConfigurationError(field="input_paths", value=raw, reason="path does not exist")
    return roots


@dataclass(frozen=True)
class ProcessingContext:
    """Everything a run needs, resolved and validated once; never mutated."""

    settings: Settings
    roots: tuple[InputRoot, ...]
    rules: tuple[PriorityRule, ...]
    recency: RecencyModel
    engine: PriorityEngine
    ignore_matchers: tuple[IgnoreMatcher, ...]
    excluded_dirs: tuple[Path, ...] = field(default=())


def build_context(settings: Settings) -> ProcessingContext:
    """Resolve inputs, compile rules, read git history and build ignore matchers.

    Args:
        settings (Settings): validated settings.

    Returns:
        ProcessingContext: the immutable context of the run.
    """
    roots = tuple(resolve_inputs(settings.input_paths))
    rules = compile_rules(settings.priority_rules)

    histories = {
        base: commit_timestamps(base, settings.max_git_depth) for base in dict.fromkeys(root.base for root in roots)
    }
    recency = RecencyModel(
        commit_timestamps_by_root={root.index: histories[root.base] for root in roots},
        max_boost=settings.git_boost_max,
        decay_horizon_commits=settings.max_git_depth,
    )
    engine = PriorityEngine(
        rules,
        recency,
        DEFAULT_CATEGORY_WEIGHTS if settings.category_weights else None,
    )
    matchers = tuple(
        IgnoreMatcher.for_root(root.base, settings.ignore_patterns, settings.unignore_patterns) for root in roots
    )
    excluded = (Path(os.path.abspath(settings.output_dir)),) if settings.output_dir is not None else ()
    logger.debug(
        "context_built",
        roots=[root.raw for root in roots],
        rules=len(rules),
        git_paths=sum(len(history) for history in histories.values()),
        budget=settings.budget,
        unit=str(settings.measure_mode),
    )
    return ProcessingContext(
        settings=settings,
        roots=roots,
        rules=rules,
        recency=recency,
        engine=engine,
        ignore_matchers=matchers,
        excluded_dirs=excluded,
    )


def _is_excluded(path: Path, excluded_dirs: Sequence[Path]) -> bool:
    return any(path.is_relative_to(directory) for directory in excluded_dirs)


def discover(context: ProcessingContext) -> list[FileDescriptor]:
    """Enumerate candidate files and normalize their paths.

    Ignore patterns apply to walked directories and glob matches; a file given
    explicitly is always kept. A symlink loop is recorded on the descriptor.

    Args:
        context (ProcessingContext): the run context.

    Raises:
        OutsideBaseError: if a path resolves outside of its base directory.

    Returns:
        list[FileDescriptor]: unranked descriptors.
    """
    descriptors: list[FileDescriptor] = []
    for root, matcher in zip(context.roots, context.ignore_matchers, strict=True):
        normalizer = PathNormalizer(root.base)
        if root.kind == InputKind.DIRECTORY:
            candidates = walk_files(root.base, matcher.is_ignored, prune=not matcher.has_unignore)
        else:
            candidates = iter(root.files)

        seen: set[str] = set()
        for candidate in candidates:
            source = Path(os.path.abspath(candidate))
            if _is_excluded(source, context.excluded_dirs):
                continue
            status = ContentStatus.PENDING
            try:
                normalized = normalizer.normalize(source)
            except SymlinkLoopError as e:
                logger.warning("symlink_loop", path=str(source), hops=e.hops)
                normalized = clean_posix(os.path.relpath(source, root.base))
                status = ContentStatus.SKIPPED_SYMLINK_LOOP
            if root.kind != InputKind.FILE and matcher.is_ignored(normalized):
                continue
            if normalized in seen:
                continue
            seen.add(normalized)
            descriptors.append(
                FileDescriptor(
                    normalized_path=normalized,
                    source=source,
                    root_index=root.index,
                    category=categorize_file(normalized),
                    status=status,
                    tokenizer=context.settings.tokenizer,
                ),
            )
    logger.debug("files_discovered", count=len(descriptors))
    return descriptors


class ProcessingReport(BaseModel):
    """Statistics of one run."""

    model_config = ConfigDict(frozen=True)

    files_discovered: int = Field(default=0, description="Files found after ignore filtering.")
    files_emitted: int = Field(default=0, description="Text files written out.")
    skipped: dict[str, int] = Field(default_factory=dict, description="Skipped files per status.")
    chunks: int = Field(default=0, description="Number of chunks.")
    oversized_chunks: int = Field(default=0, description="Chunks holding a single file above the budget.")
    total_bytes: int = Field(default=0, description="UTF-8 size of the emitted content.")
    total_tokens: int | None = Field(default=None, description="Tokens of the emitted content, when measured.")
    warnings: int = Field(default=0, description="Non-fatal problems recorded on files.")

    @classmethod
    def from_run(
        cls,
        loaded: Sequence[FileDescriptor],
        chunks: Sequence[Chunk],
        *,
        count_tokens: bool,
    ) -> ProcessingReport:
        emitted = [f for chunk in chunks for f in chunk.files]
        skipped = Counter(str(f.status) for f in loaded if not f.is_text)
        return cls(
            files_discovered=len(loaded),
            files_emitted=len(emitted),
            skipped=dict(sorted(skipped.items())),
            chunks=len(chunks),
            oversized_chunks=sum(1 for c in chunks if c.oversized),
            total_bytes=sum(f.byte_size for f in emitted),
            total_tokens=sum(f.token_count for f in emitted) if count_tokens else None,
            warnings=sum(len(f.warnings) for f in loaded),
        )


@dataclass(frozen=True)
class PipelineResult:
    """Outputs of :func:`run_pipeline`."""

    ranked: list[FileDescriptor]
    loaded: list[FileDescriptor]
    chunks: list[Chunk]
    report: ProcessingReport
    written: list[Path] = field(default_factory=list)


def run_pipeline(settings: Settings, *, stdout: TextIO | None = None, write: bool = True) -> PipelineResult:
    """Run discovery, ranking, loading, chunking and emission.

    Args:
        settings (Settings): validated settings.
        stdout (TextIO | None): stream for streamed output and reported paths.
        write (bool): emit the chunks; when False only the in-memory result is built.

    Returns:
        PipelineResult: the ranked files, loaded files, chunks, report and written paths.
    """
    context = build_context(settings)
    ranked = context.engine.rank(discover(context))
    loaded = load_contents(ranked, settings)
    chunks = assemble_chunks(loaded, settings.budget, settings.measure_mode)
    written = emit(chunks, settings, stdout=stdout) if write else []

    report = ProcessingReport.from_run(
        loaded,
        chunks,
        count_tokens=settings.measure_mode == MeasureMode.TOKENS or settings.debug,
    )
    logger.debug("processing_report", **report.model_dump())
    logger.info("run_completed", files=report.files_emitted, chunks=report.chunks, written=len(written))
    return PipelineResult(ranked=ranked, loaded=loaded, chunks=chunks, report=report, written=written)
