"""Priority scoring and the single global ordering of files.

A file's score is the highest score among the rules matching its normalized
path (or the neutral score when none match), plus a recency boost derived from
version-control history. :meth:`PriorityEngine.rank` is the only place where
the global order of files is decided.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, TypeVar

from repo_packer.config import MAX_RULE_SCORE, NEUTRAL_SCORE, PatternKind
from repo_packer.exceptions import ConfigurationError
from repo_packer.logging import logger

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterable, Mapping, Sequence

    from repo_packer.config import FileCategory, FileDescriptor
    from repo_packer.settings import PriorityRuleConfig

_Key = TypeVar("_Key", bound="Hashable")


@dataclass(frozen=True)
class GlobMatcher:
    """Case-sensitive shell-style pattern; ``*`` also crosses ``/``.

    A leading ``**/`` matches at any depth including the top level, so
    ``**/*.md`` matches both ``README.md`` and ``docs/guide.md``.
    """

    pattern: str

    def matches(self, path: str) -> bool:
        if fnmatchcase(path, self.pattern):
            return True
        return self.pattern.startswith("**/") and fnmatchcase(path, self.pattern[3:])


@dataclass(frozen=True)
class RegexMatcher:
    """Regular expression searched anywhere in the normalized path."""

    pattern: str
    regex: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "regex", re.compile(self.pattern))

    def matches(self, path: str) -> bool:
        return self.regex.search(path) is not None


@dataclass(frozen=True)
class PriorityRule:
    """A pattern matcher and the score it grants."""

    matcher: GlobMatcher | RegexMatcher
    score: int

    def matches(self, path: str) -> bool:
        return self.matcher.matches(path)


def compile_rule(pattern: str, score: int, kind: PatternKind = PatternKind.GLOB) -> PriorityRule:
    """Validate and compile one rule.

    Args:
        pattern (str): glob or regular expression.
        score (int): score granted to matching files.
        kind (PatternKind): syntax of ``pattern``.

    Raises:
        ConfigurationError: if the pattern is empty or invalid, or the score is out of bounds.

    Returns:
        PriorityRule: the compiled rule.
    """
    if not pattern.strip():
        raise ConfigurationError(field="priority_rules", value=pattern, reason="pattern must not be empty")
    if not -MAX_RULE_SCORE <= score <= MAX_RULE_SCORE:
        raise ConfigurationError(
            field="priority_rules",
            value=f"{pattern}={score}",
            reason=f"score must be between {-MAX_RULE_SCORE} and {MAX_RULE_SCORE}",
        )
    if kind == PatternKind.REGEX:
        try:
            return PriorityRule(matcher=RegexMatcher(pattern), score=score)
        except re.error as e:
            raise ConfigurationError(field="priority_rules", value=pattern, reason=f"invalid regex: {e}") from e
    return PriorityRule(matcher=GlobMatcher(pattern.replace("\\", "/")), score=score)


def compile_rules(configs: Iterable[PriorityRuleConfig]) -> tuple[PriorityRule, ...]:
    """Compile configured rules.

    Args:
        configs (Iterable[PriorityRuleConfig]): typically ``Settings.priority_rules``.

    Returns:
        tuple[PriorityRule, ...]: compiled rules, in configuration order.
    """
    return tuple(compile_rule(c.pattern, c.score, c.kind) for c in configs)


def compute_recency_boosts(timestamps: Mapping[_Key, int], max_boost: int) -> dict[_Key, int]:
    """Turn commit timestamps into rank-based boosts.

    Distinct timestamps are ranked from oldest to newest; the oldest gets 0,
    the newest gets ``max_boost`` and the others are spread linearly in rank,
    rounded half up. With fewer than two distinct timestamps every boost is 0.

    Args:
        timestamps (Mapping[_Key, int]): last commit time (epoch seconds) per file key.
        max_boost (int): boost of the most recently touched files.

    Returns:
        dict[_Key, int]: boost per file key.
    """
    distinct = sorted(set(timestamps.values()))
    if len(distinct) < 2 or max_boost <= 0:  # noqa: PLR2004
        return dict.fromkeys(timestamps, 0)
    last_rank = len(distinct) - 1
    rank_of = {ts: rank for rank, ts in enumerate(distinct)}
    return {
        key: (2 * rank_of[ts] * max_boost + last_rank) // (2 * last_rank) for key, ts in timestamps.items()
    }


@dataclass(frozen=True)
class RecencyModel:
    """Immutable snapshot of version-control recency.

    Histories are kept per input root: a path only receives the boost earned by
    commits of its own root, while boosts are ranked over all roots together.

    Attributes:
        commit_timestamps_by_root: Last commit time per normalized path, keyed by
            input root index.
        max_boost: Boost of the most recently committed files.
        decay_horizon_commits: Number of commits inspected; older files get no boost.
        boosts: Pre-computed boost per ``(root_index, normalized_path)``.
    """

    commit_timestamps_by_root: Mapping[int, Mapping[str, int]] = field(default_factory=dict)
    max_boost: int = 0
    decay_horizon_commits: int = 0
    boosts: Mapping[tuple[int, str], int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        timestamps = {
            (root_index, path): committed_at
            for root_index, history in self.commit_timestamps_by_root.items()
            for path, committed_at in history.items()
        }
        object.__setattr__(self, "boosts", compute_recency_boosts(timestamps, self.max_boost))

    def boost(self, path: str, root_index: int = 0) -> int:
        """Recency boost of ``path`` under root ``root_index``, always within ``[0, max_boost]``."""
        return min(max(self.boosts.get((root_index, path), 0), 0), max(self.max_boost, 0))


class PriorityEngine:
    """Score normalized paths and produce the global file order."""

    def __init__(
        self,
        rules: Sequence[PriorityRule] = (),
        recency: RecencyModel | None = None,
        category_weights: Mapping[FileCategory, int] | None = None,
    ) -> None:
        self.rules = tuple(rules)
        self.recency = recency or RecencyModel()
        self.category_weights = dict(category_weights) if category_weights else None

    def base_score(self, path: str, category: FileCategory | None = None) -> int:
        """Highest matching rule score, the category weight, or the neutral score."""
        candidates = [rule.score for rule in self.rules if rule.matches(path)]
        if self.category_weights is not None and category is not None:
            candidates.append(self.category_weights.get(category, NEUTRAL_SCORE))
        return max(candidates) if candidates else NEUTRAL_SCORE

    def score(self, path: str, category: FileCategory | None = None, root_index: int = 0) -> int:
        """Final score of a normalized path.

        Args:
            path (str): normalized path.
            category (FileCategory | None): category of the file, used only when
                category weights are enabled.
            root_index (int): input root the path is relative to.

        Returns:
            int: base score plus recency boost.
        """
        return self.base_score(path, category) + self.recency.boost(path, root_index)

    def rank(self, descriptors: Iterable[FileDescriptor]) -> list[FileDescriptor]:
        """Score every descriptor and sort them once.

        The sort key is ``(priority_score, normalized_path, root_index)``, so the
        least important files come first and the result never depends on
        enumeration order. ``sequence_index`` is the position in that order.

        Args:
            descriptors (Iterable[FileDescriptor]): discovered files.

        Returns:
            list[FileDescriptor]: scored copies in global order.
        """
        scored = [
            d.model_copy(update={"priority_score": self.score(d.normalized_path, d.category, d.root_index)})
            for d in descriptors
        ]
        scored.sort(key=lambda d: (d.priority_score, d.normalized_path, d.root_index))
        ranked = [d.model_copy(update={"sequence_index": i}) for i, d in enumerate(scored)]
        logger.debug("files_ranked", count=len(ranked), rules=len(self.rules))
        return ranked
