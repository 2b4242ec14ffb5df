from __future__ import annotations

import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from repo_packer.config import (
    BINARY_EXTENSIONS,
    CONTENT_PLACEHOLDER,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_SIZE,
    DEFAULT_OUTPUT_TEMPLATE,
    DEFAULT_REPLACEMENT_TOLERANCE,
    DEFAULT_TOKEN_BUDGET,
    PATH_PLACEHOLDER,
    MeasureMode,
    PatternKind,
)
from repo_packer.exceptions import ConfigurationError
from repo_packer.priority import compile_rules
from repo_packer.tokenizer import TokenizerName

_BYTE_SIZE = re.compile(r"(?P<number>\d+)(?P<unit>KB|MB|GB)?", re.IGNORECASE)
_TOKEN_SIZE = re.compile(r"(?P<number>\d+)(?P<unit>K)?", re.IGNORECASE)
_BYTE_UNITS = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}


def parse_size_input(text: str, *, token_mode: bool) -> int:
    """Parse a human size limit.

    In byte mode ``KB``/``MB``/``GB`` suffixes are powers of 1024 (``"128KB"`` is
    131072); in token mode only a ``K`` suffix is accepted and means 1000
    (``"800k"`` is 800000). Plain integers are accepted in both modes.

    Args:
        text (str): the raw value, surrounding whitespace is ignored.
        token_mode (bool): whether the limit counts tokens.

    Raises:
        ValueError: on empty, negative, fractional or wrongly suffixed input.

    Returns:
        int: the limit in bytes or tokens.
    """
    value = text.strip()
    pattern = _TOKEN_SIZE if token_mode else _BYTE_SIZE
    match = pattern.fullmatch(value)
    if match is None:
        unit = "tokens (e.g. 100K or 800)" if token_mode else "bytes (e.g. 10MB, 128KB or 1024)"
        msg = f"Invalid size {text!r}: expected a non-negative number of {unit}"
        raise ValueError(msg)
    number = int(match["number"])
    unit = (match["unit"] or "").upper()
    if token_mode:
        return number * 1000 if unit else number
    return number * _BYTE_UNITS.get(unit, 1)


class PriorityRuleConfig(BaseModel):
    """One configured priority rule."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pattern: str = Field(..., description="Glob or regular expression matched against normalized paths.")
    score: int = Field(..., description="Score granted to matching files.")
    kind: PatternKind = Field(default=PatternKind.GLOB, description="Pattern syntax: glob or regex.")


class Settings(BaseModel):
    """Configuration settings for the repo_packer package."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True, extra="forbid")

    input_paths: list[str] = Field(default_factory=lambda: ["."], description="Files, directories or globs.")
    max_size: str = Field(default=DEFAULT_MAX_SIZE, description="Chunk budget in byte mode.")
    tokens: str | None = Field(default=None, description="Chunk budget in token mode; enables token mode.")
    output_template: str = Field(default=DEFAULT_OUTPUT_TEMPLATE, description="Per-file rendering template.")
    json_output: bool = Field(default=False, description="Emit a JSON array instead of templated text.")
    tree_header: bool = Field(default=False, description="Prepend a directory tree.")
    tree_only: bool = Field(default=False, description="Emit only the directory tree.")
    line_numbers: bool = Field(default=False, description="Prefix each line with its number.")
    output_dir: Path | None = Field(default=None, description="Directory for chunk files.")
    output_name: str | None = Field(default=None, description="Single output file for the stream.")
    stream: bool | None = Field(default=None, description="Force (True) or forbid (False) streaming.")
    threads: int | None = Field(default=None, ge=1, description="Content loader pool size.")
    ignore_patterns: list[str] = Field(default_factory=list, description="Extra gitignore-style patterns.")
    unignore_patterns: list[str] = Field(default_factory=list, description="Patterns re-included last.")
    binary_extensions: list[str] = Field(default_factory=list, description="Extra binary extensions.")
    priority_rules: list[PriorityRuleConfig] = Field(default_factory=list, description="Priority rules.")
    max_git_depth: int = Field(default=100, ge=0, description="Commits inspected for recency; 0 disables git.")
    git_boost_max: int = Field(default=100, ge=0, description="Boost of the most recently committed files.")
    max_file_size: str = Field(default=DEFAULT_MAX_FILE_SIZE, description="Files above are skipped.")
    replacement_tolerance: float = Field(
        default=DEFAULT_REPLACEMENT_TOLERANCE,
        ge=0.0,
        le=1.0,
        description="Maximum share of U+FFFD after lossy decoding before a file counts as binary.",
    )
    tokenizer: TokenizerName = Field(default=TokenizerName.SIMPLE, description="Token counter.")
    category_weights: bool = Field(default=False, description="Use file categories as implicit rules.")
    debug: bool = Field(default=False, description="Debug logging and diagnostics.")
    log_file: str = Field(default="", description="Log file path.")
    config: Path | None = Field(default=None, description="Explicit configuration file.")

    @field_validator("input_paths")
    @classmethod
    def _non_empty_inputs(cls, value: list[str]) -> list[str]:
        cleaned = [v for v in value if v.strip()]
        return cleaned or ["."]

    @field_validator("binary_extensions")
    @classmethod
    def _strip_dots(cls, value: list[str]) -> list[str]:
        return [v.strip().lstrip(".").lower() for v in value if v.strip()]

    @model_validator(mode="after")
    def _check_consistency(self) -> Settings:
        if self.tree_only and self.json_output:
            raise ConfigurationError(
                field="tree_only",
                value="true",
                reason="tree_only cannot be combined with json output",
            )
        if not self.json_output:
            missing = [p for p in (PATH_PLACEHOLDER, CONTENT_PLACEHOLDER) if p not in self.output_template]
            if missing:
                raise ConfigurationError(
                    field="output_template",
                    value=self.output_template,
                    reason=f"template must contain {' and '.join(missing)}",
                )
        if self.budget <= 0:
            raise ConfigurationError(field=self.budget_field, value=self.budget_text, reason="budget must be > 0")
        if self.max_file_size_bytes <= 0:
            raise ConfigurationError(field="max_file_size", value=self.max_file_size, reason="ceiling must be > 0")
        compile_rules(self.priority_rules)
        return self

    @property
    def measure_mode(self) -> MeasureMode:
        """Token mode as soon as a token budget is configured."""
        return MeasureMode.BYTES if self.tokens is None else MeasureMode.TOKENS

    @property
    def budget_field(self) -> str:
        """Name of the setting holding the active budget."""
        return "max_size" if self.tokens is None else "tokens"

    @property
    def budget_text(self) -> str:
        """Raw budget string; a bare token flag falls back to the default token budget."""
        if self.tokens is None:
            return self.max_size
        return self.tokens or DEFAULT_TOKEN_BUDGET

    @property
    def budget(self) -> int:
        """Chunk budget in the active measurement unit.

        Raises:
            ConfigurationError: if the size string cannot be parsed.
        """
        try:
            return parse_size_input(self.budget_text, token_mode=self.measure_mode == MeasureMode.TOKENS)
        except ValueError as e:
            raise ConfigurationError(field=self.budget_field, value=self.budget_text, reason=str(e)) from e

    @property
    def max_file_size_bytes(self) -> int:
        """Per-file memory ceiling in bytes."""
        try:
            return parse_size_input(self.max_file_size, token_mode=False)
        except ValueError as e:
            raise ConfigurationError(field="max_file_size", value=self.max_file_size, reason=str(e)) from e

    @property
    def binary_extension_set(self) -> frozenset[str]:
        """Built-in binary extensions plus the configured ones, without dots."""
        return BINARY_EXTENSIONS | frozenset(self.binary_extensions)
