from __future__ import annotations

from enum import StrEnum, auto
from functools import cached_property
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict, Field

from repo_packer.tokenizer import TokenizerName, count_tokens

NEUTRAL_SCORE = 1
MAX_RULE_SCORE = 1000
MAX_SYMLINK_HOPS = 100
SNIFF_BYTES = 8192
DEFAULT_REPLACEMENT_TOLERANCE = 0.30
DEFAULT_OUTPUT_TEMPLATE = ">>>> FILE_PATH\nFILE_CONTENT"
DEFAULT_MAX_SIZE = "10MB"
DEFAULT_TOKEN_BUDGET = "128K"
DEFAULT_MAX_FILE_SIZE = "256MB"
PATH_PLACEHOLDER = "FILE_PATH"
CONTENT_PLACEHOLDER = "FILE_CONTENT"
CONFIG_FILE_NAMES = (
    "repo-packer.yaml",
    "repo-packer.yml",
    "repo-packer.toml",
    "repo-packer.json",
)


class MeasureMode(StrEnum):
    """Unit used to measure file sizes and chunk budgets."""

    BYTES = auto()
    TOKENS = auto()


class ContentStatus(StrEnum):
    """Outcome of loading one file.

    Only ``TEXT`` entries reach the chunk assembler; every other value is a
    sentinel for a skipped file.
    """

    PENDING = auto()
    TEXT = auto()
    SKIPPED_BINARY = auto()
    SKIPPED_UNREADABLE = auto()
    SKIPPED_TOO_LARGE = auto()
    SKIPPED_SYMLINK_LOOP = auto()


class FileCategory(StrEnum):
    """Heuristic classification of a file by its role in the repository."""

    SOURCE = auto()
    TEST = auto()
    CONFIGURATION = auto()
    DOCUMENTATION = auto()
    OTHER = auto()


DEFAULT_CATEGORY_WEIGHTS: dict[FileCategory, int] = {
    FileCategory.CONFIGURATION: 5,
    FileCategory.TEST: 10,
    FileCategory.DOCUMENTATION: 15,
    FileCategory.SOURCE: 20,
    FileCategory.OTHER: 1,
}

BINARY_EXTENSIONS: frozenset[str] = frozenset({
    # executables, libraries, objects
    "exe", "dll", "so", "dylib", "bin", "out", "a", "lib", "ko", "elf", "o", "obj", "class", "pyc", "pyo", "pyd",
    "jar", "war", "ear", "msi", "apk", "aab", "ipa", "app", "wasm",
    # archives and disk images
    "zip", "tar", "gz", "tgz", "bz2", "xz", "7z", "rar", "lz4", "lz", "zst", "lzma", "cab", "rpm", "deb",
    "dmg", "iso", "img", "vhd", "vhdx", "vmdk", "qcow2",
    # documents
    "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "odt", "ods", "odp", "epub", "mobi",
    # databases
    "db", "sqlite", "sqlite3", "db3", "mdb", "accdb",
    # images
    "jpg", "jpeg", "png", "gif", "bmp", "ico", "tiff", "tif", "webp", "psd", "heic", "heif", "icns", "raw",
    # audio and video
    "mp3", "aac", "wav", "ogg", "flac", "m4a", "opus", "wma",
    "mp4", "m4v", "mov", "avi", "wmv", "mkv", "flv", "webm", "mpeg", "mpg",
    # fonts
    "ttf", "otf", "woff", "woff2", "eot",
    # misc binary data
    "swf", "svgz", "blend", "glb", "fbx", "stl", "pak", "dat", "sav", "swp", "swo", "pch", "dmp", "torrent",
    "npy", "npz", "pkl", "pickle", "parquet", "feather", "h5", "hdf5", "pt", "pth", "onnx", "safetensors",
})  # fmt: skip

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    ".git/",
    ".hg/",
    ".svn/",
    ".venv/",
    "venv/",
    "__pycache__/",
    ".mypy_cache/",
    ".ruff_cache/",
    ".pytest_cache/",
    ".ipynb_checkpoints/",
    "node_modules/",
    ".next/",
    "vendor/",
    "dist/",
    "build/",
    "target/",
    ".idea/",
    ".vscode/",
    ".DS_Store",
    "Thumbs.db",
    "*.log",
    "*.tmp",
    "*.bak",
    "*~",
    ".env*",
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "poetry.lock",
    "Pipfile.lock",
    "Cargo.lock",
    "uv.lock",
    *CONFIG_FILE_NAMES,
)

_TEST_DIRS = {"test", "tests", "__tests__", "spec", "specs", "e2e", "integration", "unit"}
_TEST_NAME_MARKERS = ("_test.", ".test.", "_spec.", ".spec.", "_e2e.", ".e2e.")
_TEST_NAME_PREFIXES = ("test_", "spec_", "e2e_")
_CONFIG_EXTENSIONS = {
    "toml", "yaml", "yml", "json", "ini", "cfg", "conf", "config", "properties", "env", "lock",
}  # fmt: skip
_CONFIG_NAMES = {
    "makefile", "dockerfile", "containerfile", "gemfile", "procfile", "pipfile", "justfile",
    "setup.py", "requirements.txt", "manifest.in", "pom.xml", "build.gradle", "cmakelists.txt", "meson.build",
    ".gitignore", ".gitattributes", ".gitmodules", ".dockerignore", ".editorconfig", ".pre-commit-config.yaml",
}  # fmt: skip
_CONFIG_DIRS = {"config", "configs", ".config", "configuration", "settings", ".github"}
_DOC_EXTENSIONS = {"md", "markdown", "rst", "txt", "adoc", "asciidoc", "org", "wiki"}
_DOC_NAMES = {"readme", "changelog", "license", "contributing", "authors", "notice", "install", "usage", "faq"}
_DOC_DIRS = {"doc", "docs", "documentation", "manual", "guide", "guides"}
_SOURCE_EXTENSIONS = {
    "py", "pyi", "rs", "go", "js", "mjs", "cjs", "ts", "jsx", "tsx", "java", "kt", "scala", "c", "h", "cc", "cpp",
    "cxx", "hpp", "hxx", "cs", "fs", "php", "rb", "pl", "pm", "r", "m", "mm", "swift", "dart", "lua", "sh", "bash",
    "zsh", "fish", "ps1", "bat", "cmd", "clj", "cljs", "ex", "exs", "erl", "hrl", "hs", "elm", "ml", "mli", "html",
    "htm", "css", "scss", "sass", "less", "vue", "svelte", "sql", "zig", "nim", "jl", "proto", "graphql",
}  # fmt: skip


def categorize_file(normalized_path: str) -> FileCategory:
    """Classify a normalized path as source, test, configuration, documentation or other.

    The checks go from the most specific (tests) to the least specific (source),
    using directory names, file names and extensions only; file contents are never
    inspected.

    Args:
        normalized_path (str): forward-slash relative path.

    Returns:
        FileCategory: the heuristic category of the file.
    """
    pure = PurePosixPath(normalized_path.lower())
    name = pure.name
    ext = pure.suffix.lstrip(".")
    dirs = set(pure.parts[:-1])

    if dirs & _TEST_DIRS or any(m in name for m in _TEST_NAME_MARKERS) or name.startswith(_TEST_NAME_PREFIXES):
        return FileCategory.TEST
    if name in _CONFIG_NAMES or ext in _CONFIG_EXTENSIONS or dirs & _CONFIG_DIRS:
        return FileCategory.CONFIGURATION
    if name.startswith(".") and name not in {".gitkeep", ".keep"}:
        return FileCategory.CONFIGURATION
    if ext in _DOC_EXTENSIONS or pure.stem in _DOC_NAMES or dirs & _DOC_DIRS:
        return FileCategory.DOCUMENTATION
    if ext in _SOURCE_EXTENSIONS:
        return FileCategory.SOURCE
    return FileCategory.OTHER


class FileDescriptor(BaseModel):
    """One file travelling through the pipeline.

    Descriptors are immutable: each phase hands back an updated copy
    (``model_copy(update=...)``) instead of mutating shared state.

    Attributes:
        normalized_path: Canonical forward-slash path relative to its input root.
        source: Absolute native path, only used to read bytes.
        root_index: Position of the input root the file was discovered under.
        priority_score: Rule score plus recency boost; higher is more important.
        sequence_index: Position assigned by the single ranking sort.
        category: Heuristic role of the file in the repository.
        status: Loading outcome; anything but ``TEXT`` is a skip sentinel.
        content: Text payload (empty for skipped files).
        byte_size: UTF-8 size of ``content``.
        warnings: Non-fatal problems recorded while loading (lossy decoding, ...).
        tokenizer: Tokenizer used for the lazily computed ``token_count``.
        rendered_tokens: Tokens of the rendered output entry, set by the loader in
            token mode so that template and JSON overhead count against the budget.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    normalized_path: str = Field(..., description="Canonical forward-slash relative path")
    source: Path = Field(..., description="Absolute native path")
    root_index: int = Field(default=0, ge=0, description="Index of the input root")
    priority_score: int = Field(default=NEUTRAL_SCORE, description="Combined priority score")
    sequence_index: int = Field(default=-1, description="Position in the global order")
    category: FileCategory = Field(default=FileCategory.OTHER, description="Heuristic file role")
    status: ContentStatus = Field(default=ContentStatus.PENDING, description="Loading outcome")
    content: str = Field(default="", description="Loaded text payload")
    byte_size: int = Field(default=0, ge=0, description="UTF-8 size of content in bytes")
    warnings: tuple[str, ...] = Field(default=(), description="Recorded non-fatal problems")
    tokenizer: TokenizerName = Field(default=TokenizerName.SIMPLE, description="Tokenizer for token_count")
    rendered_tokens: int | None = Field(
        default=None,
        ge=0,
        description="Tokens of the file as rendered in the output (template block or JSON object)",
    )

    @cached_property
    def token_count(self) -> int:
        """Number of tokens in ``content``; computed on first access and cached."""
        return count_tokens(self.content, self.tokenizer)

    @property
    def is_text(self) -> bool:
        """Whether the file was loaded as text and may be emitted."""
        return self.status == ContentStatus.TEXT

    def size(self, mode: MeasureMode) -> int:
        """Size of the file in the active measurement unit.

        Args:
            mode (MeasureMode): bytes or tokens.

        Returns:
            int: ``byte_size``, or ``rendered_tokens`` (falling back to ``token_count``).
        """
        if mode == MeasureMode.BYTES:
            return self.byte_size
        return self.rendered_tokens if self.rendered_tokens is not None else self.token_count


class Chunk(BaseModel):
    """A bounded, score-homogeneous, ordered group of files.

    Attributes:
        index: Emission position (0 holds the least important material).
        score: The priority score shared by every file of the chunk.
        files: Descriptors in ``sequence_index`` order.
        size: Aggregate size in the active measurement unit.
        oversized: True when the chunk holds one file larger than the budget.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    index: int = Field(..., ge=0)
    score: int
    files: tuple[FileDescriptor, ...] = Field(..., min_length=1)
    size: int = Field(..., ge=0)
    oversized: bool = False

    @property
    def paths(self) -> list[str]:
        """Normalized paths of the chunk's files, in order."""
        return [f.normalized_path for f in self.files]


class PatternKind(StrEnum):
    """Syntax of a priority rule pattern."""

    GLOB = auto()
    REGEX = auto()
