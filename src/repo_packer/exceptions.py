from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RepoPackerError(Exception):
    """Base exception for errors in the repo_packer package."""

    def __str__(self) -> str:
        return getattr(self, "message", "") or (self.__doc__ or "").strip()


@dataclass(frozen=True)
class PathError(RepoPackerError):
    """Raised when a path cannot be normalized against its base directory."""

    path: str


@dataclass(frozen=True)
class OutsideBaseError(PathError):
    """Raised when a path resolves outside of the processing base directory.

    This is a security boundary: the whole run is aborted.
    """

    base: str = ""

    @property
    def message(self) -> str:
        return f"Path '{self.path}' resolves outside of base directory '{self.base}'."


@dataclass(frozen=True)
class SymlinkLoopError(PathError):
    """Raised when symlink resolution revisits a path or exceeds the hop limit."""

    hops: int = 0

    @property
    def message(self) -> str:
        return f"Symlink loop detected while resolving '{self.path}' after {self.hops} hop(s)."


@dataclass(frozen=True)
class ResourceError(RepoPackerError):
    """Raised when a single file exceeds a resource ceiling."""

    path: str


@dataclass(frozen=True)
class TooLargeError(ResourceError):
    """Raised when a file is larger than the configured memory ceiling."""

    size: int = 0
    limit: int = 0

    @property
    def message(self) -> str:
        return f"File '{self.path}' is {self.size} bytes, above the {self.limit} bytes ceiling."


@dataclass(frozen=True)
class ConfigurationError(RepoPackerError):
    """Raised when the resolved configuration is invalid."""

    field: str
    value: str
    reason: str

    @property
    def message(self) -> str:
        return f"Invalid configuration for '{self.field}' (value={self.value!r}): {self.reason}"


@dataclass(frozen=True)
class OutputDestinationError(RepoPackerError):
    """Raised when the output destination cannot be created or written."""

    path: Path
    reason: str

    @property
    def message(self) -> str:
        return f"Cannot write output to '{self.path}': {self.reason}"


@dataclass(frozen=True)
class GitCommandError(RepoPackerError):
    """Raised when a git command fails."""

    command: str
    returncode: int
    stdout: str
    stderr: str

    @property
    def message(self) -> str:
        return f"`{self.command}` exited with {self.returncode}: {self.stderr.strip()}"


@dataclass(frozen=True)
class NotAGitRepositoryError(RepoPackerError):
    """Raised when the specified directory is not inside a Git work tree."""

    folder: Path
    message: str = "The specified directory is not a Git repository."
