"""Priority-aware repository serializer for context-limited language models."""

__version__ = "0.3.0"
