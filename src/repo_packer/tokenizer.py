from __future__ import annotations

import re
from enum import StrEnum, auto
from functools import lru_cache
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import tiktoken

TIKTOKEN_ENCODING = "cl100k_base"

# runs of characters that are neither whitespace nor ASCII punctuation
_SIMPLE_TOKEN = re.compile(r"[^\s!-/:-@\[-`{-~]+")


class TokenizerName(StrEnum):
    """Available token counters."""

    SIMPLE = auto()
    TIKTOKEN = auto()


@lru_cache(maxsize=1)
def get_encoding() -> tiktoken.Encoding:
    """Load the tiktoken encoding once per process.

    The first call may download the encoding file, so this is only used when the
    ``tiktoken`` tokenizer is explicitly selected.

    Returns:
        tiktoken.Encoding: the ``cl100k_base`` encoding.
    """
    import tiktoken  # noqa: PLC0415

    return tiktoken.get_encoding(TIKTOKEN_ENCODING)


def count_tokens(text: str, tokenizer: TokenizerName = TokenizerName.SIMPLE) -> int:
    """Count the tokens of ``text``.

    Args:
        text (str): the text to measure.
        tokenizer (TokenizerName): ``simple`` splits on whitespace and ASCII
            punctuation and never touches the network; ``tiktoken`` counts
            ``cl100k_base`` tokens.

    Returns:
        int: the number of tokens.
    """
    if not text:
        return 0
    if tokenizer == TokenizerName.TIKTOKEN:
        return len(get_encoding().encode(text, disallowed_special=()))
    return len(_SIMPLE_TOKEN.findall(text))
