"""Token counting for prompt budgeting (tiktoken, cl100k_base)."""

from __future__ import annotations

import logging

import tiktoken

logger = logging.getLogger(__name__)

_ENCODING_NAME = "cl100k_base"
_tokenizer: tiktoken.Encoding | None = None


def _get_tokenizer() -> tiktoken.Encoding:
    """Lazy-load the tokenizer (first call downloads/loads the BPE ranks)."""
    global _tokenizer
    if _tokenizer is None:
        _tokenizer = tiktoken.get_encoding(_ENCODING_NAME)
        logger.info("TOKENS: Using tiktoken (%s) for token counting", _ENCODING_NAME)
    return _tokenizer


def count_tokens(text: str | None) -> int:
    """Count tokens in text. Empty or missing text costs nothing."""
    if not text:
        return 0
    return len(_get_tokenizer().encode(text))


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut text down to at most ``max_tokens`` tokens (keeps the head)."""
    if max_tokens <= 0 or not text:
        return ""
    tokens = _get_tokenizer().encode(text)
    if len(tokens) <= max_tokens:
        return text
    # A cut inside a multi-byte sequence can re-encode longer; shrink until it fits
    cut = max_tokens
    truncated = _get_tokenizer().decode(tokens[:cut])
    while cut > 0 and count_tokens(truncated) > max_tokens:
        cut -= 1
        truncated = _get_tokenizer().decode(tokens[:cut])
    return truncated
