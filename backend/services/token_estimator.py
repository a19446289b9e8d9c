"""Heuristic token estimation for conversation text.

This is not a tokenizer. The estimate is word count times a fixed
inflation factor, which tracks the backend's real token count closely enough
to bound request size. Callers may rely on it being monotonic in word count,
never on it being exact.
"""
import json
from typing import Any

from config import TOKENS_PER_WORD


def content_to_text(content: Any) -> str:
    """
    Flatten a message payload into plain text.

    Strings pass through unchanged, None becomes an empty string, and
    structured payloads (message parts, dicts, lists) are serialized as JSON.

    Args:
        content: Message payload in any shape

    Returns:
        Text form of the payload
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content, default=str)
    except (TypeError, ValueError):
        return str(content)


def estimate_token_count(content: Any, tokens_per_word: float = TOKENS_PER_WORD) -> float:
    """
    Estimate the token cost of a message payload.

    Args:
        content: Text or structured payload
        tokens_per_word: Inflation factor applied per whitespace-separated word

    Returns:
        Non-negative estimated cost; 0 for empty text
    """
    words = content_to_text(content).split()
    return len(words) * tokens_per_word
