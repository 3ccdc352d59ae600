"""
Text helpers for description chunks and tag source texts.
"""
import json
import re
from typing import Any, Dict, List, Optional, Sequence

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


def split_into_chunks(text: str, max_length: int = 300) -> List[str]:
    """
    Pack sentences greedily into chunks of at most `max_length` characters.

    Sentences end at `.`, `!` or `?` followed by whitespace and are joined
    with a single space. A sentence that does not fit starts a new chunk; a
    sentence longer than `max_length` becomes its own (oversized) chunk and
    is never split.

    Args:
        text: Description text
        max_length: Target maximum chunk length

    Returns:
        Ordered, non-empty chunks
    """
    chunks: List[str] = []
    current = ""
    for sentence in _SENTENCE_BOUNDARY.split(text.strip()):
        if not sentence:
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) <= max_length:
            current = candidate
        else:
            if current:
                chunks.append(current)
            current = sentence
    if current:
        chunks.append(current)
    return chunks


def split_by_pipes(text: str) -> List[str]:
    """Non-empty pieces of a `|`-delimited description, in order."""
    return [piece for piece in text.split("|") if piece]


def flatten_description(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def build_source_text(descriptions: Optional[Dict[str, Any]], categories: Sequence[str]) -> str:
    """
    Join the selected description categories as `category: text | ...`.

    Object values are JSON encoded; a trailing separator is dropped.
    """
    if not descriptions:
        return ""
    text = "".join(
        f"{category}: {flatten_description(descriptions.get(category))} | "
        for category in categories
    )
    return re.sub(r"\|$", "", text.strip()).strip()
