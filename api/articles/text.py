"""
Plain-text helpers for rich-text article content.

Article content is the editor's JSON tree: nodes carry either a `text` leaf or
a `content` list of child nodes.
"""

from __future__ import annotations

from typing import Any

WORDS_PER_MINUTE = 200


def extract_text(node: Any) -> str:
    if isinstance(node, list):
        return " ".join(extract_text(child) for child in node)
    if not isinstance(node, dict):
        return ""

    text = node.get("text")
    if isinstance(text, str) and text:
        return text

    children = node.get("content")
    if not isinstance(children, list):
        return ""
    return " ".join(extract_text(child) for child in children)


def word_count(content: Any) -> int:
    return len(extract_text(content).split())


def reading_time_minutes(content: Any) -> int:
    # Rounded half up, so a 100-word article reads in one minute.
    return int(word_count(content) / WORDS_PER_MINUTE + 0.5)
