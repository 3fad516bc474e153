"""Heuristic token counts for providers that do not report usage.

The formula is an approximation, not a tokenizer:

    ceil((words * 1.3 + chars / 4) / 2)
"""
import math
from typing import Iterable


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    words = len(text.split())
    chars = len(text)
    return math.ceil((words * 1.3 + chars / 4) / 2)


def estimate_messages(contents: Iterable[str]) -> int:
    return sum(estimate_tokens(c) for c in contents)
