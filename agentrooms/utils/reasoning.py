"""Separation of visible answer text from reasoning spans in model output."""

import re
from typing import Optional, Tuple

REASONING_START = "<think>"
REASONING_END = "</think>"


def _find(text: str, marker: str, start: int = 0) -> Optional[re.Match]:
    return re.compile(re.escape(marker), re.IGNORECASE).search(text, start)


def split_reasoning(
    text: str,
    start_marker: str = REASONING_START,
    end_marker: str = REASONING_END
) -> Tuple[str, str]:
    """
    Split model output into answer text and reasoning text.

    Markers are matched case-insensitively. The reasoning text is the span
    including both markers. While the end marker has not arrived yet,
    everything from the start marker onward is treated as reasoning in
    progress, so the answer never shows a half-finished reasoning span.

    Always call this on the full accumulated buffer: markers may straddle
    chunk boundaries.

    Args:
        text: Accumulated model output
        start_marker: Opening marker of the reasoning span
        end_marker: Closing marker of the reasoning span

    Returns:
        Tuple of (answer_text, reasoning_text)
    """
    if not text:
        return "", ""

    start_match = _find(text, start_marker)
    if start_match is None:
        return text, ""

    start = start_match.start()
    end_match = _find(text, end_marker, start_match.end())
    if end_match is None:
        return text[:start], text[start:]

    return text[:start] + text[end_match.end():], text[start:end_match.end()]


def remove_reasoning(
    text: str,
    start_marker: str = REASONING_START,
    end_marker: str = REASONING_END
) -> str:
    """Return only the answer part of ``text``."""
    answer, _ = split_reasoning(text, start_marker, end_marker)
    return answer
