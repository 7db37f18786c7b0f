"""Text helpers applied to raw LLM output before parsing."""

import re

_THINKING_BLOCK = re.compile(r"<think(?:ing)?>[\s\S]*?</think(?:ing)?>", re.IGNORECASE)
_DANGLING_CLOSE = re.compile(r"^[\s\S]*?</think(?:ing)?>", re.IGNORECASE)


def strip_thinking_tokens(text: str) -> str:
    """
    Remove reasoning blocks emitted by thinking models.

    Complete <think>/<thinking> blocks are dropped. When the opening tag was
    cut off, everything up to the dangling closing tag is dropped as well.
    """
    if not text:
        return ""
    cleaned = _THINKING_BLOCK.sub("", text)
    cleaned = _DANGLING_CLOSE.sub("", cleaned)
    return cleaned.strip()


def last_non_empty_line(text: str) -> str:
    """Last line carrying any non-whitespace character, stripped."""
    for line in reversed(text.splitlines()):
        if line.strip():
            return line.strip()
    return ""
