"""Split raw LLM output into discrete image prompts.

Pure functions, no I/O. Separators are tried in order (blank line, line
break, semicolon); the first one that yields more than one non-empty prompt
wins, otherwise the whole text is a single prompt.
"""

import re

SEPARATORS = ("\n\n", "\n", ";")

_ENUMERATOR = re.compile(r"^\d+[.)]")


def clean_prompt(text: str) -> str:
    """Normalize one prompt segment.

    Trims whitespace and strips leading "-" bullets and enumerators ("3." or
    "12)"), re-trimming after each, until the text stops changing. Cleaning an
    already clean prompt returns it unchanged.
    """
    text = text.strip()
    while True:
        stripped = text
        if stripped.startswith("-"):
            stripped = stripped[1:].strip()
        stripped = _ENUMERATOR.sub("", stripped, count=1).strip()
        if stripped == text:
            return text
        text = stripped


def split_prompts(text: str) -> list[str]:
    """Split LLM output into an ordered list of cleaned, non-empty prompts.

    Examples:
        >>> split_prompts("A\\n\\nB\\n\\nC")
        ['A', 'B', 'C']
        >>> split_prompts("1. A\\n2. B")
        ['A', 'B']
        >>> split_prompts("only one")
        ['only one']
    """
    for separator in SEPARATORS:
        prompts = _clean_all(text.split(separator))
        if len(prompts) > 1:
            return prompts

    return _clean_all([text])


def _clean_all(segments: list[str]) -> list[str]:
    cleaned = (clean_prompt(segment) for segment in segments)
    return [prompt for prompt in cleaned if prompt]
