"""
Answer normalization.

Canonicalizes raw answer text before comparison so that case, punctuation
and spacing never decide whether an answer matches.
"""

import re

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_answer(answer: str | None) -> str:
    """
    Normalize an answer string for comparison.

    Steps, in order: lower-case, trim, drop every character that is not a
    word character or whitespace, collapse whitespace runs to a single
    space, trim again.

    Args:
        answer: Raw answer text, or None when the student left it blank.

    Returns:
        The normalized answer; never None.
    """
    if not answer:
        return ""
    text = answer.lower().strip()
    text = _NON_WORD.sub("", text)
    text = _WHITESPACE_RUN.sub(" ", text)
    return text.strip()
