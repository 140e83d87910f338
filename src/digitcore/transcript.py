"""
Reading a digit out of speech-recognizer transcripts.
"""

from __future__ import annotations

import re
from typing import Optional

from .constants import DIGIT_WORDS

_ASCII_DIGIT = re.compile(r"[0-9]")


def extract_digit(text: str) -> Optional[int]:
    """
    Map a transcript such as ``"Five"``, ``"七"`` or ``"number 3"`` to a digit.

    Whole-transcript matches win, then the first ASCII digit, then the first
    single-character numeral found anywhere in the text.
    """
    normalized = (text or "").strip().lower()
    if normalized in DIGIT_WORDS:
        return DIGIT_WORDS[normalized]

    match = _ASCII_DIGIT.search(normalized)
    if match:
        return int(match.group(0))

    for key, value in DIGIT_WORDS.items():
        if len(key) == 1 and key in normalized:
            return value
    return None
