"""Removes terminal and subtitle markup from raw speech-to-text output.

whisper.cpp and friends decorate their text with color codes, timecodes, speaker
labels and confidence scores. Only the spoken words are kept.
"""

import re
from typing import List, Pattern

# Order matters: escape sequences go first so their residue cannot hide a timecode.
_NOISE_PATTERNS: List[Pattern] = [
    # ANSI escape sequences, with or without the ESC byte
    re.compile(r"\x1b\[[0-9;?]*[A-Za-z]"),
    re.compile(r"\[\d+(?:;\d+)*m"),
    # [00:00:00.000 --> 00:00:02.000], bare or bracketed, dot or comma milliseconds
    re.compile(r"\[?\s*\d{1,2}:\d{2}:\d{2}[.,]\d{1,3}\s*-->\s*\d{1,2}:\d{2}:\d{2}[.,]\d{1,3}\s*\]?"),
    # [00:00.000 --> 00:02.000]
    re.compile(r"\[?\s*\d{1,2}:\d{2}[.,]\d{1,3}\s*-->\s*\d{1,2}:\d{2}[.,]\d{1,3}\s*\]?"),
    # [0.00s -> 2.00s]
    re.compile(r"\[\s*\d+(?:\.\d+)?s\s*-+>\s*\d+(?:\.\d+)?s\s*\]"),
    # subtitle headers
    re.compile(r"^\s*WEBVTT\b[^\n]*", re.IGNORECASE | re.MULTILINE),
    re.compile(r"^\s*NOTE\b[^\n]*", re.MULTILINE),
    # speaker labels
    re.compile(r"\[\s*SPEAKER[_\s]*\d+\s*\]\s*:?", re.IGNORECASE),
    re.compile(r"\bSpeaker\s+\d+\s*:", re.IGNORECASE),
    # confidence annotations
    re.compile(r"[(\[]\s*confidence\s*[:=]\s*\d+(?:\.\d+)?%?\s*[)\]]", re.IGNORECASE),
    re.compile(r"\[\s*\d+(?:\.\d+)?\s*%\s*\]"),
    # whisper non-speech markers
    re.compile(r"\[\s*BLANK_AUDIO\s*\]", re.IGNORECASE),
]

_WHITESPACE = re.compile(r"\s+")
_SURROUNDING = re.compile(r"^[\s\"']+|[\s\"']+$")
_WORD = re.compile(r"\w", re.UNICODE)


def _clean_once(text: str) -> str:
    for pattern in _NOISE_PATTERNS:
        text = pattern.sub(" ", text)
    text = _WHITESPACE.sub(" ", text)
    return _SURROUNDING.sub("", text)


def sanitize(raw: str) -> str:
    """Return the spoken text of ``raw`` on a single line.

    Deterministic and idempotent; ``sanitize("") == ""``.
    """
    if not raw:
        return ""

    text = raw
    # Removing one pattern can expose another, so repeat until nothing changes
    while True:
        cleaned = _clean_once(text)
        if cleaned == text:
            return cleaned
        text = cleaned


def is_meaningful(text: str) -> bool:
    """True when the sanitized text has at least one word character."""
    return bool(_WORD.search(sanitize(text)))
