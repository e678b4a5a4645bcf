"""Scrub personal data from text before it is embedded in a model prompt."""
from __future__ import annotations

import re

# Applied in order; earlier classes are replaced first so that later, looser
# patterns (phone numbers) never eat part of a card number, SSN or address.
_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:sk-[A-Za-z0-9_-]{20,}|pk_[A-Za-z0-9]{20,})\b"), "[API_KEY_REDACTED]"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL_REDACTED]"),
    (re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{1,7}\b"), "[CARD_REDACTED]"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN_REDACTED]"),
    (re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"), "[IP_REDACTED]"),
    (
        re.compile(r"(?<!\d)(?:\+\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}(?!\d)"),
        "[PHONE_REDACTED]",
    ),
)


def redact(text):
    """Replace emails, phones, SSNs, card numbers, IPs and API keys with placeholders.

    Non-string and empty input is returned unchanged.
    """
    if not isinstance(text, str) or not text:
        return text

    redacted = text
    for pattern, placeholder in _PATTERNS:
        redacted = pattern.sub(placeholder, redacted)
    return redacted
