"""
validators.py — Field rules shared by schemas and services.

Telegram usernames are stored normalised: no leading '@', lowercase.
A normalised value is valid when it is 5..32 characters of [a-z0-9_].
"""

from __future__ import annotations

import re

_TELEGRAM_RE = re.compile(r"[a-z0-9_]{5,32}")


def normalize_telegram_username(raw: str | None) -> str:
    """'@Bob_Smith ' → 'bob_smith'. None and blanks become ''."""
    if not raw:
        return ""
    value = raw.strip()
    if value.startswith("@"):
        value = value[1:]
    return value.lower()


def is_valid_telegram(value: str) -> bool:
    return isinstance(value, str) and _TELEGRAM_RE.fullmatch(value) is not None
