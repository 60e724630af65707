"""Australian Business Number checksum validation."""

from __future__ import annotations

import re

ABN_WEIGHTS = (10, 1, 3, 5, 7, 9, 11, 13, 15, 17, 19)
ABN_PATTERN = re.compile(r"\d{11}", re.ASCII)


def normalise_abn(abn: str) -> str:
    return re.sub(r"\s+", "", abn or "")


def validate_abn(abn: str) -> tuple[bool, str | None]:
    """Return ``(valid, error_message)`` for an ABN.

    Subtract 1 from the first digit, multiply each digit by its weight and
    the ABN is valid when the weighted sum is divisible by 89.
    """
    digits = normalise_abn(abn)
    if not digits:
        return False, "ABN is required"
    if not ABN_PATTERN.fullmatch(digits):
        return False, "ABN must be 11 digits"

    values = [int(d) for d in digits]
    values[0] -= 1
    total = sum(v * w for v, w in zip(values, ABN_WEIGHTS))
    if total % 89 != 0:
        return False, "Invalid ABN checksum"
    return True, None


def format_abn(abn: str) -> str:
    """Format as ``51 824 753 556``."""
    d = normalise_abn(abn)
    if len(d) != 11:
        return abn
    return f"{d[:2]} {d[2:5]} {d[5:8]} {d[8:]}"
