"""Human-readable booking references: ``BK-YYYYMMDD-NNNNNN-C``.

``NNNNNN`` comes from a monotonic counter, so references never collide; ``C``
is a Luhn check digit over the date and sequence digits that catches typos
when a reference is keyed in by hand at the gate.
"""

from __future__ import annotations

import re
from datetime import date


REFERENCE_PREFIX = "BK"
_REFERENCE_PATTERN = re.compile(r"^BK-(\d{8})-(\d{6,})-(\d)$")


def luhn_check_digit(digits: str) -> int:
    total = 0
    for index, char in enumerate(reversed(digits)):
        value = int(char)
        if index % 2 == 0:
            value *= 2
            if value > 9:
                value -= 9
        total += value
    return (10 - total % 10) % 10


def build_reference(issued_on: date, sequence: int) -> str:
    if sequence <= 0:
        raise ValueError("sequence must be positive")
    date_part = issued_on.strftime("%Y%m%d")
    sequence_part = f"{sequence:06d}"
    check = luhn_check_digit(date_part + sequence_part)
    return f"{REFERENCE_PREFIX}-{date_part}-{sequence_part}-{check}"


def is_valid_reference(reference: str) -> bool:
    match = _REFERENCE_PATTERN.match(reference)
    if match is None:
        return False
    date_part, sequence_part, check = match.groups()
    return luhn_check_digit(date_part + sequence_part) == int(check)
