"""Check-digit algorithms used by payment validation."""

import re
from datetime import date


_DIGITS = re.compile(r"[0-9]+")
_EXPIRY_PATTERN = re.compile(r"(0[1-9]|1[0-2])/([0-9]{2})")


def luhn_is_valid(number: str) -> bool:
    """Mod-10 check for card numbers.

    Whitespace is stripped first; any other non-digit character fails.
    """

    digits = "".join(number.split())
    if not _DIGITS.fullmatch(digits):
        return False
    total = 0
    for index, char in enumerate(reversed(digits)):
        value = int(char)
        if index % 2 == 1:
            value *= 2
            if value > 9:
                value -= 9
        total += value
    return total % 10 == 0


def _cpf_check_digit(digits: str, first_weight: int) -> int:
    total = sum(int(d) * (first_weight - i) for i, d in enumerate(digits))
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def cpf_is_valid(cpf: str) -> bool:
    """Validate the two check digits of an 11-digit CPF (digits only)."""

    if len(cpf) != 11 or not _DIGITS.fullmatch(cpf):
        return False
    # Repeated-digit sequences satisfy the arithmetic but are not issued.
    if len(set(cpf)) == 1:
        return False
    d1 = _cpf_check_digit(cpf[:9], 10)
    d2 = _cpf_check_digit(cpf[:10], 11)
    return int(cpf[9]) == d1 and int(cpf[10]) == d2


def parse_expiry(expiry: str) -> tuple[int, int] | None:
    """Return (year, month) for an `MM/YY` string, or None when malformed."""

    match = _EXPIRY_PATTERN.fullmatch(expiry)
    if match is None:
        return None
    return 2000 + int(match.group(2)), int(match.group(1))


def expiry_is_valid(expiry: str, today: date) -> bool:
    """A card is usable through the last day of its expiry month."""

    parsed = parse_expiry(expiry)
    if parsed is None:
        return False
    return parsed >= (today.year, today.month)
