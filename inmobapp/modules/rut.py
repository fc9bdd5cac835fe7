"""
Chilean RUT helpers: cleaning, modulus-11 check digit and display formatting.
"""

import re

_NON_RUT_CHARS = re.compile(r"[^0-9kK]")


def clean(value: str | None) -> str:
    """Keep digits and K only, check digit upper-cased. '12.345.678-k' -> '12345678K'."""
    if not value:
        return ""
    return _NON_RUT_CHARS.sub("", str(value)).upper()


def compute_check_digit(body: str) -> str:
    total = 0
    weight = 2
    for digit in reversed(body):
        total += int(digit) * weight
        weight = 2 if weight == 7 else weight + 1
    result = 11 - (total % 11)
    if result == 11:
        return "0"
    if result == 10:
        return "K"
    return str(result)


def validate_checksum(value: str | None) -> bool:
    rut = clean(value)
    if len(rut) < 2:
        return False
    body, check = rut[:-1], rut[-1]
    if not body.isdigit():
        return False
    return compute_check_digit(body) == check


def format_rut(value: str | None) -> str:
    """Display form with thousands dots: '12345678K' -> '12.345.678-K'."""
    rut = clean(value)
    if len(rut) < 2:
        return rut
    body, check = rut[:-1], rut[-1]
    if not body.isdigit():
        return rut
    return f"{int(body):,}".replace(",", ".") + f"-{check}"
