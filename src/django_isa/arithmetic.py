"""Checked unsigned integer arithmetic.

Python integers never wrap, so the bounds are explicit: every stored amount
must fit AMOUNT_MAX (a 64-bit signed integer column), and intermediate
products in settlement must fit WIDE_MAX. Leaving either range raises
ArithmeticOverflow instead of saturating.
"""

from .exceptions import ArithmeticOverflow

AMOUNT_MAX = 2**63 - 1
WIDE_MAX = 2**128 - 1


def checked_add(a: int, b: int, limit: int = AMOUNT_MAX) -> int:
    result = a + b
    if a < 0 or b < 0 or result > limit:
        raise ArithmeticOverflow(f"{a} + {b} overflows {limit}")
    return result


def checked_sub(a: int, b: int) -> int:
    result = a - b
    if result < 0:
        raise ArithmeticOverflow(f"{a} - {b} underflows 0")
    return result


def checked_mul(a: int, b: int, limit: int = AMOUNT_MAX) -> int:
    result = a * b
    if a < 0 or b < 0 or result > limit:
        raise ArithmeticOverflow(f"{a} * {b} overflows {limit}")
    return result


def checked_div(a: int, b: int) -> int:
    """Floor division that refuses a zero divisor."""
    if b == 0:
        raise ArithmeticOverflow(f"{a} / 0")
    return a // b


def saturating_sub(a: int, b: int) -> int:
    """a - b clamped at zero. Only for explicit clamp points."""
    return a - b if a > b else 0


def mul_div(a: int, b: int, divisor: int, limit: int = WIDE_MAX) -> int:
    """floor(a * b / divisor), multiplying first inside the wide range."""
    return checked_div(checked_mul(a, b, limit), divisor)
