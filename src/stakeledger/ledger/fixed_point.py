from __future__ import annotations

"""Checked integer arithmetic for ledger amounts.

Python ints never wrap, so range checks are explicit: every result must stay in
[0, MAX_AMOUNT] or the operation fails with ArithmeticOverflow. Nothing here
clamps.
"""

from typing import Any

from stakeledger.ledger.constants import BPS_DENOMINATOR, MAX_AMOUNT, PRECISION
from stakeledger.runtime.errors import ArithmeticOverflow


def as_amount(v: Any, *, field: str) -> int:
    """Coerce `v` to an in-range amount or fail."""
    # bool is an int subclass; disallow it explicitly
    if isinstance(v, bool) or not isinstance(v, int):
        raise ArithmeticOverflow("not_an_integer", {"field": field, "type": type(v).__name__})
    return _bounded(int(v), op=field)


def _bounded(r: int, *, op: str, **operands: int) -> int:
    if r < 0:
        raise ArithmeticOverflow("underflow", {"op": op, **operands})
    if r > MAX_AMOUNT:
        raise ArithmeticOverflow("overflow", {"op": op, **operands})
    return r


def checked_add(a: int, b: int) -> int:
    return _bounded(int(a) + int(b), op="add", a=a, b=b)


def checked_sub(a: int, b: int) -> int:
    return _bounded(int(a) - int(b), op="sub", a=a, b=b)


def checked_mul(a: int, b: int) -> int:
    return _bounded(int(a) * int(b), op="mul", a=a, b=b)


def mul_div(a: int, b: int, d: int) -> int:
    """(a * b) // d with the intermediate product range-checked. Truncates."""
    if int(d) <= 0:
        raise ArithmeticOverflow("division_by_zero", {"op": "mul_div", "d": d})
    return checked_mul(a, b) // int(d)


def accrued(amount: int, acc_reward_per_share: int) -> int:
    """Reward-asset units owed to `amount` shares at accumulator value `acc`."""
    return mul_div(amount, acc_reward_per_share, PRECISION)


def bps_of(amount: int, bps: int) -> int:
    return mul_div(amount, bps, BPS_DENOMINATOR)


__all__ = [
    "as_amount",
    "checked_add",
    "checked_sub",
    "checked_mul",
    "mul_div",
    "accrued",
    "bps_of",
]
