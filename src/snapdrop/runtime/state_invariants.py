# src/snapdrop/runtime/state_invariants.py
from __future__ import annotations

"""Numeric and end-of-run invariants.

Python ints never wrap, so the uint256 domain of the on-chain verifier has to be
enforced explicitly. Every balance, weight and reward that flows towards a leaf goes
through one of the checks below.
"""

from typing import Any, Mapping

from snapdrop.ledger.constants import UINT256_MAX
from snapdrop.runtime.errors import inconsistent, invalid_input, overflow


def check_uint256(value: Any, *, field: str) -> int:
    """Return `value` as an int in [0, 2**256 - 1].

    Raises:
        InputValidationError: if value is not an int (bool rejected) or is negative
        ArithmeticOverflowError: if value exceeds the uint256 range
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise invalid_input("not_an_integer", {"field": field, "type": type(value).__name__})
    if value < 0:
        raise invalid_input("negative_value", {"field": field, "value": str(value)})
    if value > UINT256_MAX:
        raise overflow("value_exceeds_uint256", {"field": field, "value": str(value)})
    return value


def check_signed_magnitude(value: int, *, field: str) -> int:
    """Running balances are signed, but their magnitude must stay inside uint256."""
    if -UINT256_MAX <= value <= UINT256_MAX:
        return value
    raise overflow("balance_exceeds_uint256", {"field": field, "value": str(value)})


def assert_non_negative_balances(balances: Mapping[Any, Any]) -> None:
    """End-of-run assertion: every fully replayed running balance is >= 0.

    A negative final balance means some account was debited for tokens it never
    received, which points at a gap in the upstream event log.
    """
    for key, bal in balances.items():
        current = int(getattr(bal, "current"))
        if current < 0:
            account, token = key
            raise inconsistent(
                "negative_final_balance",
                {"account": account, "token": token, "current": str(current)},
            )


__all__ = ["check_uint256", "check_signed_magnitude", "assert_non_negative_balances"]
