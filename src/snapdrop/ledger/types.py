"""snapdrop.ledger.types

Typed records shared by the replayer, the reward engine and the commitment builder.

This module defines:
  - Address parsing (lowercase 0x-prefixed 20-byte hex)
  - TransferRecord / Checkpoint: immutable inputs
  - BalanceKey + AccountTokenBalance: the replayer's (account, token) keyed ledger
  - ProportionResult / RewardEntry: derived outputs
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, NamedTuple, Optional

from snapdrop.ledger.constants import ZERO_ADDRESS
from snapdrop.runtime.errors import invalid_input
from snapdrop.runtime.state_invariants import check_uint256

Address = str

_ADDR_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def parse_address(v: Any, *, field: str = "address") -> Address:
    if not isinstance(v, str):
        raise invalid_input("address_not_string", {"field": field, "type": type(v).__name__})
    s = v.strip()
    if not _ADDR_RE.match(s):
        raise invalid_input("malformed_address", {"field": field, "value": v})
    return s.lower()


def address_to_int(addr: Address) -> int:
    """uint256(uint160(addr)) as the verifier sees it."""
    return int(parse_address(addr), 16)


def is_zero_address(addr: Address) -> bool:
    return addr == ZERO_ADDRESS


def _coerce_u64(v: Any, *, field: str) -> int:
    # bool is an int subclass; disallow it explicitly
    if isinstance(v, bool):
        raise invalid_input("not_an_integer", {"field": field, "type": "bool"})
    try:
        i = int(v)
    except (TypeError, ValueError) as e:
        raise invalid_input("not_an_integer", {"field": field, "value": repr(v)}) from e
    if i < 0 or i >= 2**64:
        raise invalid_input("out_of_u64_range", {"field": field, "value": i})
    return i


@dataclass(frozen=True)
class TransferRecord:
    """One transfer (or mint, when from_address is the zero address)."""

    from_address: Address
    to_address: Address
    token: Address
    value: int
    block_number: int
    timestamp: int

    @classmethod
    def create(
        cls,
        *,
        from_address: Any,
        to_address: Any,
        token: Any,
        value: Any,
        block_number: Any,
        timestamp: Any,
    ) -> "TransferRecord":
        return cls(
            from_address=parse_address(from_address, field="from"),
            to_address=parse_address(to_address, field="to"),
            token=parse_address(token, field="token"),
            value=check_uint256(value, field="value"),
            block_number=_coerce_u64(block_number, field="blockNumber"),
            timestamp=_coerce_u64(timestamp, field="timestamp"),
        )

    @property
    def is_mint(self) -> bool:
        return is_zero_address(self.from_address)

    @property
    def order_key(self) -> tuple[int, int]:
        return (self.block_number, self.timestamp)


@dataclass(frozen=True)
class Checkpoint:
    block_number: int
    timestamp: int
    index: int
    day: Optional[int] = None


class BalanceKey(NamedTuple):
    account: Address
    token: Address


@dataclass
class AccountTokenBalance:
    """Running balance plus one balance per checkpoint.

    Values are signed: a debit may land before its matching credit inside a
    single block. Clamping happens at aggregation time, not here.
    """

    current: int = 0
    at_checkpoint: List[int] = field(default_factory=list)

    @classmethod
    def empty(cls, num_checkpoints: int) -> "AccountTokenBalance":
        return cls(current=0, at_checkpoint=[0] * int(num_checkpoints))


@dataclass(frozen=True)
class ProportionResult:
    balance: int
    proportion: float
    reward: Optional[int] = None


@dataclass(frozen=True)
class RewardEntry:
    """One row of the reward ledger and one leaf of the commitment."""

    index: int
    account: Address
    reward: int


__all__ = [
    "Address",
    "parse_address",
    "address_to_int",
    "is_zero_address",
    "TransferRecord",
    "Checkpoint",
    "BalanceKey",
    "AccountTokenBalance",
    "ProportionResult",
    "RewardEntry",
]
