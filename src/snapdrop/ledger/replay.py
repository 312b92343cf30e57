# src/snapdrop/ledger/replay.py
from __future__ import annotations

"""Ledger replay.

Folds an ordered transfer/mint log into running balances and per-checkpoint
balances keyed by (account, token).

Checkpoint semantics are right-closed: a record at block B is included in every
checkpoint whose block number is >= B, and excluded from every earlier one.
"""

import heapq
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from snapdrop.ledger.types import (
    AccountTokenBalance,
    Address,
    BalanceKey,
    Checkpoint,
    TransferRecord,
    parse_address,
)
from snapdrop.runtime.errors import invalid_input
from snapdrop.runtime.state_invariants import (
    assert_non_negative_balances,
    check_signed_magnitude,
    check_uint256,
)
from snapdrop.util.structured_logging import log_event

Balances = Dict[BalanceKey, AccountTokenBalance]

_log = logging.getLogger("snapdrop.replay")


def validate_checkpoints(checkpoints: Sequence[Checkpoint]) -> None:
    if not checkpoints:
        raise invalid_input("no_checkpoints")
    for pos, cp in enumerate(checkpoints):
        if int(cp.index) != pos:
            raise invalid_input("checkpoint_index_mismatch", {"position": pos, "index": cp.index})


def validate_records(records: Sequence[TransferRecord]) -> None:
    """Check every replay precondition before any balance is touched.

    - value is a uint256 magnitude (direction carries the sign)
    - records are non-decreasing by (block_number, timestamp)
    """
    prev: Optional[tuple[int, int]] = None
    for pos, rec in enumerate(records):
        check_uint256(rec.value, field=f"records[{pos}].value")
        key = rec.order_key
        if prev is not None and key < prev:
            raise invalid_input(
                "records_out_of_order",
                {
                    "position": pos,
                    "block_number": rec.block_number,
                    "timestamp": rec.timestamp,
                    "previous_block_number": prev[0],
                    "previous_timestamp": prev[1],
                },
            )
        prev = key


def _entry(balances: Balances, account: Address, token: Address, num_checkpoints: int) -> AccountTokenBalance:
    key = BalanceKey(account, token)
    bal = balances.get(key)
    if bal is None:
        bal = AccountTokenBalance.empty(num_checkpoints)
        balances[key] = bal
    return bal


def _apply(rec: TransferRecord, sender: AccountTokenBalance, receiver: AccountTokenBalance, checkpoints: Sequence[Checkpoint]) -> None:
    value = rec.value
    mint = rec.is_mint

    if not mint:
        sender.current = check_signed_magnitude(sender.current - value, field="current")
    receiver.current = check_signed_magnitude(receiver.current + value, field="current")

    for i, cp in enumerate(checkpoints):
        if rec.block_number > cp.block_number:
            continue
        if not mint:
            sender.at_checkpoint[i] = check_signed_magnitude(sender.at_checkpoint[i] - value, field="at_checkpoint")
        receiver.at_checkpoint[i] = check_signed_magnitude(receiver.at_checkpoint[i] + value, field="at_checkpoint")


def replay(
    records: Sequence[TransferRecord],
    checkpoints: Sequence[Checkpoint],
    *,
    check_final_balances: bool = True,
) -> Balances:
    """Replay `records` in input order and return balances keyed by (account, token).

    Entries are created lazily on first reference, for both parties of every record
    (the zero address included, which is never debited). Dict insertion order is
    therefore first-seen order, which downstream output ordering relies on.

    Raises:
        InputValidationError: bad checkpoints, negative values, unordered records
        ArithmeticOverflowError: a running balance left the uint256 magnitude range
        ConsistencyError: a final running balance is negative (check_final_balances)
    """
    validate_checkpoints(checkpoints)
    validate_records(records)

    n = len(checkpoints)
    balances: Balances = {}
    for rec in records:
        sender = _entry(balances, rec.from_address, rec.token, n)
        receiver = _entry(balances, rec.to_address, rec.token, n)
        _apply(rec, sender, receiver, checkpoints)

    if check_final_balances:
        assert_non_negative_balances(balances)

    log_event(
        _log,
        "replay_done",
        records=len(records),
        checkpoints=n,
        entries=len(balances),
        tokens=len({k.token for k in balances}),
    )
    return balances


def filter_records_by_token(records: Iterable[TransferRecord], token: str) -> List[TransferRecord]:
    t = parse_address(token, field="token")
    return [r for r in records if r.token == t]


def merge_records(*streams: Iterable[TransferRecord]) -> List[TransferRecord]:
    """Merge already-ordered streams (e.g. transfers and deposits) into one ordered log.

    Ties on (block_number, timestamp) keep stream order: earlier streams first.
    """
    return list(heapq.merge(*streams, key=lambda r: r.order_key))


__all__ = [
    "Balances",
    "replay",
    "validate_records",
    "validate_checkpoints",
    "filter_records_by_token",
    "merge_records",
]
