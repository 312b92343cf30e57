# src/snapdrop/ledger/rewards.py
from __future__ import annotations

import logging
import math
from decimal import ROUND_FLOOR, Decimal, InvalidOperation, localcontext
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from snapdrop.ledger.constants import REWARD_DECIMALS, UINT256_MAX
from snapdrop.ledger.replay import Balances
from snapdrop.ledger.types import Address, ProportionResult, RewardEntry
from snapdrop.runtime.errors import inconsistent, invalid_input, overflow
from snapdrop.runtime.state_invariants import check_uint256
from snapdrop.util.structured_logging import log_event

TokenResults = Dict[Address, ProportionResult]
Results = Dict[Address, TokenResults]

_log = logging.getLogger("snapdrop.rewards")


def parse_distribution_amount(x: Any) -> Decimal:
    """Parse a human-entered token quantity (e.g. "1000000" or "12.5")."""
    if isinstance(x, Decimal):
        d = x
    elif isinstance(x, bool) or x is None:
        raise invalid_input("distribution_amount_invalid", {"value": repr(x)})
    else:
        try:
            d = Decimal(str(x).strip())
        except InvalidOperation as e:
            raise invalid_input("distribution_amount_invalid", {"value": str(x)}) from e
    if not d.is_finite():
        raise invalid_input("distribution_amount_not_finite", {"value": str(x)})
    if d < 0:
        raise invalid_input("distribution_amount_negative", {"value": str(x)})
    return d


def scale_distribution_amount(amount: Any, decimals: int = REWARD_DECIMALS) -> int:
    """floor(amount * 10**decimals), exact."""
    d = parse_distribution_amount(amount)
    if d.adjusted() + int(decimals) > 80:
        raise overflow("distribution_amount_exceeds_uint256", {"value": str(d)})
    with localcontext() as ctx:
        # exact product: never round to the default 28 significant digits
        ctx.prec = max(ctx.prec, len(d.as_tuple().digits) + int(decimals) + 2)
        scaled = int((d * (Decimal(10) ** int(decimals))).to_integral_value(rounding=ROUND_FLOOR))
    if scaled > UINT256_MAX:
        raise overflow("distribution_amount_exceeds_uint256", {"scaled": str(scaled)})
    return scaled


def account_weight(at_checkpoint: Iterable[int], num_checkpoints: int) -> int:
    """Time-averaged holding: negative excursions count as zero, integer floor division."""
    n = int(num_checkpoints)
    if n <= 0:
        raise invalid_input("num_checkpoints_must_be_positive", {"num_checkpoints": num_checkpoints})
    return sum(b if b > 0 else 0 for b in at_checkpoint) // n


def reward_for(proportion: float, scaled_amount: int) -> int:
    """floor(proportion * scaled_amount) in IEEE-754 double arithmetic.

    The float product may round above the exact product when scaled_amount is not
    representable as a double, so the result is also capped at the exact
    floor(proportion * scaled_amount) and at the pool.
    """
    s = int(scaled_amount)
    raw = math.floor(float(proportion) * float(s))
    exact = math.floor(Fraction(float(proportion)) * s)
    return min(int(raw), exact, s)


def _weights_by_token(balances: Balances, num_checkpoints: int) -> Dict[Address, Dict[Address, int]]:
    out: Dict[Address, Dict[Address, int]] = {}
    for key, bal in balances.items():
        if len(bal.at_checkpoint) != int(num_checkpoints):
            raise inconsistent(
                "checkpoint_vector_length_mismatch",
                {"account": key.account, "token": key.token, "len": len(bal.at_checkpoint), "expected": num_checkpoints},
            )
        w = account_weight(bal.at_checkpoint, num_checkpoints)
        check_uint256(w, field="weight")
        out.setdefault(key.token, {})[key.account] = w
    return out


def compute_proportions(
    balances: Balances,
    num_checkpoints: int,
    distribution_amount: Optional[Any] = None,
    *,
    decimals: int = REWARD_DECIMALS,
) -> Results:
    """Per-token proportions (and rewards when a distribution amount is given).

    Accounts with zero weight are dropped. Within a token, accounts keep the order in
    which the replayer first saw them.
    """
    scaled: Optional[int] = None
    if distribution_amount is not None:
        scaled = scale_distribution_amount(distribution_amount, decimals)

    results: Results = {}
    for token, weights in _weights_by_token(balances, num_checkpoints).items():
        total = sum(weights.values())
        check_uint256(total, field="total_weight")

        per_token: TokenResults = {}
        for account, w in weights.items():
            if w == 0:
                continue
            proportion = float(w) / float(total) if total > 0 else 0.0
            reward = reward_for(proportion, scaled) if scaled is not None else None
            per_token[account] = ProportionResult(balance=w, proportion=proportion, reward=reward)
        results[token] = per_token

        log_event(
            _log,
            "proportions_done",
            token=token,
            accounts=len(per_token),
            total_weight=str(total),
            pool=None if scaled is None else str(scaled),
        )
    return results


def ordered_results(per_token: Mapping[Address, ProportionResult]) -> List[Tuple[Address, ProportionResult]]:
    """Descending balance; ties keep first-seen order (sorted() is stable)."""
    return sorted(per_token.items(), key=lambda kv: kv[1].balance, reverse=True)


def build_reward_ledger(per_token: Mapping[Address, ProportionResult]) -> List[RewardEntry]:
    """Dense (index, account, reward) table over nonzero rewards, in output order."""
    out: List[RewardEntry] = []
    for account, res in ordered_results(per_token):
        if res.reward is None:
            raise inconsistent("reward_missing", {"account": account})
        if res.reward <= 0:
            continue
        out.append(RewardEntry(index=len(out), account=account, reward=check_uint256(res.reward, field="reward")))
    check_reward_ledger(out, per_token)
    log_event(_log, "reward_ledger_built", entries=len(out), total_reward=str(sum(e.reward for e in out)))
    return out


def check_reward_ledger(entries: Iterable[RewardEntry], per_token: Mapping[Address, ProportionResult]) -> None:
    """Every ledger row must name a known account with a matching reward."""
    for pos, e in enumerate(entries):
        if e.index != pos:
            raise inconsistent("reward_index_not_dense", {"position": pos, "index": e.index})
        res = per_token.get(e.account)
        if res is None:
            raise inconsistent("reward_account_unknown", {"account": e.account})
        if res.reward != e.reward:
            raise inconsistent(
                "reward_mismatch",
                {"account": e.account, "ledger": str(e.reward), "computed": str(res.reward)},
            )


def summarize(per_token: Mapping[Address, ProportionResult]) -> Dict[str, Any]:
    rewards = [r.reward for r in per_token.values() if r.reward is not None]
    return {
        "accounts": len(per_token),
        "total_weight": str(sum(r.balance for r in per_token.values())),
        "total_reward": str(sum(rewards)) if rewards else None,
    }


__all__ = [
    "Results",
    "TokenResults",
    "parse_distribution_amount",
    "scale_distribution_amount",
    "account_weight",
    "reward_for",
    "compute_proportions",
    "ordered_results",
    "build_reward_ledger",
    "check_reward_ledger",
    "summarize",
]
