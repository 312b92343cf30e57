from __future__ import annotations

import math
from decimal import Decimal
from fractions import Fraction

import pytest

from snapdrop.ledger.constants import ZERO_ADDRESS
from snapdrop.ledger.replay import replay
from snapdrop.ledger.rewards import (
    account_weight,
    build_reward_ledger,
    check_reward_ledger,
    compute_proportions,
    ordered_results,
    parse_distribution_amount,
    reward_for,
    scale_distribution_amount,
    summarize,
)
from snapdrop.ledger.types import AccountTokenBalance, BalanceKey, Checkpoint, ProportionResult, RewardEntry, TransferRecord
from snapdrop.runtime.errors import ArithmeticOverflowError, ConsistencyError, InputValidationError

TOKEN = "0x" + "aa" * 20
X = "0x" + "11" * 20
Y = "0x" + "22" * 20
Z = "0x" + "33" * 20
W = "0x" + "44" * 20


def _example_balances():
    records = [
        TransferRecord(ZERO_ADDRESS, X, TOKEN, 1000, 50, 0),
        TransferRecord(X, Y, TOKEN, 400, 150, 0),
    ]
    cps = [Checkpoint(100, 0, 0), Checkpoint(200, 0, 1)]
    return replay(records, cps)


def test_worked_example_proportions_and_rewards() -> None:
    res = compute_proportions(_example_balances(), 2, "100")[TOKEN]

    assert res[X].balance == 800
    assert res[Y].balance == 200
    assert res[X].proportion == 0.8
    assert res[Y].proportion == 0.2
    assert res[X].reward == 80 * 10**18
    assert res[Y].reward == 20 * 10**18
    assert ZERO_ADDRESS not in res


def test_reward_is_omitted_without_distribution_amount() -> None:
    res = compute_proportions(_example_balances(), 2)[TOKEN]
    assert res[X].reward is None
    assert res[Y].reward is None


def test_weight_clamps_negative_checkpoints_and_floors() -> None:
    assert account_weight([5, -100, 4], 3) == 3
    assert account_weight([1, 0], 2) == 0
    with pytest.raises(InputValidationError):
        account_weight([1], 0)


def test_zero_weight_accounts_are_excluded_and_proportions_normalize() -> None:
    balances = {
        BalanceKey(X, TOKEN): AccountTokenBalance(current=3, at_checkpoint=[3, 3, 3]),
        BalanceKey(Y, TOKEN): AccountTokenBalance(current=7, at_checkpoint=[0, 7, 7]),
        BalanceKey(Z, TOKEN): AccountTokenBalance(current=0, at_checkpoint=[1, 0, 0]),
        BalanceKey(W, TOKEN): AccountTokenBalance(current=11, at_checkpoint=[-2, 11, 11]),
    }
    res = compute_proportions(balances, 3)[TOKEN]
    assert Z not in res
    assert all(r.proportion > 0 for r in res.values())
    assert math.isclose(sum(r.proportion for r in res.values()), 1.0, rel_tol=1e-12)
    assert res[W].balance == 7


def test_double_floor_is_reproducible_from_stored_proportion() -> None:
    balances = {
        BalanceKey(X, TOKEN): AccountTokenBalance(current=1, at_checkpoint=[1]),
        BalanceKey(Y, TOKEN): AccountTokenBalance(current=2, at_checkpoint=[2]),
    }
    amount = "12.345678901234567891"
    res = compute_proportions(balances, 1, amount)[TOKEN]
    scaled = scale_distribution_amount(amount)
    assert scaled == 12345678901234567891
    for r in res.values():
        assert r.reward <= math.floor(r.proportion * float(scaled))
        assert r.reward <= math.floor(Fraction(r.proportion) * scaled)
        assert r.reward <= scaled


def test_scale_distribution_amount_is_exact_and_floored() -> None:
    assert scale_distribution_amount("1000000") == 10**24
    assert scale_distribution_amount("0.0000000000000000019") == 1
    assert scale_distribution_amount(Decimal("123456789012345678901234567890.5")) == 1234567890123456789012345678905 * 10**17
    with pytest.raises(ArithmeticOverflowError):
        scale_distribution_amount("1e80")


@pytest.mark.parametrize("bad", ["-1", "abc", "NaN", "Infinity", None, True])
def test_parse_distribution_amount_rejects_bad_input(bad) -> None:
    with pytest.raises(InputValidationError):
        parse_distribution_amount(bad)


def test_single_holder_reward_never_exceeds_pool() -> None:
    scaled = 2**60 - 1
    assert reward_for(1.0, scaled) == scaled


def test_reward_never_exceeds_exact_product_for_unrepresentable_pool() -> None:
    balances = {
        BalanceKey(X, TOKEN): AccountTokenBalance(current=5, at_checkpoint=[5]),
        BalanceKey(Y, TOKEN): AccountTokenBalance(current=5, at_checkpoint=[5]),
    }
    amount = "1.152921504606846975"
    scaled = scale_distribution_amount(amount)
    assert scaled == 2**60 - 1
    res = compute_proportions(balances, 1, amount)[TOKEN]
    for r in res.values():
        assert r.proportion == 0.5
        assert r.reward == (2**60 - 1) // 2
        assert r.reward <= math.floor(Fraction(r.proportion) * scaled)
    assert sum(r.reward for r in res.values()) <= scaled


def test_reward_for_keeps_float_product_when_it_is_below_exact() -> None:
    assert reward_for(0.8, 100 * 10**18) == 80 * 10**18
    assert reward_for(0.2, 100 * 10**18) == 20 * 10**18


def test_ordering_is_descending_balance_with_first_seen_ties() -> None:
    per_token = {
        X: ProportionResult(balance=5, proportion=0.25),
        Y: ProportionResult(balance=10, proportion=0.5),
        Z: ProportionResult(balance=5, proportion=0.25),
    }
    assert [a for a, _ in ordered_results(per_token)] == [Y, X, Z]


def test_reward_ledger_is_dense_over_nonzero_rewards() -> None:
    per_token = {
        X: ProportionResult(balance=1, proportion=0.1, reward=0),
        Y: ProportionResult(balance=9, proportion=0.9, reward=90),
        Z: ProportionResult(balance=1, proportion=0.1, reward=10),
    }
    ledger = build_reward_ledger(per_token)
    assert ledger == [RewardEntry(0, Y, 90), RewardEntry(1, Z, 10)]


def test_reward_ledger_requires_rewards() -> None:
    with pytest.raises(ConsistencyError):
        build_reward_ledger({X: ProportionResult(balance=1, proportion=1.0)})


def test_reward_ledger_referencing_unknown_account_is_fatal() -> None:
    per_token = {X: ProportionResult(balance=1, proportion=1.0, reward=5)}
    with pytest.raises(ConsistencyError) as e:
        check_reward_ledger([RewardEntry(0, Y, 5)], per_token)
    assert e.value.reason == "reward_account_unknown"


def test_summarize() -> None:
    res = compute_proportions(_example_balances(), 2, "100")[TOKEN]
    s = summarize(res)
    assert s == {"accounts": 2, "total_weight": "1000", "total_reward": str(100 * 10**18)}


def test_burned_balance_is_credited_to_the_zero_address() -> None:
    records = [
        TransferRecord(ZERO_ADDRESS, X, TOKEN, 1000, 1, 0),
        TransferRecord(X, ZERO_ADDRESS, TOKEN, 250, 2, 0),
    ]
    res = compute_proportions(replay(records, [Checkpoint(10, 0, 0)]), 1, "4")[TOKEN]
    assert res[ZERO_ADDRESS].balance == 250
    assert res[ZERO_ADDRESS].proportion == 0.25
    assert res[ZERO_ADDRESS].reward == 10**18
    assert res[X].reward == 3 * 10**18
