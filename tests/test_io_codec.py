from __future__ import annotations

import json
from pathlib import Path

import pytest

from snapdrop.io.codec import (
    balances_document,
    iter_transfer_lines,
    parse_rewards_csv,
    parse_snapshot_document,
    parse_transfer_line,
    read_transfers,
    rewards_csv,
    write_files_atomically,
)
from snapdrop.ledger.constants import ZERO_ADDRESS
from snapdrop.ledger.types import Checkpoint, ProportionResult, RewardEntry
from snapdrop.runtime.errors import ArithmeticOverflowError, InputValidationError

TOKEN = "0x" + "aa" * 20
X = "0x" + "11" * 20
Y = "0x" + "22" * 20


def _line(**over) -> str:
    d = {"from": ZERO_ADDRESS, "to": X, "tokenAddress": TOKEN, "value": "1000", "blockNumber": 50, "timestamp": 1}
    d.update(over)
    return json.dumps(d)


def test_parse_transfer_line_normalizes_addresses_and_big_values() -> None:
    big = str(2**200)
    rec = parse_transfer_line(_line(to=X.upper().replace("0X", "0x"), value=big))
    assert rec.to_address == X
    assert rec.value == 2**200
    assert rec.is_mint


def test_parse_transfer_line_accepts_integer_value() -> None:
    assert parse_transfer_line(_line(value=7)).value == 7


def test_negative_value_is_rejected_at_parse_time() -> None:
    with pytest.raises(InputValidationError) as e:
        parse_transfer_line(_line(value="-5"))
    assert e.value.reason == "negative_value"


def test_oversized_value_is_an_overflow() -> None:
    with pytest.raises(ArithmeticOverflowError):
        parse_transfer_line(_line(value=str(2**256)))


@pytest.mark.parametrize(
    "over",
    [
        {"from": "0x123"},
        {"to": "not-an-address"},
        {"value": "1.5"},
        {"value": True},
        {"blockNumber": -1},
    ],
)
def test_malformed_transfer_lines_are_rejected(over) -> None:
    with pytest.raises(InputValidationError):
        parse_transfer_line(_line(**over))


def test_missing_field_and_bad_json_are_rejected() -> None:
    d = json.loads(_line())
    del d["to"]
    with pytest.raises(InputValidationError):
        parse_transfer_line(json.dumps(d))
    with pytest.raises(InputValidationError):
        parse_transfer_line("{not json")


def test_read_transfers_skips_blank_lines_and_keeps_every_token(tmp_path: Path) -> None:
    other = "0x" + "bb" * 20
    p = tmp_path / "transfers.dat"
    p.write_text("\n".join([_line(), "", _line(tokenAddress=other, blockNumber=60), _line(blockNumber=70)]) + "\n")
    recs = read_transfers(p)
    assert [r.block_number for r in recs] == [50, 60, 70]
    assert [r.token for r in recs] == [TOKEN, other, TOKEN]


def test_malformed_line_fails_the_whole_read() -> None:
    with pytest.raises(InputValidationError) as e:
        list(iter_transfer_lines([_line(), "", _line(value="x")]))
    assert e.value.details["line"] == 3


def test_snapshot_document_assigns_positional_indices() -> None:
    doc = {
        "generatedAt": "2025-08-01T00:00:00Z",
        "snapshots": [{"blockNumber": 200, "timestamp": 0, "day": 1}, {"blockNumber": 100, "day": 1}],
    }
    cps = parse_snapshot_document(doc)
    assert cps == [Checkpoint(200, 0, 0, 1), Checkpoint(100, 0, 1, 1)]


@pytest.mark.parametrize("doc", [{}, {"snapshots": []}, {"snapshots": [{"timestamp": 1}]}, []])
def test_malformed_snapshot_documents_are_rejected(doc) -> None:
    with pytest.raises(InputValidationError):
        parse_snapshot_document(doc)


def test_balances_document_renders_large_integers_as_strings() -> None:
    results = {
        TOKEN: {
            X: ProportionResult(balance=2**100, proportion=0.25, reward=10**30),
            Y: ProportionResult(balance=3 * 2**100, proportion=0.75, reward=None),
        }
    }
    doc = balances_document(results, [Checkpoint(100, 0, 0), Checkpoint(200, 0, 1)])
    rows = doc["tokenProportions"][TOKEN]
    assert list(rows) == [Y, X]
    assert rows[X] == {"balance": str(2**100), "proportion": 0.25, "reward": str(10**30)}
    assert "reward" not in rows[Y]
    assert doc["snapshotBlocks"] == [100, 200]


def test_rewards_csv_reads_back() -> None:
    entries = [RewardEntry(0, X, 2**255), RewardEntry(1, Y, 1)]
    text = rewards_csv(entries)
    assert text.splitlines()[0] == "index,address,reward"
    assert parse_rewards_csv(text) == entries


@pytest.mark.parametrize(
    "text",
    [
        "idx,address,reward\n0,%s,1\n" % X,
        "index,address,reward\n0,%s,-1\n" % X,
        "index,address,reward\n0,0xdead,1\n",
        "index,address,reward\nx,%s,1\n" % X,
    ],
)
def test_malformed_rewards_csv_is_rejected(text: str) -> None:
    with pytest.raises(InputValidationError):
        parse_rewards_csv(text)


def test_write_files_atomically_writes_all(tmp_path: Path) -> None:
    a = tmp_path / "t" / "a.json"
    b = tmp_path / "t" / "b.csv"
    written = write_files_atomically({a: "{}\n", b: "x\n"})
    assert written == [a, b]
    assert a.read_text() == "{}\n"
    assert b.read_text() == "x\n"
    assert sorted(p.name for p in (tmp_path / "t").iterdir()) == ["a.json", "b.csv"]


def test_write_files_atomically_leaves_nothing_on_failure(tmp_path: Path) -> None:
    good = tmp_path / "good.json"
    blocked = tmp_path / "blocked"
    blocked.write_text("a file, not a directory")
    with pytest.raises(OSError):
        write_files_atomically({good: "{}", blocked / "x.json": "{}"})
    assert list(tmp_path.iterdir()) == [blocked]
