# src/snapdrop/io/codec.py
from __future__ import annotations

import csv
import io
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from snapdrop.io.schemas import RewardRow, SnapshotFile, TransferLine
from snapdrop.ledger.checkpoints import index_checkpoints
from snapdrop.ledger.rewards import Results, ordered_results
from snapdrop.ledger.types import Checkpoint, RewardEntry, TransferRecord, parse_address
from snapdrop.runtime.errors import invalid_input
from snapdrop.runtime.state_invariants import check_uint256

Json = Dict[str, Any]

REWARDS_CSV_HEADER = ["index", "address", "reward"]


def dumps_json(obj: Any, *, pretty: bool = True) -> str:
    """Stable JSON text. Unknown types are an error, never coerced with default=str."""
    if pretty:
        return json.dumps(obj, indent=2, ensure_ascii=False) + "\n"
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _read_text(path: str | Path) -> str:
    p = Path(path)
    if not p.is_file():
        raise invalid_input("file_not_found", {"path": str(p)})
    return p.read_text(encoding="utf-8")


def _load_json(text: str, *, source: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise invalid_input("invalid_json", {"source": source, "error": str(e)}) from e


# ---------------------------------------------------------------------------
# Transfers (JSON Lines)
# ---------------------------------------------------------------------------


def parse_transfer_line(line: str, *, lineno: int = 0) -> TransferRecord:
    obj = _load_json(line, source=f"line {lineno}")
    try:
        m = TransferLine.model_validate(obj)
    except ValidationError as e:
        raise invalid_input("malformed_transfer", {"line": lineno, "errors": e.errors(include_url=False)}) from e
    return TransferRecord.create(
        from_address=m.from_,
        to_address=m.to,
        token=m.tokenAddress,
        value=int(m.value),
        block_number=m.blockNumber,
        timestamp=m.timestamp,
    )


def iter_transfer_lines(lines: Iterable[str]) -> Iterator[TransferRecord]:
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue
        yield parse_transfer_line(line, lineno=lineno)


def read_transfers(path: str | Path) -> List[TransferRecord]:
    """Read every record of a JSON Lines log; any malformed line fails the whole read."""
    return list(iter_transfer_lines(_read_text(path).splitlines()))


# ---------------------------------------------------------------------------
# Snapshot (checkpoint) files
# ---------------------------------------------------------------------------


def parse_snapshot_document(obj: Any) -> List[Checkpoint]:
    try:
        doc = SnapshotFile.model_validate(obj)
    except ValidationError as e:
        raise invalid_input("malformed_snapshot_file", {"errors": e.errors(include_url=False)}) from e
    return index_checkpoints(s.model_dump() for s in doc.snapshots)


def read_snapshots(path: str | Path) -> List[Checkpoint]:
    return parse_snapshot_document(_load_json(_read_text(path), source=str(path)))


def snapshot_document(
    checkpoints: Sequence[Checkpoint],
    *,
    network: str = "",
    data_source: str = "",
    generated_at: Optional[str] = None,
) -> Json:
    return {
        "generatedAt": generated_at or datetime.now(timezone.utc).isoformat(),
        "totalSnapshots": len(checkpoints),
        "network": network,
        "dataSource": data_source,
        "snapshots": [
            {"blockNumber": cp.block_number, "timestamp": cp.timestamp, "day": cp.day} for cp in checkpoints
        ],
    }


# ---------------------------------------------------------------------------
# Balances / rewards outputs
# ---------------------------------------------------------------------------


def balances_document(results: Results, checkpoints: Sequence[Checkpoint]) -> Json:
    """Per-token proportions, large integers as decimal strings."""
    tokens: Json = {}
    for token, per_token in results.items():
        rows: Json = {}
        for account, res in ordered_results(per_token):
            row: Json = {"balance": str(res.balance), "proportion": res.proportion}
            if res.reward is not None:
                row["reward"] = str(res.reward)
            rows[account] = row
        tokens[token] = rows
    return {
        "snapshotBlocks": [cp.block_number for cp in checkpoints],
        "totalSnapshots": len(checkpoints),
        "tokenProportions": tokens,
    }


def rewards_csv(entries: Iterable[RewardEntry]) -> str:
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(REWARDS_CSV_HEADER)
    for e in entries:
        w.writerow([e.index, e.account, str(e.reward)])
    return buf.getvalue()


def parse_rewards_csv(text: str) -> List[RewardEntry]:
    rdr = csv.DictReader(io.StringIO(text))
    if rdr.fieldnames is None or [f.strip() for f in rdr.fieldnames] != REWARDS_CSV_HEADER:
        raise invalid_input("rewards_csv_header", {"expected": REWARDS_CSV_HEADER, "got": rdr.fieldnames})
    out: List[RewardEntry] = []
    for lineno, raw in enumerate(rdr, start=2):
        if not any((v or "").strip() for v in raw.values()):
            continue
        try:
            row = RewardRow.model_validate({k.strip(): (v or "").strip() for k, v in raw.items() if k is not None})
        except ValidationError as e:
            raise invalid_input("malformed_reward_row", {"line": lineno, "errors": e.errors(include_url=False)}) from e
        out.append(
            RewardEntry(
                index=row.index,
                account=parse_address(row.address, field=f"line {lineno} address"),
                reward=check_uint256(int(row.reward), field=f"line {lineno} reward"),
            )
        )
    return out


def read_rewards_csv(path: str | Path) -> List[RewardEntry]:
    return parse_rewards_csv(_read_text(path))


# ---------------------------------------------------------------------------
# All-or-nothing writes
# ---------------------------------------------------------------------------


def write_files_atomically(files: Mapping[Path, str]) -> List[Path]:
    """Stage every file as a temp sibling, then rename them all into place.

    Nothing is renamed until every payload is on disk; a failure while staging
    removes the staged files and leaves existing outputs untouched.
    """
    staged: List[tuple[Path, Path]] = []
    try:
        for dest, text in files.items():
            dest.parent.mkdir(parents=True, exist_ok=True)
            tmp = dest.with_name(f".{dest.name}.tmp")
            staged.append((tmp, dest))
            with tmp.open("w", encoding="utf-8", newline="") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
    except BaseException:
        for tmp, _ in staged:
            tmp.unlink(missing_ok=True)
        raise
    for tmp, dest in staged:
        os.replace(tmp, dest)
    return [dest for _, dest in staged]


__all__ = [
    "dumps_json",
    "parse_transfer_line",
    "iter_transfer_lines",
    "read_transfers",
    "parse_snapshot_document",
    "read_snapshots",
    "snapshot_document",
    "balances_document",
    "rewards_csv",
    "parse_rewards_csv",
    "read_rewards_csv",
    "write_files_atomically",
]
