# src/snapdrop/runtime/pipeline.py
from __future__ import annotations

"""End-to-end distribution run.

replay -> proportions -> reward ledger -> (optional) commitment -> write.

Every artifact is computed in memory before anything touches the disk, and the
writes go through write_files_atomically(), so a failing run leaves no output.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from snapdrop.commit.merkle import Commitment, build_commitment
from snapdrop.io.codec import balances_document, dumps_json, rewards_csv, write_files_atomically
from snapdrop.ledger.constants import DEPLOYED_LEAF_COUNT, REWARD_DECIMALS
from snapdrop.ledger.replay import Balances, filter_records_by_token, replay
from snapdrop.ledger.rewards import Results, build_reward_ledger, compute_proportions, summarize
from snapdrop.ledger.types import Address, Checkpoint, RewardEntry, TransferRecord
from snapdrop.runtime.errors import invalid_input
from snapdrop.util.structured_logging import log_event

_log = logging.getLogger("snapdrop.pipeline")


@dataclass
class DistributionRun:
    checkpoints: List[Checkpoint]
    balances: Balances
    results: Results
    reward_ledgers: Dict[Address, List[RewardEntry]] = field(default_factory=dict)
    commitments: Dict[Address, Commitment] = field(default_factory=dict)

    def output_files(self, out_dir: Path) -> Dict[Path, str]:
        """Rendered outputs, one directory per token."""
        files: Dict[Path, str] = {}
        for token in self.results:
            tdir = out_dir / token
            files[tdir / "balances.json"] = dumps_json(balances_document({token: self.results[token]}, self.checkpoints))
            if token in self.reward_ledgers:
                files[tdir / "rewards.csv"] = rewards_csv(self.reward_ledgers[token])
            if token in self.commitments:
                c = self.commitments[token]
                files[tdir / "tree.json"] = dumps_json(c.dump())
                files[tdir / "claims.json"] = dumps_json(c.claims())
        return files


def run_distribution(
    records: Sequence[TransferRecord],
    checkpoints: Sequence[Checkpoint],
    *,
    token: Optional[str] = None,
    distribution_amount: Optional[Any] = None,
    decimals: int = REWARD_DECIMALS,
    commit: bool = False,
    leaf_count: int = DEPLOYED_LEAF_COUNT,
) -> DistributionRun:
    """Compute every artifact of a run; raises SnapdropError subclasses, writes nothing."""
    if commit and distribution_amount is None:
        raise invalid_input("commit_requires_distribution_amount")
    recs = filter_records_by_token(records, token) if token is not None else list(records)
    balances = replay(recs, checkpoints)
    results = compute_proportions(balances, len(checkpoints), distribution_amount, decimals=decimals)

    run = DistributionRun(checkpoints=list(checkpoints), balances=balances, results=results)
    if distribution_amount is None:
        return run

    for tok, per_token in results.items():
        ledger = build_reward_ledger(per_token)
        run.reward_ledgers[tok] = ledger
        log_event(_log, "token_summary", token=tok, **summarize(per_token))
        if commit:
            run.commitments[tok] = build_commitment(ledger, leaf_count)
    return run


def write_run(run: DistributionRun, out_dir: str | Path) -> List[Path]:
    written = write_files_atomically(run.output_files(Path(out_dir)))
    log_event(_log, "outputs_written", files=[str(p) for p in written])
    return written


def commit_reward_ledger(entries: Sequence[RewardEntry], out_dir: str | Path, *, leaf_count: int = DEPLOYED_LEAF_COUNT) -> Commitment:
    """Build the commitment for an existing reward ledger and write tree.json + claims.json."""
    c = build_commitment(entries, leaf_count)
    d = Path(out_dir)
    written = write_files_atomically({d / "tree.json": dumps_json(c.dump()), d / "claims.json": dumps_json(c.claims())})
    log_event(_log, "outputs_written", files=[str(p) for p in written])
    return c
