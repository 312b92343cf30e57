# src/snapdrop/ledger/checkpoints.py
from __future__ import annotations

import logging
import math
import random
from typing import Any, Dict, Iterable, List, Optional

from snapdrop.ledger.constants import CHECKPOINTS_PER_DAY, DEFAULT_BLOCK_TIME_SECONDS, SECONDS_PER_DAY
from snapdrop.ledger.types import Checkpoint
from snapdrop.runtime.errors import invalid_input
from snapdrop.util.structured_logging import log_event

Json = Dict[str, Any]

_log = logging.getLogger("snapdrop.checkpoints")


def index_checkpoints(raw: Iterable[Json]) -> List[Checkpoint]:
    """Assign positional indices to snapshot entries ({blockNumber, timestamp, day})."""
    out: List[Checkpoint] = []
    for pos, it in enumerate(raw):
        day = it.get("day")
        out.append(
            Checkpoint(
                block_number=int(it["blockNumber"]),
                timestamp=int(it.get("timestamp") or 0),
                index=pos,
                day=None if day is None else int(day),
            )
        )
    return out


def blocks_per_day(block_time_seconds: int = DEFAULT_BLOCK_TIME_SECONDS) -> int:
    bt = int(block_time_seconds)
    if bt <= 0 or SECONDS_PER_DAY % bt != 0:
        raise invalid_input("block_time_must_divide_day", {"block_time_seconds": block_time_seconds})
    return SECONDS_PER_DAY // bt


def generate_checkpoints(
    start_block: int,
    end_block: int,
    *,
    block_time_seconds: int = DEFAULT_BLOCK_TIME_SECONDS,
    rng: Optional[random.Random] = None,
) -> List[Checkpoint]:
    """Draw CHECKPOINTS_PER_DAY distinct random blocks from each day-sized window.

    The range [start_block, end_block] is inclusive and is cut into windows of
    blocks_per_day() blocks; the last window may be short. A one-block window yields
    a single checkpoint. Timestamps are left at 0 for the caller to fill in.
    """
    start = int(start_block)
    end = int(end_block)
    if start < 0 or end < start:
        raise invalid_input("invalid_block_range", {"start_block": start_block, "end_block": end_block})

    per_day = blocks_per_day(block_time_seconds)
    r = rng or random.Random()
    total_days = math.ceil((end - start + 1) / per_day)

    out: List[Checkpoint] = []
    for day in range(total_days):
        lo = start + day * per_day
        hi = min(lo + per_day - 1, end)
        k = min(CHECKPOINTS_PER_DAY, hi - lo + 1)
        for block in r.sample(range(lo, hi + 1), k):
            out.append(Checkpoint(block_number=block, timestamp=0, index=len(out), day=day + 1))

    log_event(_log, "checkpoints_generated", start_block=start, end_block=end, days=total_days, checkpoints=len(out))
    return out
