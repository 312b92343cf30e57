from __future__ import annotations

"""Wire schemas for the files exchanged with external collaborators.

These are shape checks (types/required keys) applied at parse time. Semantic checks
(uint256 range, ordering, address form) happen when the models are converted into
ledger types, so a malformed address or value is rejected before replay starts.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys."""

    model_config = ConfigDict(extra="forbid")


class _ObjectOnlyModel(BaseModel):
    """Object-only model: keys may evolve."""

    model_config = ConfigDict(extra="allow")


def _int_text(v: Union[int, str]) -> str:
    # bool is an int subclass; disallow it explicitly
    if isinstance(v, bool):
        raise ValueError("bool is not a valid integer")
    if isinstance(v, int):
        return str(v)
    s = str(v).strip()
    body = s[1:] if s.startswith("-") else s
    if not body.isdigit():
        raise ValueError(f"must be a base-10 integer string, got {v!r}")
    return s


class TransferLine(_ObjectOnlyModel):
    """One line of the transfers log (subgraph transfers and deposits merged)."""

    from_: str = Field(alias="from")
    to: str
    tokenAddress: str
    value: str
    blockNumber: int = Field(ge=0)
    timestamp: int = Field(ge=0)

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("value", mode="before")
    @classmethod
    def _value_text(cls, v: Union[int, str]) -> str:
        return _int_text(v)


class SnapshotEntry(_ObjectOnlyModel):
    blockNumber: int = Field(ge=0)
    timestamp: int = Field(default=0, ge=0)
    day: Optional[int] = None


class SnapshotFile(_ObjectOnlyModel):
    snapshots: List[SnapshotEntry] = Field(min_length=1)


class RewardRow(_StrictModel):
    index: int = Field(ge=0)
    address: str
    reward: str

    @field_validator("reward", mode="before")
    @classmethod
    def _reward_text(cls, v: Union[int, str]) -> str:
        return _int_text(v)


__all__ = ["TransferLine", "SnapshotEntry", "SnapshotFile", "RewardRow"]
