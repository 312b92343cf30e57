# src/snapdrop/runtime/run_config.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from snapdrop.ledger.constants import DEFAULT_BLOCK_TIME_SECONDS, DEPLOYED_LEAF_COUNT, REWARD_DECIMALS

Json = Dict[str, Any]


def _as_int(v: Any, default: int) -> int:
    if v is None or (isinstance(v, str) and not v.strip()):
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise ValueError(f"expected an integer, got {v!r}") from e


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


@dataclass(frozen=True)
class RunConfig:
    # Root for per-token output directories.
    output_dir: str
    # JSON Lines transfer log produced by the indexer step.
    transfers_path: str

    leaf_count: int
    reward_decimals: int
    block_time_seconds: int

    network: str
    data_source: str

    log_level: str


_ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_ENV_KEYS = {
    "output_dir": "SNAPDROP_OUTPUT_DIR",
    "transfers_path": "SNAPDROP_TRANSFERS_PATH",
    "leaf_count": "SNAPDROP_LEAF_COUNT",
    "reward_decimals": "SNAPDROP_REWARD_DECIMALS",
    "block_time_seconds": "SNAPDROP_BLOCK_TIME_SECONDS",
    "network": "SNAPDROP_NETWORK",
    "data_source": "SNAPDROP_DATA_SOURCE",
    "log_level": "SNAPDROP_LOG_LEVEL",
}


def validate_run_config(cfg: RunConfig) -> None:
    """Fail-fast validation: a bad shape or scale silently corrupts every reward."""

    for name, p in (("output_dir", cfg.output_dir), ("transfers_path", cfg.transfers_path)):
        if not isinstance(p, str) or not p.strip():
            raise ValueError(f"{name} must be a non-empty string")

    n = int(cfg.leaf_count)
    if n <= 0 or (n & (n - 1)) != 0:
        raise ValueError(f"leaf_count must be a positive power of two; got: {cfg.leaf_count}")

    if not 0 <= int(cfg.reward_decimals) <= 36:
        raise ValueError(f"reward_decimals must be 0..36; got: {cfg.reward_decimals}")

    bt = int(cfg.block_time_seconds)
    if bt <= 0 or 86_400 % bt != 0:
        raise ValueError(f"block_time_seconds must divide a day; got: {cfg.block_time_seconds}")

    if str(cfg.log_level).strip().upper() not in _ALLOWED_LOG_LEVELS:
        raise ValueError(f"log_level must be one of {sorted(_ALLOWED_LOG_LEVELS)}; got: {cfg.log_level!r}")


def default_run_config() -> RunConfig:
    return RunConfig(
        output_dir="./output",
        transfers_path="./data/transfers.dat",
        leaf_count=DEPLOYED_LEAF_COUNT,
        reward_decimals=REWARD_DECIMALS,
        block_time_seconds=DEFAULT_BLOCK_TIME_SECONDS,
        network="Base",
        data_source="Hypersync",
        log_level="INFO",
    )


def _merge(base: RunConfig, raw: Json) -> RunConfig:
    return RunConfig(
        output_dir=_as_str(raw.get("output_dir"), base.output_dir),
        transfers_path=_as_str(raw.get("transfers_path"), base.transfers_path),
        leaf_count=_as_int(raw.get("leaf_count"), base.leaf_count),
        reward_decimals=_as_int(raw.get("reward_decimals"), base.reward_decimals),
        block_time_seconds=_as_int(raw.get("block_time_seconds"), base.block_time_seconds),
        network=_as_str(raw.get("network"), base.network),
        data_source=_as_str(raw.get("data_source"), base.data_source),
        log_level=_as_str(raw.get("log_level"), base.log_level).strip().upper(),
    )


def read_run_config_file(path: str, base: Optional[RunConfig] = None) -> RunConfig:
    """Read a YAML (or JSON, which YAML accepts) config file over `base`."""
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError("run config must be a mapping")
    unknown = sorted(set(raw) - set(_ENV_KEYS))
    if unknown:
        raise ValueError(f"unknown run config keys: {unknown}")
    return _merge(base or default_run_config(), raw)


def env_overrides() -> Json:
    out: Json = {}
    for field, env in _ENV_KEYS.items():
        v = os.environ.get(env)
        if v is not None and v.strip():
            out[field] = v
    return out


def load_run_config(*, config_path: Optional[str] = None, **overrides: Any) -> RunConfig:
    """defaults <- config file <- SNAPDROP_* env <- explicit overrides (e.g. CLI flags)."""
    cfg = default_run_config()
    p = config_path or os.environ.get("SNAPDROP_CONFIG_PATH")
    if p:
        cfg = read_run_config_file(p, cfg)
    cfg = _merge(cfg, env_overrides())
    explicit = {k: v for k, v in overrides.items() if v is not None}
    if explicit:
        cfg = replace(cfg, **explicit)
    validate_run_config(cfg)
    return cfg
