# src/snapdrop/cli.py
from __future__ import annotations

import argparse
import json
import logging
import random
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from snapdrop.commit.merkle import from_hex, leaf_hash, process_proof, to_hex
from snapdrop.env import load_dotenv_if_present
from snapdrop.io.codec import dumps_json, read_rewards_csv, read_snapshots, read_transfers, snapshot_document, write_files_atomically
from snapdrop.ledger.checkpoints import generate_checkpoints
from snapdrop.ledger.replay import merge_records
from snapdrop.ledger.types import parse_address
from snapdrop.runtime.errors import SnapdropError, invalid_input
from snapdrop.runtime.pipeline import commit_reward_ledger, run_distribution, write_run
from snapdrop.runtime.run_config import RunConfig, load_run_config
from snapdrop.util.structured_logging import configure_structured_logging, log_event

Json = Dict[str, Any]

_log = logging.getLogger("snapdrop.cli")


def _load_claims(path: str) -> Json:
    p = Path(path)
    if not p.is_file():
        raise invalid_input("file_not_found", {"path": str(p)})
    try:
        doc = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise invalid_input("invalid_json", {"path": str(p), "error": str(e)}) from e
    if not isinstance(doc, dict) or not isinstance(doc.get("claims"), list):
        raise invalid_input("malformed_claims_file", {"path": str(p)})
    return doc


def _find_claim(doc: Json, *, index: Optional[int], address: Optional[str]) -> Json:
    addr = parse_address(address) if address else None
    for c in doc["claims"]:
        if not isinstance(c, dict):
            raise invalid_input("malformed_claim", {"claim": c})
        if index is not None and str(c.get("index")) == str(index):
            return c
        if addr is not None and c.get("account") == addr:
            return c
    raise invalid_input("claim_not_found", {"index": index, "address": address})


def _claim_leaf(claim: Json) -> Tuple[bytes, List[bytes]]:
    """Recompute a claim's leaf and decode its proof; malformed fields are input errors."""
    try:
        index = int(claim["index"])
        account = str(claim["account"])
        reward = int(claim["reward"])
        proof = [str(p) for p in claim.get("proof", [])]
    except (KeyError, TypeError, ValueError) as e:
        raise invalid_input("malformed_claim", {"claim": claim, "error": str(e)}) from e
    return leaf_hash(index, account, reward), [from_hex(p) for p in proof]


def cmd_checkpoints(args: argparse.Namespace, cfg: RunConfig) -> int:
    rng = random.Random(args.seed) if args.seed is not None else None
    cps = generate_checkpoints(args.start_block, args.end_block, block_time_seconds=cfg.block_time_seconds, rng=rng)
    doc = snapshot_document(cps, network=cfg.network, data_source=cfg.data_source)
    write_files_atomically({Path(args.out): dumps_json(doc)})
    print(f"Generated {len(cps)} checkpoints -> {args.out}")
    return 0


def cmd_process(args: argparse.Namespace, cfg: RunConfig) -> int:
    checkpoints = read_snapshots(args.snapshots)
    paths = [cfg.transfers_path] + list(args.transfers or [])[1:]
    records = merge_records(*(read_transfers(p) for p in paths))
    run = run_distribution(
        records,
        checkpoints,
        token=args.token,
        distribution_amount=args.amount,
        decimals=cfg.reward_decimals,
        commit=args.commit,
        leaf_count=cfg.leaf_count,
    )
    write_run(run, cfg.output_dir)

    for token, per_token in run.results.items():
        print(f"Token {token}: {len(per_token)} eligible accounts")
        if token in run.commitments:
            print(f"  Merkle root: {run.commitments[token].root_hex}")
    return 0


def cmd_merkle(args: argparse.Namespace, cfg: RunConfig) -> int:
    entries = read_rewards_csv(args.csv)
    out_dir = args.out or str(Path(args.csv).parent)
    c = commit_reward_ledger(entries, out_dir, leaf_count=cfg.leaf_count)
    print("Merkle root:", c.root_hex)
    return 0


def cmd_proof(args: argparse.Namespace, cfg: RunConfig) -> int:
    doc = _load_claims(args.claims)
    claim = _find_claim(doc, index=args.index, address=args.address)
    print(json.dumps(claim, indent=2))
    return 0


def cmd_verify(args: argparse.Namespace, cfg: RunConfig) -> int:
    doc = _load_claims(args.claims)
    claim = _find_claim(doc, index=args.index, address=args.address)
    leaf, proof = _claim_leaf(claim)
    root = process_proof(leaf, proof)
    ok = to_hex(root) == str(doc.get("root", "")).lower()
    print("Valid proof:", ok)
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="snapdrop", description="Time-averaged balance rewards with a Merkle commitment")
    ap.add_argument("--config", default=None, help="YAML/JSON run config (else SNAPDROP_CONFIG_PATH)")
    ap.add_argument("--log-level", default=None)
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("checkpoints", help="sample two random checkpoint blocks per day")
    p.add_argument("--start-block", type=int, required=True)
    p.add_argument("--end-block", type=int, required=True)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--out", default="snapshot.json")
    p.set_defaults(func=cmd_checkpoints)

    p = sub.add_parser("process", help="replay transfers and compute proportions/rewards")
    p.add_argument("snapshots", help="snapshot JSON file")
    p.add_argument("--token", default=None, help="only this token (default: every token)")
    p.add_argument("--amount", default=None, help="distribution amount in whole tokens")
    p.add_argument(
        "--transfers",
        action="append",
        default=None,
        help="transfers JSONL (overrides config); repeat to merge ordered streams, e.g. transfers and deposits",
    )
    p.add_argument("--out", default=None, help="output root (overrides config)")
    p.add_argument("--commit", action="store_true", help="also build the Merkle commitment")
    p.set_defaults(func=cmd_process)

    p = sub.add_parser("merkle", help="build tree.json and claims.json from rewards.csv")
    p.add_argument("csv")
    p.add_argument("--out", default=None, help="output directory (default: next to the CSV)")
    p.set_defaults(func=cmd_merkle)

    for name, func, text in (
        ("proof", cmd_proof, "print the claim and proof for one leaf"),
        ("verify", cmd_verify, "recompute a claim's leaf and check its proof against the root"),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("--claims", default="claims.json")
        g = p.add_mutually_exclusive_group(required=True)
        g.add_argument("--index", type=int)
        g.add_argument("--address")
        p.set_defaults(func=func)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv_if_present()
    args = build_parser().parse_args(argv)

    try:
        cfg = load_run_config(
            config_path=args.config,
            log_level=args.log_level.upper() if args.log_level else None,
            transfers_path=(getattr(args, "transfers", None) or [None])[0],
            output_dir=getattr(args, "out", None) if args.cmd == "process" else None,
        )
    except (OSError, ValueError) as e:
        configure_structured_logging()
        log_event(_log, "run_failed", level=logging.ERROR, cmd=args.cmd, code="invalid_config", reason=str(e))
        return 2

    configure_structured_logging(cfg.log_level)
    try:
        return int(args.func(args, cfg))
    except SnapdropError as e:
        log_event(_log, "run_failed", level=logging.ERROR, cmd=args.cmd, code=e.code, reason=e.reason, details=e.details)
        return 1


if __name__ == "__main__":
    sys.exit(main())
