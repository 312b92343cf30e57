# src/snapdrop/__init__.py
"""
snapdrop: time-weighted token balance rewards with a Merkle commitment.

Packages:
  - ledger: typed records, ledger replay, proportions/rewards, checkpoint sampling
  - commit: leaf encoding + Merkle tree/proofs matching the on-chain verifier
  - io: file schemas and codecs (transfers JSONL, snapshot JSON, rewards CSV, tree JSON)
  - runtime: errors, invariants, run config, end-to-end pipeline
"""

from __future__ import annotations

__version__ = "0.1.0"
