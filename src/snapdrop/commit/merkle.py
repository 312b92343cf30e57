# src/snapdrop/commit/merkle.py
from __future__ import annotations

"""Merkle commitment over the reward ledger.

Leaf:  keccak256(abi.encodePacked(uint256 index, uint256 account, uint256 reward))
Node:  keccak256(abi.encodePacked(min(a, b), max(a, b)))

Nodes are stored in the flat array layout of OpenZeppelin's SimpleMerkleTree: the
root at 0, children of i at 2i+1 and 2i+2, and leaf i at len(tree) - 1 - i. With
sorted-pair node hashing, a proof is just the list of sibling hashes from leaf to
root, and a verifier never needs to know whether a node was a left or right child.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from eth_abi.packed import encode_packed
from eth_utils import keccak

from snapdrop.ledger.constants import DEPLOYED_LEAF_COUNT
from snapdrop.ledger.types import RewardEntry, address_to_int
from snapdrop.runtime.errors import invalid_input
from snapdrop.runtime.state_invariants import check_uint256
from snapdrop.util.structured_logging import log_event

Json = Dict[str, Any]

LEAF_ENCODING = "keccak256(abi.encodePacked(uint256 index, uint256 account, uint256 reward))"
NODE_HASH = "keccak256(abi.encodePacked(sort(left, right)))"
DUMP_FORMAT = "simple-v1"

_log = logging.getLogger("snapdrop.merkle")


def to_hex(b: bytes) -> str:
    return "0x" + b.hex()


def from_hex(s: str) -> bytes:
    h = s[2:] if s.startswith(("0x", "0X")) else s
    try:
        out = bytes.fromhex(h)
    except ValueError as e:
        raise invalid_input("malformed_hash", {"value": s}) from e
    if len(out) != 32:
        raise invalid_input("hash_must_be_32_bytes", {"value": s})
    return out


def encode_leaf(index: int, account: str, reward: int) -> bytes:
    """The 96-byte packed payload of one leaf."""
    return encode_packed(
        ["uint256", "uint256", "uint256"],
        [
            check_uint256(index, field="index"),
            address_to_int(account),
            check_uint256(reward, field="reward"),
        ],
    )


def leaf_hash(index: int, account: str, reward: int) -> bytes:
    return keccak(encode_leaf(index, account, reward))


def node_hash(a: bytes, b: bytes) -> bytes:
    return keccak(a + b) if a <= b else keccak(b + a)


def process_proof(leaf: bytes, proof: Sequence[bytes]) -> bytes:
    h = leaf
    for sib in proof:
        h = node_hash(h, sib)
    return h


def verify_proof(leaf: bytes, proof: Sequence[bytes], root: bytes) -> bool:
    return process_proof(leaf, proof) == root


def _is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def _order_entries(entries: Sequence[RewardEntry], leaf_count: int) -> List[RewardEntry]:
    if len(entries) != leaf_count:
        raise invalid_input("leaf_count_mismatch", {"expected": leaf_count, "got": len(entries)})
    by_index: Dict[int, RewardEntry] = {}
    for e in entries:
        i = int(e.index)
        if i < 0 or i >= leaf_count:
            raise invalid_input("leaf_index_out_of_range", {"index": i, "leaf_count": leaf_count})
        if i in by_index:
            raise invalid_input("duplicate_leaf_index", {"index": i})
        by_index[i] = e
    return [by_index[i] for i in range(leaf_count)]


@dataclass(frozen=True)
class Commitment:
    entries: List[RewardEntry]
    leaves: List[bytes]
    tree: List[bytes]

    @property
    def root(self) -> bytes:
        return self.tree[0]

    @property
    def root_hex(self) -> str:
        return to_hex(self.root)

    def tree_index(self, index: int) -> int:
        i = int(index)
        if i < 0 or i >= len(self.leaves):
            raise invalid_input("leaf_index_out_of_range", {"index": i, "leaf_count": len(self.leaves)})
        return len(self.tree) - 1 - i

    def proof(self, index: int) -> List[bytes]:
        """Sibling hashes from leaf `index` up to (not including) the root."""
        out: List[bytes] = []
        t = self.tree_index(index)
        while t > 0:
            sibling = t + 1 if t % 2 == 1 else t - 1
            out.append(self.tree[sibling])
            t = (t - 1) // 2
        return out

    def proofs(self) -> Dict[int, List[bytes]]:
        return {e.index: self.proof(e.index) for e in self.entries}

    def dump(self) -> Json:
        """OpenZeppelin SimpleMerkleTree dump (loadable with SimpleMerkleTree.load)."""
        return {
            "format": DUMP_FORMAT,
            "tree": [to_hex(h) for h in self.tree],
            "values": [{"value": to_hex(h), "treeIndex": self.tree_index(i)} for i, h in enumerate(self.leaves)],
        }

    def claims(self) -> Json:
        return {
            "root": self.root_hex,
            "leafCount": len(self.leaves),
            "leafEncoding": LEAF_ENCODING,
            "nodeHash": NODE_HASH,
            "tokenTotal": str(sum(e.reward for e in self.entries)),
            "claims": [
                {
                    "index": e.index,
                    "account": e.account,
                    "reward": str(e.reward),
                    "leaf": to_hex(self.leaves[e.index]),
                    "proof": [to_hex(p) for p in self.proof(e.index)],
                }
                for e in self.entries
            ],
        }


def build_commitment(entries: Sequence[RewardEntry], leaf_count: int = DEPLOYED_LEAF_COUNT) -> Commitment:
    """Build the commitment over exactly `leaf_count` entries.

    Entries are placed by their own index; they are never padded, truncated or
    sorted by hash. Zero rewards are allowed.

    Raises:
        InputValidationError: wrong entry count, bad indices, non power-of-two shape
        ArithmeticOverflowError: a reward outside uint256
    """
    n = int(leaf_count)
    if not _is_power_of_two(n):
        raise invalid_input("leaf_count_not_power_of_two", {"leaf_count": leaf_count})

    ordered = _order_entries(entries, n)
    leaves = [leaf_hash(e.index, e.account, e.reward) for e in ordered]

    tree: List[bytes] = [b""] * (2 * n - 1)
    for i, h in enumerate(leaves):
        tree[len(tree) - 1 - i] = h
    for t in range(len(tree) - 1 - n, -1, -1):
        tree[t] = node_hash(tree[2 * t + 1], tree[2 * t + 2])

    c = Commitment(entries=ordered, leaves=leaves, tree=tree)
    log_event(_log, "commitment_built", leaf_count=n, root=c.root_hex)
    return c


__all__ = [
    "Commitment",
    "LEAF_ENCODING",
    "NODE_HASH",
    "build_commitment",
    "encode_leaf",
    "leaf_hash",
    "node_hash",
    "process_proof",
    "verify_proof",
    "to_hex",
    "from_hex",
]
