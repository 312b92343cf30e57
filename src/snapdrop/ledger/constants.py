# src/snapdrop/ledger/constants.py
from __future__ import annotations

"""Distribution constants.

Anchors:
- Reward quantities use the 18-decimal token convention
- Leaf/reward values live in the uint256 domain of the on-chain verifier
- The deployed verifier is compiled against a 256-leaf tree (depth 8)
"""

# Mints are transfers whose sender is the zero address
ZERO_ADDRESS: str = "0x" + "0" * 40

# uint256 bound shared by balances, rewards and leaf fields
UINT256_MAX: int = 2**256 - 1

# Token precision (1 token = 1e18 base units)
REWARD_DECIMALS: int = 18
REWARD_SCALE: int = 10**REWARD_DECIMALS

# Fixed tree shape of the deployed verifier
DEPLOYED_LEAF_COUNT: int = 256

# Default chain cadence used for checkpoint sampling (seconds per block)
DEFAULT_BLOCK_TIME_SECONDS: int = 2
SECONDS_PER_DAY: int = 86_400

# Checkpoints drawn per sampled day
CHECKPOINTS_PER_DAY: int = 2
