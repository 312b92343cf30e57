from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class SnapdropError(Exception):
    """Canonical error type for distribution runs.

    Every failure is fatal for the run: there is no retry and no partial output.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class InputValidationError(SnapdropError):
    """Malformed input: records, checkpoints, reward rows, leaf counts."""


class ArithmeticOverflowError(SnapdropError):
    """A value left the uint256 domain."""


class ConsistencyError(SnapdropError):
    """Programming-logic violation detected by an internal assertion."""


def invalid_input(reason: str, details: Any | None = None) -> InputValidationError:
    return InputValidationError("invalid_input", reason, details)


def overflow(reason: str, details: Any | None = None) -> ArithmeticOverflowError:
    return ArithmeticOverflowError("uint256_overflow", reason, details)


def inconsistent(reason: str, details: Any | None = None) -> ConsistencyError:
    return ConsistencyError("consistency", reason, details)


__all__ = [
    "SnapdropError",
    "InputValidationError",
    "ArithmeticOverflowError",
    "ConsistencyError",
    "invalid_input",
    "overflow",
    "inconsistent",
]
