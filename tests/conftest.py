from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

# Ensure local "src/" takes precedence over any globally-installed "snapdrop" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    # The CLI installs a JSONL handler bound to the current (captured) stderr.
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    if hasattr(root, "_snapdrop_configured"):
        delattr(root, "_snapdrop_configured")
