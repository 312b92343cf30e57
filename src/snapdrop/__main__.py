# src/snapdrop/__main__.py
from __future__ import annotations

import sys

from snapdrop.cli import main

if __name__ == "__main__":
    sys.exit(main())
