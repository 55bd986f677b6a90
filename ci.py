#!/usr/bin/env python3
"""
CI script for ghc-lib: build the ghc-lib and ghc-lib-parser tarballs.

Run from the root of a ghc-lib checkout, e.g. ``python ci.py --ghc-flavor ghc-8.10.1``.
"""
import sys
from pathlib import Path

# Add project root to path to allow importing core
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from ghclib_ci.cli import main


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
