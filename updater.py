#!/usr/bin/env python3
"""
Code Updater - keep the editor extension and AI coding CLIs current.

Usage:
    updater.py                    # Detect, choose interactively, update
    updater.py --all              # Update every outdated target
    updater.py --all --all-profiles
    updater.py --status           # Versions only (default when not on a terminal)
"""

import os
import sys

# Add current directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from code_updater.cli import main  # noqa: E402


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
