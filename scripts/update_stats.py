#!/usr/bin/env python3
"""
Recount each user's works / questions and fix users/{uid}.stats on mismatch.

  python scripts/update_stats.py [--dry-run]
"""
import sys

from shaka_sync.cli import main

if __name__ == "__main__":
    sys.exit(main(["update-stats", *sys.argv[1:]]))
