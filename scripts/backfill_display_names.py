#!/usr/bin/env python3
"""
displayName backfill — adds or corrects the cached displayName on every
works / questions document.

  python scripts/backfill_display_names.py --dry-run
  python scripts/backfill_display_names.py --verify

Same as `shaka-sync backfill`; see shaka_sync/cli.py for all flags.
"""
import sys

from shaka_sync.cli import main

if __name__ == "__main__":
    sys.exit(main(["backfill", *sys.argv[1:]]))
