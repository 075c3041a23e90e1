#!/usr/bin/env python3
"""CLI wrapper for running the collector from a checkout.

Usage:
    # Collect the last 3 days
    PYTHONPATH=. python scripts/run_collector.py recent

    # Backfill a date range without exporting
    PYTHONPATH=. python scripts/run_collector.py range --start 2024-09-01 --end 2024-09-07 --no-export
"""
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.delivery_collector.cli import main


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
