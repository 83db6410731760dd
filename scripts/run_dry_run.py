#!/usr/bin/env python3
"""
Dry Run - Generate a full academic-year roster (vacations, call, HF, clinics)

Usage:
  python scripts/run_dry_run.py --year-start 2025-07-01 --seed 7

Outputs to outputs/ directory.
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fellow_roster.dry_run import main

if __name__ == "__main__":
    main()
