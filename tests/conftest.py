"""
tests/conftest.py — Shared fixtures

The sample program under config/ (12 fellows, 4 per tier, full rotation
table) is loaded through the real loaders.  The full-year build is expensive,
so it runs once per session with a fixed seed.
"""

import random
import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fellow_roster.academic_calendar import AcademicYear
from fellow_roster.call_engine import build_call_schedule
from fellow_roster.config import load_roster, load_rotation_schedule
from fellow_roster.eligibility import RosterContext
from fellow_roster.schedule_config import RuleConfiguration
from fellow_roster.vacation import apply_vacations, merge_assignments, solve_all_vacations

YEAR_START = date(2025, 7, 1)
SEED = 11


@pytest.fixture(scope="session")
def fellows():
    return load_roster()


@pytest.fixture(scope="session")
def rotations():
    return load_rotation_schedule()


@pytest.fixture(scope="session")
def year():
    return AcademicYear(YEAR_START)


@pytest.fixture(scope="session")
def rules():
    return RuleConfiguration()


@pytest.fixture(scope="session")
def ctx(fellows, rotations, year, rules):
    return RosterContext(fellows, rotations, year, rules)


@pytest.fixture(scope="session")
def vacation_results(ctx):
    return solve_all_vacations(ctx, random.Random(SEED))


@pytest.fixture(scope="session")
def scheduled_ctx(ctx, vacation_results):
    """Context whose rotation table carries the solved vacation blocks."""
    return ctx.with_rotations(apply_vacations(ctx.rotations, merge_assignments(vacation_results)))


@pytest.fixture(scope="session")
def call_result(scheduled_ctx):
    return build_call_schedule(scheduled_ctx, rng=random.Random(SEED))
