"""
tests/test_eligibility_vacation.py — Eligibility pools and the vacation solver
"""

import random
import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fellow_roster.eligibility import (
    WEEKDAY,
    WEEKEND_HOLIDAY,
    build_eligibility_pools,
    ineligibility_reasons,
    pick_weighted,
    primary_rotation,
    spacing_conflicts,
)
from fellow_roster.models import Fellow, VACATION
from fellow_roster.schedule_config import RuleConfiguration
from fellow_roster.vacation import (
    allowed_blocks,
    apply_vacations,
    candidate_options,
    solve_vacations,
    vacation_preference_errors,
    vacation_usage,
)


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

class TestIneligibilityReasons:

    def test_junior_before_start(self, ctx):
        reasons = ineligibility_reasons(ctx.fellow("f01"), date(2025, 8, 1), ctx)
        assert "PGY-4 fellows do not take call before 2025-08-15" in reasons

    def test_vacation(self, ctx):
        reasons = ineligibility_reasons(ctx.fellow("f01"), date(2025, 9, 3), ctx)
        assert any("on vacation" in r for r in reasons)

    def test_hf_rotation_excluded(self, ctx):
        reasons = ineligibility_reasons(ctx.fellow("f01"), date(2026, 2, 4), ctx)
        assert any("HF rotation" in r for r in reasons)

    def test_ep_weekday_exclusion(self, ctx):
        # f01 is on EP in DEC1; 2025-12-02 is a Tuesday
        reasons = ineligibility_reasons(ctx.fellow("f01"), date(2025, 12, 2), ctx)
        assert "EP rotation excludes Tuesday call" in reasons

    def test_night_before_specialty_clinic(self, ctx):
        # f05 is on LAC_CATH in SEP2, so staffs ACHD on Monday 2025-09-22
        reasons = ineligibility_reasons(ctx.fellow("f05"), date(2025, 9, 21), ctx)
        assert "Emery Garcia has ACHD clinic on 2025-09-22" in reasons

    def test_eligible_day_has_no_reasons(self, ctx):
        assert ineligibility_reasons(ctx.fellow("f01"), date(2025, 10, 3), ctx) == []


class TestEligibilityPools:

    def test_weekend_after_junior_start_is_exclusive(self, ctx):
        pools = build_eligibility_pools(date(2025, 10, 4), ctx)
        assert pools.priority == ["PGY-4"]
        assert pools.junior_exclusive
        assert pools.fallback_candidates() == []

    def test_weekend_before_junior_start(self, ctx):
        pools = build_eligibility_pools(date(2025, 7, 12), ctx)
        assert pools.priority == ["PGY-5", "PGY-6"]
        assert not pools.junior_exclusive
        assert pools.pools["PGY-4"] == []

    def test_weekday_priority_drops_junior_before_start(self, ctx):
        pools = build_eligibility_pools(date(2025, 7, 9), ctx)   # Wednesday
        assert pools.priority == ["PGY-5", "PGY-6"]

    def test_weekday_priority_after_start(self, ctx):
        pools = build_eligibility_pools(date(2025, 10, 2), ctx)  # Thursday
        assert pools.priority == ["PGY-6", "PGY-4", "PGY-5"]

    def test_friday_holiday_is_weekend_for_equity(self, ctx):
        assert ctx.equity_category(date(2025, 7, 4)) == WEEKEND_HOLIDAY
        assert ctx.equity_category(date(2025, 7, 11)) == WEEKDAY

    def test_primary_rotation(self):
        assert primary_rotation("ELECTIVE (NUCLEAR)") == "NUCLEAR"
        assert primary_rotation("CCU") == "CCU"
        assert primary_rotation(None) is None


class TestPrimitives:

    def test_spacing_conflicts_both_directions(self):
        days = {"2025-10-01": "f01", "2025-10-08": "f01"}
        assert spacing_conflicts("f01", date(2025, 10, 3), days, 4) == [date(2025, 10, 1)]
        assert spacing_conflicts("f01", date(2025, 10, 6), days, 4) == [date(2025, 10, 8)]
        assert spacing_conflicts("f01", date(2025, 10, 5), {"2025-10-01": "f01"}, 4) == []
        assert spacing_conflicts("f02", date(2025, 10, 2), days, 4) == []

    def test_pick_weighted(self, fellows):
        rng = random.Random(3)
        assert pick_weighted([], {}, rng) is None
        picks = {pick_weighted(fellows[:3], {"f01": 50, "f02": 50, "f03": 0}, rng).id for _ in range(200)}
        assert "f03" in picks

    def test_pick_weighted_favours_low_counts(self, fellows):
        rng = random.Random(5)
        counts = {"f01": 99, "f02": 0}
        picks = [pick_weighted(fellows[:2], counts, rng).id for _ in range(500)]
        assert picks.count("f02") > picks.count("f01") * 10


# ---------------------------------------------------------------------------
# Vacation solver
# ---------------------------------------------------------------------------

def _vac_blocks(rotations, fid):
    return sorted(k for k, r in rotations[fid].items() if r == VACATION)


class TestVacationCandidates:

    def test_july_and_junior_august_excluded(self, ctx):
        junior = allowed_blocks(ctx.fellow("f01"), ctx.year, ctx.rules)
        senior = allowed_blocks(ctx.fellow("f11"), ctx.year, ctx.rules)
        assert not any(k.startswith("JUL") for k in junior + senior)
        assert not any(k.startswith("AUG") for k in junior)
        assert "AUG1" in senior

    def test_best_option_is_preferred_pair(self, ctx):
        options = candidate_options(ctx.fellow("f01"), ctx.year, ctx.rules)
        assert options[0] == ("SEP1", "JAN1")
        for a, b in options:
            assert ctx.year.block_index(b) - ctx.year.block_index(a) >= 6

    def test_sample_preferences_are_valid(self, ctx):
        for f in ctx.fellows:
            assert vacation_preference_errors(f, ctx.year, ctx.rules) == [], f.name

    def test_preference_errors(self, ctx):
        bad = Fellow("x", "Bad Prefs", "PGY-4", ("JAN1", "AUG1", "JUL1"))
        errors = vacation_preference_errors(bad, ctx.year, ctx.rules)
        assert any("expected 4" in e for e in errors)
        assert any("AUG1 is not available" in e for e in errors)
        assert any("must fall in Jul–Dec" in e for e in errors)


class TestVacationSolver:

    def test_all_tiers_succeed(self, vacation_results):
        assert list(vacation_results) == ["PGY-4", "PGY-5", "PGY-6"]
        for tier, result in vacation_results.items():
            assert result.success, f"{tier}: {result.diagnostics}"

    def test_reproduces_sample_vacations(self, ctx, scheduled_ctx):
        for f in ctx.fellows:
            assert _vac_blocks(scheduled_ctx.rotations, f.id) == _vac_blocks(ctx.rotations, f.id), f.id

    def test_spacing_and_capacity(self, ctx, vacation_results):
        for result in vacation_results.values():
            for fid, blocks in result.assignments.items():
                assert len(blocks) == 2
                idx = sorted(ctx.year.block_index(k) for k in blocks)
                assert idx[1] - idx[0] >= ctx.rules.vacation.min_spacing_blocks
        usage = vacation_results["PGY-6"].block_usage
        assert max(usage.values()) <= ctx.rules.vacation.max_total_per_block

    def test_saturated_blocks_reported(self, ctx):
        fellows = ctx.fellows_in_tier("PGY-5")
        full = {b.key: 2 for b in ctx.year.blocks if b.key != "SEP1"}
        result = solve_vacations(fellows, ctx.year, ctx.rules, full, random.Random(1))
        assert not result.success
        assert any("saturated" in d for d in result.diagnostics)
        for blocks in result.assignments.values():
            assert set(blocks) <= {"SEP1"}

    def test_single_vacation_mode(self, ctx):
        rules = RuleConfiguration.from_dict({"vacation": {"max_vacations_per_year": 1}})
        result = solve_vacations(ctx.fellows_in_tier("PGY-4"), ctx.year, rules, rng=random.Random(2))
        assert result.success
        assert result.assignments["f01"] == ["SEP1"]

    def test_try_ceiling_returns_partial_result(self, ctx):
        rules = RuleConfiguration.from_dict({"vacation": {"max_tries_per_attempt": 1}})
        juniors = ctx.fellows_in_tier("PGY-4")
        result = solve_vacations(juniors, ctx.year, rules, rng=random.Random(3))

        assert not result.success
        assert result.timed_out
        assert any(d.startswith("Search limit reached (1 tries") for d in result.diagnostics)
        assert sorted(result.assignments) == ["f01", "f02", "f03", "f04"]
        assert all(result.assignments.values())

    def test_overall_deadline_returns_partial_result(self, ctx):
        rules = RuleConfiguration.from_dict({"vacation": {"timeout_seconds": 0}})
        result = solve_vacations(ctx.fellows_in_tier("PGY-5"), ctx.year, rules, rng=random.Random(3))

        assert not result.success
        assert result.timed_out
        assert any("Search limit reached" in d for d in result.diagnostics)
        assert sorted(result.assignments) == ["f05", "f06", "f07", "f08"]

    def test_apply_vacations_restores_elective(self, rotations):
        updated = apply_vacations(rotations, {"f01": ["SEP2", "FEB1"]})
        assert updated["f01"]["SEP1"] == "ELECTIVE"
        assert updated["f01"]["SEP2"] == VACATION
        assert rotations["f01"]["SEP1"] == VACATION, "input table must not be mutated"

    def test_vacation_usage(self, rotations):
        usage = vacation_usage(rotations)
        assert sum(usage.values()) == 24
        assert usage["SEP1"] == 2
