"""
tests/test_call_edits.py — Manual call edits: validation, swaps, moves, audits

Edits never mutate their input; a rejected edit hands back the original
schedule object with its reasons.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fellow_roster.call_edits import (
    apply_call_assignment,
    audit_call_counts,
    list_call_candidates,
    junior_weekend_stats,
    move_call_day,
    optimize_junior_weekend_equity,
    repair_call_counts,
    suggest_swaps,
    swap_call_days,
    validate_call_assignment,
    validate_call_changes,
)
from fellow_roster.constraints import CallConstraintChecker
from fellow_roster.eligibility import RosterContext
from fellow_roster.models import CallSchedule
from fellow_roster.schedule_config import RuleConfiguration


@pytest.fixture(scope="module")
def checker(scheduled_ctx):
    return CallConstraintChecker(scheduled_ctx)


def _schedule(days):
    return CallSchedule("2025-07-01").with_days(days)


# ---------------------------------------------------------------------------
# Single assignment
# ---------------------------------------------------------------------------

class TestValidateAssignment:

    def test_spacing_reason(self, checker):
        schedule = _schedule({"2025-10-01": "f01"})
        check = validate_call_assignment(schedule, date(2025, 10, 3), "f01", checker)
        assert not check.ok
        assert check.reasons == [
            "Too close to call on 2025-10-01 (2 days apart; minimum spacing is 4 days)"
        ]

    def test_current_occupant_is_ignored(self, checker):
        schedule = _schedule({"2025-10-03": "f01"})
        assert validate_call_assignment(schedule, "2025-10-03", "f01", checker).ok

    def test_outside_year(self, checker):
        check = validate_call_assignment(_schedule({}), "2026-07-01", "f01", checker)
        assert not check.ok
        assert "outside the academic year" in check.reasons[0]

    def test_unknown_fellow(self, checker):
        check = validate_call_assignment(_schedule({}), "2025-10-03", "nobody", checker)
        assert check.reasons == ["Unknown fellow nobody"]

    def test_reserved_weekend(self, checker):
        check = validate_call_assignment(_schedule({}), "2025-10-04", "f09", checker)
        assert any("reserved for PGY-4" in r for r in check.reasons)

    def test_adjacent_saturday(self, checker):
        schedule = _schedule({"2025-10-04": "f01"})
        check = validate_call_assignment(schedule, "2025-10-11", "f01", checker)
        assert any("adjacent Saturday 2025-10-04" in r for r in check.reasons)

    def test_quota_reason(self, scheduled_ctx):
        rules = RuleConfiguration.from_dict({"primary_call": {"max_calls": {"PGY-4": 1}}})
        ctx = RosterContext(scheduled_ctx.fellows, scheduled_ctx.rotations, scheduled_ctx.year, rules)
        schedule = _schedule({"2025-10-01": "f01"})
        check = validate_call_assignment(schedule, "2025-10-09", "f01", CallConstraintChecker(ctx))
        assert any("annual maximum for PGY-4 is 1" in r for r in check.reasons)


class TestApplyAssignment:

    def test_assign_and_clear(self, checker):
        schedule = _schedule({})
        result = apply_call_assignment(schedule, "2025-10-03", "f01", checker)
        assert result.ok
        assert result.schedule.days == {"2025-10-03": "f01"}
        assert result.schedule.counts_by_fellow["f01"] == 1
        assert schedule.days == {}, "input must not be mutated"

        cleared = apply_call_assignment(result.schedule, "2025-10-03", None, checker)
        assert cleared.ok
        assert cleared.schedule.days == {}

    def test_rejection_returns_original(self, checker):
        schedule = _schedule({"2025-10-01": "f01"})
        result = apply_call_assignment(schedule, "2025-10-02", "f01", checker)
        assert not result.ok
        assert result.schedule is schedule


# ---------------------------------------------------------------------------
# Swaps and moves
# ---------------------------------------------------------------------------

class TestSwapAndMove:

    def test_swap_onto_hf_rotation_rejected(self, checker):
        schedule = _schedule({"2026-01-21": "f01", "2026-02-04": "f05"})
        result = swap_call_days(schedule, "2026-01-21", "2026-02-04", checker)
        assert not result.ok
        assert result.schedule is schedule
        assert any("HF rotation" in r for r in result.reasons)

    def test_swap_needs_two_occupants(self, checker):
        schedule = _schedule({"2025-10-01": "f01"})
        result = swap_call_days(schedule, "2025-10-01", "2025-10-09", checker)
        assert not result.ok
        assert "must have a fellow on call" in result.reasons[0]

    def test_valid_swap(self, checker):
        schedule = _schedule({"2025-10-03": "f01", "2025-10-09": "f03"})
        result = swap_call_days(schedule, "2025-10-03", "2025-10-09", checker)
        assert result.ok, result.reasons
        assert result.schedule.days == {"2025-10-03": "f03", "2025-10-09": "f01"}

    def test_move_to_empty_day(self, checker):
        schedule = _schedule({"2025-10-03": "f01"})
        result = move_call_day(schedule, "2025-10-03", "2025-10-09", checker)
        assert result.ok, result.reasons
        assert result.schedule.days == {"2025-10-09": "f01"}

    def test_move_from_empty_day(self, checker):
        result = move_call_day(_schedule({}), "2025-10-03", "2025-10-09", checker)
        assert not result.ok

    def test_batch_outside_year(self, checker):
        check = validate_call_changes(_schedule({}), {"2024-01-01": "f01"}, checker)
        assert not check.ok


class TestSuggestionsAndCandidates:

    def test_weekend_suggestions_are_junior(self, call_result, checker, scheduled_ctx):
        suggestions = suggest_swaps(call_result.schedule, "2025-10-04", checker, limit=5)
        assert len(suggestions) <= 5
        for s in suggestions:
            assert scheduled_ctx.fellow(s.fellow_id).tier == "PGY-4"
        scores = [s.score for s in suggestions]
        assert scores == sorted(scores, reverse=True)

    def test_suggestions_are_valid_swaps(self, call_result, checker):
        schedule = call_result.schedule
        for s in suggest_swaps(schedule, "2025-10-08", checker, limit=3):
            assert swap_call_days(schedule, "2025-10-08", s.day, checker).ok

    def test_empty_day_has_no_suggestions(self, checker):
        assert suggest_swaps(_schedule({}), "2025-10-08", checker) == []

    def test_candidates_on_reserved_weekend(self, checker, scheduled_ctx):
        candidates = list_call_candidates(_schedule({}), "2025-10-04", checker)
        assert candidates.eligible
        assert all(f.tier == "PGY-4" for f in candidates.eligible)
        assert len(candidates.eligible) + len(candidates.ineligible) == len(scheduled_ctx.fellows)


# ---------------------------------------------------------------------------
# Count audit
# ---------------------------------------------------------------------------

class TestCountAudit:

    def test_built_schedule_is_clean(self, call_result, checker):
        assert audit_call_counts(call_result.schedule, checker).clean

    def test_drift_detected(self, checker):
        schedule = CallSchedule("2025-07-01", {"2025-10-03": "f01"}, {"f01": 4})
        audit = audit_call_counts(schedule, checker)
        assert audit.drift == {"f01": (4, 1)}

    def test_repair_drops_latest_excess(self, scheduled_ctx):
        rules = RuleConfiguration.from_dict({"primary_call": {"max_calls": {"PGY-6": 2}}})
        ctx = RosterContext(scheduled_ctx.fellows, scheduled_ctx.rotations, scheduled_ctx.year, rules)
        checker = CallConstraintChecker(ctx)
        schedule = _schedule({"2025-07-07": "f09", "2025-07-14": "f09", "2025-07-21": "f09"})

        repaired = repair_call_counts(schedule, checker)
        assert repaired.fellow_days("f09") == ["2025-07-07", "2025-07-14"]
        assert repaired.counts_by_fellow["f09"] == 2
        assert repair_call_counts(repaired, checker).days == repaired.days
        assert schedule.fellow_days("f09") == ["2025-07-07", "2025-07-14", "2025-07-21"]


# ---------------------------------------------------------------------------
# Junior weekend / holiday equity
# ---------------------------------------------------------------------------

# f01 holds three weekend days, f04 only weekdays; everyone sits on call-eligible
# rotations in the unsolved table for Oct/Nov 2025.
UNEVEN_JUNIORS = {
    "2025-10-18": "f01", "2025-11-01": "f01", "2025-11-16": "f01",
    "2025-10-25": "f02",
    "2025-10-26": "f03",
    "2025-10-21": "f04", "2025-11-05": "f04", "2025-11-20": "f04",
}


class TestJuniorEquity:

    def test_stats(self, ctx):
        stats = {s.fellow_id: s for s in junior_weekend_stats(_schedule(UNEVEN_JUNIORS), ctx)}
        assert sorted(stats) == ["f01", "f02", "f03", "f04"]
        assert (stats["f01"].weekend_holiday, stats["f01"].total) == (3, 3)
        assert (stats["f04"].weekend_holiday, stats["f04"].total) == (0, 3)

    def test_nearest_swap_evens_the_gap(self, ctx):
        schedule = _schedule(UNEVEN_JUNIORS)
        result = optimize_junior_weekend_equity(schedule, CallConstraintChecker(ctx))

        assert result.swaps_applied == 1
        assert (result.spread_before, result.spread_after) == (3, 1)
        assert result.schedule.days["2025-10-18"] == "f04"
        assert result.schedule.days["2025-10-21"] == "f01"
        assert result.schedule.counts_by_fellow == schedule.counts_by_fellow
        assert schedule.days == UNEVEN_JUNIORS

    def test_max_swaps_zero(self, ctx):
        schedule = _schedule(UNEVEN_JUNIORS)
        result = optimize_junior_weekend_equity(schedule, CallConstraintChecker(ctx), max_swaps=0)
        assert result.swaps_applied == 0
        assert result.schedule.days == schedule.days
        assert result.schedule is not schedule

    def test_no_valid_swap_leaves_schedule(self, ctx):
        # f02 holds the only weekday but is on vacation across both of f01's weekend days
        days = {"2025-10-04": "f01", "2025-10-12": "f01", "2025-10-21": "f02"}
        result = optimize_junior_weekend_equity(_schedule(days), CallConstraintChecker(ctx))
        assert result.swaps_applied == 0
        assert result.spread_after == result.spread_before == 2

    def test_built_schedule_stays_valid(self, call_result, checker):
        result = optimize_junior_weekend_equity(call_result.schedule, checker)
        hard, _ = checker.check_all(result.schedule)
        assert hard == []
        assert result.spread_after <= result.spread_before
        assert result.schedule.counts_by_fellow == call_result.schedule.counts_by_fellow
