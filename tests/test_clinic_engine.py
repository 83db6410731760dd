"""
tests/test_clinic_engine.py — Specialty, general and ambulatory clinic assignment
"""

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fellow_roster.academic_calendar import week_monday
from fellow_roster.clinic_engine import (
    apply_ambulatory_assignment,
    build_clinic_schedule,
    check_clinic_coverage,
    eligible_ambulatory_fellows,
)
from fellow_roster.eligibility import RosterContext, fits_clinic_rule
from fellow_roster.models import ACHD, AMBULATORY_FELLOW, DEVICE, EP_CLINIC, GENERAL, CallSchedule
from fellow_roster.schedule_config import RuleConfiguration


@pytest.fixture(scope="module")
def clinics(scheduled_ctx, call_result):
    return build_clinic_schedule(scheduled_ctx, call_result.schedule)


def _assignments(schedule):
    for iso, items in schedule.days.items():
        for a in items:
            yield date.fromisoformat(iso), a


# ---------------------------------------------------------------------------
# Daily clinics
# ---------------------------------------------------------------------------

class TestDailyClinics:

    def test_no_clinics_on_holidays(self, clinics, scheduled_ctx):
        for day, _ in _assignments(clinics):
            assert not scheduled_ctx.year.is_holiday(day), day

    def test_general_on_preferred_weekday(self, clinics, scheduled_ctx):
        for day, a in _assignments(clinics):
            if a.clinic_type == GENERAL:
                assert scheduled_ctx.fellow(a.fellow_id).clinic_day == day.weekday()

    def test_general_skips_excluded_rotations(self, clinics, scheduled_ctx):
        for day, a in _assignments(clinics):
            if a.clinic_type == GENERAL:
                assert scheduled_ctx.rotation_on(a.fellow_id, day) not in ("VAC", "CCU", "HF")

    def test_one_clinic_per_fellow_per_day(self, clinics):
        for iso, items in clinics.days.items():
            ids = [a.fellow_id for a in items]
            assert len(ids) == len(set(ids)), iso

    def test_no_post_call_clinic(self, clinics, call_result):
        for day, a in _assignments(clinics):
            prev = (day - timedelta(days=1)).isoformat()
            assert call_result.schedule.days.get(prev) != a.fellow_id, f"{a} on {day}"

    def test_specialty_clinics_fit_rules(self, clinics, scheduled_ctx):
        rules = scheduled_ctx.rules.clinics.specialty_clinics
        for day, a in _assignments(clinics):
            if a.clinic_type in rules:
                assert fits_clinic_rule(scheduled_ctx.fellow(a.fellow_id), day, rules[a.clinic_type], scheduled_ctx)

    def test_general_skipped_after_week_skip_clinic(self, clinics, scheduled_ctx):
        skip_types = set(scheduled_ctx.rules.clinics.week_skip_types)
        for day, a in _assignments(clinics):
            if a.clinic_type != GENERAL:
                continue
            monday = week_monday(day)
            for offset in range((day - monday).days + 1):
                earlier = monday + timedelta(days=offset)
                held = {b.clinic_type for b in clinics.assignments_on(earlier) if b.fellow_id == a.fellow_id}
                assert not held & skip_types, f"{a.fellow_id} general on {day} after {held} on {earlier}"

    def test_specialty_picks_follow_running_counts(self, clinics, scheduled_ctx, call_result):
        rules = scheduled_ctx.rules.clinics.specialty_clinics
        running = {}
        for day in scheduled_ctx.year.days:
            busy = set()
            for a in clinics.assignments_on(day):
                if a.clinic_type in rules:
                    prev = (day - timedelta(days=1)).isoformat()
                    qualifiers = [
                        f for f in scheduled_ctx.fellows
                        if f.id not in busy
                        and fits_clinic_rule(f, day, rules[a.clinic_type], scheduled_ctx)
                        and scheduled_ctx.rotation_on(f.id, day) != "VAC"
                        and call_result.schedule.days.get(prev) != f.id
                    ]

                    def rank(f):
                        per = running.get(f.id, {})
                        return sum(per.values()), per.get(a.clinic_type, 0), f.id

                    assert a.fellow_id == min(qualifiers, key=rank).id, f"{a.clinic_type} on {day}"
                    per = running.setdefault(a.fellow_id, {})
                    per[a.clinic_type] = per.get(a.clinic_type, 0) + 1
                busy.add(a.fellow_id)

    def test_achd_on_lac_cath(self, clinics):
        # Only Emery Garcia is a senior on LAC_CATH in SEP2
        assert (ACHD, "f05") in {(a.clinic_type, a.fellow_id) for a in clinics.days["2025-09-22"]}

    def test_ep_clinic_weeks(self, clinics):
        assert any(a.clinic_type == EP_CLINIC and a.fellow_id == "f06" for a in clinics.days["2025-10-01"])
        assert not any(a.clinic_type == EP_CLINIC for a in clinics.days.get("2025-10-08", []))

    def test_counts_match_days(self, clinics):
        totals = {}
        for _, a in _assignments(clinics):
            per = totals.setdefault(a.fellow_id, {})
            per[a.clinic_type] = per.get(a.clinic_type, 0) + 1
        for fid, per in clinics.counts_by_fellow.items():
            assert per == totals.get(fid, {}), fid


@pytest.fixture(scope="module")
def no_call_clinics(scheduled_ctx):
    """No primary call, so only rotations decide.  Kai Lopez is the only EP fellow in JUL1."""
    return build_clinic_schedule(scheduled_ctx, CallSchedule("2025-07-01"))


class TestWeekSkip:

    def _types(self, schedule, iso, fid):
        return {a.clinic_type for a in schedule.days.get(iso, []) if a.fellow_id == fid}

    def test_later_device_clinic_keeps_general(self, no_call_clinics):
        assert self._types(no_call_clinics, "2025-07-10", "f09") == {GENERAL}
        assert self._types(no_call_clinics, "2025-07-11", "f09") == {DEVICE}

    def test_ep_clinic_does_not_skip_week(self, no_call_clinics):
        assert self._types(no_call_clinics, "2025-07-02", "f09") == {EP_CLINIC}
        assert self._types(no_call_clinics, "2025-07-03", "f09") == {GENERAL}

    def test_achd_skips_rest_of_week(self, no_call_clinics):
        assert self._types(no_call_clinics, "2025-09-22", "f05") == {ACHD}
        assert self._types(no_call_clinics, "2025-09-24", "f05") == set()

    def test_every_type_skips_when_configured(self, scheduled_ctx):
        rules = RuleConfiguration.from_dict(
            {"clinics": {"week_skip_types": list(scheduled_ctx.rules.clinics.specialty_clinics)}})
        ctx = RosterContext(scheduled_ctx.fellows, scheduled_ctx.rotations, scheduled_ctx.year, rules)
        schedule = build_clinic_schedule(ctx, CallSchedule("2025-07-01"))
        assert self._types(schedule, "2025-07-03", "f09") == set()
        assert self._types(schedule, "2025-07-10", "f09") == {GENERAL}


class TestCoverageReport:

    def test_gaps_are_well_formed(self, clinics, scheduled_ctx):
        report = check_clinic_coverage(clinics, scheduled_ctx)
        assert report.success == (not report.gaps)
        known = set(scheduled_ctx.rules.clinics.specialty_clinics) | {AMBULATORY_FELLOW}
        for gap in report.gaps:
            assert gap.clinic_type in known
            assert gap.assigned < gap.required

    def test_missing_ambulatory_is_a_gap(self, clinics, scheduled_ctx):
        trimmed = apply_ambulatory_assignment(clinics, "JUL1", None, scheduled_ctx).schedule
        gaps = check_clinic_coverage(trimmed, scheduled_ctx).gaps
        assert any(g.clinic_type == AMBULATORY_FELLOW and g.block_key == "JUL1" for g in gaps)


# ---------------------------------------------------------------------------
# Ambulatory fellow
# ---------------------------------------------------------------------------

class TestAmbulatory:

    def test_senior_tiers_only(self, clinics, scheduled_ctx):
        for fid in clinics.ambulatory.values():
            assert scheduled_ctx.fellow(fid).tier in ("PGY-5", "PGY-6")

    def test_max_per_fellow(self, clinics):
        assert all(n <= 3 for n in clinics.ambulatory_counts.values())

    def test_no_adjacent_blocks(self, clinics, scheduled_ctx):
        keys = [b.key for b in scheduled_ctx.year.blocks]
        for a, b in zip(keys, keys[1:]):
            holder = clinics.ambulatory.get(a)
            assert holder is None or clinics.ambulatory.get(b) != holder, f"{a}/{b}"

    def test_rotation_priority(self, clinics):
        # JUL1: Finley Hughes is the only senior on NUCLEAR
        assert clinics.ambulatory["JUL1"] == "f06"

    def test_eligible_list(self, clinics, scheduled_ctx):
        for f in eligible_ambulatory_fellows(clinics, "JUL2", scheduled_ctx):
            assert f.id != "f06"

    def test_unknown_block_raises(self, clinics, scheduled_ctx):
        with pytest.raises(ValueError):
            apply_ambulatory_assignment(clinics, "JUL3", "f05", scheduled_ctx)

    def test_junior_rejected(self, clinics, scheduled_ctx):
        result = apply_ambulatory_assignment(clinics, "JUL1", "f01", scheduled_ctx)
        assert not result.ok
        assert result.schedule is clinics
        assert "PGY-4 fellows are not ambulatory fellows" in result.reasons

    def test_adjacent_rejected(self, clinics, scheduled_ctx):
        result = apply_ambulatory_assignment(clinics, "JUL2", "f06", scheduled_ctx)
        assert not result.ok
        assert any("adjacent block JUL1" in r for r in result.reasons)

    def test_clear_recounts(self, clinics, scheduled_ctx):
        before = clinics.ambulatory_counts["f06"]
        result = apply_ambulatory_assignment(clinics, "JUL1", None, scheduled_ctx)
        assert result.ok
        assert "JUL1" not in result.schedule.ambulatory
        assert result.schedule.ambulatory_counts["f06"] == before - 1
        assert clinics.ambulatory["JUL1"] == "f06"

    def test_every_block_day_has_the_holder(self, clinics, scheduled_ctx):
        for key, fid in clinics.ambulatory.items():
            for day in scheduled_ctx.year.block_days(key):
                assert clinics.ambulatory_on(day) == fid, f"{key} {day}"
        assert len(clinics.ambulatory_days) == sum(
            len(scheduled_ctx.year.block_days(k)) for k in clinics.ambulatory)

    def test_edit_rewrites_block_days(self, clinics, scheduled_ctx):
        cleared = apply_ambulatory_assignment(clinics, "JUL1", None, scheduled_ctx).schedule
        assert all(cleared.ambulatory_on(d) is None for d in scheduled_ctx.year.block_days("JUL1"))
        assert cleared.ambulatory_on(date(2025, 7, 16)) == clinics.ambulatory_on(date(2025, 7, 16))

        reassigned = apply_ambulatory_assignment(cleared, "JUL1", "f06", scheduled_ctx).schedule
        assert reassigned.ambulatory_on(date(2025, 7, 1)) == "f06"
        assert reassigned.ambulatory_on(date(2025, 7, 15)) == "f06"
