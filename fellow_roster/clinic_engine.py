"""
clinic_engine.py — Clinic and Ambulatory Fellow scheduling

One walk over the academic year; each day runs two tiers, and a fellow placed
in the first is skipped by the second:

  1. Specialty clinics (HEART_FAILURE, ACHD, DEVICE, EP by default) running
     that day, in configured order.  Qualifier: eligible rotation and tier,
     not on VAC, not post-call, not already in a clinic that day.
     Pick = fewest specialty clinics so far, then fewest of this type, then id.
  2. General clinics on the fellow's preferred weekday (Mon/Wed/Thu).  Skipped
     for CCU/HF/VAC, post-call, or a week_skip_types clinic (HEART_FAILURE,
     ACHD) already placed in the same Monday-based week.

Then the ambulatory fellow: one PGY-5/6 per 2-week block, drawn in rotation
priority NUCLEAR → NONINVASIVE → ELECTIVE → EP, at most 3 blocks each and
never two blocks in a row.  Pick = fewest ambulatory blocks, then id.  The
holder is written for the block and for every day in it.

No clinics run on holidays.  check_clinic_coverage reports required clinics
left unstaffed; DEVICE and EP are required only when someone is on EP.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Set

from fellow_roster.academic_calendar import week_monday
from fellow_roster.eligibility import RosterContext, fits_clinic_rule, specialty_clinics_on
from fellow_roster.models import (
    AMBULATORY_FELLOW,
    GENERAL,
    WEEKDAY_NAMES,
    CallSchedule,
    ClinicAssignment,
    ClinicSchedule,
    Fellow,
)

logger = logging.getLogger(__name__)


@dataclass
class ClinicCoverageGap:
    date: str
    day_of_week: str
    clinic_type: str
    required: int
    assigned: int
    block_key: Optional[str] = None


@dataclass
class ClinicCoverageReport:
    success: bool
    gaps: List[ClinicCoverageGap] = field(default_factory=list)


@dataclass
class ClinicEditResult:
    ok: bool
    schedule: ClinicSchedule
    reasons: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _post_call(fellow_id: str, day: date, call_schedule: CallSchedule) -> bool:
    return call_schedule.days.get((day - timedelta(days=1)).isoformat()) == fellow_id


def _on_rotation(fellow_id: str, day: date, rotations: List[str], ctx: RosterContext) -> bool:
    raw = ctx.rotation_on(fellow_id, day)
    if raw is None:
        return False
    base = raw.split("(")[0].strip()
    return raw in rotations or base in rotations or ctx.primary_rotation_on(fellow_id, day) in rotations


def _add(schedule: ClinicSchedule, day: date, fellow_id: str, clinic_type: str) -> None:
    schedule.days.setdefault(day.isoformat(), []).append(ClinicAssignment(fellow_id, clinic_type))
    per_fellow = schedule.counts_by_fellow.setdefault(fellow_id, {})
    per_fellow[clinic_type] = per_fellow.get(clinic_type, 0) + 1


# ---------------------------------------------------------------------------
# Daily passes
# ---------------------------------------------------------------------------

def _specialty_tier(
    ctx: RosterContext,
    day: date,
    call_schedule: CallSchedule,
    schedule: ClinicSchedule,
    busy: Set[str],
) -> None:
    clinics = ctx.rules.clinics
    specialty_types = list(clinics.specialty_clinics)

    def specialty_total(fid: str) -> int:
        counts = schedule.counts_by_fellow.get(fid, {})
        return sum(counts.get(t, 0) for t in specialty_types)

    for ctype, rule in specialty_clinics_on(day, ctx):
        candidates = [
            f for f in ctx.fellows
            if f.id not in busy
            and fits_clinic_rule(f, day, rule, ctx)
            and not _on_rotation(f.id, day, clinics.specialty_exclude_rotations, ctx)
            and not (clinics.exclude_post_call and _post_call(f.id, day, call_schedule))
        ]
        if not candidates:
            continue
        chosen = min(candidates, key=lambda f: (
            specialty_total(f.id), schedule.counts_by_fellow.get(f.id, {}).get(ctype, 0), f.id))
        _add(schedule, day, chosen.id, ctype)
        busy.add(chosen.id)


def _general_tier(
    ctx: RosterContext,
    day: date,
    call_schedule: CallSchedule,
    schedule: ClinicSchedule,
    busy: Set[str],
    skip_weeks: Dict[str, Set[date]],
) -> None:
    clinics = ctx.rules.clinics
    if day.weekday() not in clinics.general_clinic_weekdays:
        return
    if clinics.exclude_holidays and ctx.year.is_holiday(day):
        return
    monday = week_monday(day)
    for fellow in ctx.fellows:
        if fellow.clinic_day != day.weekday() or fellow.id in busy:
            continue
        if _on_rotation(fellow.id, day, clinics.general_exclude_rotations, ctx):
            continue
        if clinics.exclude_post_call and _post_call(fellow.id, day, call_schedule):
            continue
        if monday in skip_weeks.get(fellow.id, set()):
            continue
        _add(schedule, day, fellow.id, GENERAL)
        busy.add(fellow.id)


def _daily_passes(ctx: RosterContext, call_schedule: CallSchedule, schedule: ClinicSchedule) -> None:
    """
    Walk the year once.  Each day runs the specialty tier then the general
    tier; the week-skip only sees specialty clinics already placed, i.e. on
    this day or earlier in the same week.
    """
    skip_types = set(ctx.rules.clinics.week_skip_types)
    skip_weeks: Dict[str, Set[date]] = {}
    for day in ctx.year.days:
        busy: Set[str] = set()
        _specialty_tier(ctx, day, call_schedule, schedule, busy)
        for a in schedule.assignments_on(day):
            if a.clinic_type in skip_types:
                skip_weeks.setdefault(a.fellow_id, set()).add(week_monday(day))
        _general_tier(ctx, day, call_schedule, schedule, busy, skip_weeks)


# ---------------------------------------------------------------------------
# Ambulatory fellow
# ---------------------------------------------------------------------------

def ineligible_ambulatory_reasons(
    schedule: ClinicSchedule,
    block_key: str,
    fellow: Fellow,
    ctx: RosterContext,
) -> List[str]:
    """Why `fellow` cannot be the ambulatory fellow for `block_key` (empty = eligible)."""
    amb = ctx.rules.ambulatory
    block = ctx.year.block_by_key[block_key]
    reasons: List[str] = []
    if fellow.tier not in amb.eligible_tiers:
        reasons.append(f"{fellow.tier} fellows are not ambulatory fellows")
    if not _on_rotation(fellow.id, block.start, amb.rotation_priority, ctx):
        reasons.append(f"{fellow.name} is on {ctx.rotation_on(fellow.id, block.start)} during {block_key}")

    held = [k for k, fid in schedule.ambulatory.items() if fid == fellow.id and k != block_key]
    if len(held) >= amb.max_assignments_per_fellow:
        reasons.append(f"{fellow.name} already has {len(held)} ambulatory blocks "
                       f"(maximum {amb.max_assignments_per_fellow})")
    if amb.no_consecutive_blocks:
        for neighbor in (block.index - 1, block.index + 1):
            if 0 <= neighbor < len(ctx.year.blocks):
                key = ctx.year.blocks[neighbor].key
                if schedule.ambulatory.get(key) == fellow.id:
                    reasons.append(f"{fellow.name} is the ambulatory fellow in adjacent block {key}")
    return reasons


def eligible_ambulatory_fellows(schedule: ClinicSchedule, block_key: str, ctx: RosterContext) -> List[Fellow]:
    return [f for f in ctx.fellows if not ineligible_ambulatory_reasons(schedule, block_key, f, ctx)]


def _set_ambulatory(schedule: ClinicSchedule, block_key: str, fellow_id: Optional[str], ctx: RosterContext) -> None:
    """Write the block entry and every day of the block."""
    days = [d.isoformat() for d in ctx.year.block_days(block_key)]
    if fellow_id is None:
        schedule.ambulatory.pop(block_key, None)
        for iso in days:
            schedule.ambulatory_days.pop(iso, None)
        return
    schedule.ambulatory[block_key] = fellow_id
    for iso in days:
        schedule.ambulatory_days[iso] = fellow_id


def _ambulatory_pass(ctx: RosterContext, schedule: ClinicSchedule) -> None:
    amb = ctx.rules.ambulatory
    for block in ctx.year.blocks:
        eligible = eligible_ambulatory_fellows(schedule, block.key, ctx)
        for rotation in amb.rotation_priority:
            candidates = [f for f in eligible if _on_rotation(f.id, block.start, [rotation], ctx)]
            if candidates:
                chosen = min(candidates, key=lambda f: (schedule.ambulatory_counts.get(f.id, 0), f.id))
                _set_ambulatory(schedule, block.key, chosen.id, ctx)
                schedule.ambulatory_counts[chosen.id] = schedule.ambulatory_counts.get(chosen.id, 0) + 1
                break
        else:
            logger.warning(f"No ambulatory fellow available for block {block.key}")


def build_clinic_schedule(ctx: RosterContext, call_schedule: CallSchedule) -> ClinicSchedule:
    schedule = ClinicSchedule(
        year_start=ctx.year.start.isoformat(),
        counts_by_fellow={f.id: {} for f in ctx.fellows},
        ambulatory_counts={f.id: 0 for f in ctx.fellows if f.tier in ctx.rules.ambulatory.eligible_tiers},
    )
    _daily_passes(ctx, call_schedule, schedule)
    _ambulatory_pass(ctx, schedule)
    schedule.days = dict(sorted(schedule.days.items()))

    n_assignments = sum(len(v) for v in schedule.days.values())
    logger.info(
        f"Clinic schedule built: {n_assignments} clinic assignments, "
        f"{len(schedule.ambulatory)} of {len(ctx.year.blocks)} ambulatory blocks"
    )
    return schedule


# ---------------------------------------------------------------------------
# Coverage report
# ---------------------------------------------------------------------------

def check_clinic_coverage(schedule: ClinicSchedule, ctx: RosterContext) -> ClinicCoverageReport:
    gaps: List[ClinicCoverageGap] = []
    for day in ctx.year.days:
        for ctype, rule in specialty_clinics_on(day, ctx):
            required = 1
            if rule.required_only_when_staffed and not any(
                    fits_clinic_rule(f, day, rule, ctx) for f in ctx.fellows):
                required = 0
            assigned = sum(1 for a in schedule.assignments_on(day) if a.clinic_type == ctype)
            if assigned < required:
                gaps.append(ClinicCoverageGap(
                    date=day.isoformat(),
                    day_of_week=WEEKDAY_NAMES[day.weekday()],
                    clinic_type=ctype,
                    required=required,
                    assigned=assigned,
                    block_key=ctx.year.block_for(day).key,
                ))

    for block in ctx.year.blocks:
        if block.key not in schedule.ambulatory:
            gaps.append(ClinicCoverageGap(
                date=block.start.isoformat(),
                day_of_week=WEEKDAY_NAMES[block.start.weekday()],
                clinic_type=AMBULATORY_FELLOW,
                required=1,
                assigned=0,
                block_key=block.key,
            ))

    if gaps:
        logger.warning(f"Clinic coverage: {len(gaps)} gaps")
    return ClinicCoverageReport(success=not gaps, gaps=gaps)


# ---------------------------------------------------------------------------
# Ambulatory edits
# ---------------------------------------------------------------------------

def apply_ambulatory_assignment(
    schedule: ClinicSchedule,
    block_key: str,
    fellow_id: Optional[str],
    ctx: RosterContext,
) -> ClinicEditResult:
    """Set (or clear, with fellow_id=None) the ambulatory fellow of one block."""
    if block_key not in ctx.year.block_by_key:
        raise ValueError(f"Unknown block key {block_key!r}")

    if fellow_id is not None:
        if not ctx.has_fellow(fellow_id):
            return ClinicEditResult(False, schedule, [f"Unknown fellow {fellow_id}"])
        reasons = ineligible_ambulatory_reasons(schedule, block_key, ctx.fellow(fellow_id), ctx)
        if reasons:
            return ClinicEditResult(False, schedule, reasons)

    updated = schedule.copy()
    _set_ambulatory(updated, block_key, fellow_id, ctx)
    counts = {fid: 0 for fid in updated.ambulatory_counts}
    for fid in updated.ambulatory.values():
        counts[fid] = counts.get(fid, 0) + 1
    updated.ambulatory_counts = counts
    return ClinicEditResult(True, updated)
