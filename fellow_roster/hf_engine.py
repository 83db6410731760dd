"""
hf_engine.py — Heart Failure (HF) weekend and holiday coverage

Five phases, in order:

  1. Holiday blocks      holiday_eligible_tiers (PGY-5); the senior tier only
                         as the Independence Day fallback, or as part of the
                         pool when hf.senior_holiday_mode == "pool".
                         Whole block to one fellow; weekends inside the block
                         are marked covered.
  2. Mandatory weekends  every HF-rotation half-block gets one weekend for the
                         fellow on it (first free non-holiday weekend; a free
                         holiday block in that half-block as fallback for
                         holiday-eligible tiers).  Misses are MandatoryMiss.
  3. Distribution        up to max_distribution_passes passes over the open
                         weekends, picking (fewest weekends, longest since last
                         assignment, name).  A pass that assigns nothing relaxes
                         quota (hard-cap tiers excepted), then spacing.
  4. Final pass          roster order, quota/spacing/consecutive-weekend rules
                         relaxed; hard cap, vacation, rotation and call
                         conflicts still enforced.
  5. Manual overrides    assign_hf_coverage / clear_hf_coverage with scope
                         "day" or "block"; counts recomputed from effective
                         assignments after every edit.

Weekend eligibility:
  - rotation-only tiers (PGY-4, PGY-6) only while on the HF rotation
  - not on an excluded rotation (VAC)
  - no primary call on the Friday before or on the weekend itself
  - under weekend_quotas[tier]; ≥ min_spacing_days from other HF coverage
  - no consecutive weekends
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, NamedTuple, Optional, Union

from fellow_roster.academic_calendar import (
    INDEPENDENCE_DAY_ID,
    AcademicYear,
    parse_date,
    weekend_start_for,
)
from fellow_roster.eligibility import RosterContext
from fellow_roster.models import CallSchedule, Fellow, HFSchedule, HolidayBlock, HolidayCoverage
from fellow_roster.schedule_config import SENIOR_HOLIDAY_POOL

logger = logging.getLogger(__name__)

DateLike = Union[date, str]

SCOPE_DAY = "day"
SCOPE_BLOCK = "block"

LEVEL_STRICT = 0
LEVEL_RELAX_QUOTA = 1
LEVEL_RELAX_SPACING = 2

_NEVER = 10 ** 6


class MandatoryMiss(NamedTuple):
    fellow_id: str
    block_key: str
    reason: str


@dataclass
class HFBuildResult:
    schedule: HFSchedule
    uncovered: List[str] = field(default_factory=list)            # Saturday ISO dates
    uncovered_holidays: List[str] = field(default_factory=list)   # holiday block start ISO dates
    mandatory_missed: List[MandatoryMiss] = field(default_factory=list)
    success: bool = True


@dataclass
class HFEditResult:
    ok: bool
    schedule: HFSchedule
    reasons: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Build state
# ---------------------------------------------------------------------------

class _HFState:
    def __init__(self, ctx: RosterContext):
        self.weekends: Dict[str, str] = {}
        self.holidays: Dict[str, HolidayCoverage] = {}
        self.weekend_counts: Dict[str, int] = {f.id: 0 for f in ctx.fellows}
        self.holiday_day_counts: Dict[str, int] = {f.id: 0 for f in ctx.fellows}
        self.anchors: Dict[str, List[date]] = {f.id: [] for f in ctx.fellows}

    def total(self, fellow_id: str) -> int:
        return self.weekend_counts[fellow_id] + self.holiday_day_counts[fellow_id]

    def assign_weekend(self, sat: date, fellow_id: str) -> None:
        self.weekends[sat.isoformat()] = fellow_id
        self.weekend_counts[fellow_id] += 1
        self.anchors[fellow_id].append(sat)

    def assign_holiday(self, block: HolidayBlock, fellow_id: str) -> None:
        dates = tuple(d.isoformat() for d in block.dates)
        self.holidays[block.start.isoformat()] = HolidayCoverage(fellow_id, dates)
        self.holiday_day_counts[fellow_id] += len(dates)
        self.anchors[fellow_id].append(block.start)
        for d in block.dates:
            sat = weekend_start_for(d)
            if sat is not None:
                self.weekends[sat.isoformat()] = fellow_id

    def days_since_last(self, fellow_id: str, day: date) -> int:
        gaps = [abs((day - a).days) for a in self.anchors[fellow_id]]
        return min(gaps) if gaps else _NEVER


# ---------------------------------------------------------------------------
# Eligibility checks
# ---------------------------------------------------------------------------

class HFCoverageChecker:
    """HF eligibility rules for the builder and for manual edits."""

    def __init__(self, ctx: RosterContext, call_schedule: CallSchedule):
        self.ctx = ctx
        self.call_schedule = call_schedule
        self.rules = ctx.rules.hf

    def _on_call(self, fellow_id: str, day: date) -> bool:
        return self.call_schedule.days.get(day.isoformat()) == fellow_id

    def _excluded_rotation(self, fellow: Fellow, day: date) -> Optional[str]:
        rotation = self.ctx.rotation_on(fellow.id, day)
        primary = self.ctx.primary_rotation_on(fellow.id, day)
        if rotation in self.rules.exclude_rotations or primary in self.rules.exclude_rotations:
            return f"{fellow.name} is on {rotation} on {day.isoformat()}"
        return None

    def on_hf_rotation(self, fellow_id: str, day: date) -> bool:
        return self.ctx.primary_rotation_on(fellow_id, day) == self.rules.hf_rotation

    def weekend_days(self, sat: date) -> List[date]:
        return [d for d in (sat, sat + timedelta(days=1)) if self.ctx.year.contains(d)]

    # -- weekend (builder) -------------------------------------------------

    def availability_reasons(self, fellow: Fellow, sat: date) -> List[str]:
        """Rotation, vacation and primary-call conflicts for a weekend."""
        reasons: List[str] = []
        if fellow.tier in self.rules.rotation_only_tiers and not self.on_hf_rotation(fellow.id, sat):
            reasons.append(f"{fellow.tier} covers HF only while on the HF rotation")
        for d in self.weekend_days(sat):
            r = self._excluded_rotation(fellow, d)
            if r:
                reasons.append(r)
        friday = sat - timedelta(days=1)
        if self.rules.exclude_primary_call_friday and self._on_call(fellow.id, friday):
            reasons.append(f"{fellow.name} has primary call on Friday {friday.isoformat()}")
        if self.rules.exclude_primary_call_weekend:
            for d in self.weekend_days(sat):
                if self._on_call(fellow.id, d):
                    reasons.append(f"{fellow.name} has primary call on {d.isoformat()}")
        return reasons

    def consecutive_reasons(self, fellow: Fellow, sat: date, weekends: Dict[str, str]) -> List[str]:
        if not self.rules.no_consecutive_weekends:
            return []
        return [
            f"{fellow.name} already covers the weekend of {other.isoformat()}"
            for other in (sat - timedelta(days=7), sat + timedelta(days=7))
            if weekends.get(other.isoformat()) == fellow.id
        ]

    def weekend_reasons(
        self,
        fellow: Fellow,
        sat: date,
        state: _HFState,
        level: int = LEVEL_STRICT,
        relax_consecutive: bool = False,
    ) -> List[str]:
        reasons = self.availability_reasons(fellow, sat)
        quota = self.rules.quota_for(fellow.tier)
        if state.weekend_counts[fellow.id] >= quota and (
            level < LEVEL_RELAX_QUOTA or fellow.tier in self.rules.hard_cap_tiers
        ):
            reasons.append(f"{fellow.name} reached the {fellow.tier} HF weekend quota ({quota})")
        if level < LEVEL_RELAX_SPACING:
            gap = state.days_since_last(fellow.id, sat)
            if gap < self.rules.min_spacing_days:
                reasons.append(f"{fellow.name} has HF coverage {gap} days away "
                               f"(minimum spacing is {self.rules.min_spacing_days} days)")
        if not relax_consecutive:
            reasons.extend(self.consecutive_reasons(fellow, sat, state.weekends))
        return reasons

    # -- holiday blocks ----------------------------------------------------

    def holiday_reasons(self, fellow: Fellow, block: HolidayBlock, state: Optional[_HFState] = None) -> List[str]:
        reasons: List[str] = []
        for d in block.dates:
            r = self._excluded_rotation(fellow, d)
            if r:
                reasons.append(r)
            if self._on_call(fellow.id, d):
                reasons.append(f"{fellow.name} has primary call on {d.isoformat()}")
        if state is not None:
            gap = state.days_since_last(fellow.id, block.start)
            if gap < self.rules.min_spacing_days:
                reasons.append(f"{fellow.name} has HF coverage {gap} days away "
                               f"(minimum spacing is {self.rules.min_spacing_days} days)")
        return reasons

    # -- manual edits ------------------------------------------------------

    def edit_reasons(self, fellow: Fellow, dates: List[date], schedule: HFSchedule) -> List[str]:
        """Vacation/rotation, primary call same day or day before, consecutive weekends."""
        reasons: List[str] = []
        for d in dates:
            r = self._excluded_rotation(fellow, d)
            if r:
                reasons.append(r)
            for call_day in (d, d - timedelta(days=1)):
                if self._on_call(fellow.id, call_day):
                    reasons.append(f"{fellow.name} has primary call on {call_day.isoformat()}")

        if self.rules.no_consecutive_weekends:
            saturdays = sorted({s for s in (weekend_start_for(d) for d in dates) if s is not None})
            for sat in saturdays:
                for other in (sat - timedelta(days=7), sat + timedelta(days=7)):
                    if other in saturdays:
                        continue
                    holders = {get_effective_hf_assignment(schedule, d) for d in (other, other + timedelta(days=1))}
                    if fellow.id in holders:
                        reasons.append(f"{fellow.name} already covers the weekend of {other.isoformat()}")
        return list(dict.fromkeys(reasons))


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------

def _holiday_phase(ctx: RosterContext, checker: HFCoverageChecker, state: _HFState) -> List[str]:
    hf = ctx.rules.hf
    senior = ctx.rules.senior_tier
    pool_tiers = list(hf.holiday_eligible_tiers)
    if hf.senior_holiday_mode == SENIOR_HOLIDAY_POOL and senior not in pool_tiers:
        pool_tiers.append(senior)

    def pick(fellows: List[Fellow], block: HolidayBlock) -> Optional[Fellow]:
        ok = [f for f in fellows if not checker.holiday_reasons(f, block, state)]
        if not ok:
            return None
        return min(ok, key=lambda f: (state.holiday_day_counts[f.id], state.total(f.id), f.name))

    uncovered: List[str] = []
    for block in ctx.year.holiday_blocks:
        fellows = [f for f in ctx.fellows if f.tier in pool_tiers]
        chosen = pick(fellows, block)
        if chosen is None and block.holiday.id == INDEPENDENCE_DAY_ID and senior not in pool_tiers:
            chosen = pick(ctx.fellows_in_tier(senior), block)
            if chosen is not None:
                logger.info(f"Independence Day HF block falls back to {senior} fellow {chosen.name}")
        if chosen is None:
            logger.warning(f"No HF coverage available for {block.holiday.name} ({block.start.isoformat()})")
            uncovered.append(block.start.isoformat())
            continue
        state.assign_holiday(block, chosen.id)
    return uncovered


def _mandatory_phase(
    ctx: RosterContext,
    checker: HFCoverageChecker,
    state: _HFState,
    holiday_weekends: Dict[date, HolidayBlock],
) -> List[MandatoryMiss]:
    hf = ctx.rules.hf
    saturdays = ctx.year.weekend_starts()
    missed: List[MandatoryMiss] = []

    for fellow in ctx.fellows:
        for block in ctx.year.blocks:
            if ctx.rotations.get(fellow.id, {}).get(block.key) is None:
                continue
            if not checker.on_hf_rotation(fellow.id, block.start):
                continue
            block_sats = [s for s in saturdays if block.start <= s <= block.end]
            if any(state.weekends.get(s.isoformat()) == fellow.id for s in block_sats):
                continue

            reasons: List[str] = []
            placed = False
            for sat in block_sats:
                if sat in holiday_weekends or sat.isoformat() in state.weekends:
                    continue
                r = checker.availability_reasons(fellow, sat) + checker.consecutive_reasons(
                    fellow, sat, state.weekends)
                if r:
                    reasons.extend(r)
                    continue
                state.assign_weekend(sat, fellow.id)
                placed = True
                break

            if not placed and fellow.tier in hf.holiday_eligible_tiers:
                for hb in ctx.year.holiday_blocks:
                    if not block.start <= hb.start <= block.end or hb.start.isoformat() in state.holidays:
                        continue
                    r = checker.holiday_reasons(fellow, hb)
                    if r:
                        reasons.extend(r)
                        continue
                    state.assign_holiday(hb, fellow.id)
                    placed = True
                    break

            if not placed:
                reason = "; ".join(dict.fromkeys(reasons)) or "no open weekend in block"
                missed.append(MandatoryMiss(fellow.id, block.key, reason))
                logger.error(f"Mandatory HF weekend missed for {fellow.name} in {block.key}: {reason}")
    return missed


def _distribution_phase(
    ctx: RosterContext,
    checker: HFCoverageChecker,
    state: _HFState,
    open_weekends: List[date],
) -> None:
    level = LEVEL_STRICT
    for pass_no in range(ctx.rules.hf.max_distribution_passes):
        remaining = [s for s in open_weekends if s.isoformat() not in state.weekends]
        if not remaining:
            return
        assigned = 0
        for sat in remaining:
            candidates = [f for f in ctx.fellows if not checker.weekend_reasons(f, sat, state, level)]
            if not candidates:
                continue
            chosen = min(candidates, key=lambda f: (
                state.weekend_counts[f.id], -state.days_since_last(f.id, sat), f.name))
            state.assign_weekend(sat, chosen.id)
            assigned += 1
        logger.debug(f"HF distribution pass {pass_no + 1} (level {level}): {assigned} weekends assigned")
        if assigned == 0 and level < LEVEL_RELAX_SPACING:
            level += 1
            logger.warning(f"HF distribution relaxed to level {level} after a pass with no progress")


def _final_phase(
    ctx: RosterContext,
    checker: HFCoverageChecker,
    state: _HFState,
    open_weekends: List[date],
) -> List[str]:
    uncovered: List[str] = []
    for sat in open_weekends:
        if sat.isoformat() in state.weekends:
            continue
        for fellow in ctx.fellows:
            if not checker.weekend_reasons(fellow, sat, state, LEVEL_RELAX_SPACING, relax_consecutive=True):
                state.assign_weekend(sat, fellow.id)
                break
        else:
            uncovered.append(sat.isoformat())
    return uncovered


def build_hf_schedule(ctx: RosterContext, call_schedule: CallSchedule) -> HFBuildResult:
    """Build HF weekend and holiday coverage for the academic year."""
    checker = HFCoverageChecker(ctx, call_schedule)
    state = _HFState(ctx)
    holiday_weekends = ctx.year.holiday_weekend_starts()

    uncovered_holidays = _holiday_phase(ctx, checker, state)
    missed = _mandatory_phase(ctx, checker, state, holiday_weekends)

    open_weekends = [s for s in ctx.year.weekend_starts() if s not in holiday_weekends]
    _distribution_phase(ctx, checker, state, open_weekends)
    uncovered = _final_phase(ctx, checker, state, open_weekends)

    schedule = HFSchedule(
        year_start=ctx.year.start.isoformat(),
        weekends=dict(sorted(state.weekends.items())),
        holidays=dict(sorted(state.holidays.items())),
        weekend_counts=dict(state.weekend_counts),
        holiday_day_counts=dict(state.holiday_day_counts),
    )
    success = not uncovered and not uncovered_holidays and not missed
    if uncovered:
        logger.warning(f"HF schedule has {len(uncovered)} uncovered weekends")
    logger.info(
        f"HF schedule built: {len(schedule.weekends)} weekends, {len(schedule.holidays)} holiday blocks, "
        f"{len(missed)} mandatory misses"
    )
    return HFBuildResult(
        schedule=schedule,
        uncovered=uncovered,
        uncovered_holidays=uncovered_holidays,
        mandatory_missed=missed,
        success=success,
    )


# ---------------------------------------------------------------------------
# Effective assignment and manual overrides
# ---------------------------------------------------------------------------

def get_effective_hf_assignment(schedule: HFSchedule, day: DateLike) -> Optional[str]:
    """Day override, else holiday block, else weekend map."""
    day = parse_date(day)
    iso = day.isoformat()
    if iso in schedule.day_overrides:
        return schedule.day_overrides[iso]
    for coverage in schedule.holidays.values():
        if iso in coverage.dates:
            return coverage.fellow_id
    sat = weekend_start_for(day)
    if sat is not None:
        return schedule.weekends.get(sat.isoformat())
    return None


def hf_block_dates_for(day: DateLike, year: AcademicYear) -> List[date]:
    """The coverage unit containing `day`: its holiday block, its weekend, or nothing."""
    day = parse_date(day)
    block = year.holiday_block_for(day)
    if block is not None:
        return list(block.dates)
    sat = weekend_start_for(day)
    if sat is None:
        return []
    return [d for d in (sat, sat + timedelta(days=1)) if year.contains(d)]


def recount_hf(schedule: HFSchedule, ctx: RosterContext) -> None:
    """Recompute weekend and holiday-day counts from effective assignments (in place)."""
    year = ctx.year
    holiday_weekends = year.holiday_weekend_starts()
    weekend_counts = {f.id: 0 for f in ctx.fellows}
    holiday_counts = {f.id: 0 for f in ctx.fellows}

    for sat in year.weekend_starts():
        if sat in holiday_weekends:
            continue
        holders = {get_effective_hf_assignment(schedule, d) for d in (sat, sat + timedelta(days=1))
                   if year.contains(d)}
        for fid in holders - {None}:
            weekend_counts[fid] = weekend_counts.get(fid, 0) + 1
    for block in year.holiday_blocks:
        for d in block.dates:
            fid = get_effective_hf_assignment(schedule, d)
            if fid is not None:
                holiday_counts[fid] = holiday_counts.get(fid, 0) + 1

    schedule.weekend_counts = weekend_counts
    schedule.holiday_day_counts = holiday_counts


def _check_scope(scope: str) -> None:
    if scope not in (SCOPE_DAY, SCOPE_BLOCK):
        raise ValueError(f"Unknown HF edit scope {scope!r}; expected '{SCOPE_DAY}' or '{SCOPE_BLOCK}'")


def assign_hf_coverage(
    schedule: HFSchedule,
    day: DateLike,
    fellow_id: str,
    scope: str,
    checker: HFCoverageChecker,
) -> HFEditResult:
    """
    Manually assign HF coverage.  scope "day" overrides one date; scope
    "block" reassigns the whole holiday block or weekend containing `day`.
    """
    _check_scope(scope)
    ctx = checker.ctx
    day = parse_date(day)
    unit = hf_block_dates_for(day, ctx.year)
    if not unit:
        return HFEditResult(False, schedule, [f"{day.isoformat()} is not an HF coverage day"])
    if not ctx.has_fellow(fellow_id):
        return HFEditResult(False, schedule, [f"Unknown fellow {fellow_id}"])

    dates = unit if scope == SCOPE_BLOCK else [day]
    reasons = checker.edit_reasons(ctx.fellow(fellow_id), dates, schedule)
    if reasons:
        logger.info(f"Rejected HF assignment {fellow_id} on {day.isoformat()}: {'; '.join(reasons)}")
        return HFEditResult(False, schedule, reasons)

    updated = schedule.copy()
    if scope == SCOPE_DAY:
        updated.day_overrides[day.isoformat()] = fellow_id
    else:
        _set_block(updated, day, fellow_id, ctx.year)
    recount_hf(updated, ctx)
    return HFEditResult(True, updated)


def clear_hf_coverage(
    schedule: HFSchedule,
    day: DateLike,
    scope: str,
    checker: HFCoverageChecker,
) -> HFEditResult:
    _check_scope(scope)
    ctx = checker.ctx
    day = parse_date(day)
    if not hf_block_dates_for(day, ctx.year):
        return HFEditResult(False, schedule, [f"{day.isoformat()} is not an HF coverage day"])

    updated = schedule.copy()
    if scope == SCOPE_DAY:
        updated.day_overrides[day.isoformat()] = None
    else:
        _set_block(updated, day, None, ctx.year)
    recount_hf(updated, ctx)
    return HFEditResult(True, updated)


def _set_block(schedule: HFSchedule, day: date, fellow_id: Optional[str], year: AcademicYear) -> None:
    unit = hf_block_dates_for(day, year)
    for d in unit:
        schedule.day_overrides.pop(d.isoformat(), None)
    block = year.holiday_block_for(day)
    saturdays = {s for s in (weekend_start_for(d) for d in unit) if s is not None}
    if block is not None:
        key = block.start.isoformat()
        if fellow_id is None:
            schedule.holidays.pop(key, None)
        else:
            schedule.holidays[key] = HolidayCoverage(fellow_id, tuple(d.isoformat() for d in block.dates))
    for sat in saturdays:
        if fellow_id is None:
            schedule.weekends.pop(sat.isoformat(), None)
        else:
            schedule.weekends[sat.isoformat()] = fellow_id


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

def analyze_hf_schedule(schedule: HFSchedule, ctx: RosterContext) -> Dict[str, Dict[str, Any]]:
    """Per-fellow weekend count, holiday-day count, quota and over-quota flag."""
    out: Dict[str, Dict[str, Any]] = {}
    for fellow in ctx.fellows:
        quota = ctx.rules.hf.quota_for(fellow.tier)
        weekends = schedule.weekend_counts.get(fellow.id, 0)
        out[fellow.id] = {
            "name": fellow.name,
            "tier": fellow.tier,
            "weekends": weekends,
            "holiday_days": schedule.holiday_day_counts.get(fellow.id, 0),
            "quota": quota,
            "over_quota": weekends > quota,
        }
    return out
