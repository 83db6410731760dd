"""
call_edits.py — Manual edits to a built primary call schedule

Every operation is copy-on-write: the input CallSchedule is never mutated.
A rejected edit returns the ORIGINAL object together with human-readable
reasons; an accepted edit returns a new schedule with counts recomputed.

  validate_call_assignment   one (date, fellow) check, prior occupant removed
  preview_call_changes       candidate state for a batch of changes
  validate_call_changes      atomic check of a batch (every affected fellow's
                             full assignment list is re-validated)
  apply_call_assignment      assign / clear one date
  swap_call_days             exchange the occupants of two dates
  move_call_day              drag-move: empty destination moves, occupied swaps
  suggest_swaps              ranked, pre-validated swap partners for a date
  list_call_candidates       eligible and ineligible fellows for a date
  audit_call_counts          stored vs actual counts, over-quota fellows
  repair_call_counts         drop each over-quota fellow's latest excess calls
  optimize_junior_weekend_equity
                             weekday ↔ weekend swaps evening out the junior
                             tier's weekend/holiday load
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Tuple, Union

from fellow_roster.academic_calendar import FRIDAY, parse_date
from fellow_roster.constraints import CallConstraintChecker
from fellow_roster.eligibility import (
    RosterContext,
    ineligibility_reasons,
    saturday_conflicts,
    spacing_conflicts,
)
from fellow_roster.models import CallSchedule, Fellow, tally_counts

logger = logging.getLogger(__name__)

DateLike = Union[date, str]
Changes = Dict[str, Optional[str]]     # ISO date → fellow_id (None clears)


@dataclass
class EditCheck:
    ok: bool
    reasons: List[str] = field(default_factory=list)


@dataclass
class EditResult:
    ok: bool
    schedule: CallSchedule
    reasons: List[str] = field(default_factory=list)


@dataclass
class SwapSuggestion:
    day: str
    fellow_id: str
    score: int


@dataclass
class CallCandidates:
    day: str
    eligible: List[Fellow] = field(default_factory=list)
    ineligible: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class CallAudit:
    actual_counts: Dict[str, int]
    drift: Dict[str, Tuple[int, int]]          # fellow_id → (stored, actual)
    over_quota: Dict[str, Tuple[int, int]]     # fellow_id → (actual, quota)

    @property
    def clean(self) -> bool:
        return not self.drift and not self.over_quota


# ---------------------------------------------------------------------------
# Single-assignment validation
# ---------------------------------------------------------------------------

def validate_call_assignment(
    schedule: CallSchedule,
    day: DateLike,
    fellow_id: str,
    checker: CallConstraintChecker,
) -> EditCheck:
    """Can `fellow_id` take call on `day`, with that day's current occupant removed?"""
    ctx = checker.ctx
    call = ctx.rules.primary_call
    day = parse_date(day)
    iso = day.isoformat()

    if not ctx.year.contains(day):
        return EditCheck(False, [f"{iso} is outside the academic year "
                                 f"{ctx.year.start.isoformat()} – {ctx.year.end.isoformat()}"])
    if not ctx.has_fellow(fellow_id):
        return EditCheck(False, [f"Unknown fellow {fellow_id}"])

    fellow = ctx.fellow(fellow_id)
    days = dict(schedule.days)
    days.pop(iso, None)

    reasons = list(ineligibility_reasons(fellow, day, ctx))
    if ctx.is_junior_exclusive(day) and fellow.tier not in call.weekend_priority:
        reasons.append(f"{iso} is reserved for {', '.join(call.weekend_priority)} fellows")

    count = sum(1 for fid in days.values() if fid == fellow_id)
    quota = call.quota_for(fellow.tier)
    if count >= quota:
        reasons.append(f"{fellow.name} already has {count} calls (annual maximum for {fellow.tier} is {quota})")

    for other in sorted(spacing_conflicts(fellow_id, day, days, call.min_spacing_days)):
        gap = abs((other - day).days)
        reasons.append(
            f"Too close to call on {other.isoformat()} "
            f"({gap} days apart; minimum spacing is {call.min_spacing_days} days)"
        )
    if call.no_consecutive_saturdays:
        for other in saturday_conflicts(fellow_id, day, days):
            reasons.append(f"{fellow.name} is already on call the adjacent Saturday {other.isoformat()}")

    return EditCheck(not reasons, reasons)


# ---------------------------------------------------------------------------
# Batch preview / validation
# ---------------------------------------------------------------------------

def preview_call_changes(schedule: CallSchedule, changes: Changes) -> CallSchedule:
    days = dict(schedule.days)
    for day, fellow_id in changes.items():
        iso = parse_date(day).isoformat()
        if fellow_id is None:
            days.pop(iso, None)
        else:
            days[iso] = fellow_id
    return schedule.with_days(days)


def validate_call_changes(
    schedule: CallSchedule,
    changes: Changes,
    checker: CallConstraintChecker,
) -> EditCheck:
    """
    Validate a batch atomically: every fellow gaining or losing a day in the
    batch has their entire assignment list re-checked against the preview.
    """
    ctx = checker.ctx
    reasons: List[str] = []
    for day in changes:
        d = parse_date(day)
        if not ctx.year.contains(d):
            reasons.append(f"{d.isoformat()} is outside the academic year")
    if reasons:
        return EditCheck(False, reasons)

    preview = preview_call_changes(schedule, changes)
    affected = set()
    for day, fellow_id in changes.items():
        previous = schedule.days.get(parse_date(day).isoformat())
        if previous is not None:
            affected.add(previous)
        if fellow_id is not None:
            affected.add(fellow_id)

    for fid in sorted(affected):
        for violation in checker.check_fellow(preview.days, fid):
            reasons.append(violation.description)
    return EditCheck(not reasons, reasons)


# ---------------------------------------------------------------------------
# Edit operations
# ---------------------------------------------------------------------------

def apply_call_assignment(
    schedule: CallSchedule,
    day: DateLike,
    fellow_id: Optional[str],
    checker: CallConstraintChecker,
) -> EditResult:
    """Assign `fellow_id` to `day`, or clear the day when fellow_id is None."""
    iso = parse_date(day).isoformat()
    if fellow_id is None:
        return EditResult(True, preview_call_changes(schedule, {iso: None}))

    check = validate_call_assignment(schedule, iso, fellow_id, checker)
    if not check.ok:
        logger.info(f"Rejected call assignment {fellow_id} on {iso}: {'; '.join(check.reasons)}")
        return EditResult(False, schedule, check.reasons)
    return EditResult(True, preview_call_changes(schedule, {iso: fellow_id}))


def swap_call_days(
    schedule: CallSchedule,
    day_a: DateLike,
    day_b: DateLike,
    checker: CallConstraintChecker,
) -> EditResult:
    a, b = parse_date(day_a).isoformat(), parse_date(day_b).isoformat()
    fid_a, fid_b = schedule.days.get(a), schedule.days.get(b)
    if fid_a is None or fid_b is None:
        return EditResult(False, schedule, [f"Both {a} and {b} must have a fellow on call to swap"])
    if fid_a == fid_b:
        return EditResult(False, schedule, [f"{a} and {b} are held by the same fellow"])

    changes: Changes = {a: fid_b, b: fid_a}
    check = validate_call_changes(schedule, changes, checker)
    if not check.ok:
        logger.info(f"Rejected swap {a} ↔ {b}: {'; '.join(check.reasons)}")
        return EditResult(False, schedule, check.reasons)
    return EditResult(True, preview_call_changes(schedule, changes))


def move_call_day(
    schedule: CallSchedule,
    source: DateLike,
    destination: DateLike,
    checker: CallConstraintChecker,
) -> EditResult:
    src, dst = parse_date(source).isoformat(), parse_date(destination).isoformat()
    fellow_id = schedule.days.get(src)
    if fellow_id is None:
        return EditResult(False, schedule, [f"Nobody is on call on {src}"])
    if src == dst:
        return EditResult(True, schedule.copy())
    if dst in schedule.days:
        return swap_call_days(schedule, src, dst, checker)

    changes: Changes = {src: None, dst: fellow_id}
    check = validate_call_changes(schedule, changes, checker)
    if not check.ok:
        return EditResult(False, schedule, check.reasons)
    return EditResult(True, preview_call_changes(schedule, changes))


# ---------------------------------------------------------------------------
# Suggestions and candidate lists
# ---------------------------------------------------------------------------

def suggest_swaps(
    schedule: CallSchedule,
    day: DateLike,
    checker: CallConstraintChecker,
    limit: int = 10,
) -> List[SwapSuggestion]:
    """
    Rank swap partners for `day`: +100 for the same equity category, plus up
    to +50 for closeness in time.  Friday / weekend / holiday sources only
    pair with junior-tier fellows.  Only atomically valid swaps are returned.
    """
    ctx = checker.ctx
    d = parse_date(day)
    iso = d.isoformat()
    source = schedule.days.get(iso)
    if source is None:
        return []

    category = ctx.equity_category(d)
    junior_only = d.weekday() == FRIDAY or ctx.is_weekend_or_holiday(d)
    scored: List[SwapSuggestion] = []
    for other_iso, other_fid in schedule.days.items():
        if other_iso == iso or other_fid == source:
            continue
        if junior_only and (not ctx.has_fellow(other_fid)
                            or ctx.fellow(other_fid).tier != ctx.rules.junior_tier):
            continue
        other = date.fromisoformat(other_iso)
        score = (100 if ctx.equity_category(other) == category else 0)
        score += max(0, 50 - abs((other - d).days))
        scored.append(SwapSuggestion(other_iso, other_fid, score))

    scored.sort(key=lambda s: (-s.score, s.day))
    out: List[SwapSuggestion] = []
    for suggestion in scored:
        if len(out) >= limit:
            break
        changes: Changes = {iso: suggestion.fellow_id, suggestion.day: source}
        if validate_call_changes(schedule, changes, checker).ok:
            out.append(suggestion)
    return out


def list_call_candidates(
    schedule: CallSchedule,
    day: DateLike,
    checker: CallConstraintChecker,
) -> CallCandidates:
    iso = parse_date(day).isoformat()
    result = CallCandidates(day=iso)
    for fellow in checker.ctx.fellows:
        check = validate_call_assignment(schedule, iso, fellow.id, checker)
        if check.ok:
            result.eligible.append(fellow)
        else:
            result.ineligible[fellow.id] = check.reasons
    return result


# ---------------------------------------------------------------------------
# Count audit / repair
# ---------------------------------------------------------------------------

def audit_call_counts(schedule: CallSchedule, checker: CallConstraintChecker) -> CallAudit:
    ctx = checker.ctx
    actual = tally_counts(schedule.days, [f.id for f in ctx.fellows])
    drift = {
        fid: (schedule.counts_by_fellow.get(fid, 0), actual.get(fid, 0))
        for fid in sorted(set(actual) | set(schedule.counts_by_fellow))
        if schedule.counts_by_fellow.get(fid, 0) != actual.get(fid, 0)
    }
    over_quota = {}
    for fid, n in sorted(actual.items()):
        if not ctx.has_fellow(fid):
            continue
        quota = ctx.rules.primary_call.quota_for(ctx.fellow(fid).tier)
        if n > quota:
            over_quota[fid] = (n, quota)
    return CallAudit(actual_counts=actual, drift=drift, over_quota=over_quota)


def repair_call_counts(schedule: CallSchedule, checker: CallConstraintChecker) -> CallSchedule:
    """
    Remove each over-quota fellow's most recent excess calls and recompute
    counts.  Running it on its own output changes nothing.
    """
    audit = audit_call_counts(schedule, checker)
    days = dict(schedule.days)
    for fid, (n, quota) in audit.over_quota.items():
        excess = schedule.fellow_days(fid)[quota:]
        for iso in excess:
            days.pop(iso, None)
        logger.warning(f"Removed {len(excess)} excess calls for {fid} ({n} > {quota}): {', '.join(excess)}")
    repaired = schedule.with_days(days)
    for fellow in checker.ctx.fellows:
        repaired.counts_by_fellow.setdefault(fellow.id, 0)
    return repaired


# ---------------------------------------------------------------------------
# Junior weekend / holiday equity
# ---------------------------------------------------------------------------

@dataclass
class JuniorEquityStats:
    fellow_id: str
    name: str
    weekend_holiday: int
    total: int


@dataclass
class EquityResult:
    schedule: CallSchedule
    swaps_applied: int
    stats: List[JuniorEquityStats]
    spread_before: int
    spread_after: int


def junior_weekend_stats(schedule: CallSchedule, ctx: RosterContext) -> List[JuniorEquityStats]:
    """Weekend/holiday and total call counts for every junior-tier fellow."""
    stats = []
    for fellow in ctx.fellows_in_tier(ctx.rules.junior_tier):
        held = [date.fromisoformat(d) for d in schedule.fellow_days(fellow.id)]
        stats.append(JuniorEquityStats(
            fellow_id=fellow.id,
            name=fellow.name,
            weekend_holiday=sum(1 for d in held if ctx.is_weekend_or_holiday(d)),
            total=len(held),
        ))
    return sorted(stats, key=lambda s: s.fellow_id)


def _spread(stats: List[JuniorEquityStats]) -> int:
    counts = [s.weekend_holiday for s in stats]
    return max(counts) - min(counts) if counts else 0


def _swap_candidates(
    schedule: CallSchedule,
    high: Fellow,
    low: Fellow,
    ctx: RosterContext,
) -> List[Tuple[date, date]]:
    """
    (high's weekend/holiday day, low's weekday) pairs passing the per-day
    eligibility and spacing checks, nearest dates first.
    """
    spacing = ctx.rules.primary_call.min_spacing_days
    gives = [d for d in map(date.fromisoformat, schedule.fellow_days(high.id)) if ctx.is_weekend_or_holiday(d)]
    takes = [d for d in map(date.fromisoformat, schedule.fellow_days(low.id)) if not ctx.is_weekend_or_holiday(d)]

    pairs = []
    for give in gives:
        if ineligibility_reasons(low, give, ctx):
            continue
        low_clash = set(spacing_conflicts(low.id, give, schedule.days, spacing))
        for take in takes:
            if low_clash - {take} or ineligibility_reasons(high, take, ctx):
                continue
            if set(spacing_conflicts(high.id, take, schedule.days, spacing)) - {give}:
                continue
            pairs.append((abs((give - take).days), give, take))
    pairs.sort()
    return [(give, take) for _, give, take in pairs]


def _first_valid_swap(
    schedule: CallSchedule,
    stats: List[JuniorEquityStats],
    checker: CallConstraintChecker,
) -> Optional[Changes]:
    ctx = checker.ctx
    by_load = sorted(stats, key=lambda s: (-s.weekend_holiday, s.fellow_id))
    for hi in by_load:
        for lo in reversed(by_load):
            # A swap only narrows the gap when the two differ by two or more.
            if hi.weekend_holiday - lo.weekend_holiday < 2:
                continue
            for give, take in _swap_candidates(schedule, ctx.fellow(hi.fellow_id), ctx.fellow(lo.fellow_id), ctx):
                changes: Changes = {give.isoformat(): lo.fellow_id, take.isoformat(): hi.fellow_id}
                if validate_call_changes(schedule, changes, checker).ok:
                    return changes
    return None


def optimize_junior_weekend_equity(
    schedule: CallSchedule,
    checker: CallConstraintChecker,
    max_swaps: int = 50,
    target_spread: int = 1,
) -> EquityResult:
    """
    Even out weekend/holiday call across the junior tier.

    Each step swaps a weekend/holiday day of a heavily loaded junior with a
    weekday of a lightly loaded one, so per-fellow totals never change.  Every
    swap is validated atomically with validate_call_changes.  Stops at
    target_spread, after max_swaps, or when no valid swap narrows the gap.
    The input schedule is never mutated.
    """
    ctx = checker.ctx
    current = schedule.copy()
    spread_before = _spread(junior_weekend_stats(schedule, ctx))
    swaps = 0

    while swaps < max_swaps:
        stats = junior_weekend_stats(current, ctx)
        if _spread(stats) <= target_spread:
            break
        changes = _first_valid_swap(current, stats, checker)
        if changes is None:
            logger.info("Junior weekend/holiday equity: no valid swap narrows the gap")
            break
        logger.debug(f"Equity swap: {changes}")
        current = preview_call_changes(current, changes)
        swaps += 1

    stats = junior_weekend_stats(current, ctx)
    logger.info(
        f"Junior weekend/holiday equity: {swaps} swaps, spread {spread_before} → {_spread(stats)}"
    )
    return EquityResult(current, swaps, stats, spread_before, _spread(stats))
