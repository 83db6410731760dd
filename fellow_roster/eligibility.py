"""
eligibility.py — Eligibility Pool Builder and shared equity/spacing primitives

build_eligibility_pools(day, ctx) partitions the roster into per-tier candidate
pools for one date and returns the tier-priority order for that date:

  - weekdays:      primary_call.weekday_priority[weekday]
  - weekend/holiday before the junior start date:
                   primary_call.weekend_priority_before_start
  - weekend/holiday from the junior start date on:
                   primary_call.weekend_priority, and (by default) the junior
                   tier is exclusive: no cross-tier fallback

Per-fellow exclusions (ineligibility_reasons):
  - excluded rotation for that date (VAC, HF) / vacation
  - junior tier before its start date
  - rotation weekday exclusions (EP: no Tue/Thu call)
  - a specialty clinic the next day that the fellow would staff

Pure and O(fellows); called anew for every date by every scheduler.
"""

import logging
import random
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from fellow_roster.academic_calendar import AcademicYear, SATURDAY, block_key_for, week_of_month
from fellow_roster.models import VACATION, WEEKDAY_NAMES, Fellow, RotationTable
from fellow_roster.schedule_config import RuleConfiguration, SpecialtyClinicRule

logger = logging.getLogger(__name__)

# Equity categories
WEEKDAY = "weekday"
WEEKEND_HOLIDAY = "weekend_holiday"

_ELECTIVE_RE = re.compile(r"^ELECTIVE\s*\((.+)\)\s*$", re.IGNORECASE)


def primary_rotation(rotation: Optional[str]) -> Optional[str]:
    """'ELECTIVE (NUCLEAR)' → 'NUCLEAR'; anything else unchanged."""
    if rotation is None:
        return None
    m = _ELECTIVE_RE.match(rotation.strip())
    return m.group(1).strip().upper() if m else rotation.strip()


# ---------------------------------------------------------------------------
# RosterContext
# ---------------------------------------------------------------------------

class RosterContext:
    """
    Read-only bundle of roster, rotation table, academic year and rules, with
    the lookups every scheduler shares.
    """

    def __init__(
        self,
        fellows: Sequence[Fellow],
        rotations: RotationTable,
        year: AcademicYear,
        rules: Optional[RuleConfiguration] = None,
    ):
        self.fellows: List[Fellow] = list(fellows)
        self.rotations = rotations
        self.year = year
        self.rules = rules or RuleConfiguration()

        self._by_id: Dict[str, Fellow] = {f.id: f for f in self.fellows}
        self._by_tier: Dict[str, List[Fellow]] = {t: [] for t in self.rules.tiers}
        for f in self.fellows:
            self._by_tier.setdefault(f.tier, []).append(f)
        self.junior_start = self._resolve_junior_start()

    def _resolve_junior_start(self) -> date:
        month, day = (int(p) for p in self.rules.primary_call.junior_start.split("-"))
        start = date(self.year.start.year, month, day)
        if start < self.year.start:
            start = date(self.year.start.year + 1, month, day)
        return start

    def with_rotations(self, rotations: RotationTable) -> "RosterContext":
        return RosterContext(self.fellows, rotations, self.year, self.rules)

    # -- lookups -----------------------------------------------------------

    def fellow(self, fellow_id: str) -> Fellow:
        return self._by_id[fellow_id]

    def has_fellow(self, fellow_id: str) -> bool:
        return fellow_id in self._by_id

    def fellows_in_tier(self, tier: str) -> List[Fellow]:
        return list(self._by_tier.get(tier, []))

    def rotation_on(self, fellow_id: str, day: date) -> Optional[str]:
        return self.rotations.get(fellow_id, {}).get(block_key_for(day))

    def primary_rotation_on(self, fellow_id: str, day: date) -> Optional[str]:
        return primary_rotation(self.rotation_on(fellow_id, day))

    def is_weekend_or_holiday(self, day: date) -> bool:
        # A Friday holiday counts as weekend-or-holiday; other Fridays are weekdays.
        return day.weekday() >= SATURDAY or self.year.is_holiday(day)

    def equity_category(self, day: date) -> str:
        return WEEKEND_HOLIDAY if self.is_weekend_or_holiday(day) else WEEKDAY

    def is_junior_exclusive(self, day: date) -> bool:
        call = self.rules.primary_call
        return (
            call.junior_exclusive_weekends
            and day >= self.junior_start
            and self.is_weekend_or_holiday(day)
        )


# ---------------------------------------------------------------------------
# Specialty-clinic primitives (shared with clinic_engine)
# ---------------------------------------------------------------------------

def specialty_clinics_on(day: date, ctx: RosterContext) -> List[Tuple[str, SpecialtyClinicRule]]:
    """Specialty clinics that run on `day`, in configured order."""
    clinics = ctx.rules.clinics
    if clinics.exclude_holidays and ctx.year.is_holiday(day):
        return []
    week = week_of_month(day)
    return [
        (ctype, rule) for ctype, rule in clinics.specialty_clinics.items()
        if rule.runs_on(day.weekday(), week)
    ]


def fits_clinic_rule(fellow: Fellow, day: date, rule: SpecialtyClinicRule, ctx: RosterContext) -> bool:
    if rule.eligible_tiers and fellow.tier not in rule.eligible_tiers:
        return False
    return ctx.primary_rotation_on(fellow.id, day) in rule.eligible_rotations


# ---------------------------------------------------------------------------
# Per-fellow exclusions
# ---------------------------------------------------------------------------

def _reasons(
    fellow: Fellow,
    day: date,
    ctx: RosterContext,
    next_day_clinics: List[Tuple[str, SpecialtyClinicRule]],
) -> List[str]:
    call = ctx.rules.primary_call
    reasons: List[str] = []

    rotation = ctx.rotation_on(fellow.id, day)
    primary = primary_rotation(rotation)
    if rotation == VACATION:
        reasons.append(f"{fellow.name} is on vacation on {day.isoformat()}")
    elif rotation in call.exclude_rotations or primary in call.exclude_rotations:
        reasons.append(f"{fellow.name} is on the {rotation} rotation on {day.isoformat()}")

    if fellow.tier == ctx.rules.junior_tier and day < ctx.junior_start:
        reasons.append(
            f"{fellow.tier} fellows do not take call before {ctx.junior_start.isoformat()}"
        )

    if primary and day.weekday() in call.rotation_weekday_exclusions.get(primary, []):
        reasons.append(f"{primary} rotation excludes {WEEKDAY_NAMES[day.weekday()]} call")

    if call.exclude_before_specialty_clinic:
        nxt = day + timedelta(days=1)
        for ctype, rule in next_day_clinics:
            if fits_clinic_rule(fellow, nxt, rule, ctx):
                reasons.append(f"{fellow.name} has {ctype} clinic on {nxt.isoformat()}")
    return reasons


def ineligibility_reasons(fellow: Fellow, day: date, ctx: RosterContext) -> List[str]:
    """Human-readable reasons `fellow` cannot take primary call on `day` (empty = eligible)."""
    return _reasons(fellow, day, ctx, specialty_clinics_on(day + timedelta(days=1), ctx))


# ---------------------------------------------------------------------------
# Pool builder
# ---------------------------------------------------------------------------

@dataclass
class EligibilityPools:
    day: date
    pools: Dict[str, List[Fellow]]
    priority: List[str]
    weekend_or_holiday: bool
    junior_exclusive: bool

    def fallback_candidates(self) -> List[Fellow]:
        """Cross-tier pool used when no priority tier yields anyone."""
        if self.junior_exclusive:
            return []
        out: List[Fellow] = []
        for fellows in self.pools.values():
            out.extend(fellows)
        return out

    def is_empty(self) -> bool:
        if self.junior_exclusive:
            return not any(self.pools.get(t) for t in self.priority)
        return not any(self.pools.values())


def build_eligibility_pools(day: date, ctx: RosterContext) -> EligibilityPools:
    call = ctx.rules.primary_call
    junior = ctx.rules.junior_tier
    after_start = day >= ctx.junior_start
    weekend_or_holiday = ctx.is_weekend_or_holiday(day)

    if weekend_or_holiday:
        priority = list(call.weekend_priority if after_start else call.weekend_priority_before_start)
    else:
        configured = call.weekday_priority.get(day.weekday(), ctx.rules.tiers)
        priority = [t for t in configured if after_start or t != junior]

    next_day_clinics = specialty_clinics_on(day + timedelta(days=1), ctx)
    pools = {
        tier: [f for f in ctx.fellows_in_tier(tier) if not _reasons(f, day, ctx, next_day_clinics)]
        for tier in ctx.rules.tiers
    }
    return EligibilityPools(
        day=day,
        pools=pools,
        priority=priority,
        weekend_or_holiday=weekend_or_holiday,
        junior_exclusive=ctx.is_junior_exclusive(day),
    )


# ---------------------------------------------------------------------------
# Spacing / equity primitives
# ---------------------------------------------------------------------------

def spacing_conflicts(fellow_id: str, day: date, days: Dict[str, str], min_days: int) -> List[date]:
    """Assigned dates of `fellow_id` closer than `min_days` to `day`, both directions."""
    out: List[date] = []
    for k in range(1, min_days):
        for other in (day - timedelta(days=k), day + timedelta(days=k)):
            if days.get(other.isoformat()) == fellow_id:
                out.append(other)
    return out


def saturday_conflicts(fellow_id: str, day: date, days: Dict[str, str]) -> List[date]:
    """Saturdays 7 days either side of a Saturday `day` already held by `fellow_id`."""
    if day.weekday() != SATURDAY:
        return []
    return [
        other for other in (day - timedelta(days=7), day + timedelta(days=7))
        if days.get(other.isoformat()) == fellow_id
    ]


def category_counts(days: Dict[str, str], ctx: RosterContext) -> Dict[str, Dict[str, int]]:
    counts: Dict[str, Dict[str, int]] = {
        WEEKDAY: {f.id: 0 for f in ctx.fellows},
        WEEKEND_HOLIDAY: {f.id: 0 for f in ctx.fellows},
    }
    for iso, fid in days.items():
        cat = ctx.equity_category(date.fromisoformat(iso))
        counts[cat][fid] = counts[cat].get(fid, 0) + 1
    return counts


def pick_weighted(
    candidates: Iterable[Fellow],
    counts: Dict[str, int],
    rng: random.Random,
) -> Optional[Fellow]:
    """Equity-weighted random pick: weight = 1 / (category count + 1)."""
    pool = list(candidates)
    if not pool:
        return None
    weights = [1.0 / (counts.get(f.id, 0) + 1) for f in pool]
    r = rng.random() * sum(weights)
    for fellow, w in zip(pool, weights):
        r -= w
        if r <= 0:
            return fellow
    return pool[-1]
