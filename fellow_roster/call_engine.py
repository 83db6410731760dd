"""
call_engine.py — Primary Call Scheduler

Greedy chronological pass followed by windowed backtracking repair.

  For each day of the academic year:
    1. build_eligibility_pools(day) → per-tier pools + priority order
    2. in priority order, the first tier with survivors of
         - annual quota (max_calls[tier])
         - bidirectional spacing (min_spacing_days)
         - no consecutive Saturdays
       supplies the pick
    3. pick = equity-weighted random, weight 1 / (category count + 1), where
       the category is weekday vs weekend-or-holiday
    4. nobody in any priority tier → cross-tier fallback under the same
       filters, unless the day is reserved for the junior tier
  Days still empty go to repair.run_repair_pass; whatever it cannot fill is
  reported as uncovered, never dropped.

Randomness comes only from the injected random.Random, so a seeded run is
reproducible.
"""

import logging
import math
import random
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

from fellow_roster.eligibility import (
    WEEKDAY,
    WEEKEND_HOLIDAY,
    RosterContext,
    build_eligibility_pools,
    pick_weighted,
    saturday_conflicts,
    spacing_conflicts,
)
from fellow_roster.models import CallSchedule, Fellow, tally_counts

logger = logging.getLogger(__name__)


@dataclass
class CallBuildResult:
    schedule: CallSchedule
    success: bool
    uncovered: List[str] = field(default_factory=list)     # ISO dates
    repaired: List[str] = field(default_factory=list)      # ISO dates filled by repair


# ---------------------------------------------------------------------------
# Mutable build state
# ---------------------------------------------------------------------------

class CallState:
    """Day map plus incrementally maintained per-fellow and per-category counts."""

    def __init__(self, ctx: RosterContext, days: Optional[Dict[str, str]] = None):
        self.ctx = ctx
        self.days: Dict[str, str] = {}
        self.counts: Dict[str, int] = {f.id: 0 for f in ctx.fellows}
        self.category_counts: Dict[str, Dict[str, int]] = {
            WEEKDAY: {f.id: 0 for f in ctx.fellows},
            WEEKEND_HOLIDAY: {f.id: 0 for f in ctx.fellows},
        }
        for iso, fid in (days or {}).items():
            self.assign(iso, fid)

    def assign(self, iso: str, fellow_id: str) -> None:
        self.days[iso] = fellow_id
        self.counts[fellow_id] = self.counts.get(fellow_id, 0) + 1
        cat = self.category_counts[self.ctx.equity_category(date.fromisoformat(iso))]
        cat[fellow_id] = cat.get(fellow_id, 0) + 1

    def unassign(self, iso: str) -> Optional[str]:
        fellow_id = self.days.pop(iso, None)
        if fellow_id is not None:
            self.counts[fellow_id] -= 1
            self.category_counts[self.ctx.equity_category(date.fromisoformat(iso))][fellow_id] -= 1
        return fellow_id

    def survives(self, fellow: Fellow, day: date) -> bool:
        """Quota, spacing and consecutive-Saturday filters against the current map."""
        call = self.ctx.rules.primary_call
        if self.counts.get(fellow.id, 0) >= call.quota_for(fellow.tier):
            return False
        if spacing_conflicts(fellow.id, day, self.days, call.min_spacing_days):
            return False
        if call.no_consecutive_saturdays and saturday_conflicts(fellow.id, day, self.days):
            return False
        return True

    def to_schedule(self) -> CallSchedule:
        ordered = dict(sorted(self.days.items()))
        return CallSchedule(
            year_start=self.ctx.year.start.isoformat(),
            days=ordered,
            counts_by_fellow=tally_counts(ordered, [f.id for f in self.ctx.fellows]),
        )


def pick_for_day(day: date, state: CallState, rng: random.Random) -> Optional[Fellow]:
    pools = build_eligibility_pools(day, state.ctx)
    counts = state.category_counts[state.ctx.equity_category(day)]
    for tier in pools.priority:
        survivors = [f for f in pools.pools.get(tier, []) if state.survives(f, day)]
        if survivors:
            return pick_weighted(survivors, counts, rng)
    fallback = [f for f in pools.fallback_candidates() if state.survives(f, day)]
    return pick_weighted(fallback, counts, rng)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def build_call_schedule(
    ctx: RosterContext,
    rng: Optional[random.Random] = None,
    output_dir: Optional[Path] = None,
) -> CallBuildResult:
    """
    Build the primary call schedule for the whole academic year.

    Args:
        ctx: roster, rotations, academic year and rules
        rng: source of randomness for weighted picks (seed for reproducibility)
        output_dir: if given, the repair pass appends its log there
    """
    from fellow_roster.repair import collect_uncovered, run_repair_pass

    rng = rng or random.Random()
    state = CallState(ctx)
    failures: List[date] = []

    for day in ctx.year.days:
        fellow = pick_for_day(day, state, rng)
        if fellow is None:
            failures.append(day)
            continue
        state.assign(day.isoformat(), fellow.id)

    logger.info(
        f"Greedy call pass: {len(state.days)} of {len(ctx.year.days)} days filled, "
        f"{len(failures)} sent to repair"
    )

    summary = run_repair_pass(state, failures, ctx, output_dir=output_dir)
    uncovered = [u["date"] for u in collect_uncovered(state, ctx)]
    repaired = sorted({r["date"] for r in summary["repaired"]})

    schedule = state.to_schedule()
    if uncovered:
        logger.warning(f"Call schedule built with {len(uncovered)} uncovered days")
    else:
        logger.info(f"Call schedule built: all {len(schedule.days)} days covered")
    return CallBuildResult(schedule=schedule, success=not uncovered, uncovered=uncovered, repaired=repaired)


# ---------------------------------------------------------------------------
# Fairness metrics
# ---------------------------------------------------------------------------

def _stats(values: List[int]) -> Dict[str, float]:
    if not values:
        return {"mean": 0.0, "std": 0.0, "cv": 0.0, "min": 0, "max": 0}
    mean_val = sum(values) / len(values)
    variance = sum((v - mean_val) ** 2 for v in values) / len(values)
    std_val = math.sqrt(variance)
    cv = (std_val / mean_val * 100) if mean_val > 0 else 0.0
    return {"mean": mean_val, "std": std_val, "cv": cv, "min": min(values), "max": max(values)}


def calculate_fairness_metrics(schedule: CallSchedule, ctx: RosterContext) -> Dict[str, Any]:
    """
    Per-fellow call counts split by equity category, and per-tier spread.

    Returns:
        {
          counts: {fellow_id: int},
          weekday_counts: {fellow_id: int},
          weekend_holiday_counts: {fellow_id: int},
          per_tier: {tier: {mean, std, cv, min, max}},
          uncovered: int,
        }
    """
    state = CallState(ctx, schedule.days)
    per_tier: Dict[str, Dict[str, float]] = {}
    for tier in ctx.rules.tiers:
        ids = [f.id for f in ctx.fellows_in_tier(tier)]
        per_tier[tier] = _stats([state.counts.get(fid, 0) for fid in ids])

    uncovered = sum(1 for d in ctx.year.days if d.isoformat() not in schedule.days)
    return {
        "counts": dict(state.counts),
        "weekday_counts": dict(state.category_counts[WEEKDAY]),
        "weekend_holiday_counts": dict(state.category_counts[WEEKEND_HOLIDAY]),
        "per_tier": per_tier,
        "uncovered": uncovered,
    }
