"""
constraints.py — Constraint checks for primary call schedules

Hard constraints (must NOT violate):
  - ELIGIBILITY: no call on vacation / excluded rotation, junior before start,
    rotation weekday exclusions, night before a specialty clinic
  - TIER_RESERVATION: junior-exclusive weekend/holiday days go to the junior tier
  - QUOTA: annual maximum per tier
  - SPACING: calls of one fellow at least min_spacing_days apart
  - CONSECUTIVE_SATURDAY: no fellow on two Saturdays in a row

Soft constraints (reported, not enforced):
  - UNCOVERED: a date of the academic year with nobody on call
  - COUNT_DRIFT: stored counts_by_fellow disagree with the day map

Usage:
  checker = CallConstraintChecker(ctx)
  hard, soft = checker.check_all(call_schedule)

The manual-edit subsystem (call_edits.py) and the dry run share this checker.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from fellow_roster.academic_calendar import SATURDAY
from fellow_roster.eligibility import RosterContext, ineligibility_reasons
from fellow_roster.models import CallSchedule, tally_counts

logger = logging.getLogger(__name__)


class ConstraintSeverity(Enum):
    HARD = "hard"
    SOFT = "soft"


@dataclass
class ConstraintViolation:
    severity: ConstraintSeverity
    constraint_type: str
    description: str
    date: Optional[str] = None
    fellow: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        parts = [f"[{self.severity.value.upper()}] {self.constraint_type}"]
        if self.date:
            parts.append(f"date={self.date}")
        if self.fellow:
            parts.append(f"fellow={self.fellow}")
        parts.append(f"→ {self.description}")
        return " | ".join(parts)


DayMap = Dict[str, str]    # ISO date → fellow_id


def _days_of(days: DayMap, fellow_id: str) -> List[date]:
    return sorted(date.fromisoformat(d) for d, fid in days.items() if fid == fellow_id)


class CallConstraintChecker:
    """
    Validates primary call day maps against the hard and soft rules above.
    Every hard check can run on the whole map or on one fellow's assignments.
    """

    def __init__(self, ctx: RosterContext):
        self.ctx = ctx
        self.rules = ctx.rules.primary_call

    def _name(self, fellow_id: str) -> str:
        return self.ctx.fellow(fellow_id).name if self.ctx.has_fellow(fellow_id) else fellow_id

    # -----------------------------------------------------------------------
    # HARD: Eligibility
    # -----------------------------------------------------------------------

    def check_eligibility(self, days: DayMap, only: Optional[str] = None) -> List[ConstraintViolation]:
        violations = []
        for iso, fid in sorted(days.items()):
            if only is not None and fid != only:
                continue
            if not self.ctx.has_fellow(fid):
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="UNKNOWN_FELLOW",
                    description=f"{fid} is not on the roster",
                    date=iso,
                    fellow=fid,
                ))
                continue
            for reason in ineligibility_reasons(self.ctx.fellow(fid), date.fromisoformat(iso), self.ctx):
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="ELIGIBILITY",
                    description=reason,
                    date=iso,
                    fellow=fid,
                ))
        return violations

    # -----------------------------------------------------------------------
    # HARD: Junior-exclusive weekend/holiday days
    # -----------------------------------------------------------------------

    def check_tier_reservation(self, days: DayMap, only: Optional[str] = None) -> List[ConstraintViolation]:
        violations = []
        for iso, fid in sorted(days.items()):
            if only is not None and fid != only:
                continue
            if not self.ctx.has_fellow(fid):
                continue
            day = date.fromisoformat(iso)
            tier = self.ctx.fellow(fid).tier
            if self.ctx.is_junior_exclusive(day) and tier not in self.rules.weekend_priority:
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="TIER_RESERVATION",
                    description=(
                        f"{iso} is reserved for {', '.join(self.rules.weekend_priority)} "
                        f"({self._name(fid)} is {tier})"
                    ),
                    date=iso,
                    fellow=fid,
                ))
        return violations

    # -----------------------------------------------------------------------
    # HARD: Annual quota
    # -----------------------------------------------------------------------

    def check_quota(self, days: DayMap, only: Optional[str] = None) -> List[ConstraintViolation]:
        violations = []
        for fid, n in sorted(tally_counts(days).items()):
            if only is not None and fid != only:
                continue
            if not self.ctx.has_fellow(fid):
                continue
            tier = self.ctx.fellow(fid).tier
            quota = self.rules.quota_for(tier)
            if n > quota:
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="QUOTA",
                    description=f"{self._name(fid)} has {n} calls (annual maximum for {tier} is {quota})",
                    fellow=fid,
                    details={"count": n, "quota": quota},
                ))
        return violations

    # -----------------------------------------------------------------------
    # HARD: Spacing
    # -----------------------------------------------------------------------

    def check_spacing(self, days: DayMap, only: Optional[str] = None) -> List[ConstraintViolation]:
        minimum = self.rules.min_spacing_days
        fellow_ids = [only] if only is not None else sorted(set(days.values()))
        violations = []
        for fid in fellow_ids:
            dates = _days_of(days, fid)
            for prev, nxt in zip(dates, dates[1:]):
                gap = (nxt - prev).days
                if gap < minimum:
                    violations.append(ConstraintViolation(
                        severity=ConstraintSeverity.HARD,
                        constraint_type="SPACING",
                        description=(
                            f"{self._name(fid)} has calls on {prev.isoformat()} and {nxt.isoformat()} "
                            f"({gap} days apart; minimum spacing is {minimum} days)"
                        ),
                        date=nxt.isoformat(),
                        fellow=fid,
                        details={"previous": prev.isoformat(), "gap": gap},
                    ))
        return violations

    # -----------------------------------------------------------------------
    # HARD: Consecutive Saturdays
    # -----------------------------------------------------------------------

    def check_consecutive_saturdays(self, days: DayMap, only: Optional[str] = None) -> List[ConstraintViolation]:
        if not self.rules.no_consecutive_saturdays:
            return []
        violations = []
        for iso, fid in sorted(days.items()):
            if only is not None and fid != only:
                continue
            day = date.fromisoformat(iso)
            if day.weekday() != SATURDAY:
                continue
            prev = (day - timedelta(days=7)).isoformat()
            if days.get(prev) == fid:
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="CONSECUTIVE_SATURDAY",
                    description=f"{self._name(fid)} is on call on consecutive Saturdays {prev} and {iso}",
                    date=iso,
                    fellow=fid,
                ))
        return violations

    # -----------------------------------------------------------------------
    # SOFT: Coverage and stored counts
    # -----------------------------------------------------------------------

    def check_uncovered(self, schedule: CallSchedule) -> List[ConstraintViolation]:
        return [
            ConstraintViolation(
                severity=ConstraintSeverity.SOFT,
                constraint_type="UNCOVERED",
                description=f"No fellow on call on {day.isoformat()}",
                date=day.isoformat(),
            )
            for day in self.ctx.year.days
            if day.isoformat() not in schedule.days
        ]

    def check_count_drift(self, schedule: CallSchedule) -> List[ConstraintViolation]:
        actual = tally_counts(schedule.days)
        violations = []
        for fid in sorted(set(actual) | set(schedule.counts_by_fellow)):
            stored = schedule.counts_by_fellow.get(fid, 0)
            if stored != actual.get(fid, 0):
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.SOFT,
                    constraint_type="COUNT_DRIFT",
                    description=f"Stored count {stored} differs from actual {actual.get(fid, 0)}",
                    fellow=fid,
                    details={"stored": stored, "actual": actual.get(fid, 0)},
                ))
        return violations

    # -----------------------------------------------------------------------
    # Aggregates
    # -----------------------------------------------------------------------

    def check_fellow(self, days: DayMap, fellow_id: str) -> List[ConstraintViolation]:
        """All hard violations involving one fellow's full assignment list."""
        hard: List[ConstraintViolation] = []
        hard.extend(self.check_eligibility(days, only=fellow_id))
        hard.extend(self.check_tier_reservation(days, only=fellow_id))
        hard.extend(self.check_quota(days, only=fellow_id))
        hard.extend(self.check_spacing(days, only=fellow_id))
        hard.extend(self.check_consecutive_saturdays(days, only=fellow_id))
        return hard

    def check_all(self, schedule: CallSchedule) -> Tuple[List[ConstraintViolation], List[ConstraintViolation]]:
        """
        Run all hard and soft constraint checks.

        Returns:
            (hard_violations, soft_violations)
        """
        hard: List[ConstraintViolation] = []
        soft: List[ConstraintViolation] = []

        hard.extend(self.check_eligibility(schedule.days))
        hard.extend(self.check_tier_reservation(schedule.days))
        hard.extend(self.check_quota(schedule.days))
        hard.extend(self.check_spacing(schedule.days))
        hard.extend(self.check_consecutive_saturdays(schedule.days))
        soft.extend(self.check_uncovered(schedule))
        soft.extend(self.check_count_drift(schedule))

        if hard:
            logger.warning(f"Call schedule has {len(hard)} hard violations")
        return hard, soft
