"""
models.py — Records shared by every scheduler

Inputs:
  - Fellow:        identity, tier (PGY-4 < PGY-5 < PGY-6), vacation preferences,
                   preferred general-clinic weekday
  - Holiday / HolidayBlock / Block: calendar units (see academic_calendar.py)
  - RotationTable: fellow_id → {block_key: rotation code}

Outputs (value objects; manual edits return deep copies, never mutate):
  - CallSchedule:   ISO date → fellow_id, plus denormalized per-fellow counts
  - CoverageMetadata: uncovered call dates and success of the last build
  - HFSchedule:     weekend / holiday-block coverage, counts, day overrides
  - ClinicSchedule: ISO date → [(fellow_id, clinic_type)], ambulatory fellow
                    by block and by day

Every record round-trips through to_dict() / from_dict() so store.py can
persist it as plain JSON.
"""

import copy
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
TIERS = ("PGY-4", "PGY-5", "PGY-6")

VACATION = "VAC"
HF_ROTATION = "HF"

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

# Clinic types
GENERAL = "GENERAL"
HEART_FAILURE = "HEART_FAILURE"
ACHD = "ACHD"
DEVICE = "DEVICE"
EP_CLINIC = "EP"
AMBULATORY_FELLOW = "AMBULATORY_FELLOW"

RotationTable = Dict[str, Dict[str, str]]   # fellow_id → {block_key: rotation}


def parse_weekday(value: Any) -> Optional[int]:
    """Accept 0–6 or a weekday name ('Monday', 'mon'); None/blank → None."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid weekday: {value!r}")
    if isinstance(value, int):
        if 0 <= value <= 6:
            return value
        raise ValueError(f"Weekday out of range 0..6: {value}")
    s = str(value).strip()
    if not s or s.lower() == "nan":
        return None
    if s.isdigit():
        return parse_weekday(int(s))
    for i, name in enumerate(WEEKDAY_NAMES):
        if name.lower().startswith(s.lower()[:3]):
            return i
    raise ValueError(f"Unknown weekday: {value!r}")


# ---------------------------------------------------------------------------
# Roster / calendar records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Fellow:
    id: str
    name: str
    tier: str
    vacation_prefs: Tuple[str, ...] = ()
    clinic_day: Optional[int] = None
    initials: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tier": self.tier,
            "vacation_prefs": list(self.vacation_prefs),
            "clinic_day": self.clinic_day,
            "initials": self.initials,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fellow":
        tier = str(data["tier"])
        if tier not in TIERS:
            raise ValueError(f"Unknown tier {tier!r} for fellow {data.get('id')}")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            tier=tier,
            vacation_prefs=tuple(str(k).strip().upper() for k in data.get("vacation_prefs") or ()),
            clinic_day=parse_weekday(data.get("clinic_day")),
            initials=str(data.get("initials") or ""),
        )


@dataclass(frozen=True)
class Holiday:
    id: str
    name: str
    date: date

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "date": self.date.isoformat()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Holiday":
        return cls(id=str(data["id"]), name=str(data["name"]), date=date.fromisoformat(data["date"]))


@dataclass(frozen=True)
class HolidayBlock:
    holiday: Holiday
    dates: Tuple[date, ...]

    @property
    def start(self) -> date:
        return self.dates[0]

    @property
    def end(self) -> date:
        return self.dates[-1]


@dataclass(frozen=True)
class Block:
    key: str
    index: int
    start: date
    end: date


@dataclass
class Setup:
    """What the setup step persists: year anchor, roster and holiday list."""
    year_start: date
    fellows: List[Fellow]
    holidays: List[Holiday] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year_start": self.year_start.isoformat(),
            "fellows": [f.to_dict() for f in self.fellows],
            "holidays": [h.to_dict() for h in self.holidays],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Setup":
        fellows = [Fellow.from_dict(f) for f in data["fellows"]]
        if not fellows:
            raise ValueError("Setup has no fellows")
        return cls(
            year_start=date.fromisoformat(data["year_start"]),
            fellows=fellows,
            holidays=[Holiday.from_dict(h) for h in data.get("holidays") or []],
        )


# ---------------------------------------------------------------------------
# Primary call
# ---------------------------------------------------------------------------

def tally_counts(days: Dict[str, str], fellow_ids: Optional[List[str]] = None) -> Dict[str, int]:
    """True per-fellow count of a day map (fellow_ids seeds zero entries)."""
    counts: Dict[str, int] = {fid: 0 for fid in fellow_ids or []}
    for fid in days.values():
        counts[fid] = counts.get(fid, 0) + 1
    return counts


@dataclass
class CallSchedule:
    year_start: str
    days: Dict[str, str] = field(default_factory=dict)
    counts_by_fellow: Dict[str, int] = field(default_factory=dict)

    def copy(self) -> "CallSchedule":
        return copy.deepcopy(self)

    def with_days(self, days: Dict[str, str]) -> "CallSchedule":
        """New schedule over `days` with counts recomputed (roster keys kept at 0)."""
        ordered = dict(sorted(days.items()))
        return CallSchedule(
            year_start=self.year_start,
            days=ordered,
            counts_by_fellow=tally_counts(ordered, list(self.counts_by_fellow)),
        )

    def fellow_on(self, day: date) -> Optional[str]:
        return self.days.get(day.isoformat())

    def fellow_days(self, fellow_id: str) -> List[str]:
        return sorted(d for d, fid in self.days.items() if fid == fellow_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year_start": self.year_start,
            "days": dict(self.days),
            "counts_by_fellow": dict(self.counts_by_fellow),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallSchedule":
        days = data["days"]
        if not isinstance(days, dict):
            raise ValueError("CallSchedule.days must be a mapping")
        for d in days:
            date.fromisoformat(d)
        return cls(
            year_start=str(data["year_start"]),
            days={str(k): str(v) for k, v in days.items()},
            counts_by_fellow={str(k): int(v) for k, v in (data.get("counts_by_fellow") or {}).items()},
        )


@dataclass
class CoverageMetadata:
    """Outcome of the last primary-call build: uncovered dates and success flag."""
    uncovered: List[str] = field(default_factory=list)    # ISO dates
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"uncovered": list(self.uncovered), "success": self.success}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CoverageMetadata":
        uncovered = data["uncovered"]
        if not isinstance(uncovered, list):
            raise ValueError("CoverageMetadata.uncovered must be a list")
        for d in uncovered:
            date.fromisoformat(d)
        return cls(uncovered=[str(d) for d in uncovered], success=bool(data["success"]))


# ---------------------------------------------------------------------------
# HF coverage
# ---------------------------------------------------------------------------

class HolidayCoverage(NamedTuple):
    fellow_id: str
    dates: Tuple[str, ...]


@dataclass
class HFSchedule:
    year_start: str
    weekends: Dict[str, str] = field(default_factory=dict)               # Saturday ISO → fellow
    holidays: Dict[str, HolidayCoverage] = field(default_factory=dict)   # block start ISO → coverage
    weekend_counts: Dict[str, int] = field(default_factory=dict)
    holiday_day_counts: Dict[str, int] = field(default_factory=dict)
    day_overrides: Dict[str, Optional[str]] = field(default_factory=dict)  # None = explicitly cleared

    def copy(self) -> "HFSchedule":
        return copy.deepcopy(self)

    def total_count(self, fellow_id: str) -> int:
        return self.weekend_counts.get(fellow_id, 0) + self.holiday_day_counts.get(fellow_id, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year_start": self.year_start,
            "weekends": dict(self.weekends),
            "holidays": {k: [v.fellow_id, list(v.dates)] for k, v in self.holidays.items()},
            "weekend_counts": dict(self.weekend_counts),
            "holiday_day_counts": dict(self.holiday_day_counts),
            "day_overrides": dict(self.day_overrides),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HFSchedule":
        holidays: Dict[str, HolidayCoverage] = {}
        for start, entry in (data.get("holidays") or {}).items():
            fellow_id, dates = entry
            holidays[str(start)] = HolidayCoverage(str(fellow_id), tuple(str(d) for d in dates))
        return cls(
            year_start=str(data["year_start"]),
            weekends={str(k): str(v) for k, v in (data.get("weekends") or {}).items()},
            holidays=holidays,
            weekend_counts={str(k): int(v) for k, v in (data.get("weekend_counts") or {}).items()},
            holiday_day_counts={str(k): int(v) for k, v in (data.get("holiday_day_counts") or {}).items()},
            day_overrides={
                str(k): (None if v is None else str(v))
                for k, v in (data.get("day_overrides") or {}).items()
            },
        )


# ---------------------------------------------------------------------------
# Clinics
# ---------------------------------------------------------------------------

class ClinicAssignment(NamedTuple):
    fellow_id: str
    clinic_type: str


@dataclass
class ClinicSchedule:
    year_start: str
    days: Dict[str, List[ClinicAssignment]] = field(default_factory=dict)
    counts_by_fellow: Dict[str, Dict[str, int]] = field(default_factory=dict)
    ambulatory: Dict[str, str] = field(default_factory=dict)        # block key → fellow
    ambulatory_counts: Dict[str, int] = field(default_factory=dict)
    ambulatory_days: Dict[str, str] = field(default_factory=dict)   # ISO date → fellow

    def copy(self) -> "ClinicSchedule":
        return copy.deepcopy(self)

    def assignments_on(self, day: date) -> List[ClinicAssignment]:
        return list(self.days.get(day.isoformat(), []))

    def ambulatory_on(self, day: date) -> Optional[str]:
        return self.ambulatory_days.get(day.isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year_start": self.year_start,
            "days": {
                d: [{"fellow_id": a.fellow_id, "clinic_type": a.clinic_type} for a in items]
                for d, items in self.days.items()
            },
            "counts_by_fellow": {k: dict(v) for k, v in self.counts_by_fellow.items()},
            "ambulatory": dict(self.ambulatory),
            "ambulatory_counts": dict(self.ambulatory_counts),
            "ambulatory_days": dict(self.ambulatory_days),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClinicSchedule":
        days = {
            str(d): [ClinicAssignment(str(a["fellow_id"]), str(a["clinic_type"])) for a in items]
            for d, items in (data.get("days") or {}).items()
        }
        return cls(
            year_start=str(data["year_start"]),
            days=days,
            counts_by_fellow={
                str(k): {str(t): int(n) for t, n in v.items()}
                for k, v in (data.get("counts_by_fellow") or {}).items()
            },
            ambulatory={str(k): str(v) for k, v in (data.get("ambulatory") or {}).items()},
            ambulatory_counts={str(k): int(v) for k, v in (data.get("ambulatory_counts") or {}).items()},
            ambulatory_days={str(k): str(v) for k, v in (data.get("ambulatory_days") or {}).items()},
        )
