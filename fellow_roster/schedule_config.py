"""
schedule_config.py — Rule configuration for the fellowship roster engine

All tunable thresholds live here.  RuleConfiguration is loaded once per run
(config.load_rules) and never mutated by the engine.  Weekdays follow Python's
date.weekday(): Mon=0 … Sun=6.

TIERS
─────
  PGY-4 (junior) < PGY-5 < PGY-6 (senior).

VACATIONS
─────────
  Up to 2 blocks per fellow, ≥6 blocks apart.
  At most 2 fellows per block within a tier and 2 system-wide.
  No vacation in July.  No August vacation for PGY-4.

PRIMARY CALL
────────────
  Annual maximum per tier.  Minimum spacing of 4 days between calls.
  PGY-4 starts call on Aug 15.  From then on PGY-4 is the exclusive
  weekend/holiday tier; before then weekends go to PGY-5, then PGY-6.
  Weekday tier priority:
    Mon [5,4,6]   Tue [5,4,6]   Wed [4,5,6]   Thu [6,4,5]   Fri [4,5,6]
  Excluded rotations: VAC, HF.  EP fellows take no Tue/Thu call.
  No call the night before one of your specialty clinics.
  No consecutive Saturdays.

HF COVERAGE
───────────
  Non-holiday weekend quotas: PGY-4 2 (hard cap), PGY-5 7, PGY-6 2.
  PGY-4 and PGY-6 only while on the HF rotation.
  Holiday blocks go to PGY-5.  PGY-6 covers Independence Day only as a fallback
  (senior_holiday_mode = "july4_fallback"), or joins the pool ("pool").
  Minimum spacing of 14 days, no consecutive weekends, no primary call on the
  Friday before or on the weekend itself.

CLINICS
───────
  General clinic: Mon / Wed / Thu on the fellow's preferred weekday.
  Specialty:
    HEART_FAILURE  Tue                   NONINVASIVE  PGY-5/6
    ACHD           Mon                   LAC_CATH     PGY-5/6
    DEVICE         Fri                   EP           any tier
    EP             Wed, weeks 1 and 3    EP           any tier
  Skipped for: VAC (all), CCU/HF (general), post-call, holidays.
  A HEART_FAILURE or ACHD clinic earlier in the week (or that day) removes
  the general clinic for the rest of that Monday-based week.

AMBULATORY FELLOW
─────────────────
  One PGY-5/6 per 2-week block, drawn from NUCLEAR → NONINVASIVE → ELECTIVE → EP.
  At most 3 blocks per fellow, never two blocks in a row.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fellow_roster.models import ACHD, DEVICE, EP_CLINIC, HEART_FAILURE, TIERS

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
DEFAULT_TIERS: List[str] = list(TIERS)

# Vacation
DEFAULT_MAX_VACATIONS = 2
DEFAULT_MIN_SPACING_BLOCKS = 6
DEFAULT_MAX_FELLOWS_PER_BLOCK = 2
DEFAULT_MAX_TOTAL_PER_BLOCK = 2
DEFAULT_VACATION_TIMEOUT_SECONDS = 10.0
DEFAULT_VACATION_ATTEMPT_TIMEOUT_SECONDS = 2.0
DEFAULT_VACATION_MAX_TRIES = 20000

# Primary call
DEFAULT_MAX_CALLS: Dict[str, int] = {"PGY-4": 60, "PGY-5": 50, "PGY-6": 30}
DEFAULT_CALL_SPACING_DAYS = 4
DEFAULT_JUNIOR_START = "08-15"          # MM-DD within the academic year
DEFAULT_WEEKDAY_PRIORITY: Dict[int, List[str]] = {
    0: ["PGY-5", "PGY-4", "PGY-6"],
    1: ["PGY-5", "PGY-4", "PGY-6"],
    2: ["PGY-4", "PGY-5", "PGY-6"],
    3: ["PGY-6", "PGY-4", "PGY-5"],
    4: ["PGY-4", "PGY-5", "PGY-6"],
}
DEFAULT_WEEKEND_PRIORITY: List[str] = ["PGY-4"]
DEFAULT_WEEKEND_PRIORITY_BEFORE_START: List[str] = ["PGY-5", "PGY-6"]
DEFAULT_CALL_EXCLUDED_ROTATIONS: List[str] = ["VAC", "HF"]
DEFAULT_ROTATION_WEEKDAY_EXCLUSIONS: Dict[str, List[int]] = {"EP": [1, 3]}
DEFAULT_REPAIR_WINDOW_DAYS = 5
DEFAULT_REPAIR_MAX_STEPS = 20000
DEFAULT_REPAIR_WIDEN_FACTOR = 2

# HF coverage
DEFAULT_HF_WEEKEND_QUOTAS: Dict[str, int] = {"PGY-4": 2, "PGY-5": 7, "PGY-6": 2}
DEFAULT_HF_HARD_CAP_TIERS: List[str] = ["PGY-4"]
DEFAULT_HF_ROTATION_ONLY_TIERS: List[str] = ["PGY-4", "PGY-6"]
DEFAULT_HF_HOLIDAY_TIERS: List[str] = ["PGY-5"]
DEFAULT_HF_SPACING_DAYS = 14
DEFAULT_HF_PASSES = 4
SENIOR_HOLIDAY_JULY4_FALLBACK = "july4_fallback"
SENIOR_HOLIDAY_POOL = "pool"

# Clinics
DEFAULT_GENERAL_CLINIC_WEEKDAYS: List[int] = [0, 2, 3]
DEFAULT_GENERAL_EXCLUDED_ROTATIONS: List[str] = ["VAC", "CCU", "HF"]
DEFAULT_SPECIALTY_EXCLUDED_ROTATIONS: List[str] = ["VAC"]
DEFAULT_WEEK_SKIP_CLINICS: List[str] = [HEART_FAILURE, ACHD]

# Ambulatory
DEFAULT_AMBULATORY_TIERS: List[str] = ["PGY-5", "PGY-6"]
DEFAULT_AMBULATORY_MAX = 3
DEFAULT_AMBULATORY_ROTATION_PRIORITY: List[str] = ["NUCLEAR", "NONINVASIVE", "ELECTIVE", "EP"]


def _int_keys(mapping: Dict[Any, Any]) -> Dict[int, Any]:
    """JSON object keys are strings; weekday maps want ints."""
    return {int(k): v for k, v in mapping.items()}


# ---------------------------------------------------------------------------
# Rule sections
# ---------------------------------------------------------------------------

@dataclass
class VacationRules:
    max_vacations_per_year: int = DEFAULT_MAX_VACATIONS
    min_spacing_blocks: int = DEFAULT_MIN_SPACING_BLOCKS
    max_fellows_per_block: int = DEFAULT_MAX_FELLOWS_PER_BLOCK
    max_total_per_block: int = DEFAULT_MAX_TOTAL_PER_BLOCK
    july_restriction: bool = True
    junior_august_restriction: bool = True
    tier_order: List[str] = field(default_factory=lambda: list(DEFAULT_TIERS))
    timeout_seconds: float = DEFAULT_VACATION_TIMEOUT_SECONDS
    attempt_timeout_seconds: float = DEFAULT_VACATION_ATTEMPT_TIMEOUT_SECONDS
    max_tries_per_attempt: int = DEFAULT_VACATION_MAX_TRIES


@dataclass
class PrimaryCallRules:
    max_calls: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_MAX_CALLS))
    min_spacing_days: int = DEFAULT_CALL_SPACING_DAYS
    junior_start: str = DEFAULT_JUNIOR_START
    weekday_priority: Dict[int, List[str]] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_WEEKDAY_PRIORITY))
    weekend_priority: List[str] = field(default_factory=lambda: list(DEFAULT_WEEKEND_PRIORITY))
    weekend_priority_before_start: List[str] = field(
        default_factory=lambda: list(DEFAULT_WEEKEND_PRIORITY_BEFORE_START))
    junior_exclusive_weekends: bool = True
    exclude_rotations: List[str] = field(default_factory=lambda: list(DEFAULT_CALL_EXCLUDED_ROTATIONS))
    rotation_weekday_exclusions: Dict[str, List[int]] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_ROTATION_WEEKDAY_EXCLUSIONS))
    exclude_before_specialty_clinic: bool = True
    no_consecutive_saturdays: bool = True
    repair_window_days: int = DEFAULT_REPAIR_WINDOW_DAYS
    repair_max_steps: int = DEFAULT_REPAIR_MAX_STEPS
    repair_widen_factor: int = DEFAULT_REPAIR_WIDEN_FACTOR

    def quota_for(self, tier: str) -> int:
        return self.max_calls.get(tier, 0)


@dataclass
class HFRules:
    weekend_quotas: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_HF_WEEKEND_QUOTAS))
    hard_cap_tiers: List[str] = field(default_factory=lambda: list(DEFAULT_HF_HARD_CAP_TIERS))
    rotation_only_tiers: List[str] = field(default_factory=lambda: list(DEFAULT_HF_ROTATION_ONLY_TIERS))
    holiday_eligible_tiers: List[str] = field(default_factory=lambda: list(DEFAULT_HF_HOLIDAY_TIERS))
    senior_holiday_mode: str = SENIOR_HOLIDAY_JULY4_FALLBACK
    hf_rotation: str = "HF"
    exclude_rotations: List[str] = field(default_factory=lambda: ["VAC"])
    min_spacing_days: int = DEFAULT_HF_SPACING_DAYS
    no_consecutive_weekends: bool = True
    exclude_primary_call_friday: bool = True
    exclude_primary_call_weekend: bool = True
    max_distribution_passes: int = DEFAULT_HF_PASSES

    def quota_for(self, tier: str) -> int:
        return self.weekend_quotas.get(tier, 0)


@dataclass
class SpecialtyClinicRule:
    weekday: int
    eligible_rotations: List[str]
    eligible_tiers: List[str] = field(default_factory=list)       # empty = every tier
    weeks_of_month: Optional[List[int]] = None                    # None = every week
    required_only_when_staffed: bool = False

    def runs_on(self, weekday: int, week: int) -> bool:
        if weekday != self.weekday:
            return False
        return self.weeks_of_month is None or week in self.weeks_of_month

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weekday": self.weekday,
            "eligible_rotations": list(self.eligible_rotations),
            "eligible_tiers": list(self.eligible_tiers),
            "weeks_of_month": None if self.weeks_of_month is None else list(self.weeks_of_month),
            "required_only_when_staffed": self.required_only_when_staffed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpecialtyClinicRule":
        weeks = data.get("weeks_of_month")
        return cls(
            weekday=int(data["weekday"]),
            eligible_rotations=[str(r) for r in data.get("eligible_rotations", [])],
            eligible_tiers=[str(t) for t in data.get("eligible_tiers", [])],
            weeks_of_month=None if weeks is None else [int(w) for w in weeks],
            required_only_when_staffed=bool(data.get("required_only_when_staffed", False)),
        )


def default_specialty_clinics() -> Dict[str, SpecialtyClinicRule]:
    # Insertion order is assignment order.
    return {
        HEART_FAILURE: SpecialtyClinicRule(1, ["NONINVASIVE"], ["PGY-5", "PGY-6"]),
        ACHD: SpecialtyClinicRule(0, ["LAC_CATH"], ["PGY-5", "PGY-6"]),
        DEVICE: SpecialtyClinicRule(4, ["EP"], [], None, True),
        EP_CLINIC: SpecialtyClinicRule(2, ["EP"], [], [1, 3], True),
    }


@dataclass
class ClinicRules:
    general_clinic_weekdays: List[int] = field(default_factory=lambda: list(DEFAULT_GENERAL_CLINIC_WEEKDAYS))
    specialty_clinics: Dict[str, SpecialtyClinicRule] = field(default_factory=default_specialty_clinics)
    general_exclude_rotations: List[str] = field(
        default_factory=lambda: list(DEFAULT_GENERAL_EXCLUDED_ROTATIONS))
    specialty_exclude_rotations: List[str] = field(
        default_factory=lambda: list(DEFAULT_SPECIALTY_EXCLUDED_ROTATIONS))
    exclude_post_call: bool = True
    exclude_holidays: bool = True
    week_skip_types: List[str] = field(default_factory=lambda: list(DEFAULT_WEEK_SKIP_CLINICS))


@dataclass
class AmbulatoryRules:
    eligible_tiers: List[str] = field(default_factory=lambda: list(DEFAULT_AMBULATORY_TIERS))
    max_assignments_per_fellow: int = DEFAULT_AMBULATORY_MAX
    rotation_priority: List[str] = field(default_factory=lambda: list(DEFAULT_AMBULATORY_ROTATION_PRIORITY))
    no_consecutive_blocks: bool = True


# ---------------------------------------------------------------------------
# RuleConfiguration
# ---------------------------------------------------------------------------

_SECTION_TYPES = {
    "vacation": VacationRules,
    "primary_call": PrimaryCallRules,
    "hf": HFRules,
    "clinics": ClinicRules,
    "ambulatory": AmbulatoryRules,
}


@dataclass
class RuleConfiguration:
    tiers: List[str] = field(default_factory=lambda: list(DEFAULT_TIERS))
    vacation: VacationRules = field(default_factory=VacationRules)
    primary_call: PrimaryCallRules = field(default_factory=PrimaryCallRules)
    hf: HFRules = field(default_factory=HFRules)
    clinics: ClinicRules = field(default_factory=ClinicRules)
    ambulatory: AmbulatoryRules = field(default_factory=AmbulatoryRules)

    @property
    def junior_tier(self) -> str:
        return self.tiers[0]

    @property
    def senior_tier(self) -> str:
        return self.tiers[-1]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"tiers": list(self.tiers)}
        for name in _SECTION_TYPES:
            section = copy.deepcopy(getattr(self, name).__dict__)
            if name == "clinics":
                section["specialty_clinics"] = {
                    k: v.to_dict() for k, v in self.clinics.specialty_clinics.items()
                }
            out[name] = section
        return out

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RuleConfiguration":
        """
        Deep-merge a (possibly partial) settings dict over the defaults.
        Unknown keys are ignored; wrong value types raise TypeError/ValueError.
        """
        rules = cls()
        if not data:
            return rules
        if not isinstance(data, dict):
            raise TypeError(f"Rule configuration must be a mapping, got {type(data).__name__}")
        if "tiers" in data:
            rules.tiers = [str(t) for t in data["tiers"]]

        for name, section_type in _SECTION_TYPES.items():
            patch = data.get(name)
            if patch is None:
                continue
            if not isinstance(patch, dict):
                raise TypeError(f"Rule section '{name}' must be a mapping")
            section = getattr(rules, name)
            for key, value in patch.items():
                if key not in section.__dataclass_fields__:
                    continue
                if name == "clinics" and key == "specialty_clinics":
                    value = {str(k): SpecialtyClinicRule.from_dict(v) for k, v in value.items()}
                elif key in ("weekday_priority",):
                    value = {k: [str(t) for t in v] for k, v in _int_keys(value).items()}
                elif isinstance(getattr(section, key), dict):
                    value = {**getattr(section, key), **value}
                setattr(section, key, value)
        return rules
