"""
Fellowship Roster Assignment Engine

Modules:
- config / schedule_config: roster and rotation loaders, rule configuration
- academic_calendar: academic year, holidays, holiday blocks, 2-week blocks
- eligibility: shared per-day eligibility pools and reasons
- vacation: vacation block solver
- call_engine / repair / constraints / call_edits: primary call build, repair, checks, manual edits
- hf_engine: Heart Failure weekend and holiday coverage
- clinic_engine: general and specialty clinics, ambulatory fellow
- store: injected persistence
- exporter / dry_run: outputs and orchestration
"""

from .config import (
    load_roster,
    load_rotation_schedule,
    load_rules,
    save_rules,
    validate_roster,
    validate_rules,
)
from .schedule_config import RuleConfiguration
from .academic_calendar import AcademicYear, compute_academic_year_holidays
from .eligibility import RosterContext, build_eligibility_pools, ineligibility_reasons
from .vacation import apply_vacations, solve_all_vacations, solve_vacations
from .call_engine import build_call_schedule, calculate_fairness_metrics
from .constraints import CallConstraintChecker
from .call_edits import (
    apply_call_assignment,
    audit_call_counts,
    move_call_day,
    repair_call_counts,
    suggest_swaps,
    swap_call_days,
    validate_call_assignment,
)
from .hf_engine import (
    HFCoverageChecker,
    assign_hf_coverage,
    build_hf_schedule,
    clear_hf_coverage,
    get_effective_hf_assignment,
)
from .clinic_engine import apply_ambulatory_assignment, build_clinic_schedule, check_clinic_coverage
from .store import InMemoryStore, JsonFileStore, ScheduleStore

__all__ = [
    "load_roster",
    "load_rotation_schedule",
    "load_rules",
    "save_rules",
    "validate_roster",
    "validate_rules",
    "RuleConfiguration",
    "AcademicYear",
    "compute_academic_year_holidays",
    "RosterContext",
    "build_eligibility_pools",
    "ineligibility_reasons",
    "apply_vacations",
    "solve_all_vacations",
    "solve_vacations",
    "build_call_schedule",
    "calculate_fairness_metrics",
    "CallConstraintChecker",
    "apply_call_assignment",
    "audit_call_counts",
    "move_call_day",
    "repair_call_counts",
    "suggest_swaps",
    "swap_call_days",
    "validate_call_assignment",
    "HFCoverageChecker",
    "assign_hf_coverage",
    "build_hf_schedule",
    "clear_hf_coverage",
    "get_effective_hf_assignment",
    "apply_ambulatory_assignment",
    "build_clinic_schedule",
    "check_clinic_coverage",
    "InMemoryStore",
    "JsonFileStore",
    "ScheduleStore",
]
