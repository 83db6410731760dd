"""
config.py — Input loading and validation for the fellowship roster engine

Loads the fellow roster and rotation-block table (CSV via pandas) and the rule
configuration (JSON).  Re-exports the schedule_config defaults.

roster_key.csv columns:
  id, name, initials, tier, clinic_day, vacation_prefs
  (vacation_prefs: semicolon-separated block keys, e.g. SEP1;OCT1;JAN1;FEB2)

rotation_schedule.csv columns:
  fellow_id, JUL1, JUL2, AUG1, ... JUN2   (one rotation code per block)
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fellow_roster.models import Fellow, RotationTable, TIERS, parse_weekday
from fellow_roster.schedule_config import (    # noqa: F401
    RuleConfiguration,
    SENIOR_HOLIDAY_JULY4_FALLBACK,
    SENIOR_HOLIDAY_POOL,
)

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_ROSTER_PATH = DEFAULT_CONFIG_DIR / "roster_key.csv"
DEFAULT_ROTATION_PATH = DEFAULT_CONFIG_DIR / "rotation_schedule.csv"
DEFAULT_RULES_PATH = DEFAULT_CONFIG_DIR / "rules.json"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:   # NaN from pandas
        return True
    return not str(value).strip() or str(value).strip().lower() == "nan"


def _parse_prefs(raw: Any) -> Tuple[str, ...]:
    if _is_blank(raw):
        return ()
    s = str(raw).replace(",", ";").replace("|", ";")
    return tuple(p.strip().upper() for p in s.split(";") if p.strip())


# ---------------------------------------------------------------------------
# Roster loader
# ---------------------------------------------------------------------------

def load_roster(roster_path: Optional[Path] = None) -> List[Fellow]:
    """
    Load fellows from roster_key.csv, in file order.

    Raises FileNotFoundError if the file is missing and ValueError for unknown
    tiers, duplicate ids or unreadable clinic weekdays.
    """
    import pandas as pd

    path = Path(roster_path or DEFAULT_ROSTER_PATH)
    if not path.exists():
        raise FileNotFoundError(f"Roster file not found: {path}")

    df = pd.read_csv(path, dtype=str)

    fellows: List[Fellow] = []
    for _, row in df.iterrows():
        tier = str(row["tier"]).strip().upper()
        if not tier.startswith("PGY-"):
            tier = f"PGY-{tier}"
        if tier not in TIERS:
            raise ValueError(f"Fellow {row['id']}: unknown tier {row['tier']!r}")
        clinic_raw = row.get("clinic_day")
        fellows.append(Fellow(
            id=str(row["id"]).strip(),
            name=str(row["name"]).strip(),
            tier=tier,
            vacation_prefs=_parse_prefs(row.get("vacation_prefs")),
            clinic_day=None if _is_blank(clinic_raw) else parse_weekday(str(clinic_raw)),
            initials="" if _is_blank(row.get("initials")) else str(row["initials"]).strip(),
        ))

    ids = [f.id for f in fellows]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        raise ValueError(f"Duplicate fellow ids in roster: {dupes}")

    logger.info(f"Loaded {len(fellows)} fellows from {path}")
    return fellows


# ---------------------------------------------------------------------------
# Rotation table loader
# ---------------------------------------------------------------------------

def load_rotation_schedule(rotation_path: Optional[Path] = None) -> RotationTable:
    """
    Load the fellow × block rotation table.  Returns {} if the file is missing
    (every fellow is then treated as available on every block).
    """
    import pandas as pd

    path = Path(rotation_path or DEFAULT_ROTATION_PATH)
    if not path.exists():
        logger.warning(f"Rotation schedule not found: {path}. Returning empty table.")
        return {}

    df = pd.read_csv(path, dtype=str)
    if "fellow_id" not in df.columns:
        raise ValueError(f"{path}: missing 'fellow_id' column")

    block_columns = [c for c in df.columns if c != "fellow_id"]
    table: RotationTable = {}
    for _, row in df.iterrows():
        fid = str(row["fellow_id"]).strip()
        table[fid] = {
            str(col).strip().upper(): str(row[col]).strip()
            for col in block_columns
            if not _is_blank(row[col])
        }

    logger.info(f"Loaded rotation schedule: {len(table)} fellows × {len(block_columns)} blocks from {path}")
    return table


# ---------------------------------------------------------------------------
# Rule configuration
# ---------------------------------------------------------------------------

def load_rules(rules_path: Optional[Path] = None) -> RuleConfiguration:
    """Load rules JSON merged over defaults.  Missing or corrupt file → defaults."""
    path = Path(rules_path or DEFAULT_RULES_PATH)
    if not path.exists():
        logger.info(f"Rules file not found: {path}. Using default rule configuration.")
        return RuleConfiguration()
    try:
        with open(path) as f:
            data = json.load(f)
        rules = RuleConfiguration.from_dict(data)
    except (json.JSONDecodeError, TypeError, ValueError, AttributeError, KeyError) as e:
        logger.warning(f"Rules file {path} is unreadable ({e}). Using default rule configuration.")
        return RuleConfiguration()
    logger.info(f"Loaded rule configuration from {path}")
    return rules


def save_rules(rules: RuleConfiguration, rules_path: Optional[Path] = None) -> None:
    path = Path(rules_path or DEFAULT_RULES_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(rules.to_dict(), f, indent=2)
    logger.info(f"Rule configuration saved to {path}")


def _check_tier_list(label: str, tiers: List[str], known: List[str], errors: List[str]) -> None:
    unknown = [t for t in tiers if t not in known]
    if unknown:
        errors.append(f"{label}: unknown tiers {unknown}")
    dupes = sorted({t for t in tiers if tiers.count(t) > 1})
    if dupes:
        errors.append(f"{label}: duplicate tiers {dupes}")


def validate_rules(rules: RuleConfiguration) -> Tuple[List[str], List[str]]:
    """
    Validate a rule configuration for structural sanity.

    Returns:
        (errors, warnings) as lists of strings
    """
    errors: List[str] = []
    warnings: List[str] = []
    tiers = list(rules.tiers)

    if len(tiers) != len(set(tiers)) or not tiers:
        errors.append(f"Tier list must be non-empty and unique: {tiers}")

    # Vacation
    vac = rules.vacation
    if not 0 <= vac.max_vacations_per_year <= 2:
        errors.append(f"vacation.max_vacations_per_year must be 0..2, got {vac.max_vacations_per_year}")
    if not 1 <= vac.min_spacing_blocks <= 23:
        errors.append(f"vacation.min_spacing_blocks must be 1..23, got {vac.min_spacing_blocks}")
    if vac.max_fellows_per_block < 1 or vac.max_total_per_block < 1:
        errors.append("vacation block capacity must be at least 1")
    if vac.max_fellows_per_block > vac.max_total_per_block:
        warnings.append(
            f"vacation.max_fellows_per_block ({vac.max_fellows_per_block}) exceeds "
            f"max_total_per_block ({vac.max_total_per_block}); the system-wide cap wins"
        )
    if vac.timeout_seconds <= 0 or vac.max_tries_per_attempt < 1:
        errors.append("vacation search needs a positive timeout and try ceiling")
    _check_tier_list("vacation.tier_order", vac.tier_order, tiers, errors)

    # Primary call
    call = rules.primary_call
    for tier in tiers:
        quota = call.max_calls.get(tier)
        if quota is None:
            errors.append(f"primary_call.max_calls missing tier {tier}")
        elif not 0 <= quota <= 366:
            errors.append(f"primary_call.max_calls[{tier}] must be 0..366, got {quota}")
    if not 1 <= call.min_spacing_days <= 30:
        errors.append(f"primary_call.min_spacing_days must be 1..30, got {call.min_spacing_days}")
    try:
        month, day = (int(p) for p in call.junior_start.split("-"))
        if not (1 <= month <= 12 and 1 <= day <= 31):
            raise ValueError
    except (ValueError, AttributeError):
        errors.append(f"primary_call.junior_start must be MM-DD, got {call.junior_start!r}")
    for weekday, order in call.weekday_priority.items():
        if not 0 <= int(weekday) <= 6:
            errors.append(f"primary_call.weekday_priority has invalid weekday {weekday}")
        _check_tier_list(f"primary_call.weekday_priority[{weekday}]", order, tiers, errors)
    for weekday in range(5):
        if weekday not in call.weekday_priority:
            warnings.append(f"primary_call.weekday_priority has no entry for weekday {weekday}")
    _check_tier_list("primary_call.weekend_priority", call.weekend_priority, tiers, errors)
    _check_tier_list("primary_call.weekend_priority_before_start",
                     call.weekend_priority_before_start, tiers, errors)
    for rotation, weekdays in call.rotation_weekday_exclusions.items():
        bad = [d for d in weekdays if not 0 <= int(d) <= 6]
        if bad:
            errors.append(f"primary_call.rotation_weekday_exclusions[{rotation}] invalid weekdays {bad}")
    if call.repair_window_days < 1 or call.repair_max_steps < 1:
        errors.append("primary_call repair window and step limit must be positive")

    # HF
    hf = rules.hf
    for tier in tiers:
        if hf.weekend_quotas.get(tier, 0) < 0:
            errors.append(f"hf.weekend_quotas[{tier}] must be ≥ 0")
    _check_tier_list("hf.hard_cap_tiers", hf.hard_cap_tiers, tiers, errors)
    _check_tier_list("hf.rotation_only_tiers", hf.rotation_only_tiers, tiers, errors)
    _check_tier_list("hf.holiday_eligible_tiers", hf.holiday_eligible_tiers, tiers, errors)
    if not hf.holiday_eligible_tiers:
        warnings.append("hf.holiday_eligible_tiers is empty; holiday blocks will stay uncovered")
    if hf.senior_holiday_mode not in (SENIOR_HOLIDAY_JULY4_FALLBACK, SENIOR_HOLIDAY_POOL):
        errors.append(f"hf.senior_holiday_mode must be '{SENIOR_HOLIDAY_JULY4_FALLBACK}' "
                      f"or '{SENIOR_HOLIDAY_POOL}', got {hf.senior_holiday_mode!r}")
    if not 0 <= hf.min_spacing_days <= 60:
        errors.append(f"hf.min_spacing_days must be 0..60, got {hf.min_spacing_days}")
    if hf.max_distribution_passes < 1:
        errors.append("hf.max_distribution_passes must be at least 1")

    # Clinics
    clinics = rules.clinics
    bad_days = [d for d in clinics.general_clinic_weekdays if not 0 <= int(d) <= 6]
    if bad_days:
        errors.append(f"clinics.general_clinic_weekdays invalid weekdays {bad_days}")
    for ctype, rule in clinics.specialty_clinics.items():
        if not 0 <= rule.weekday <= 6:
            errors.append(f"clinics.{ctype}.weekday must be 0..6, got {rule.weekday}")
        if rule.weeks_of_month is not None and any(not 1 <= w <= 6 for w in rule.weeks_of_month):
            errors.append(f"clinics.{ctype}.weeks_of_month must be within 1..6")
        if not rule.eligible_rotations:
            warnings.append(f"clinics.{ctype} has no eligible rotations; it will never be staffed")
        _check_tier_list(f"clinics.{ctype}.eligible_tiers", rule.eligible_tiers, tiers, errors)
    unknown_skip = [t for t in clinics.week_skip_types if t not in clinics.specialty_clinics]
    if unknown_skip:
        warnings.append(f"clinics.week_skip_types names unknown clinic types {unknown_skip}")

    # Ambulatory
    amb = rules.ambulatory
    if amb.max_assignments_per_fellow < 1:
        errors.append(f"ambulatory.max_assignments_per_fellow must be ≥ 1, got {amb.max_assignments_per_fellow}")
    _check_tier_list("ambulatory.eligible_tiers", amb.eligible_tiers, tiers, errors)
    if not amb.rotation_priority:
        warnings.append("ambulatory.rotation_priority is empty; no ambulatory fellow will be assigned")

    return errors, warnings


def validate_roster(fellows: List[Fellow], rules: Optional[RuleConfiguration] = None) -> Tuple[List[str], List[str]]:
    """
    Roster structural checks.

    Returns:
        (errors, warnings) as lists of strings
    """
    rules = rules or RuleConfiguration()
    errors: List[str] = []
    warnings: List[str] = []

    if not fellows:
        errors.append("Roster is empty")
        return errors, warnings

    ids = [f.id for f in fellows]
    dupes = sorted({i for i in ids if ids.count(i) > 1})
    if dupes:
        errors.append(f"Duplicate fellow ids: {dupes}")

    for tier in rules.tiers:
        n = sum(1 for f in fellows if f.tier == tier)
        if n == 0:
            warnings.append(f"No fellows in tier {tier}")
    for f in fellows:
        if f.tier not in rules.tiers:
            errors.append(f"{f.name}: tier {f.tier} not in configured tiers {rules.tiers}")
        if f.clinic_day is not None and f.clinic_day not in rules.clinics.general_clinic_weekdays:
            warnings.append(f"{f.name}: preferred clinic day {f.clinic_day} is not a general-clinic weekday")
        if not f.vacation_prefs:
            warnings.append(f"{f.name}: no vacation preferences listed")

    return errors, warnings
