"""
tests/test_calendar_config.py — Academic calendar, loaders, rule configuration

Covers:
  1. Holidays, holiday blocks and 2-week blocks for 2025-26
  2. Roster / rotation CSV loading and validation
  3. RuleConfiguration JSON round trip, partial merge, validation
"""

import json
import sys
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from fellow_roster.academic_calendar import (
    AcademicYear,
    block_key_for,
    compute_academic_year_holidays,
    week_of_month,
)
from fellow_roster.config import (
    load_roster,
    load_rotation_schedule,
    load_rules,
    save_rules,
    validate_roster,
    validate_rules,
)
from fellow_roster.models import Fellow, parse_weekday
from fellow_roster.schedule_config import RuleConfiguration, SENIOR_HOLIDAY_POOL


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

class TestHolidays:

    def test_thirteen_holidays(self, year):
        assert len(year.holidays) == 13
        assert year.holidays[0].date == date(2025, 7, 4)
        assert year.holidays[-1].date == date(2026, 6, 19)

    def test_floating_holidays(self):
        by_id = {h.id: h.date for h in compute_academic_year_holidays(date(2025, 7, 1))}
        assert by_id["labor_day"] == date(2025, 9, 1)
        assert by_id["thanksgiving"] == date(2025, 11, 27)
        assert by_id["mlk_day"] == date(2026, 1, 19)
        assert by_id["memorial_day"] == date(2026, 5, 25)

    def test_thanksgiving_block_absorbs_day_after(self, year):
        block = year.holiday_block_for(date(2025, 11, 28))
        assert block.holiday.id == "thanksgiving"
        assert block.dates == tuple(date(2025, 11, d) for d in (27, 28, 29, 30))
        assert len(year.holiday_blocks) == 12

    def test_monday_holiday_block(self, year):
        block = year.holiday_block_for(date(2025, 9, 1))
        assert block.dates == (date(2025, 8, 30), date(2025, 8, 31), date(2025, 9, 1))

    def test_friday_holiday_block(self, year):
        block = year.holiday_block_for(date(2025, 7, 4))
        assert block.dates == (date(2025, 7, 4), date(2025, 7, 5), date(2025, 7, 6))

    def test_single_day_holiday(self, year):
        block = year.holiday_block_for(date(2025, 12, 25))
        assert block.dates == (date(2025, 12, 25),)

    def test_explicit_holiday_list_wins(self, year):
        custom = AcademicYear(date(2025, 7, 1), year.holidays[:2])
        assert len(custom.holidays) == 2


class TestBlocks:

    def test_twenty_four_blocks(self, year):
        assert len(year.blocks) == 24
        assert [b.key for b in year.blocks[:3]] == ["JUL1", "JUL2", "AUG1"]
        assert year.blocks[-1].key == "JUN2"

    def test_block_boundaries(self, year):
        assert year.block_by_key["FEB2"].end == date(2026, 2, 28)
        assert block_key_for(date(2025, 7, 15)) == "JUL1"
        assert block_key_for(date(2025, 7, 16)) == "JUL2"

    def test_year_days(self, year):
        assert len(year.days) == 365
        assert year.end == date(2026, 6, 30)

    def test_week_of_month(self):
        assert week_of_month(date(2025, 10, 1)) == 1
        assert week_of_month(date(2025, 10, 15)) == 3
        assert week_of_month(date(2025, 10, 29)) == 5

    def test_week_of_month_follows_calendar_rows(self):
        # November 2025 starts on a Saturday: that day alone is week 1
        assert week_of_month(date(2025, 11, 1)) == 1
        assert week_of_month(date(2025, 11, 2)) == 2
        assert week_of_month(date(2025, 11, 5)) == 2
        assert week_of_month(date(2025, 11, 12)) == 3
        assert week_of_month(date(2025, 11, 19)) == 4


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------

class TestRosterLoading:

    def test_roster_loads(self, fellows):
        assert len(fellows) == 12
        for tier in ("PGY-4", "PGY-5", "PGY-6"):
            assert sum(1 for f in fellows if f.tier == tier) == 4

    def test_clinic_day_parsed(self, fellows):
        by_id = {f.id: f for f in fellows}
        assert by_id["f01"].clinic_day == 0
        assert by_id["f02"].clinic_day == 2

    def test_vacation_prefs_parsed(self, fellows):
        assert fellows[0].vacation_prefs == ("SEP1", "OCT1", "JAN1", "FEB2")

    def test_missing_roster_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_roster(tmp_path / "nope.csv")

    def test_unknown_tier_raises(self, tmp_path):
        path = tmp_path / "roster.csv"
        path.write_text("id,name,initials,tier,clinic_day,vacation_prefs\nx1,X Y,XY,PGY-9,Monday,\n")
        with pytest.raises(ValueError):
            load_roster(path)

    def test_duplicate_ids_raise(self, tmp_path):
        path = tmp_path / "roster.csv"
        path.write_text(
            "id,name,initials,tier,clinic_day,vacation_prefs\n"
            "x1,A,A,PGY-4,Monday,\n"
            "x1,B,B,PGY-5,Monday,\n"
        )
        with pytest.raises(ValueError, match="Duplicate"):
            load_roster(path)

    def test_parse_weekday(self):
        assert parse_weekday("thu") == 3
        assert parse_weekday(6) == 6
        assert parse_weekday("") is None
        with pytest.raises(ValueError):
            parse_weekday("someday")

    def test_roster_validates_cleanly(self, fellows):
        errors, warnings = validate_roster(fellows)
        assert errors == []
        assert warnings == []

    def test_empty_roster_is_an_error(self):
        errors, _ = validate_roster([])
        assert errors == ["Roster is empty"]


class TestRotationLoading:

    def test_rotation_table(self, rotations):
        assert len(rotations) == 12
        assert rotations["f01"]["JUL1"] == "LAC_CATH"
        assert rotations["f05"]["FEB1"] == "ELECTIVE (NUCLEAR)"
        assert all(len(row) == 24 for row in rotations.values())

    def test_missing_rotation_file_is_empty(self, tmp_path):
        assert load_rotation_schedule(tmp_path / "nope.csv") == {}


# ---------------------------------------------------------------------------
# Rule configuration
# ---------------------------------------------------------------------------

class TestRuleConfiguration:

    def test_defaults_validate(self, rules):
        errors, warnings = validate_rules(rules)
        assert errors == [], f"Default rules should be valid: {errors}"

    def test_round_trip(self, tmp_path):
        rules = RuleConfiguration()
        rules.hf.senior_holiday_mode = SENIOR_HOLIDAY_POOL
        path = tmp_path / "rules.json"
        save_rules(rules, path)
        loaded = load_rules(path)
        assert loaded.to_dict() == rules.to_dict()
        assert loaded.primary_call.weekday_priority[3] == ["PGY-6", "PGY-4", "PGY-5"]

    def test_partial_merge_keeps_other_defaults(self):
        rules = RuleConfiguration.from_dict({"primary_call": {"max_calls": {"PGY-6": 40}}})
        assert rules.primary_call.max_calls == {"PGY-4": 60, "PGY-5": 50, "PGY-6": 40}
        assert rules.primary_call.min_spacing_days == 4
        assert "EP" in rules.clinics.specialty_clinics

    def test_missing_rules_file_gives_defaults(self, tmp_path):
        assert load_rules(tmp_path / "absent.json").to_dict() == RuleConfiguration().to_dict()

    def test_corrupt_rules_file_gives_defaults(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text("{not json")
        assert load_rules(path).to_dict() == RuleConfiguration().to_dict()

    def test_out_of_range_values_rejected(self):
        rules = RuleConfiguration.from_dict({
            "vacation": {"max_vacations_per_year": 5},
            "primary_call": {"min_spacing_days": 0},
            "ambulatory": {"max_assignments_per_fellow": 0},
        })
        errors, _ = validate_rules(rules)
        assert any("max_vacations_per_year" in e for e in errors)
        assert any("min_spacing_days" in e for e in errors)
        assert any("max_assignments_per_fellow" in e for e in errors)

    def test_duplicate_priority_tier_rejected(self):
        rules = RuleConfiguration.from_dict({"primary_call": {"weekend_priority": ["PGY-4", "PGY-4"]}})
        errors, _ = validate_rules(rules)
        assert any("duplicate tiers" in e for e in errors)

    def test_unknown_week_skip_type_warns(self):
        rules = RuleConfiguration.from_dict({"clinics": {"week_skip_types": ["HEART_FAILURE", "CARDIO_ONC"]}})
        errors, warnings = validate_rules(rules)
        assert errors == []
        assert any("CARDIO_ONC" in w for w in warnings)

    def test_unknown_senior_mode_rejected(self):
        rules = RuleConfiguration.from_dict({"hf": {"senior_holiday_mode": "always"}})
        errors, _ = validate_rules(rules)
        assert any("senior_holiday_mode" in e for e in errors)

    def test_rules_json_is_plain_json(self, tmp_path):
        path = tmp_path / "rules.json"
        save_rules(RuleConfiguration(), path)
        data = json.loads(path.read_text())
        assert data["primary_call"]["junior_start"] == "08-15"


class TestFellowRecord:

    def test_fellow_round_trip(self, fellows):
        for f in fellows:
            assert Fellow.from_dict(f.to_dict()) == f

    def test_unknown_tier_rejected(self):
        with pytest.raises(ValueError):
            Fellow.from_dict({"id": "x", "name": "X", "tier": "PGY-3"})
