"""
academic_calendar.py — Academic-year calendar: holidays, holiday blocks, 2-week blocks

ACADEMIC YEAR
─────────────
  Runs from the start date (normally July 1) to the day before its anniversary.

BLOCKS
──────
  24 half-month periods.  Days 1–15 are half 1, days 16+ are half 2.
  Keys are the month abbreviation plus the half: JUL1, JUL2, AUG1 ... JUN2.
  Blocks are the unit of vacation, ambulatory assignment and rotation lookup.

HOLIDAY BLOCKS (coverage unit for HF)
─────────────────────────────────────
  Thanksgiving       → Thu–Sun (4 days)
  Monday holiday     → Sat–Mon
  Friday holiday     → Fri–Sun
  any other holiday  → the single day
  A holiday already inside an earlier block is absorbed, so the Day after
  Thanksgiving folds into the Thanksgiving block.
"""

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from fellow_roster.models import Block, Holiday, HolidayBlock

logger = logging.getLogger(__name__)

MONTH_ABBR = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN",
              "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]

INDEPENDENCE_DAY_ID = "independence_day"
THANKSGIVING_ID = "thanksgiving"
DAY_AFTER_THANKSGIVING_ID = "day_after_thanksgiving"

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = range(7)


# ---------------------------------------------------------------------------
# Date helpers
# ---------------------------------------------------------------------------

def nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    """n-th (1-based) given weekday of a month, e.g. 4th Thursday of November."""
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + 7 * (n - 1))


def last_weekday(year: int, month: int, weekday: int) -> date:
    if month == 12:
        last = date(year, 12, 31)
    else:
        last = date(year, month + 1, 1) - timedelta(days=1)
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def academic_year_end(start: date) -> date:
    try:
        anniversary = start.replace(year=start.year + 1)
    except ValueError:   # Feb 29 start
        anniversary = date(start.year + 1, 3, 1)
    return anniversary - timedelta(days=1)


def academic_year_days(start: date) -> List[date]:
    """Every calendar day of the academic year, in order."""
    end = academic_year_end(start)
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def block_key_for(day: date) -> str:
    return f"{MONTH_ABBR[day.month - 1]}{1 if day.day <= 15 else 2}"


def weekend_start_for(day: date) -> Optional[date]:
    """Saturday that opens the weekend containing `day` (None on weekdays)."""
    if day.weekday() == SATURDAY:
        return day
    if day.weekday() == SUNDAY:
        return day - timedelta(days=1)
    return None


def week_of_month(day: date) -> int:
    """
    Row of `day` in a Sunday-first month grid.  Row 1 runs from the 1st to
    the first Saturday, so a month starting on Saturday has a one-day week 1.
    """
    first_column = (day.replace(day=1).weekday() + 1) % 7   # Sun=0 … Sat=6
    return (day.day + first_column - 1) // 7 + 1


def week_monday(day: date) -> date:
    return day - timedelta(days=day.weekday())


def parse_date(value) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


# ---------------------------------------------------------------------------
# Holidays
# ---------------------------------------------------------------------------

def compute_academic_year_holidays(start: date) -> List[Holiday]:
    """
    The 13 observed holidays falling inside the academic year that begins on
    `start`, in date order.  Used when the stored setup carries no holiday list.
    """
    end = academic_year_end(start)

    def yr(month: int) -> int:
        return start.year if month >= start.month else start.year + 1

    thanksgiving = nth_weekday(yr(11), 11, THURSDAY, 4)
    candidates = [
        Holiday(INDEPENDENCE_DAY_ID, "Independence Day", date(yr(7), 7, 4)),
        Holiday("labor_day", "Labor Day", nth_weekday(yr(9), 9, MONDAY, 1)),
        Holiday("indigenous_peoples_day", "Indigenous Peoples' Day", nth_weekday(yr(10), 10, MONDAY, 2)),
        Holiday("veterans_day", "Veterans Day", date(yr(11), 11, 11)),
        Holiday(THANKSGIVING_ID, "Thanksgiving", thanksgiving),
        Holiday(DAY_AFTER_THANKSGIVING_ID, "Day after Thanksgiving", thanksgiving + timedelta(days=1)),
        Holiday("christmas", "Christmas Day", date(yr(12), 12, 25)),
        Holiday("new_years_day", "New Year's Day", date(yr(1), 1, 1)),
        Holiday("mlk_day", "Martin Luther King Jr. Day", nth_weekday(yr(1), 1, MONDAY, 3)),
        Holiday("presidents_day", "Presidents' Day", nth_weekday(yr(2), 2, MONDAY, 3)),
        Holiday("cesar_chavez_day", "Cesar Chavez Day", date(yr(3), 3, 31)),
        Holiday("memorial_day", "Memorial Day", last_weekday(yr(5), 5, MONDAY)),
        Holiday("juneteenth", "Juneteenth", date(yr(6), 6, 19)),
    ]
    holidays = sorted((h for h in candidates if start <= h.date <= end), key=lambda h: h.date)
    logger.debug(f"Computed {len(holidays)} holidays for academic year starting {start}")
    return holidays


def holiday_block_dates(holiday: Holiday) -> List[date]:
    d = holiday.date
    if holiday.id == THANKSGIVING_ID:
        return [d + timedelta(days=i) for i in range(4)]
    if d.weekday() == MONDAY:
        return [d - timedelta(days=2), d - timedelta(days=1), d]
    if d.weekday() == FRIDAY:
        return [d, d + timedelta(days=1), d + timedelta(days=2)]
    return [d]


def build_holiday_blocks(holidays: Sequence[Holiday]) -> List[HolidayBlock]:
    blocks: List[HolidayBlock] = []
    covered = set()
    for holiday in sorted(holidays, key=lambda h: h.date):
        if holiday.date in covered:
            continue
        dates = holiday_block_dates(holiday)
        covered.update(dates)
        blocks.append(HolidayBlock(holiday=holiday, dates=tuple(dates)))
    return blocks


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------

def generate_blocks(start: date) -> List[Block]:
    """The 24 half-month blocks of the academic year beginning at `start`."""
    blocks: List[Block] = []
    year, month = start.year, start.month
    for _ in range(12):
        first = date(year, month, 1)
        mid = date(year, month, 15)
        nxt = date(year + (month == 12), month % 12 + 1, 1)
        abbr = MONTH_ABBR[month - 1]
        blocks.append(Block(f"{abbr}1", len(blocks), first, mid))
        blocks.append(Block(f"{abbr}2", len(blocks), mid + timedelta(days=1), nxt - timedelta(days=1)))
        year, month = nxt.year, nxt.month
    return blocks


# ---------------------------------------------------------------------------
# AcademicYear
# ---------------------------------------------------------------------------

class AcademicYear:
    """
    Start date plus ordered holiday list, with the derived calendar every
    scheduler needs (days, holiday blocks, 2-week blocks, weekend starts).
    """

    def __init__(self, start: date, holidays: Optional[Sequence[Holiday]] = None):
        self.start = parse_date(start)
        self.end = academic_year_end(self.start)
        if not holidays:
            holidays = compute_academic_year_holidays(self.start)
        self.holidays: List[Holiday] = sorted(holidays, key=lambda h: h.date)
        self.holiday_dates = {h.date for h in self.holidays}
        self.holiday_blocks: List[HolidayBlock] = build_holiday_blocks(self.holidays)
        self.blocks: List[Block] = generate_blocks(self.start)
        self.block_by_key: Dict[str, Block] = {b.key: b for b in self.blocks}
        self.days: List[date] = academic_year_days(self.start)

        self._holiday_block_by_day: Dict[date, HolidayBlock] = {}
        for hb in self.holiday_blocks:
            for d in hb.dates:
                self._holiday_block_by_day[d] = hb

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def is_holiday(self, day: date) -> bool:
        return day in self.holiday_dates

    def holiday_block_for(self, day: date) -> Optional[HolidayBlock]:
        return self._holiday_block_by_day.get(day)

    def block_for(self, day: date) -> Block:
        return self.block_by_key[block_key_for(day)]

    def block_index(self, key: str) -> int:
        return self.block_by_key[key].index

    def block_days(self, key: str) -> List[date]:
        block = self.block_by_key[key]
        return [block.start + timedelta(days=i) for i in range((block.end - block.start).days + 1)]

    def weekend_starts(self) -> List[date]:
        return [d for d in self.days if d.weekday() == SATURDAY]

    def holiday_weekend_starts(self) -> Dict[date, HolidayBlock]:
        """Saturday → holiday block, for every weekend that touches a holiday block."""
        out: Dict[date, HolidayBlock] = {}
        for hb in self.holiday_blocks:
            for d in hb.dates:
                sat = weekend_start_for(d)
                if sat is not None and self.contains(sat):
                    out.setdefault(sat, hb)
        return out
