"""
exporter.py — Export layer for the fellowship roster

Outputs:
  - CSV: flat (date, duty, fellow) rows covering primary call, HF coverage,
    clinics and the ambulatory fellow
  - Excel (.xlsx): formatted date × duty grid with fellow initials
  - Fairness report (.txt): per-tier call spread, per-fellow weekday /
    weekend-holiday counts, HF weekend and holiday-day counts

Usage:
  from fellow_roster.exporter import collect_duty_rows, export_to_csv, export_to_excel
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from fellow_roster.eligibility import RosterContext
from fellow_roster.models import AMBULATORY_FELLOW, CallSchedule, ClinicSchedule, HFSchedule

logger = logging.getLogger(__name__)

PRIMARY_CALL = "PRIMARY_CALL"
HF_COVERAGE = "HF"

DutyRow = Tuple[str, str, str]   # (date_str, duty, fellow_id)


def collect_duty_rows(
    ctx: RosterContext,
    call_schedule: Optional[CallSchedule] = None,
    hf_schedule: Optional[HFSchedule] = None,
    clinic_schedule: Optional[ClinicSchedule] = None,
) -> List[DutyRow]:
    """Flatten every schedule into (date, duty, fellow_id) rows sorted by date."""
    from fellow_roster.hf_engine import get_effective_hf_assignment, hf_block_dates_for

    rows: List[DutyRow] = []
    if call_schedule is not None:
        rows.extend((d, PRIMARY_CALL, fid) for d, fid in call_schedule.days.items())

    if hf_schedule is not None:
        for day in ctx.year.days:
            if not hf_block_dates_for(day, ctx.year):
                continue
            fid = get_effective_hf_assignment(hf_schedule, day)
            if fid is not None:
                rows.append((day.isoformat(), HF_COVERAGE, fid))

    if clinic_schedule is not None:
        for d, items in clinic_schedule.days.items():
            rows.extend((d, a.clinic_type, a.fellow_id) for a in items)
        rows.extend((d, AMBULATORY_FELLOW, fid) for d, fid in clinic_schedule.ambulatory_days.items())

    rows.sort(key=lambda r: (r[0], r[1]))
    return rows


# ---------------------------------------------------------------------------
# CSV Export
# ---------------------------------------------------------------------------

def export_to_csv(
    rows: List[DutyRow],
    output_path: Path,
    name_map: Optional[Dict[str, str]] = None,
) -> None:
    """
    Export duty rows to flat CSV: date, duty, fellow.

    Args:
        rows:        output of collect_duty_rows
        output_path: .csv file path
        name_map:    fellow_id → display name (ids are written when absent)
    """
    import csv
    output_path.parent.mkdir(parents=True, exist_ok=True)
    names = name_map or {}

    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=["date", "duty", "fellow"])
        writer.writeheader()
        for date_str, duty, fid in rows:
            writer.writerow({"date": date_str, "duty": duty, "fellow": names.get(fid, fid)})

    logger.info(f"CSV exported → {output_path}")


# ---------------------------------------------------------------------------
# Excel Export
# ---------------------------------------------------------------------------

def export_to_excel(
    rows: List[DutyRow],
    output_path: Path,
    duty_order: Optional[List[str]] = None,
    name_map: Optional[Dict[str, str]] = None,
) -> None:
    """
    Export duty rows to a formatted Excel grid: rows=date, columns=duty,
    cells=fellow (initials when name_map maps ids to initials).
    """
    import pandas as pd

    output_path.parent.mkdir(parents=True, exist_ok=True)
    names = name_map or {}

    df = pd.DataFrame(
        [{"Date": d, "Duty": duty, "Fellow": names.get(fid, fid)} for d, duty, fid in rows],
        columns=["Date", "Duty", "Fellow"],
    )
    if df.empty:
        df.to_excel(output_path, index=False)
        return

    grid = df.pivot_table(
        index="Date",
        columns="Duty",
        values="Fellow",
        aggfunc=lambda x: "; ".join(x),
    )
    if duty_order:
        available = [s for s in duty_order if s in grid.columns]
        rest = [s for s in grid.columns if s not in duty_order]
        grid = grid[available + rest]

    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        grid.to_excel(writer, sheet_name="Schedule")
        _format_excel_grid(writer, "Schedule")

    logger.info(f"Excel exported → {output_path}")


def _format_excel_grid(writer: Any, sheet_name: str) -> None:
    """Header fill, column widths and alternating row shading."""
    from openpyxl.styles import Alignment, Font, PatternFill

    ws = writer.sheets[sheet_name]
    header_fill = PatternFill("solid", fgColor="7B1F2E")
    header_font = Font(bold=True, color="FFFFFF")
    for cell in ws[1]:
        cell.fill = header_fill
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center")

    for col in ws.columns:
        max_len = max((len(str(c.value)) for c in col if c.value), default=8)
        ws.column_dimensions[col[0].column_letter].width = min(max_len + 2, 30)

    alt = PatternFill("solid", fgColor="F6E9EB")
    for i, row in enumerate(ws.iter_rows(min_row=2), start=2):
        if i % 2 == 0:
            for cell in row:
                cell.fill = alt


# ---------------------------------------------------------------------------
# Fairness Report
# ---------------------------------------------------------------------------

def export_fairness_report(
    metrics: Dict[str, Any],
    ctx: RosterContext,
    output_path: Path,
    hf_analysis: Optional[Dict[str, Dict[str, Any]]] = None,
    target_cv: float = 10.0,
) -> str:
    """
    Write the fairness audit report and return its text.

    Args:
        metrics:     output of call_engine.calculate_fairness_metrics()
        hf_analysis: output of hf_engine.analyze_hf_schedule()
        target_cv:   per-tier CV target in percent
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    sep = "=" * 70
    rule = "─" * 70

    lines = [
        sep,
        "  FAIRNESS AUDIT REPORT — Primary Call",
        sep,
        "",
        f"  Uncovered call days:   {metrics.get('uncovered', 0)}",
        "",
        rule,
        "  Per-Tier Spread",
        rule,
        f"  {'Tier':<8} {'Mean':>7} {'Std':>7} {'CV':>8} {'Min':>5} {'Max':>5}",
    ]
    for tier, stats in metrics.get("per_tier", {}).items():
        flag = "✓" if stats["cv"] < target_cv else "✗"
        lines.append(
            f"  {tier:<8} {stats['mean']:>7.2f} {stats['std']:>7.2f} {stats['cv']:>7.2f}% "
            f"{stats['min']:>5} {stats['max']:>5}  {flag}"
        )

    counts = metrics.get("counts", {})
    weekday = metrics.get("weekday_counts", {})
    weekend = metrics.get("weekend_holiday_counts", {})
    lines += [
        "",
        rule,
        "  Per-Fellow Calls",
        rule,
        f"  {'Fellow':<24} {'Tier':<6} {'Total':>6} {'Wkday':>6} {'Wkend/Hol':>10}",
    ]
    for fellow in ctx.fellows:
        lines.append(
            f"  {fellow.name:<24} {fellow.tier:<6} {counts.get(fellow.id, 0):>6d} "
            f"{weekday.get(fellow.id, 0):>6d} {weekend.get(fellow.id, 0):>10d}"
        )

    if hf_analysis:
        lines += [
            "",
            rule,
            "  HF Coverage",
            rule,
            f"  {'Fellow':<24} {'Weekends':>9} {'Quota':>6} {'Hol days':>9}",
        ]
        for fellow in ctx.fellows:
            row = hf_analysis.get(fellow.id)
            if row is None:
                continue
            flag = "  ← over quota" if row["over_quota"] else ""
            lines.append(
                f"  {fellow.name:<24} {row['weekends']:>9d} {row['quota']:>6d} {row['holiday_days']:>9d}{flag}"
            )

    lines.append("")
    lines.append(sep)

    report_text = "\n".join(lines)
    with open(output_path, "w") as f:
        f.write(report_text)

    logger.info(f"Fairness report exported → {output_path}")
    return report_text
