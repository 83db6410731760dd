"""
dry_run.py — Full-year roster generation without touching any live store

Full orchestration:
  1. Load roster, rotation table and rule configuration
  2. Validate rules, roster and vacation preferences
  3. Solve vacation blocks per tier and write VAC into the rotation table
  4. Build primary call (greedy pass + windowed repair)
  5. Check call constraints (hard + soft)
  6. Build HF coverage and clinics, report coverage gaps
  7. Export CSV, Excel, fairness report, violations report, coverage JSON

Usage:
  python -m fellow_roster.dry_run --year-start 2025-07-01 --seed 7
  python -m fellow_roster.dry_run --store-dir state/ --visual
"""

import argparse
import json
import logging
import random
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fellow_roster.academic_calendar import AcademicYear
from fellow_roster.call_engine import build_call_schedule, calculate_fairness_metrics
from fellow_roster.clinic_engine import build_clinic_schedule, check_clinic_coverage
from fellow_roster.config import (
    load_roster,
    load_rotation_schedule,
    load_rules,
    validate_roster,
    validate_rules,
)
from fellow_roster.constraints import CallConstraintChecker
from fellow_roster.eligibility import RosterContext
from fellow_roster.exporter import (
    HF_COVERAGE,
    PRIMARY_CALL,
    collect_duty_rows,
    export_fairness_report,
    export_to_csv,
    export_to_excel,
)
from fellow_roster.hf_engine import analyze_hf_schedule, build_hf_schedule
from fellow_roster.models import AMBULATORY_FELLOW, GENERAL, CoverageMetadata, Setup
from fellow_roster import store as roster_store
from fellow_roster.vacation import apply_vacations, merge_assignments, solve_all_vacations, vacation_preference_errors

logger = logging.getLogger(__name__)

OUTPUTS_DIR = PROJECT_ROOT / "outputs"
DEFAULT_YEAR_START = date(2025, 7, 1)
SETUP_NOT_COMPLETED = "Setup not completed"


# ---------------------------------------------------------------------------
# Visual analysis (matplotlib)
# ---------------------------------------------------------------------------

def _generate_visual_analysis(
    metrics: Dict[str, Any],
    hf_analysis: Dict[str, Dict[str, Any]],
    ctx: RosterContext,
    output_dir: Path,
    prefix: str,
) -> List[Path]:
    """Call distribution (weekday vs weekend/holiday stacked) and HF weekend charts."""
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    out = Path(output_dir)
    written: List[Path] = []
    names = [f.name for f in ctx.fellows]
    weekday = [metrics["weekday_counts"].get(f.id, 0) for f in ctx.fellows]
    weekend = [metrics["weekend_holiday_counts"].get(f.id, 0) for f in ctx.fellows]
    x = range(len(names))

    # Chart 1: call distribution, stacked by equity category
    fig, ax = plt.subplots(figsize=(13, 5))
    ax.bar(x, weekday, color="#4a90d9", alpha=0.85, width=0.65, label="Weekday")
    ax.bar(x, weekend, bottom=weekday, color="#b22222", alpha=0.85, width=0.65, label="Weekend / holiday")
    for i, (wd, we) in enumerate(zip(weekday, weekend)):
        ax.text(i, wd + we + 0.4, str(wd + we), ha="center", va="bottom", fontsize=8)
    ax.set_xticks(list(x))
    ax.set_xticklabels(names, rotation=40, ha="right", fontsize=9)
    ax.set_ylabel("Primary Calls")
    cv_text = "  ".join(f"{t}: CV {s['cv']:.1f}%" for t, s in metrics["per_tier"].items())
    ax.set_title(f"Primary Call Distribution by Fellow\n{cv_text}", fontsize=13, fontweight="bold")
    ax.legend()
    ax.grid(axis="y", alpha=0.3)
    fig.tight_layout()
    path = out / f"{prefix}_call_distribution.png"
    fig.savefig(path, dpi=150)
    plt.close(fig)
    written.append(path)
    print(f"  ✓ Visual  → {path.name}")

    # Chart 2: HF weekends against quota
    if hf_analysis:
        weekends = [hf_analysis[f.id]["weekends"] for f in ctx.fellows]
        quotas = [hf_analysis[f.id]["quota"] for f in ctx.fellows]
        fig, ax = plt.subplots(figsize=(13, 4))
        colors = ["#b22222" if w > q else "#2e8b57" for w, q in zip(weekends, quotas)]
        ax.bar(x, weekends, color=colors, alpha=0.85, width=0.65)
        ax.scatter(list(x), quotas, color="black", marker="_", s=400, label="Quota")
        ax.set_xticks(list(x))
        ax.set_xticklabels(names, rotation=40, ha="right", fontsize=9)
        ax.set_ylabel("HF Weekends")
        ax.set_title("HF Weekend Coverage vs Quota", fontsize=13, fontweight="bold")
        ax.legend()
        ax.grid(axis="y", alpha=0.3)
        fig.tight_layout()
        path = out / f"{prefix}_hf_weekends.png"
        fig.savefig(path, dpi=150)
        plt.close(fig)
        written.append(path)
        print(f"  ✓ Visual  → {path.name}")
    return written


# ---------------------------------------------------------------------------
# Generation (shared by the file and store entry points)
# ---------------------------------------------------------------------------

def generate_roster(
    ctx: RosterContext,
    rng: random.Random,
    output_dir: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Vacations → primary call → HF → clinics for one academic year.

    Returns:
        Dict with ctx (rotations now carrying VAC), vacation results, call,
        hf and clinic build results, and the clinic coverage report.
    """
    vacation_results = solve_all_vacations(ctx, rng)
    rotations = apply_vacations(ctx.rotations, merge_assignments(vacation_results))
    ctx = ctx.with_rotations(rotations)

    call_result = build_call_schedule(ctx, rng=rng, output_dir=output_dir)
    hf_result = build_hf_schedule(ctx, call_result.schedule)
    clinic_schedule = build_clinic_schedule(ctx, call_result.schedule)
    coverage = check_clinic_coverage(clinic_schedule, ctx)

    return {
        "ctx": ctx,
        "vacations": vacation_results,
        "call": call_result,
        "hf": hf_result,
        "clinics": clinic_schedule,
        "clinic_coverage": coverage,
    }


def _persist(store: roster_store.ScheduleStore, ctx: RosterContext, generated: Dict[str, Any]) -> None:
    roster_store.save_setup(store, Setup(ctx.year.start, ctx.fellows, ctx.year.holidays))
    roster_store.save_rules(store, ctx.rules)
    roster_store.save_rotations(store, generated["ctx"].rotations)
    roster_store.save_call_schedule(store, generated["call"].schedule)
    roster_store.save_coverage_metadata(
        store, CoverageMetadata(list(generated["call"].uncovered), generated["call"].success)
    )
    roster_store.save_hf_schedule(store, generated["hf"].schedule)
    roster_store.save_clinic_schedule(store, generated["clinics"])


def run_from_store(
    store: roster_store.ScheduleStore,
    seed: Optional[int] = None,
    output_dir: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Regenerate every schedule from what the store holds and save the results
    back.  A store without a usable setup yields a single uncovered entry.
    """
    setup = roster_store.load_setup(store)
    if setup is None:
        logger.warning("No setup in store; nothing to schedule")
        return {"success": False, "uncovered": [SETUP_NOT_COMPLETED]}

    rotations = roster_store.load_rotations(store) or {}
    rules = roster_store.load_rules(store)
    year = AcademicYear(setup.year_start, setup.holidays or None)
    ctx = RosterContext(setup.fellows, rotations, year, rules)

    generated = generate_roster(ctx, random.Random(seed), output_dir=output_dir)
    _persist(store, ctx, generated)
    call_result = generated["call"]
    return {
        "success": call_result.success and generated["hf"].success,
        "uncovered": list(call_result.uncovered),
        **generated,
    }


# ---------------------------------------------------------------------------
# Main orchestrator
# ---------------------------------------------------------------------------

def run_dry_run(
    year_start: date = DEFAULT_YEAR_START,
    roster_path: Optional[Path] = None,
    rotation_path: Optional[Path] = None,
    rules_path: Optional[Path] = None,
    seed: Optional[int] = None,
    output_dir: Path = OUTPUTS_DIR,
    store: Optional[roster_store.ScheduleStore] = None,
    visual: bool = False,
) -> Dict[str, Any]:
    """
    Generate the full academic year from CSV/JSON inputs.

    Args:
        year_start:  first day of the academic year
        seed:        seeds the single random.Random used by every step
        output_dir:  directory for output files
        store:       if given, setup, rules and every schedule are saved to it
        visual:      render matplotlib charts next to the other outputs

    Returns:
        Dict with schedules, metrics, violations, coverage and output paths
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = f"dry_run_{year_start.isoformat()}"
    sep = "=" * 70

    print(f"\n{sep}")
    print("  DRY RUN MODE — Fellowship roster")
    print(f"  Academic year starting {year_start}  (seed: {seed})")
    print(f"{sep}\n")

    # ── 1. Load configuration ──────────────────────────────────────────────
    print("Step 1/7: Loading configuration...")
    fellows = load_roster(roster_path)
    rotations = load_rotation_schedule(rotation_path)
    rules = load_rules(rules_path)
    year = AcademicYear(year_start)
    ctx = RosterContext(fellows, rotations, year, rules)
    print(f"  ✓ {len(fellows)} fellows | {len(rotations)} rotation rows | {len(year.holidays)} holidays")

    # ── 2. Validate inputs ─────────────────────────────────────────────────
    print("\nStep 2/7: Validating inputs...")
    rule_errors, rule_warnings = validate_rules(rules)
    roster_errors, roster_warnings = validate_roster(fellows, rules)
    pref_warnings = [e for f in fellows for e in vacation_preference_errors(f, year, rules)]

    errors = rule_errors + roster_errors
    for err in errors:
        print(f"  ✗ ERROR: {err}")
    for w in rule_warnings + roster_warnings + pref_warnings:
        print(f"  ⚠ WARNING: {w}")
    if errors:
        print("\n  ✗ Cannot proceed — fix the errors above.")
        sys.exit(1)
    if not rule_warnings and not roster_warnings and not pref_warnings:
        print("  ✓ Rules and roster valid")

    # ── 3–6. Generate ──────────────────────────────────────────────────────
    print("\nStep 3/7: Solving vacation blocks...")
    rng = random.Random(seed)
    generated = generate_roster(ctx, rng, output_dir=output_dir)
    ctx = generated["ctx"]
    for tier, result in generated["vacations"].items():
        icon = "✓" if result.success else "✗"
        print(f"  {icon} {tier}: ordering={result.ordering} tries={result.tries}")
        for line in result.diagnostics:
            print(f"      {line}")

    print("\nStep 4/7: Building primary call...")
    call_result = generated["call"]
    call_schedule = call_result.schedule
    print(f"  ✓ {len(call_schedule.days)} of {len(year.days)} days covered "
          f"({len(call_result.repaired)} filled by repair)")
    if call_result.uncovered:
        print(f"  ✗ Uncovered: {', '.join(call_result.uncovered)}")

    print("\nStep 5/7: Checking constraints...")
    checker = CallConstraintChecker(ctx)
    hard_violations, soft_violations = checker.check_all(call_schedule)
    metrics = calculate_fairness_metrics(call_schedule, ctx)
    h_count = len(hard_violations)
    s_count = len(soft_violations)
    status = "✓" if h_count == 0 else "✗"
    print(f"  {status} Hard violations: {h_count}")
    print(f"    Soft violations: {s_count}")
    for tier, stats in metrics["per_tier"].items():
        print(f"    {tier:<8} mean {stats['mean']:6.2f}  CV {stats['cv']:6.2f}%")

    print("\nStep 6/7: HF coverage and clinics...")
    hf_result = generated["hf"]
    clinic_schedule = generated["clinics"]
    coverage = generated["clinic_coverage"]
    hf_icon = "✓" if hf_result.success else "✗"
    print(f"  {hf_icon} HF: {len(hf_result.uncovered)} uncovered weekends | "
          f"{len(hf_result.uncovered_holidays)} uncovered holiday blocks | "
          f"{len(hf_result.mandatory_missed)} mandatory misses")
    for miss in hf_result.mandatory_missed:
        print(f"      ✗ MANDATORY MISSED {miss.fellow_id} {miss.block_key}: {miss.reason}")
    clinic_icon = "✓" if coverage.success else "⚠"
    print(f"  {clinic_icon} Clinics: {sum(len(v) for v in clinic_schedule.days.values())} assignments | "
          f"{len(coverage.gaps)} coverage gaps")

    if store is not None:
        _persist(store, RosterContext(fellows, rotations, year, rules), generated)
        print("  ✓ Setup and schedules saved to store")

    # ── 7. Export ──────────────────────────────────────────────────────────
    print("\nStep 7/7: Exporting outputs...")
    csv_path        = output_dir / f"{prefix}_schedule.csv"
    xlsx_path       = output_dir / f"{prefix}_schedule.xlsx"
    report_path     = output_dir / f"{prefix}_fairness_report.txt"
    violations_path = output_dir / f"{prefix}_violations.txt"
    coverage_path   = output_dir / f"{prefix}_coverage.json"

    hf_analysis = analyze_hf_schedule(hf_result.schedule, ctx)
    rows = collect_duty_rows(ctx, call_schedule, hf_result.schedule, clinic_schedule)
    export_to_csv(rows, csv_path, name_map={f.id: f.name for f in ctx.fellows})
    export_to_excel(
        rows, xlsx_path,
        duty_order=[PRIMARY_CALL, HF_COVERAGE, GENERAL, *rules.clinics.specialty_clinics, AMBULATORY_FELLOW],
        name_map={f.id: f.initials or f.id for f in ctx.fellows},
    )
    export_fairness_report(metrics, ctx, report_path, hf_analysis=hf_analysis)

    with open(coverage_path, "w") as f:
        json.dump({
            "call_uncovered": call_result.uncovered,
            "call_repaired": call_result.repaired,
            "hf_uncovered_weekends": hf_result.uncovered,
            "hf_uncovered_holidays": hf_result.uncovered_holidays,
            "hf_mandatory_missed": [m._asdict() for m in hf_result.mandatory_missed],
            "clinic_gaps": [
                {"date": g.date, "clinic_type": g.clinic_type, "required": g.required, "assigned": g.assigned}
                for g in coverage.gaps
            ],
        }, f, indent=2)

    with open(violations_path, "w") as f:
        f.write("=== Constraint Violations ===\n\n")
        f.write(f"HARD ({h_count}):\n")
        for v in hard_violations:
            f.write(f"  {v}\n")
        f.write(f"\nSOFT ({s_count}):\n")
        for v in soft_violations:
            f.write(f"  {v}\n")

    print(f"  ✓ CSV:       {csv_path.name}")
    print(f"  ✓ Excel:     {xlsx_path.name}")
    print(f"  ✓ Report:    {report_path.name}")
    print(f"  ✓ Coverage:  {coverage_path.name}")
    print(f"  ✓ Violations:{violations_path.name}")

    # ── Summary ────────────────────────────────────────────────────────────
    print(f"\n{sep}")
    print("  SUMMARY")
    print(f"{sep}")
    print(f"  Academic year:     {year.start} → {year.end}")
    print(f"  Call days covered: {len(call_schedule.days)} / {len(year.days)}")
    print(f"  Hard violations:   {h_count}  {status}")
    print(f"  Soft violations:   {s_count}")
    print(f"  HF weekends:       {len(hf_result.schedule.weekends)}  {hf_icon}")
    print(f"  Clinic gaps:       {len(coverage.gaps)}  {clinic_icon}")

    outputs = {
        "csv":        csv_path,
        "excel":      xlsx_path,
        "report":     report_path,
        "coverage":   coverage_path,
        "violations": violations_path,
    }
    if visual:
        for path in _generate_visual_analysis(metrics, hf_analysis, ctx, output_dir, prefix):
            outputs[path.stem.replace(f"{prefix}_", "")] = path

    print(f"\n{sep}\n")

    return {
        "ctx":             ctx,
        "vacations":       generated["vacations"],
        "call":            call_result,
        "hf":              hf_result,
        "clinics":         clinic_schedule,
        "clinic_coverage": coverage,
        "metrics":         metrics,
        "hf_analysis":     hf_analysis,
        "hard_violations": hard_violations,
        "soft_violations": soft_violations,
        "outputs":         outputs,
    }


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        description="Dry-run generation of vacations, primary call, HF coverage and clinics"
    )
    parser.add_argument("--roster",     default=None, help="Roster CSV (default: config/roster_key.csv)")
    parser.add_argument("--rotations",  default=None, help="Rotation table CSV (default: config/rotation_schedule.csv)")
    parser.add_argument("--rules",      default=None, help="Rule configuration JSON (default: config/rules.json)")
    parser.add_argument("--year-start", default=DEFAULT_YEAR_START.isoformat(), help="Academic year start YYYY-MM-DD")
    parser.add_argument("--seed",       type=int, default=None, help="Seed for reproducible runs")
    parser.add_argument("--store-dir",  default=None, help="JSON file store directory: regenerated from when no "
                                                           "--roster is given, saved into otherwise")
    parser.add_argument("--output-dir", default=None, help="Output directory (default: outputs/)")
    parser.add_argument("--visual",     action="store_true", help="Generate matplotlib charts")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        year_start = datetime.strptime(args.year_start, "%Y-%m-%d").date()
    except ValueError as e:
        print(f"Invalid date format: {e}")
        sys.exit(1)

    out_dir = Path(args.output_dir) if args.output_dir else OUTPUTS_DIR
    store = roster_store.JsonFileStore(Path(args.store_dir)) if args.store_dir else None

    if store is not None and args.roster is None:
        result = run_from_store(store, seed=args.seed, output_dir=out_dir)
        if result["uncovered"] == [SETUP_NOT_COMPLETED]:
            print(f"{SETUP_NOT_COMPLETED}: no setup in store {args.store_dir} (pass --roster to create one)")
            sys.exit(1)
        print(f"Regenerated from store: success={result['success']} uncovered={len(result['uncovered'])}")
        return

    try:
        run_dry_run(
            year_start,
            roster_path=Path(args.roster) if args.roster else None,
            rotation_path=Path(args.rotations) if args.rotations else None,
            rules_path=Path(args.rules) if args.rules else None,
            seed=args.seed,
            output_dir=out_dir,
            store=store,
            visual=args.visual,
        )
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
