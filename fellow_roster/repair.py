"""
repair.py — Windowed backtracking repair for uncovered primary call days

When the greedy call pass leaves a day empty, this module reopens a window of
±repair_window_days around it and re-solves the whole window:

  1. snapshot the window and clear it
  2. explicit-stack depth-first search over the window days in date order;
     candidates follow the tier priority, ascending equity-category count
     within a tier, and must pass the same quota / spacing / Saturday
     filters as the greedy pass
  3. bounded by repair_max_steps; no complete fill → roll back the snapshot
  4. one retry at repair_widen_factor × the window before the day is
     declared uncovered

Window days whose eligibility pool is empty even before the filters are left
empty and do not block the rest of the window.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from fellow_roster.call_engine import CallState
from fellow_roster.eligibility import RosterContext, build_eligibility_pools
from fellow_roster.models import Fellow

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
REPAIR_LOG_FILENAME = "call_repair_log.json"
REASON_POOL_EXHAUSTED = "pool_exhausted"
REASON_POOL_EMPTY = "pool_empty"
REASON_EXHAUSTED_ALL_CANDIDATES = "exhausted_all_candidates"


def collect_uncovered(state: CallState, ctx: RosterContext) -> List[Dict[str, Any]]:
    """
    Every academic-year day with nobody on call, sorted by date.

    Returns list of dicts: { "date", "category", "reason_uncovered" }.
    """
    uncovered = [
        {
            "date": day.isoformat(),
            "category": ctx.equity_category(day),
            "reason_uncovered": REASON_POOL_EXHAUSTED,
        }
        for day in ctx.year.days
        if day.isoformat() not in state.days
    ]
    if uncovered:
        logger.info(f"{len(uncovered)} uncovered call days found")
    return uncovered


def base_pool(day: date, ctx: RosterContext) -> List[Fellow]:
    """Fellows eligible on `day` in any tier the day may draw from, before quota/spacing."""
    pools = build_eligibility_pools(day, ctx)
    tiers = list(pools.priority)
    if not pools.junior_exclusive:
        tiers += [t for t in ctx.rules.tiers if t not in tiers]
    out: List[Fellow] = []
    for tier in tiers:
        out.extend(pools.pools.get(tier, []))
    return out


def tier_order_candidates(day: date, state: CallState) -> List[Fellow]:
    """
    Order candidates: priority tiers first, then fallback tiers (unless the
    day is junior-exclusive).  Within a tier, lowest equity-category count
    first, then id.  Only fellows passing the hard filters are returned.
    """
    ctx = state.ctx
    pools = build_eligibility_pools(day, ctx)
    counts = state.category_counts[ctx.equity_category(day)]
    tiers = list(pools.priority)
    if not pools.junior_exclusive:
        tiers += [t for t in ctx.rules.tiers if t not in tiers]

    ordered: List[Fellow] = []
    for tier in tiers:
        tier_pool = sorted(pools.pools.get(tier, []), key=lambda f: (counts.get(f.id, 0), f.id))
        ordered.extend(f for f in tier_pool if state.survives(f, day))
    return ordered


# ---------------------------------------------------------------------------
# Window search
# ---------------------------------------------------------------------------

@dataclass
class _WindowFrame:
    day: date
    candidates: List[Fellow]
    next_index: int = 0
    chosen: Optional[str] = None


def _window_days(target: date, width: int, ctx: RosterContext) -> List[date]:
    days = [target + timedelta(days=k) for k in range(-width, width + 1)]
    return [d for d in days if ctx.year.contains(d)]


def repair_window(state: CallState, target: date, width: int) -> Optional[Dict[str, str]]:
    """
    Re-solve the ±width window around `target`.  On success the state holds
    the new assignments and the window's new day → fellow map is returned; on
    failure the state is rolled back and None is returned.
    """
    ctx = state.ctx
    max_steps = ctx.rules.primary_call.repair_max_steps
    window = _window_days(target, width, ctx)

    snapshot = {d.isoformat(): state.days.get(d.isoformat()) for d in window}
    for d in window:
        state.unassign(d.isoformat())

    # Days nobody could ever take stay empty.
    fill_days = [d for d in window if base_pool(d, ctx)]
    if target not in fill_days:
        _restore(state, window, snapshot)
        return None

    steps = 0
    solved = False
    stack: List[_WindowFrame] = [_WindowFrame(fill_days[0], tier_order_candidates(fill_days[0], state))]
    while stack:
        if steps >= max_steps:
            break
        frame = stack[-1]
        if frame.chosen is not None:
            state.unassign(frame.day.isoformat())
            frame.chosen = None

        if frame.next_index >= len(frame.candidates):
            stack.pop()
            continue
        fellow = frame.candidates[frame.next_index]
        frame.next_index += 1
        steps += 1
        state.assign(frame.day.isoformat(), fellow.id)
        frame.chosen = fellow.id

        if len(stack) == len(fill_days):
            solved = True
            break
        nxt = fill_days[len(stack)]
        stack.append(_WindowFrame(nxt, tier_order_candidates(nxt, state)))

    if not solved:
        logger.debug(f"Repair window ±{width} around {target} failed after {steps} steps")
        _restore(state, window, snapshot)
        return None
    logger.debug(f"Repair window ±{width} around {target} solved in {steps} steps")
    return {d.isoformat(): state.days[d.isoformat()] for d in fill_days}


def _restore(state: CallState, window: List[date], snapshot: Dict[str, Optional[str]]) -> None:
    for d in window:
        state.unassign(d.isoformat())
    for iso, fid in snapshot.items():
        if fid is not None:
            state.assign(iso, fid)


# ---------------------------------------------------------------------------
# Repair pass
# ---------------------------------------------------------------------------

def run_repair_pass(
    state: CallState,
    failures: List[date],
    ctx: RosterContext,
    output_dir: Optional[Path] = None,
    prefix: str = "",
) -> Dict[str, Any]:
    """
    Repair every failed day in date order (a day filled by an earlier window
    is skipped).  Mutates state in place.  Appends a JSON entry to
    call_repair_log.json when output_dir is given.

    Returns: { "uncovered_before", "repaired_count", "repaired",
               "still_uncovered", "still_uncovered_count" }.
    """
    call = ctx.rules.primary_call
    widths = [call.repair_window_days, call.repair_window_days * call.repair_widen_factor]
    repaired: List[Dict[str, Any]] = []
    still_uncovered: List[Dict[str, Any]] = []

    for target in sorted(failures):
        iso = target.isoformat()
        if iso in state.days:
            continue
        if not base_pool(target, ctx):
            still_uncovered.append({"date": iso, "reason": REASON_POOL_EMPTY})
            continue

        before = {d: state.days.get(d) for d in (x.isoformat() for x in _window_days(target, widths[-1], ctx))}
        result = None
        for width in widths:
            result = repair_window(state, target, width)
            if result is not None:
                break
        if result is None:
            still_uncovered.append({"date": iso, "reason": REASON_EXHAUSTED_ALL_CANDIDATES})
            continue
        for day_iso, fid in sorted(result.items()):
            if before.get(day_iso) != fid:
                repaired.append({"date": day_iso, "fellow": fid, "target": iso, "window": width})

    still_uncovered.sort(key=lambda s: s["date"])
    _log_summary(failures, repaired, still_uncovered)
    if output_dir is not None:
        _append_log(Path(output_dir), prefix, len(failures), repaired, still_uncovered)

    return {
        "uncovered_before": len(failures),
        "repaired_count": len(repaired),
        "repaired": repaired,
        "still_uncovered": still_uncovered,
        "still_uncovered_count": len(still_uncovered),
    }


def _log_summary(
    failures: List[date],
    repaired: List[Dict[str, Any]],
    still_uncovered: List[Dict[str, Any]],
) -> None:
    if not failures:
        return
    logger.info(
        f"Repair summary: {len(failures)} uncovered before, "
        f"{len(repaired)} assignments changed, {len(still_uncovered)} still uncovered"
    )
    for s in still_uncovered:
        logger.warning(f"  {s['date']}  →  REPAIR_FAILED  Reason: {s['reason']}")


def _append_log(
    output_dir: Path,
    prefix: str,
    uncovered_before: int,
    repaired: List[Dict[str, Any]],
    still_uncovered: List[Dict[str, Any]],
) -> None:
    from datetime import datetime, timezone

    log_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "prefix": prefix,
        "uncovered_before": uncovered_before,
        "repaired_count": len(repaired),
        "still_uncovered_count": len(still_uncovered),
        "repaired": repaired,
        "still_uncovered": still_uncovered,
    }
    log_path = output_dir / REPAIR_LOG_FILENAME
    try:
        existing: List[Dict[str, Any]] = []
        if log_path.exists():
            with open(log_path) as f:
                data = json.load(f)
                existing = data if isinstance(data, list) else [data]
        existing.append(log_entry)
        output_dir.mkdir(parents=True, exist_ok=True)
        with open(log_path, "w") as f:
            json.dump(existing, f, indent=2)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not write repair log: {e}")
