"""
vacation.py — Vacation Block Solver

Assigns each fellow of one tier up to two vacation blocks:

  - blocks of a pair are ≥ min_spacing_blocks apart (by block index)
  - ≤ max_fellows_per_block per tier, ≤ max_total_per_block system-wide
    (existing_usage carries the tiers already solved in this run)
  - no July vacation; no August vacation for the junior tier

Candidate pairs per fellow, in order:
  tier 0  (preferred, preferred)       by preference rank sum, then centering
  tier 1  (preferred, non-preferred)   by centering, then preference rank
  tier 2  (non-preferred, non-preferred) by centering
"centering" = distance of the pair midpoint from the middle of the year.

Search: explicit-stack depth-first backtracking over fellows, one frame per
fellow.  Several fellow orderings are tried; the first complete one wins.
Each attempt is bounded by a try ceiling and a wall-clock deadline.  If no
ordering completes, the deepest partial state is completed greedily
(pair → single block → nothing) and diagnostics explain what blocked it.
"""

import copy
import logging
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Optional, Sequence, Tuple

from fellow_roster.academic_calendar import AcademicYear
from fellow_roster.models import VACATION, Fellow, RotationTable
from fellow_roster.schedule_config import RuleConfiguration

logger = logging.getLogger(__name__)

Option = Tuple[str, ...]

ORDER_MOST_CONSTRAINED = "most_constrained_first"
ORDER_LEAST_CONSTRAINED = "least_constrained_first"
ORDER_RANDOM_1 = "random_shuffle_1"
ORDER_RANDOM_2 = "random_shuffle_2"
ORDER_PREFERENCE_COUNT = "preference_count_desc"


@dataclass
class VacationResult:
    assignments: Dict[str, List[str]]            # fellow_id → block keys
    success: bool
    diagnostics: List[str] = field(default_factory=list)
    ordering: Optional[str] = None
    tries: int = 0
    timed_out: bool = False
    block_usage: Dict[str, int] = field(default_factory=dict)   # incl. existing usage


# ---------------------------------------------------------------------------
# Candidate generation
# ---------------------------------------------------------------------------

def allowed_blocks(fellow: Fellow, year: AcademicYear, rules: RuleConfiguration) -> List[str]:
    vac = rules.vacation
    out = []
    for block in year.blocks:
        if vac.july_restriction and block.key.startswith("JUL"):
            continue
        if vac.junior_august_restriction and fellow.tier == rules.junior_tier and block.key.startswith("AUG"):
            continue
        out.append(block.key)
    return out


def vacation_preference_errors(fellow: Fellow, year: AcademicYear, rules: RuleConfiguration) -> List[str]:
    """
    Preference-list checks: four distinct keys, the first two in Jul–Dec and
    the last two in Jan–Jun, each in an allowed block.
    """
    errors: List[str] = []
    prefs = list(fellow.vacation_prefs)
    if len(prefs) != 4:
        errors.append(f"{fellow.name}: expected 4 vacation preferences, got {len(prefs)}")
    if len(set(prefs)) != len(prefs):
        errors.append(f"{fellow.name}: duplicate vacation preferences")

    allowed = set(allowed_blocks(fellow, year, rules))
    for i, key in enumerate(prefs):
        if key not in year.block_by_key:
            errors.append(f"{fellow.name}: unknown block {key!r}")
            continue
        if key not in allowed:
            errors.append(f"{fellow.name}: block {key} is not available for vacation")
        index = year.block_index(key)
        if i < 2 and index >= 12:
            errors.append(f"{fellow.name}: preference {i + 1} ({key}) must fall in Jul–Dec")
        elif i >= 2 and index < 12:
            errors.append(f"{fellow.name}: preference {i + 1} ({key}) must fall in Jan–Jun")
    return errors


def _centering(indices: Sequence[int], n_blocks: int) -> float:
    middle = (n_blocks - 1) / 2.0
    return abs(sum(indices) / len(indices) - middle)


def candidate_options(fellow: Fellow, year: AcademicYear, rules: RuleConfiguration) -> List[Option]:
    """Ordered vacation options for one fellow (pairs, or singles when only one block is allowed)."""
    want = min(2, rules.vacation.max_vacations_per_year)
    if want <= 0:
        return []
    allowed = allowed_blocks(fellow, year, rules)
    index = {k: year.block_index(k) for k in allowed}
    n_blocks = len(year.blocks)
    prefs = [k for k in fellow.vacation_prefs if k in index]
    rank = {k: i for i, k in reversed(list(enumerate(prefs)))}

    if want == 1:
        preferred = [(k,) for k in sorted(rank, key=rank.get)]
        others = sorted(((k,) for k in allowed if k not in rank),
                        key=lambda o: (_centering([index[o[0]]], n_blocks), index[o[0]]))
        return preferred + others

    spacing = rules.vacation.min_spacing_blocks
    tiers: Tuple[List, List, List] = ([], [], [])
    for a, b in combinations(allowed, 2):
        if abs(index[a] - index[b]) < spacing:
            continue
        pair = tuple(sorted((a, b), key=index.get))
        n_pref = (a in rank) + (b in rank)
        centering = _centering([index[a], index[b]], n_blocks)
        rank_sum = rank.get(a, len(prefs)) + rank.get(b, len(prefs))
        if n_pref == 2:
            tiers[0].append(((rank_sum, centering, index[pair[0]]), pair))
        elif n_pref == 1:
            tiers[1].append(((centering, rank_sum, index[pair[0]]), pair))
        else:
            tiers[2].append(((centering, index[pair[0]]), pair))
    out: List[Option] = []
    for bucket in tiers:
        out.extend(pair for _, pair in sorted(bucket))
    return out


def _preferred_pair_count(options: List[Option], prefs: Sequence[str]) -> int:
    return sum(1 for o in options if all(k in prefs for k in o))


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------

class _Capacity:
    def __init__(self, rules: RuleConfiguration, existing: Dict[str, int]):
        self.per_tier = rules.vacation.max_fellows_per_block
        self.total = rules.vacation.max_total_per_block
        self.existing = existing
        self.usage: Counter = Counter()

    def fits(self, option: Option) -> bool:
        return all(
            self.usage[k] < self.per_tier and self.existing.get(k, 0) + self.usage[k] < self.total
            for k in option
        )

    def take(self, option: Option) -> None:
        self.usage.update(option)

    def release(self, option: Option) -> None:
        self.usage.subtract(option)


# ---------------------------------------------------------------------------
# Explicit-stack backtracking
# ---------------------------------------------------------------------------

@dataclass
class _Frame:
    fellow_index: int
    options: List[Option]
    next_option: int = 0
    chosen: Optional[Option] = None


@dataclass
class _Attempt:
    ordering: str
    assignments: Dict[str, Option]
    complete: bool
    tries: int
    timed_out: bool


def _search(
    order: List[Fellow],
    options: Dict[str, List[Option]],
    rules: RuleConfiguration,
    existing: Dict[str, int],
    deadline: float,
    ordering: str,
) -> _Attempt:
    max_tries = rules.vacation.max_tries_per_attempt
    capacity = _Capacity(rules, existing)
    best: Dict[str, Option] = {}
    best_depth = 0
    tries = 0
    timed_out = False
    complete = not order

    stack: List[_Frame] = [_Frame(0, options[order[0].id])] if order else []
    while stack:
        if tries >= max_tries or time.monotonic() > deadline:
            timed_out = True
            break
        frame = stack[-1]
        if frame.chosen is not None:
            capacity.release(frame.chosen)
            frame.chosen = None

        while frame.next_option < len(frame.options):
            option = frame.options[frame.next_option]
            frame.next_option += 1
            tries += 1
            if capacity.fits(option):
                capacity.take(option)
                frame.chosen = option
                break
        if frame.chosen is None:
            stack.pop()
            continue

        depth = len(stack)
        if depth > best_depth:
            best_depth = depth
            best = {order[f.fellow_index].id: f.chosen for f in stack}
        if depth == len(order):
            complete = True
            break
        stack.append(_Frame(depth, options[order[depth].id]))

    return _Attempt(ordering, best, complete, tries, timed_out)


def _fill_remaining(
    fellows: List[Fellow],
    attempt: _Attempt,
    options: Dict[str, List[Option]],
    year: AcademicYear,
    rules: RuleConfiguration,
    existing: Dict[str, int],
) -> Dict[str, Option]:
    """Greedy completion of a partial attempt: best pair, else one block, else nothing."""
    capacity = _Capacity(rules, existing)
    assigned = dict(attempt.assignments)
    for option in assigned.values():
        capacity.take(option)

    n_blocks = len(year.blocks)
    for fellow in fellows:
        if fellow.id in assigned:
            continue
        chosen: Option = ()
        for option in options[fellow.id]:
            if capacity.fits(option):
                chosen = option
                break
        if not chosen:
            allowed = allowed_blocks(fellow, year, rules)
            singles = [k for k in fellow.vacation_prefs if k in allowed]
            singles += sorted((k for k in allowed if k not in singles),
                              key=lambda k: _centering([year.block_index(k)], n_blocks))
            for key in singles:
                if capacity.fits((key,)):
                    chosen = (key,)
                    break
        if chosen:
            capacity.take(chosen)
        assigned[fellow.id] = chosen
    return assigned


def _orderings(
    fellows: List[Fellow],
    options: Dict[str, List[Option]],
    rng: random.Random,
) -> List[Tuple[str, List[Fellow]]]:
    def constrained(f: Fellow) -> int:
        return _preferred_pair_count(options[f.id], f.vacation_prefs)

    shuffled_1 = list(fellows)
    rng.shuffle(shuffled_1)
    shuffled_2 = list(fellows)
    rng.shuffle(shuffled_2)
    return [
        (ORDER_MOST_CONSTRAINED, sorted(fellows, key=lambda f: (constrained(f), f.id))),
        (ORDER_LEAST_CONSTRAINED, sorted(fellows, key=lambda f: (-constrained(f), f.id))),
        (ORDER_RANDOM_1, shuffled_1),
        (ORDER_RANDOM_2, shuffled_2),
        (ORDER_PREFERENCE_COUNT, sorted(fellows, key=lambda f: (-len(set(f.vacation_prefs)), f.id))),
    ]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def solve_vacations(
    fellows: Sequence[Fellow],
    year: AcademicYear,
    rules: Optional[RuleConfiguration] = None,
    existing_usage: Optional[Dict[str, int]] = None,
    rng: Optional[random.Random] = None,
) -> VacationResult:
    """
    Assign vacation blocks to one tier's fellows.

    Args:
        fellows: fellows of a single tier
        existing_usage: block key → vacations already placed by other tiers
        rng: drives the two shuffled orderings (seed it for reproducible runs)
    """
    rules = rules or RuleConfiguration()
    rng = rng or random.Random()
    existing = dict(existing_usage or {})
    fellows = list(fellows)
    want = min(2, rules.vacation.max_vacations_per_year)

    options = {f.id: candidate_options(f, year, rules) for f in fellows}
    searchable = [f for f in fellows if options[f.id]]
    no_options = [f for f in fellows if not options[f.id]]

    overall_deadline = time.monotonic() + rules.vacation.timeout_seconds
    attempts: List[_Attempt] = []
    for ordering, order in _orderings(searchable, options, rng):
        now = time.monotonic()
        if now > overall_deadline:
            logger.warning("Vacation search stopped: overall time limit reached")
            break
        deadline = min(overall_deadline, now + rules.vacation.attempt_timeout_seconds)
        attempt = _search(order, options, rules, existing, deadline, ordering)
        attempts.append(attempt)
        logger.debug(f"Vacation ordering {ordering}: complete={attempt.complete} tries={attempt.tries}")
        if attempt.complete:
            break

    if not attempts:
        attempts.append(_Attempt(ORDER_MOST_CONSTRAINED, {}, not searchable, 0, True))
    best = next((a for a in attempts if a.complete), None)
    if best is None:
        best = max(attempts, key=lambda a: (len(a.assignments), -a.tries))
    chosen = _fill_remaining(fellows, best, options, year, rules, existing)

    usage = Counter(existing)
    for option in chosen.values():
        usage.update(option)
    assignments = {f.id: list(chosen.get(f.id, ())) for f in fellows}
    short = [f for f in fellows if len(assignments[f.id]) < want]
    success = best.complete and not no_options and not short

    diagnostics: List[str] = []
    if not success:
        diagnostics = _diagnose(fellows, no_options, short, assignments, existing, rules, year)
        if any(a.timed_out for a in attempts):
            diagnostics.append(
                f"Search limit reached ({rules.vacation.max_tries_per_attempt} tries or "
                f"{rules.vacation.attempt_timeout_seconds}s per ordering)"
            )
        for line in diagnostics:
            logger.warning(f"Vacation: {line}")

    total_tries = sum(a.tries for a in attempts)
    logger.info(
        f"Vacations for {len(fellows)} fellows: success={success} ordering={best.ordering} tries={total_tries}"
    )
    return VacationResult(
        assignments=assignments,
        success=success,
        diagnostics=diagnostics,
        ordering=best.ordering,
        tries=total_tries,
        timed_out=any(a.timed_out for a in attempts),
        block_usage={k: v for k, v in usage.items() if v},
    )


def _diagnose(
    fellows: List[Fellow],
    no_options: List[Fellow],
    short: List[Fellow],
    assignments: Dict[str, List[str]],
    existing: Dict[str, int],
    rules: RuleConfiguration,
    year: AcademicYear,
) -> List[str]:
    out: List[str] = []
    for f in no_options:
        n_allowed = len(allowed_blocks(f, year, rules))
        out.append(f"{f.name} has no valid vacation pair ({n_allowed} allowed blocks)")

    wanted = set()
    for f in fellows:
        wanted.update(f.vacation_prefs)
    limit = rules.vacation.max_total_per_block
    for key in sorted(wanted, key=lambda k: year.block_index(k) if k in year.block_by_key else 99):
        if existing.get(key, 0) >= limit:
            out.append(f"Block {key} is saturated by other tiers ({existing[key]}/{limit})")

    for f in short:
        if f in no_options:
            continue
        got = ", ".join(assignments[f.id]) or "none"
        out.append(f"{f.name} received {len(assignments[f.id])} vacation block(s): {got}")
    return out


def solve_all_vacations(ctx, rng: Optional[random.Random] = None) -> Dict[str, VacationResult]:
    """Solve every tier in rules.vacation.tier_order, accumulating block usage."""
    rng = rng or random.Random()
    usage: Dict[str, int] = {}
    results: Dict[str, VacationResult] = {}
    for tier in ctx.rules.vacation.tier_order:
        result = solve_vacations(ctx.fellows_in_tier(tier), ctx.year, ctx.rules, usage, rng)
        results[tier] = result
        usage = dict(result.block_usage)
    return results


def merge_assignments(results: Dict[str, VacationResult]) -> Dict[str, List[str]]:
    merged: Dict[str, List[str]] = {}
    for result in results.values():
        merged.update(result.assignments)
    return merged


def apply_vacations(
    rotations: RotationTable,
    assignments: Dict[str, List[str]],
    replacement: str = "ELECTIVE",
) -> RotationTable:
    """
    Copy of `rotations` with each fellow's vacation blocks set to VAC.  Blocks
    that were VAC but are no longer assigned revert to `replacement`.
    """
    table = copy.deepcopy(rotations)
    for fellow_id, blocks in assignments.items():
        row = table.setdefault(fellow_id, {})
        for key, rotation in list(row.items()):
            if rotation == VACATION and key not in blocks:
                row[key] = replacement
        for key in blocks:
            row[key] = VACATION
    return table


def vacation_usage(rotations: RotationTable) -> Dict[str, int]:
    usage: Counter = Counter()
    for row in rotations.values():
        usage.update(k for k, rotation in row.items() if rotation == VACATION)
    return dict(usage)


