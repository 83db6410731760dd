"""
store.py — Persistence for setup, rotations, schedules and settings

The engine never touches a global store: callers inject a ScheduleStore.

  InMemoryStore   dict-backed, for tests and single runs
  JsonFileStore   one <key>.json file per key under a directory

Fixed keys:
  cfsa_setup_v1     year start, roster, holiday list
  cfsa_blocks_v1    rotation table (fellow_id → {block_key: rotation})
  cfsa_calls_v1     CallSchedule
  cfsa_coverage_v1  CoverageMetadata of the last call build
  cfsa_hf_v1        HFSchedule
  cfsa_clinics_v1   ClinicSchedule
  cfsa_settings_v1  RuleConfiguration

Typed load_* helpers never raise: absent or malformed data logs a warning and
returns None (load_rules returns the defaults instead).
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from fellow_roster.models import (
    CallSchedule,
    ClinicSchedule,
    CoverageMetadata,
    HFSchedule,
    RotationTable,
    Setup,
)
from fellow_roster.schedule_config import RuleConfiguration

logger = logging.getLogger(__name__)

SETUP_KEY = "cfsa_setup_v1"
ROTATIONS_KEY = "cfsa_blocks_v1"
CALL_SCHEDULE_KEY = "cfsa_calls_v1"
COVERAGE_KEY = "cfsa_coverage_v1"
HF_SCHEDULE_KEY = "cfsa_hf_v1"
CLINIC_SCHEDULE_KEY = "cfsa_clinics_v1"
SETTINGS_KEY = "cfsa_settings_v1"

ALL_KEYS = (
    SETUP_KEY,
    ROTATIONS_KEY,
    CALL_SCHEDULE_KEY,
    COVERAGE_KEY,
    HF_SCHEDULE_KEY,
    CLINIC_SCHEDULE_KEY,
    SETTINGS_KEY,
)

# Errors a malformed payload can raise while being decoded into a record.
_DECODE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

class ScheduleStore:
    """Key → JSON-compatible value repository."""

    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class InMemoryStore(ScheduleStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so stored values match what a file store would hold.
        self._data[key] = json.loads(json.dumps(value))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(ScheduleStore):
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Store entry {key} at {path} is unreadable ({e}); ignoring it")
            return None

    def set(self, key: str, value: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        with open(self._path(key), "w") as f:
            json.dump(value, f, indent=2)
        logger.debug(f"Store entry {key} saved to {self._path(key)}")

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()


# ---------------------------------------------------------------------------
# Typed helpers
# ---------------------------------------------------------------------------

def _load(store: ScheduleStore, key: str, decode):
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return decode(raw)
    except _DECODE_ERRORS as e:
        logger.warning(f"Store entry {key} is malformed ({e!r}); treating it as absent")
        return None


def _decode_rotations(raw: Any) -> RotationTable:
    if not isinstance(raw, dict):
        raise TypeError("rotation table must be a mapping")
    table: RotationTable = {}
    for fid, row in raw.items():
        if not isinstance(row, dict):
            raise TypeError(f"rotation row for {fid} must be a mapping")
        table[str(fid)] = {str(k): str(v) for k, v in row.items()}
    return table


def load_setup(store: ScheduleStore) -> Optional[Setup]:
    return _load(store, SETUP_KEY, Setup.from_dict)


def save_setup(store: ScheduleStore, setup: Setup) -> None:
    store.set(SETUP_KEY, setup.to_dict())


def load_rotations(store: ScheduleStore) -> Optional[RotationTable]:
    return _load(store, ROTATIONS_KEY, _decode_rotations)


def save_rotations(store: ScheduleStore, rotations: RotationTable) -> None:
    store.set(ROTATIONS_KEY, rotations)


def load_call_schedule(store: ScheduleStore) -> Optional[CallSchedule]:
    return _load(store, CALL_SCHEDULE_KEY, CallSchedule.from_dict)


def save_call_schedule(store: ScheduleStore, schedule: CallSchedule) -> None:
    store.set(CALL_SCHEDULE_KEY, schedule.to_dict())


def load_coverage_metadata(store: ScheduleStore) -> Optional[CoverageMetadata]:
    return _load(store, COVERAGE_KEY, CoverageMetadata.from_dict)


def save_coverage_metadata(store: ScheduleStore, metadata: CoverageMetadata) -> None:
    store.set(COVERAGE_KEY, metadata.to_dict())


def clear_coverage_metadata(store: ScheduleStore) -> None:
    store.delete(COVERAGE_KEY)


def load_hf_schedule(store: ScheduleStore) -> Optional[HFSchedule]:
    return _load(store, HF_SCHEDULE_KEY, HFSchedule.from_dict)


def save_hf_schedule(store: ScheduleStore, schedule: HFSchedule) -> None:
    store.set(HF_SCHEDULE_KEY, schedule.to_dict())


def load_clinic_schedule(store: ScheduleStore) -> Optional[ClinicSchedule]:
    return _load(store, CLINIC_SCHEDULE_KEY, ClinicSchedule.from_dict)


def save_clinic_schedule(store: ScheduleStore, schedule: ClinicSchedule) -> None:
    store.set(CLINIC_SCHEDULE_KEY, schedule.to_dict())


def load_rules(store: ScheduleStore) -> RuleConfiguration:
    rules = _load(store, SETTINGS_KEY, RuleConfiguration.from_dict)
    return rules if rules is not None else RuleConfiguration()


def save_rules(store: ScheduleStore, rules: RuleConfiguration) -> None:
    store.set(SETTINGS_KEY, rules.to_dict())
