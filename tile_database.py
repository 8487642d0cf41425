import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, Flag

import config
from errors import PersistenceIOError

logger = logging.getLogger(__name__)


class Walkability(Enum):
    UNKNOWN = "unknown"
    WALKABLE = "walkable"
    BLOCKING = "blocking"


class TileType(Flag):
    UNKNOWN = 0
    WALKABLE = 1
    BLOCKING = 2
    DOOR = 4
    WARP = 8
    WATER = 16
    LEDGE = 32
    GRASS = 64
    NPC = 128
    INTERACTABLE = 256


def _utc_now():
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TileRecord:
    signature: int
    successes: int = 0
    failures: int = 0
    observations: int = 1
    last_seen: str = field(default_factory=_utc_now)
    walkable: bool = False
    blocking: bool = False
    interactable: bool = False
    door: bool = False
    warp: bool = False
    water: bool = False
    ledge: bool = False
    grass: bool = False
    notes: str | None = None

    @property
    def attempts(self):
        return self.successes + self.failures

    @property
    def confidence(self):
        if self.attempts == 0:
            return config.DEFAULT_CONFIDENCE
        return self.successes / self.attempts

    @property
    def walkability(self):
        if self.blocking:
            return Walkability.BLOCKING
        if self.walkable:
            return Walkability.WALKABLE
        return Walkability.UNKNOWN

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise TypeError(f"Tile record must be an object, got {type(data).__name__}")
        record = cls(signature=int(data["signature"]))
        for name in _COUNT_FIELDS:
            if name in data:
                setattr(record, name, int(data[name]))
        for name in _FLAG_FIELDS:
            if name in data:
                setattr(record, name, bool(data[name]))
        if data.get("last_seen") is not None:
            record.last_seen = str(data["last_seen"])
        if data.get("notes") is not None:
            record.notes = str(data["notes"])
        return record


_COUNT_FIELDS = ("successes", "failures", "observations")
_FLAG_FIELDS = ("walkable", "blocking", "interactable", "door", "warp", "water", "ledge", "grass")


@dataclass(frozen=True)
class StoreStats:
    total: int = 0
    walkable: int = 0
    blocking: int = 0
    high_confidence: int = 0
    door: int = 0
    warp: int = 0
    grass: int = 0
    water: int = 0
    interactable: int = 0

    def __str__(self):
        return (
            f"Tiles: {self.total} | Walkable: {self.walkable} | Blocking: {self.blocking} | "
            f"High confidence: {self.high_confidence} | Doors: {self.door} | Warps: {self.warp} | "
            f"Grass: {self.grass} | Water: {self.water} | Interactable: {self.interactable}"
        )


class WalkabilityStore:
    """Learned walkability keyed by tile signature.

    Every mutation and snapshot read goes through ``_lock``. ``save`` copies
    the records under the lock and writes them outside it, so an autosave
    never blocks the worker for the duration of disk I/O.
    """

    def __init__(self, path=None):
        self.path = path if path is not None else config.TILE_DATABASE_FILE
        self._records = {}
        self._lock = threading.RLock()
        self._save_lock = threading.Lock()
        self._dirty = False

    def __len__(self):
        with self._lock:
            return len(self._records)

    @property
    def dirty(self):
        with self._lock:
            return self._dirty

    def get(self, signature):
        with self._lock:
            record = self._records.get(signature)
            return replace(record) if record is not None else None

    def get_or_create(self, signature):
        with self._lock:
            record = self._records.get(signature)
            if record is None:
                record = TileRecord(signature=signature)
                self._records[signature] = record
                self._dirty = True
            return replace(record)

    def record_walk_attempt(self, signature, success):
        with self._lock:
            record = self._records.get(signature)
            if record is None:
                record = TileRecord(signature=signature)
                self._records[signature] = record
            record.observations += 1

            if success:
                record.successes += 1
            else:
                record.failures += 1
            record.last_seen = _utc_now()

            if record.attempts >= config.MIN_ATTEMPTS_FOR_CLASSIFICATION:
                record.walkable = record.confidence > 0.5
                record.blocking = not record.walkable

            self._dirty = True
            return replace(record)

    def query(self, signature):
        with self._lock:
            record = self._records.get(signature)
            if record is None:
                return Walkability.UNKNOWN
            return record.walkability

    def set_tile_type(self, signature, tile_type, notes=None):
        with self._lock:
            record = self._records.get(signature)
            if record is None:
                record = TileRecord(signature=signature)
                self._records[signature] = record

            record.walkable = bool(tile_type & TileType.WALKABLE)
            record.blocking = bool(tile_type & TileType.BLOCKING)
            record.door = bool(tile_type & TileType.DOOR)
            record.warp = bool(tile_type & TileType.WARP)
            record.water = bool(tile_type & TileType.WATER)
            record.ledge = bool(tile_type & TileType.LEDGE)
            record.grass = bool(tile_type & TileType.GRASS)
            record.interactable = bool(tile_type & (TileType.INTERACTABLE | TileType.NPC))
            if record.blocking:
                record.walkable = False
            if notes is not None:
                record.notes = notes
            record.last_seen = _utc_now()
            self._dirty = True
            return replace(record)

    def stats(self):
        with self._lock:
            records = list(self._records.values())
        return StoreStats(
            total=len(records),
            walkable=sum(1 for r in records if r.walkable),
            blocking=sum(1 for r in records if r.blocking),
            high_confidence=sum(1 for r in records if r.attempts >= config.HIGH_CONFIDENCE_ATTEMPTS),
            door=sum(1 for r in records if r.door),
            warp=sum(1 for r in records if r.warp),
            grass=sum(1 for r in records if r.grass),
            water=sum(1 for r in records if r.water),
            interactable=sum(1 for r in records if r.interactable),
        )

    def all_records(self):
        with self._lock:
            return [replace(record) for record in self._records.values()]

    def clear(self):
        with self._lock:
            self._records.clear()
            self._dirty = True

    def load(self):
        records = {}
        if self.path and os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf-8") as handle:
                    payload = json.load(handle)
                if not isinstance(payload, list):
                    raise TypeError(f"expected a list of tile records, got {type(payload).__name__}")
                for item in payload:
                    record = TileRecord.from_dict(item)
                    records[record.signature] = record
            except (OSError, json.JSONDecodeError, AttributeError, TypeError, KeyError, ValueError) as exc:
                logger.warning("Failed to load tile database from %s: %s. Starting empty.", self.path, exc)
                records = {}

        with self._lock:
            self._records = records
            self._dirty = False
        logger.info(f"Loaded {len(records)} tiles from {self.path}")
        return len(records)

    def save(self):
        if not self.path:
            return False
        with self._save_lock:
            with self._lock:
                payload = [record.to_dict() for record in self._records.values()]
                self._dirty = False
            try:
                atomic_write_json(self.path, payload)
            except OSError as exc:
                with self._lock:
                    self._dirty = True
                raise PersistenceIOError(self.path, exc) from exc
        logger.debug(f"Saved {len(payload)} tiles to {self.path}")
        return True

    def flush_if_dirty(self):
        if not self.dirty:
            return False
        return self.save()


def atomic_write_json(path, payload):
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        os.replace(temp_path, path)
    except OSError:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise


class AutoSaver:
    def __init__(self, target, interval, name="autosave"):
        self.target = target
        self.interval = max(0.01, float(interval))
        self.name = name
        self._stop = threading.Event()
        self._thread = None

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout=1.0):
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def _loop(self):
        while not self._stop.wait(self.interval):
            try:
                self.target.flush_if_dirty()
            except PersistenceIOError as exc:
                logger.error(f"{self.name}: {exc}; retrying next interval")
            except Exception:
                logger.exception(f"{self.name} failed; continuing")
