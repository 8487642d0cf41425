import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum

import config
from actions import ALL_DIRECTIONS
from errors import PersistenceIOError
from tile_database import atomic_write_json

logger = logging.getLogger(__name__)

DATA_VERSION = 1


class MapTileState(Enum):
    UNKNOWN = "unknown"
    WALKABLE = "walkable"
    BLOCKED = "blocked"


@dataclass
class GameProgress:
    total_steps: int = 0
    tiles_discovered: int = 0
    play_time_seconds: float = 0.0
    last_map_id: str = config.DEFAULT_MAP_ID
    last_x: int = 0
    last_y: int = 0


@dataclass(frozen=True)
class MapStatistics:
    map_id: str
    walkable: int
    blocked: int

    @property
    def known(self):
        return self.walkable + self.blocked


def _key(x, y):
    return f"{x},{y}"


def _parse_key(key):
    x, y = key.split(",")
    return int(x), int(y)


class CoordinateWalkabilityMap:
    """Tri-state walkability per map id and integer position.

    Kept apart from the signature-keyed WalkabilityStore; callers that track
    their own position opt into it with COORDINATE_MAP_ENABLED.
    """

    def __init__(self, path=None, on_tile_learned=None):
        self.path = path if path is not None else config.MAP_DATA_FILE
        self.on_tile_learned = on_tile_learned
        self._maps = {}
        self._progress = GameProgress()
        self._current_map_id = config.DEFAULT_MAP_ID
        self._lock = threading.RLock()
        self._save_lock = threading.Lock()
        self._dirty = False

    @property
    def current_map_id(self):
        with self._lock:
            return self._current_map_id

    @current_map_id.setter
    def current_map_id(self, map_id):
        with self._lock:
            self._current_map_id = str(map_id)
            self._maps.setdefault(self._current_map_id, {})

    @property
    def progress(self):
        with self._lock:
            return GameProgress(**asdict(self._progress))

    @property
    def dirty(self):
        with self._lock:
            return self._dirty

    def get_state(self, x, y, map_id=None):
        with self._lock:
            tiles = self._maps.get(map_id or self._current_map_id, {})
            return tiles.get(_key(x, y), MapTileState.UNKNOWN)

    def set_state(self, x, y, state, map_id=None):
        with self._lock:
            map_id = map_id or self._current_map_id
            tiles = self._maps.setdefault(map_id, {})
            previous = tiles.get(_key(x, y), MapTileState.UNKNOWN)
            if previous == state:
                return False
            if state is MapTileState.UNKNOWN:
                tiles.pop(_key(x, y), None)
            else:
                tiles[_key(x, y)] = state
            if previous is MapTileState.UNKNOWN and state is not MapTileState.UNKNOWN:
                self._progress.tiles_discovered += 1
            self._dirty = True
            callback = self.on_tile_learned

        if callback is not None:
            callback(map_id, x, y, previous, state)
        return True

    def mark_walkable(self, x, y):
        return self.set_state(x, y, MapTileState.WALKABLE)

    def mark_blocked(self, x, y):
        return self.set_state(x, y, MapTileState.BLOCKED)

    def is_walkable(self, x, y):
        return self.get_state(x, y) is MapTileState.WALKABLE

    def is_blocked(self, x, y):
        return self.get_state(x, y) is MapTileState.BLOCKED

    def is_unknown(self, x, y):
        return self.get_state(x, y) is MapTileState.UNKNOWN

    @staticmethod
    def target_position(x, y, direction):
        dx, dy = direction.delta
        return x + dx, y + dy

    def walkable_directions(self, x, y):
        return [d for d in ALL_DIRECTIONS if self.is_walkable(*self.target_position(x, y, d))]

    def unexplored_directions(self, x, y):
        return [d for d in ALL_DIRECTIONS if self.is_unknown(*self.target_position(x, y, d))]

    def statistics(self, map_id=None):
        with self._lock:
            map_id = map_id or self._current_map_id
            states = list(self._maps.get(map_id, {}).values())
        return MapStatistics(
            map_id=map_id,
            walkable=sum(1 for s in states if s is MapTileState.WALKABLE),
            blocked=sum(1 for s in states if s is MapTileState.BLOCKED),
        )

    def increment_steps(self):
        with self._lock:
            self._progress.total_steps += 1
            self._dirty = True

    def update_position(self, x, y, map_id=None):
        with self._lock:
            self._progress.last_map_id = map_id or self._current_map_id
            self._progress.last_x = x
            self._progress.last_y = y
            self._dirty = True

    def add_play_time(self, seconds):
        if seconds <= 0:
            return
        with self._lock:
            self._progress.play_time_seconds += seconds
            self._dirty = True

    def load(self):
        maps = {}
        progress = GameProgress()
        if self.path and os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf-8") as handle:
                    payload = json.load(handle)
                for map_id, tiles in payload.get("maps", {}).items():
                    maps[map_id] = {}
                    for key, value in tiles.items():
                        _parse_key(key)
                        state = MapTileState(value)
                        if state is not MapTileState.UNKNOWN:
                            maps[map_id][key] = state
                progress = GameProgress(**payload.get("progress", {}))
            except (OSError, json.JSONDecodeError, AttributeError, TypeError, ValueError) as exc:
                logger.warning("Failed to load map data from %s: %s. Starting empty.", self.path, exc)
                maps = {}
                progress = GameProgress()

        with self._lock:
            self._maps = maps
            self._progress = progress
            self._current_map_id = progress.last_map_id
            self._maps.setdefault(self._current_map_id, {})
            self._dirty = False
        logger.info(f"Loaded {sum(len(t) for t in maps.values())} mapped tiles across {len(maps)} maps")
        return len(maps)

    def save(self):
        if not self.path:
            return False
        with self._save_lock:
            with self._lock:
                payload = {
                    "version": DATA_VERSION,
                    "last_saved": datetime.now(timezone.utc).isoformat(),
                    "maps": {
                        map_id: {key: state.value for key, state in tiles.items()}
                        for map_id, tiles in self._maps.items()
                    },
                    "progress": asdict(self._progress),
                }
                self._dirty = False
            try:
                atomic_write_json(self.path, payload)
            except OSError as exc:
                with self._lock:
                    self._dirty = True
                raise PersistenceIOError(self.path, exc) from exc
        return True

    def flush_if_dirty(self):
        if not self.dirty:
            return False
        return self.save()


@dataclass(frozen=True)
class MovementResult:
    direction: object
    moved: bool
    position: tuple
    target: tuple
    learned: bool


class PositionTracker:
    """Dead-reckons the player position from confirmed moves."""

    def __init__(self, walkability_map, start=None):
        self.map = walkability_map
        if start is None:
            progress = walkability_map.progress
            start = (progress.last_x, progress.last_y)
        self.position = tuple(start)

    def enter_map(self, map_id, position=(0, 0)):
        self.map.current_map_id = map_id
        self.position = tuple(position)
        self.map.update_position(*self.position, map_id=map_id)

    def process_movement_attempt(self, direction, moved):
        target = self.map.target_position(*self.position, direction)
        if moved:
            learned = self.map.mark_walkable(*target)
            self.position = target
            self.map.increment_steps()
            self.map.update_position(*target)
        else:
            learned = self.map.mark_blocked(*target)
        return MovementResult(direction, moved, self.position, target, learned)

    def pre_classify_visible_tiles(self, grid):
        px, py = grid.player
        marked = 0
        for tile in grid.black_tiles():
            wx = self.position[0] + tile.x - px
            wy = self.position[1] + tile.y - py
            if self.map.is_unknown(wx, wy) and self.map.mark_blocked(wx, wy):
                marked += 1
        return marked
