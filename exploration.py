import logging
import math
import random
from collections import deque
from dataclasses import dataclass, field

import config
from actions import ALL_DIRECTIONS, Cancel, Direction, Interact, Move, Wait
from game_state import GameStateType
from tile_database import TileRecord, Walkability

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyConfig:
    stuck_threshold: int = 2
    loop_window: int = 10
    loop_threshold: int = 3
    history_limit: int = 50
    history_trim_to: int = 25
    exit_tried_penalty: float = 10.0
    interact_probability: float = 0.05
    cancel_probability: float = 0.03
    discovery_fail_limit: int = 3
    forced_negative_observations: int = 5
    dismiss_tile_signatures: frozenset = frozenset()

    @classmethod
    def from_config(cls):
        return cls(
            stuck_threshold=int(getattr(config, "STUCK_THRESHOLD", 2)),
            loop_window=int(getattr(config, "LOOP_WINDOW", 10)),
            loop_threshold=int(getattr(config, "LOOP_THRESHOLD", 3)),
            history_limit=int(getattr(config, "MOVE_HISTORY_LIMIT", 50)),
            history_trim_to=int(getattr(config, "MOVE_HISTORY_TRIM_TO", 25)),
            exit_tried_penalty=float(getattr(config, "EXIT_TRIED_PENALTY", 10.0)),
            interact_probability=float(getattr(config, "INTERACT_PROBABILITY", 0.05)),
            cancel_probability=float(getattr(config, "CANCEL_PROBABILITY", 0.03)),
            discovery_fail_limit=int(getattr(config, "DISCOVERY_FAIL_LIMIT", 3)),
            forced_negative_observations=int(getattr(config, "FORCED_NEGATIVE_OBSERVATIONS", 5)),
            dismiss_tile_signatures=frozenset(getattr(config, "DISMISS_TILE_SIGNATURES", [])),
        )


@dataclass
class ExplorationMemory:
    loop_window: int = 10
    tried: dict = field(default_factory=dict)
    move_history: list = field(default_factory=list)
    recent_frames: deque = None
    stuck_count: int = 0
    last_direction: Direction | None = None
    current_frame: int | None = None
    failed_direction: Direction | None = None
    repeat_count: int = 0

    def __post_init__(self):
        self.recent_frames = deque(maxlen=self.loop_window)

    def tried_at(self, location):
        return self.tried.get(location, set())

    def mark_tried(self, location, direction):
        self.tried.setdefault(location, set()).add(direction)

    def push_move(self, direction, limit, trim_to):
        self.move_history.append(direction)
        if len(self.move_history) > limit:
            self.move_history = self.move_history[-trim_to:]

    def reset(self):
        self.tried.clear()
        self.move_history.clear()
        self.recent_frames.clear()
        self.stuck_count = 0
        self.last_direction = None
        self.current_frame = None
        self.failed_direction = None
        self.repeat_count = 0


@dataclass(frozen=True)
class Decision:
    action: object
    reason: str
    target_distance: int | None = None


@dataclass(frozen=True)
class PendingMove:
    direction: Direction
    target_signature: int | None
    frame_signature: int


@dataclass(frozen=True)
class MoveOutcome:
    pending: PendingMove
    success: bool
    record: TileRecord | None
    before: Walkability
    after: Walkability

    @property
    def learned(self):
        return self.before != self.after


def build_pending_move(action, grid, frame_signature):
    if not isinstance(action, Move):
        return None
    target = grid.neighbor(action.direction)
    return PendingMove(
        direction=action.direction,
        target_signature=target.signature if target is not None else None,
        frame_signature=frame_signature,
    )


def confirm_move_outcome(pending, frame_signature, store):
    """Feed the result of the previous move into the store.

    The move succeeded when the frame changed between the capture taken
    before the move and the one taken after the movement delay.
    """
    success = frame_signature != pending.frame_signature
    if pending.target_signature is None:
        return MoveOutcome(pending, success, None, Walkability.UNKNOWN, Walkability.UNKNOWN)

    before = store.query(pending.target_signature)
    record = store.record_walk_attempt(pending.target_signature, success)
    return MoveOutcome(pending, success, record, before, record.walkability)


class ExplorationPolicy:
    def __init__(self, policy_config=None, rng=None, discovery_mode=False):
        self.config = policy_config or PolicyConfig.from_config()
        self.rng = rng or random.Random(getattr(config, "POLICY_SEED", None))
        self.discovery_mode = discovery_mode
        self.memory = ExplorationMemory(loop_window=self.config.loop_window)
        self.last_decision = None

    @property
    def stuck_count(self):
        return self.memory.stuck_count

    def reset(self):
        self.memory.reset()
        self.last_decision = None

    def decide(self, classification, grid, frame_signature, store):
        decision = self._screen_decision(classification, grid)
        if decision is not None:
            self.memory.last_direction = None
            self.memory.current_frame = frame_signature
        elif self.discovery_mode:
            decision = self._discovery_decision(grid, frame_signature, store)
        else:
            decision = self._exploration_decision(grid, frame_signature)

        self.last_decision = decision
        logger.debug(f"Decision: {decision.action} ({decision.reason})")
        return decision.action

    def _screen_decision(self, classification, grid):
        state = classification.state
        if state is GameStateType.BLACK_SCREEN:
            return Decision(Wait(), "black screen")
        if state is GameStateType.BATTLE:
            if classification.has_continue_arrow or classification.has_selection_arrow:
                return Decision(Interact(), "battle prompt")
            return Decision(Wait(), "battle animation")
        if classification.is_dismissible:
            return Decision(Cancel(), f"dismiss {state.value}")
        if self.config.dismiss_tile_signatures and grid.contains_signature(self.config.dismiss_tile_signatures):
            return Decision(Cancel(), "dismiss text box tiles")
        if state is GameStateType.TITLE:
            return Decision(Interact(), "title screen")
        return None

    def _move(self, direction, reason, distance=None):
        self.memory.last_direction = direction
        return Decision(Move(direction), reason, distance)

    def _observe(self, frame_signature):
        """Update stuck/loop bookkeeping with the frame seen after the last action.

        Returns True on the first stuck tick after a move.
        """
        mem = self.memory
        changed = mem.current_frame is None or frame_signature != mem.current_frame
        first_stuck = False

        if mem.last_direction is not None:
            if changed:
                mem.stuck_count = 0
                mem.push_move(mem.last_direction, self.config.history_limit, self.config.history_trim_to)
                mem.failed_direction = None
                mem.repeat_count = 0
            else:
                mem.stuck_count += 1
                mem.mark_tried(frame_signature, mem.last_direction)
                first_stuck = mem.stuck_count == 1
                if mem.failed_direction == mem.last_direction:
                    mem.repeat_count += 1
                else:
                    mem.failed_direction = mem.last_direction
                    mem.repeat_count = 1

        if changed:
            mem.recent_frames.append(frame_signature)
        mem.current_frame = frame_signature
        return first_stuck

    def _random_substitution(self):
        interact = self.config.interact_probability
        cancel = self.config.cancel_probability
        if interact + cancel <= 0:
            return None

        roll = self.rng.random()
        if roll < interact:
            action, reason = Interact(), "random interact"
        elif roll < interact + cancel:
            action, reason = Cancel(), "random cancel"
        else:
            return None

        self.memory.stuck_count = 0
        self.memory.last_direction = None
        return Decision(action, reason)

    def _untried_direction(self, location):
        tried = self.memory.tried_at(location)
        untried = [d for d in ALL_DIRECTIONS if d not in tried]
        if not untried:
            return None
        return self.rng.choice(untried)

    def _exploration_decision(self, grid, frame_signature):
        mem = self.memory
        location = frame_signature
        first_stuck = self._observe(frame_signature)

        substitution = self._random_substitution()
        if substitution is not None:
            return substitution

        if first_stuck:
            direction = self._untried_direction(location)
            if direction is not None:
                return self._move(direction, "stuck, trying another direction")

        if mem.recent_frames.count(frame_signature) >= self.config.loop_threshold:
            mem.tried.pop(location, None)
            return self._move(self.rng.choice(ALL_DIRECTIONS), "loop escape")

        if mem.stuck_count >= self.config.stuck_threshold:
            direction = self._untried_direction(location)
            if direction is not None:
                return self._move(direction, "stuck, untried direction")
            if mem.move_history:
                previous = mem.move_history.pop()
                mem.tried.pop(location, None)
                mem.stuck_count = 0
                return self._move(previous.opposite, "backtrack")
            logger.debug("Nothing left to backtrack; clearing tried directions")
            mem.tried.clear()
            mem.stuck_count = 0

        exit_decision = self._exit_decision(grid, location)
        if exit_decision is not None:
            return exit_decision

        direction = self._untried_direction(location)
        if direction is not None:
            return self._move(direction, "untried direction")

        mem.tried.pop(location, None)
        return self._move(self.rng.choice(ALL_DIRECTIONS), "all directions tried")

    def _exit_decision(self, grid, location):
        exits = grid.edge_exits()
        if not exits:
            return None

        tried = self.memory.tried_at(location)
        px, py = grid.player
        best = None
        for tile in exits:
            if (tile.x, tile.y) == (px, py):
                continue
            distance = math.hypot(tile.x - px, tile.y - py)
            direction = grid.direction_towards(tile.x, tile.y)
            score = distance + (self.config.exit_tried_penalty if direction in tried else 0.0)
            if best is None or score < best[0]:
                best = (score, direction, distance)

        if best is None:
            return None
        _, direction, distance = best
        return self._move(direction, "heading to exit", int(round(distance)))

    def _discovery_decision(self, grid, frame_signature, store):
        mem = self.memory
        self._observe(frame_signature)

        excluded = None
        if mem.failed_direction is not None and mem.repeat_count >= self.config.discovery_fail_limit:
            excluded = mem.failed_direction
            if mem.repeat_count == self.config.discovery_fail_limit:
                self._force_blocking(grid, excluded, store)

        directions = [d for d in ALL_DIRECTIONS if d != excluded]

        unknown = []
        for direction in directions:
            tile = grid.neighbor(direction)
            if tile is not None and store.query(tile.signature) is Walkability.UNKNOWN:
                unknown.append(direction)
        if unknown:
            return self._move(self.rng.choice(unknown), "probe unknown tile", 1)

        reach = {}
        for direction in directions:
            distance = self._corridor_reach(grid, direction, store)
            if distance is not None:
                reach[direction] = distance
        if reach:
            nearest = min(reach.values())
            candidates = [d for d in directions if reach.get(d) == nearest]
            return self._move(self.rng.choice(candidates), "walk corridor to unknown tile", nearest)

        walkable = []
        for direction in directions:
            tile = grid.neighbor(direction)
            if tile is not None and store.query(tile.signature) is Walkability.WALKABLE:
                walkable.append(direction)
        if walkable:
            return self._move(self.rng.choice(walkable), "walkable neighbor", 1)

        return self._move(self.rng.choice(directions), "random step")

    def _corridor_reach(self, grid, direction, store):
        max_distance = max(grid.width, grid.height)
        for distance in range(1, max_distance + 1):
            tile = grid.neighbor(direction, distance)
            if tile is None:
                return None
            state = store.query(tile.signature)
            if state is Walkability.WALKABLE:
                continue
            if state is Walkability.UNKNOWN and distance >= 2:
                return distance
            return None
        return None

    def _force_blocking(self, grid, direction, store):
        tile = grid.neighbor(direction)
        if tile is None:
            return
        for _ in range(self.config.forced_negative_observations):
            store.record_walk_attempt(tile.signature, False)
        logger.info(
            f"Direction {direction.value} failed {self.memory.repeat_count} times; "
            f"forced tile {tile.signature} to blocking"
        )
