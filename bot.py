import logging
import random
import threading
import time
from enum import Enum

import config
from actions import dispatch_action
from errors import CaptureUnavailable, InputDeliveryFailure, PersistenceIOError
from events import ActionPerformed, ErrorOccurred, StateChanged, TileLearned
from exploration import ExplorationPolicy, build_pending_move, confirm_move_outcome
from frame_reader import extract_tiles, frame_signature, normalize_frame
from game_state import GameStateType
from state_detector import build_state_detector
from tile_database import AutoSaver
from walkability_map import PositionTracker

logger = logging.getLogger(__name__)


class ControllerState(Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    EXPLORING = "exploring"
    PAUSED = "paused"
    ERROR = "error"


class ExplorerBot:
    def __init__(
        self,
        frame_source,
        input_sink,
        store,
        state_detector=None,
        policy=None,
        event_bus=None,
        coordinate_map=None,
        tile_size=None,
    ):
        logger.info("Initializing Explorer...")

        self.frame_source = frame_source
        self.input_sink = input_sink
        self.store = store
        self.state_detector = state_detector or build_state_detector(rng=random.Random(config.CLASSIFIER_SEED))
        self.policy = policy or ExplorationPolicy(discovery_mode=config.DISCOVERY_MODE)
        self.event_bus = event_bus
        self.coordinate_map = coordinate_map
        self.tracker = None
        self.tile_size = tile_size or config.TILE_SIZE

        self.state = ControllerState.IDLE
        self.running = False
        self.tick_count = 0
        self.move_count = 0
        self.error_count = 0
        self.game_state = None

        self._pending_move = None
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread = None
        self._autosavers = []
        self._started_at = None

        logger.info("Explorer initialized successfully")

    def _publish(self, event):
        if self.event_bus is not None:
            self.event_bus.publish(event)

    def _set_state(self, new_state):
        with self._state_lock:
            previous = self.state
            if previous is new_state:
                return
            self.state = new_state
        logger.info(f"Controller: {previous.value} -> {new_state.value}")
        self._publish(StateChanged("controller", previous.value, new_state.value))

    def _initialize(self):
        if self.event_bus is not None:
            self.event_bus.start()
        self._set_state(ControllerState.INITIALIZING)

        self.store.load()
        self._autosavers = [AutoSaver(self.store, config.TILE_AUTOSAVE_INTERVAL, name="tile_autosave")]
        if self.coordinate_map is not None:
            self.coordinate_map.load()
            self.tracker = PositionTracker(self.coordinate_map)
            self._autosavers.append(AutoSaver(self.coordinate_map, config.MAP_AUTOSAVE_INTERVAL, name="map_autosave"))
        for saver in self._autosavers:
            saver.start()

        self._pending_move = None
        self._stop_event.clear()
        self._started_at = time.monotonic()
        self.running = True
        self._set_state(ControllerState.EXPLORING)

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._initialize()
        self._thread = threading.Thread(target=self._loop, name="explorer", daemon=True)
        self._thread.start()

    def run(self):
        self._initialize()
        logger.info("Explorer started - Press Ctrl+C to stop")
        try:
            self._loop()
        except KeyboardInterrupt:
            logger.info("Explorer stopped by user (Ctrl+C)")
        finally:
            self.stop()

    def _loop(self):
        while not self._stop_event.is_set():
            if self.state is ControllerState.PAUSED:
                self._stop_event.wait(config.PAUSED_POLL_INTERVAL)
                continue
            self.step()

    def step(self):
        try:
            return self._tick()
        except InputDeliveryFailure as exc:
            logger.error(f"Input delivery failed: {exc}")
            self._recover("input", exc, config.INPUT_FAILURE_PAUSE)
        except Exception as exc:
            logger.error(f"Explorer tick failed: {exc}", exc_info=True)
            self._recover(type(exc).__name__, exc, config.ERROR_PAUSE)
        return None

    def _recover(self, kind, exc, pause):
        self.error_count += 1
        self._pending_move = None
        self._set_state(ControllerState.ERROR)
        self._publish(ErrorOccurred(kind, str(exc)))
        self._sleep_with_interrupt(pause)
        if not self._stop_event.is_set():
            self._set_state(ControllerState.EXPLORING)

    def _capture(self):
        try:
            frame = self.frame_source.capture()
        except CaptureUnavailable as exc:
            logger.debug(f"Capture unavailable: {exc}")
            return None
        if frame is None:
            logger.debug("No frame captured; skipping tick")
            return None
        return normalize_frame(frame)

    def _tick(self):
        frame = self._capture()
        if frame is None:
            self._sleep_with_interrupt(config.INPUT_DELAY)
            return None

        grid = extract_tiles(frame, self.tile_size)
        signature = frame_signature(frame)
        classification = self.state_detector.classify(frame)
        self.tick_count += 1
        self._track_game_state(classification)

        if self._pending_move is not None:
            self._confirm_pending_move(signature)

        if self.tracker is not None and classification.state is GameStateType.OVERWORLD:
            self.tracker.pre_classify_visible_tiles(grid)

        action = self.policy.decide(classification, grid, signature, self.store)
        pending = build_pending_move(action, grid, signature)

        dispatch_action(action, self.input_sink)
        self._pending_move = pending
        if pending is not None:
            self.move_count += 1

        decision = self.policy.last_decision
        self._publish(ActionPerformed(str(action), decision.reason if decision is not None else ""))

        self._sleep_with_interrupt(config.MOVEMENT_DELAY)
        return action

    def _track_game_state(self, classification):
        current = classification.state
        if current is self.game_state:
            return
        previous = self.game_state
        self.game_state = current
        logger.info(f"Game state: {previous.value if previous else 'none'} -> {current.value} ({classification})")
        self._publish(StateChanged("game", previous.value if previous else "none", current.value))

    def _confirm_pending_move(self, signature):
        pending, self._pending_move = self._pending_move, None
        outcome = confirm_move_outcome(pending, signature, self.store)
        if outcome.learned:
            logger.info(
                f"Tile {pending.target_signature} learned: {outcome.before.value} -> {outcome.after.value} "
                f"(confidence {outcome.record.confidence:.2f})"
            )
            self._publish(
                TileLearned(
                    pending.target_signature,
                    outcome.before.value,
                    outcome.after.value,
                    outcome.record.confidence,
                )
            )
        if self.tracker is not None:
            result = self.tracker.process_movement_attempt(pending.direction, outcome.success)
            logger.debug(f"Position {result.position} after {pending.direction.value} (moved={result.moved})")
        return outcome

    def _sleep_with_interrupt(self, duration):
        if duration <= 0:
            return self._stop_event.is_set()
        return self._stop_event.wait(duration)

    def pause(self):
        if self.state is ControllerState.EXPLORING:
            self._set_state(ControllerState.PAUSED)

    def resume(self):
        if self.state is ControllerState.PAUSED:
            # The frame before the pause no longer describes the last move
            self._pending_move = None
            self._set_state(ControllerState.EXPLORING)

    def status(self):
        return {
            "state": self.state.value,
            "game_state": self.game_state.value if self.game_state else None,
            "ticks": self.tick_count,
            "moves": self.move_count,
            "errors": self.error_count,
            "stuck_count": self.policy.stuck_count,
            "store": self.store.stats(),
        }

    def _flush(self, target, label):
        try:
            target.flush_if_dirty()
        except PersistenceIOError as exc:
            logger.error(f"Final {label} flush failed: {exc}")

    def stop(self, timeout=None):
        if not self.running:
            return
        self.running = False
        self._stop_event.set()

        timeout = config.SHUTDOWN_TIMEOUT if timeout is None else timeout
        if self._thread is not None and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Explorer thread did not stop within %.1fs", timeout)

        for saver in self._autosavers:
            saver.stop()
        self._autosavers = []

        self._flush(self.store, "tile store")
        if self.coordinate_map is not None:
            if self._started_at is not None:
                self.coordinate_map.add_play_time(time.monotonic() - self._started_at)
            self._flush(self.coordinate_map, "map")

        logger.info(f"Explorer stopped. {self.store.stats()}")
        self._set_state(ControllerState.IDLE)
        if self.event_bus is not None:
            self.event_bus.stop()
