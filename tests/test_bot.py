import os
import random
import threading
import time

import numpy as np
import pytest

import config
from actions import Move
from bot import ControllerState, ExplorerBot
from errors import CaptureUnavailable, InputDeliveryFailure
from events import ActionPerformed, ErrorOccurred, EventBus, StateChanged
from exploration import ExplorationPolicy, PolicyConfig
from frame_reader import extract_tiles
from state_detector import HeuristicStateDetector
from tile_database import WalkabilityStore
from walkability_map import CoordinateWalkabilityMap


def grey_frame():
    return np.full((144, 160, 3), 120, dtype=np.uint8)


class FrameSource:
    def __init__(self, frames=None, error=None):
        self.frames = frames
        self.error = error
        self.captures = 0
        self.enough = threading.Event()

    def capture(self):
        self.captures += 1
        if self.captures >= 3:
            self.enough.set()
        if self.error is not None:
            raise self.error
        if self.frames is None:
            return grey_frame()
        return self.frames.pop(0) if self.frames else grey_frame()


class RecordingSink:
    def __init__(self, error=None):
        self.error = error
        self.presses = []

    def press_direction(self, direction):
        if self.error is not None:
            raise self.error
        self.presses.append(direction)

    def press_confirm(self):
        self.presses.append("confirm")

    def press_cancel(self):
        self.presses.append("cancel")

    def press_menu(self):
        self.presses.append("menu")


@pytest.fixture(autouse=True)
def fast_timings(monkeypatch):
    monkeypatch.setattr(config, "MOVEMENT_DELAY", 0)
    monkeypatch.setattr(config, "INPUT_DELAY", 0)
    monkeypatch.setattr(config, "ERROR_PAUSE", 0)
    monkeypatch.setattr(config, "INPUT_FAILURE_PAUSE", 0)
    monkeypatch.setattr(config, "PAUSED_POLL_INTERVAL", 0.01)


def make_bot(tmp_path, source=None, sink=None, bus=None, coordinate_map=None):
    policy = ExplorationPolicy(
        PolicyConfig(interact_probability=0.0, cancel_probability=0.0),
        rng=random.Random(3),
    )
    return ExplorerBot(
        source or FrameSource(),
        sink or RecordingSink(),
        WalkabilityStore(str(tmp_path / "tiles.json")),
        state_detector=HeuristicStateDetector(rng=random.Random(1)),
        policy=policy,
        event_bus=bus,
        coordinate_map=coordinate_map,
    )


def drain_events(bus):
    received = []
    unsubscribe = bus.subscribe(received.append)
    bus.drain()
    unsubscribe()
    return received


@pytest.mark.unit
class TestTick:
    def test_each_confirmed_move_records_one_attempt(self, tmp_path):
        bot = make_bot(tmp_path)
        for _ in range(3):
            assert isinstance(bot.step(), Move)

        target = extract_tiles(grey_frame()).player_tile().signature
        record = bot.store.get(target)
        assert (record.successes, record.failures) == (0, 2)
        assert bot.move_count == 3
        assert bot.tick_count == 3
        assert len(bot.input_sink.presses) == 3

    def test_missing_frame_skips_tick(self, tmp_path):
        bot = make_bot(tmp_path, source=FrameSource(frames=[None]))
        assert bot.step() is None
        assert bot.tick_count == 0
        assert bot.input_sink.presses == []

    def test_capture_unavailable_skips_tick(self, tmp_path):
        bot = make_bot(tmp_path, source=FrameSource(error=CaptureUnavailable("window minimised")))
        assert bot.step() is None
        assert bot.tick_count == 0
        assert bot.error_count == 0

    def test_publishes_state_and_action_events(self, tmp_path):
        bus = EventBus(max_size=50)
        bot = make_bot(tmp_path, bus=bus)
        bot.step()
        events = drain_events(bus)
        assert StateChanged in {type(e) for e in events}
        actions = [e for e in events if isinstance(e, ActionPerformed)]
        assert len(actions) == 1
        assert actions[0].reason == "untried direction"

    def test_tracks_position_with_coordinate_map(self, tmp_path):
        walk_map = CoordinateWalkabilityMap(str(tmp_path / "map.json"))
        bot = make_bot(tmp_path, coordinate_map=walk_map)
        bot._initialize()
        try:
            bot.step()
            bot.step()
        finally:
            bot.stop()
        assert walk_map.statistics().blocked == 1
        assert os.path.exists(walk_map.path)


@pytest.mark.unit
class TestRecovery:
    def test_unexpected_error_returns_to_exploring(self, tmp_path):
        bus = EventBus(max_size=50)
        bot = make_bot(tmp_path, source=FrameSource(error=RuntimeError("frame source exploded")), bus=bus)
        bot.state = ControllerState.EXPLORING

        assert bot.step() is None
        assert bot.error_count == 1
        assert bot.state is ControllerState.EXPLORING

        events = drain_events(bus)
        errors = [e for e in events if isinstance(e, ErrorOccurred)]
        assert [e.kind for e in errors] == ["RuntimeError"]
        transitions = [(e.previous, e.current) for e in events if isinstance(e, StateChanged)]
        assert transitions == [("exploring", "error"), ("error", "exploring")]

    def test_input_failure_clears_pending_move(self, tmp_path):
        bus = EventBus(max_size=50)
        sink = RecordingSink(error=InputDeliveryFailure("up", OSError("access denied")))
        bot = make_bot(tmp_path, sink=sink, bus=bus)

        assert bot.step() is None
        assert bot._pending_move is None
        errors = [e for e in drain_events(bus) if isinstance(e, ErrorOccurred)]
        assert errors[0].kind == "input"

        bot.step()
        assert len(bot.store) == 0


@pytest.mark.unit
class TestLifecycle:
    def test_start_and_stop_flush_the_store(self, tmp_path):
        source = FrameSource()
        bot = make_bot(tmp_path, source=source)
        bot.start()
        try:
            assert source.enough.wait(2.0)
            assert bot.state is ControllerState.EXPLORING
        finally:
            bot.stop()

        assert bot.state is ControllerState.IDLE
        assert bot.running is False
        assert os.path.exists(bot.store.path)
        assert bot.store.dirty is False

    def test_pause_and_resume(self, tmp_path):
        bot = make_bot(tmp_path)
        bot.start()
        try:
            bot.pause()
            assert bot.state is ControllerState.PAUSED
            time.sleep(0.05)
            ticks = bot.tick_count
            time.sleep(0.05)
            assert bot.tick_count == ticks
            bot.resume()
            assert bot.state is ControllerState.EXPLORING
        finally:
            bot.stop()

    def test_run_stops_on_keyboard_interrupt(self, tmp_path):
        bus = EventBus(max_size=50)
        bot = make_bot(tmp_path, source=FrameSource(error=KeyboardInterrupt()), bus=bus)
        bot.run()
        assert bot.state is ControllerState.IDLE

    def test_status(self, tmp_path):
        bot = make_bot(tmp_path)
        bot.step()
        status = bot.status()
        assert status["ticks"] == 1
        assert status["moves"] == 1
        assert status["game_state"] == "overworld"
        assert status["store"].total == 0

    def test_stop_without_start_is_a_no_op(self, tmp_path):
        bot = make_bot(tmp_path)
        bot.stop()
        assert bot.state is ControllerState.IDLE
