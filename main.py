import argparse
import logging
import os
import random
import sys
from datetime import datetime

import config
from bot import ExplorerBot
from events import EventBus
from exploration import ExplorationPolicy
from state_detector import build_state_detector
from telegram_notifier import TelegramNotifier
from tile_database import WalkabilityStore
from walkability_map import CoordinateWalkabilityMap

logger = logging.getLogger(__name__)


def setup_logging(debug=False):
    log_level = logging.DEBUG if debug or config.DEBUG else logging.INFO
    formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    root = logging.getLogger()
    root.setLevel(log_level)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(log_level)
    stdout_handler.setFormatter(formatter)
    root.addHandler(stdout_handler)

    os.makedirs(config.LOGS_DIR, exist_ok=True)
    log_path = os.path.join(config.LOGS_DIR, f"explorer_{datetime.now():%Y%m%d_%H%M%S}.log")
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return log_path


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Tile-learning overworld explorer for handheld emulators")
    parser.add_argument("--window-title", default=config.WINDOW_TITLE, help="Substring of the emulator window title")
    parser.add_argument("--discovery", action="store_true", default=config.DISCOVERY_MODE, help="Probe unknown tiles first")
    parser.add_argument(
        "--detector",
        choices=["heuristic", "template"],
        default=config.STATE_DETECTOR,
        help="Game state classification strategy",
    )
    parser.add_argument("--seed", type=int, default=config.POLICY_SEED, help="Seed for the exploration policy")
    parser.add_argument("--coordinates", action="store_true", default=config.COORDINATE_MAP_ENABLED, help="Also track a per-map coordinate walkability map")
    parser.add_argument("--stats", action="store_true", help="Print learned tile statistics and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def print_stats(store, coordinate_map=None):
    store.load()
    print(store.stats())
    if coordinate_map is not None:
        coordinate_map.load()
        progress = coordinate_map.progress
        stats = coordinate_map.statistics()
        print(
            f"Map {stats.map_id}: walkable {stats.walkable}, blocked {stats.blocked} | "
            f"steps {progress.total_steps}, discovered {progress.tiles_discovered}"
        )


def build_explorer(args):
    from keyboard_controller import KeyboardController
    from window_capture import WindowCapture

    capture = WindowCapture(args.window_title)
    if not capture.hwnd:
        raise RuntimeError("Emulator window not found; start the emulator or pass --window-title")

    event_bus = EventBus()
    notifier = TelegramNotifier.from_config()
    if notifier.enabled:
        event_bus.subscribe(notifier.handle_event)

    rng = random.Random(args.seed)
    return ExplorerBot(
        frame_source=capture,
        input_sink=KeyboardController(capture.hwnd),
        store=WalkabilityStore(config.TILE_DATABASE_FILE),
        state_detector=build_state_detector(args.detector, rng=random.Random(config.CLASSIFIER_SEED)),
        policy=ExplorationPolicy(rng=rng, discovery_mode=args.discovery),
        event_bus=event_bus,
        coordinate_map=CoordinateWalkabilityMap(config.MAP_DATA_FILE) if args.coordinates else None,
    )


def main(argv=None):
    args = parse_args(argv)
    log_path = setup_logging(args.debug)
    logger.info(f"Logging to {log_path}")

    if args.stats:
        map_data = CoordinateWalkabilityMap(config.MAP_DATA_FILE) if args.coordinates else None
        print_stats(WalkabilityStore(config.TILE_DATABASE_FILE), map_data)
        return 0

    try:
        explorer = build_explorer(args)
    except RuntimeError as exc:
        logger.error(str(exc))
        return 1

    mode = "discovery" if args.discovery else "exploration"
    logger.info(f"Starting {mode} mode with {args.detector} detector")
    explorer.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
