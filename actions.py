import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Union

import config

logger = logging.getLogger(__name__)


class Direction(Enum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"

    @property
    def opposite(self):
        return _OPPOSITES[self]

    @property
    def delta(self):
        return _DELTAS[self]


_OPPOSITES = {
    Direction.UP: Direction.DOWN,
    Direction.DOWN: Direction.UP,
    Direction.LEFT: Direction.RIGHT,
    Direction.RIGHT: Direction.LEFT,
}

_DELTAS = {
    Direction.UP: (0, -1),
    Direction.DOWN: (0, 1),
    Direction.LEFT: (-1, 0),
    Direction.RIGHT: (1, 0),
}

ALL_DIRECTIONS = (Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT)


@dataclass(frozen=True)
class Move:
    direction: Direction

    def __str__(self):
        return f"Move({self.direction.value})"


@dataclass(frozen=True)
class Interact:
    def __str__(self):
        return "Interact"


@dataclass(frozen=True)
class Cancel:
    def __str__(self):
        return "Cancel"


@dataclass(frozen=True)
class OpenMenu:
    def __str__(self):
        return "OpenMenu"


@dataclass(frozen=True)
class Wait:
    def __str__(self):
        return "Wait"


Action = Union[Move, Interact, Cancel, OpenMenu, Wait]


class InputSink(Protocol):
    def press_direction(self, direction: Direction) -> None: ...

    def press_confirm(self) -> None: ...

    def press_cancel(self) -> None: ...

    def press_menu(self) -> None: ...


def dispatch_action(action: Action, sink: InputSink, sleep=time.sleep) -> None:
    if isinstance(action, Move):
        sink.press_direction(action.direction)
    elif isinstance(action, Interact):
        sink.press_confirm()
    elif isinstance(action, Cancel):
        sink.press_cancel()
    elif isinstance(action, OpenMenu):
        # Peek at the start menu and close it again
        sink.press_menu()
        sleep(config.MENU_CLOSE_DELAY)
        sink.press_cancel()
    elif isinstance(action, Wait):
        logger.debug("Waiting this tick")
    else:
        raise TypeError(f"Unsupported action: {action!r}")
