import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateChanged:
    scope: str
    previous: str
    current: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ActionPerformed:
    action: str
    reason: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class TileLearned:
    signature: int
    previous: str
    current: str
    confidence: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ErrorOccurred:
    kind: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)


class EventBus:
    """Bounded outbound channel from the run loop to presentation consumers.

    ``publish`` never blocks: when the queue is full the event is dropped and
    counted. Subscribers run on the dispatcher thread, in publish order.
    """

    def __init__(self, max_size=None):
        self._queue = queue.Queue(maxsize=max_size or config.EVENT_QUEUE_SIZE)
        self._subscribers = []
        self._subscribers_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = None
        self.dropped = 0

    def subscribe(self, handler):
        with self._subscribers_lock:
            self._subscribers.append(handler)

        def unsubscribe():
            with self._subscribers_lock:
                if handler in self._subscribers:
                    self._subscribers.remove(handler)

        return unsubscribe

    def publish(self, event):
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"Event queue full; dropped {self.dropped} events so far")
            return False

    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="event_dispatcher", daemon=True)
        self._thread.start()

    def stop(self, timeout=1.0):
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self.drain()

    def drain(self):
        delivered = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            self._deliver(event)
            delivered += 1

    def _deliver(self, event):
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for handler in subscribers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event subscriber {handler!r} failed on {type(event).__name__}")

    def _loop(self):
        while not self._stop.is_set():
            try:
                event = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self._deliver(event)
