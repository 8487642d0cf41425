import win32api
import win32con
import win32gui
import pywintypes
import time
import logging
import threading

import config
from actions import Direction
from errors import InputDeliveryFailure

logger = logging.getLogger(__name__)


class KeyboardController:
    def __init__(self, hwnd=None, hold_duration=None, input_delay=None):
        self.hwnd = hwnd
        self.hold_duration = config.KEY_PRESS_DURATION if hold_duration is None else hold_duration
        self.input_delay = config.INPUT_DELAY if input_delay is None else input_delay
        self.focus_window = bool(getattr(config, "FOCUS_WINDOW_BEFORE_INPUT", True))
        self.direction_keys = {
            Direction.UP: config.KEY_UP,
            Direction.DOWN: config.KEY_DOWN,
            Direction.LEFT: config.KEY_LEFT,
            Direction.RIGHT: config.KEY_RIGHT,
        }
        self._key_lock = threading.RLock()

    def _ensure_focus(self):
        if not self.focus_window or not self.hwnd:
            return
        if win32gui.GetForegroundWindow() == self.hwnd:
            return
        try:
            win32gui.SetForegroundWindow(self.hwnd)
            time.sleep(0.05)
        except pywintypes.error as exc:
            # Focus changes are refused while another process owns the foreground
            logger.debug(f"Could not focus window {self.hwnd}: {exc}")

    def press_key(self, vk_code, hold_duration=None):
        hold = self.hold_duration if hold_duration is None else hold_duration
        with self._key_lock:
            self._ensure_focus()
            scan_code = win32api.MapVirtualKey(vk_code, 0)
            try:
                win32api.keybd_event(vk_code, scan_code, 0, 0)
                time.sleep(hold)
            except pywintypes.error as exc:
                raise InputDeliveryFailure(vk_code, exc) from exc
            finally:
                try:
                    win32api.keybd_event(vk_code, scan_code, win32con.KEYEVENTF_KEYUP, 0)
                except pywintypes.error as exc:
                    logger.error(f"Failed to release key {vk_code:#x}: {exc}")
            logger.debug(f"Pressed key {vk_code:#x} for {hold:.3f}s")
            if self.input_delay > 0:
                time.sleep(self.input_delay)

    def press_direction(self, direction):
        self.press_key(self.direction_keys[direction])

    def press_confirm(self):
        self.press_key(config.KEY_CONFIRM)

    def press_cancel(self):
        self.press_key(config.KEY_CANCEL)

    def press_menu(self):
        self.press_key(config.KEY_MENU)
