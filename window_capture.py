import win32con
import win32gui
import win32ui
import pywintypes
import logging

import cv2
import numpy as np

import config
from errors import CaptureUnavailable
from frame_reader import normalize_frame

logger = logging.getLogger(__name__)


def find_emulator_window(title=None, patterns=None):
    needles = [title] if title else list(patterns or config.WINDOW_TITLE_PATTERNS)
    matches = []

    def _collect(hwnd, _):
        if not win32gui.IsWindowVisible(hwnd):
            return True
        text = win32gui.GetWindowText(hwnd)
        if text and any(needle.lower() in text.lower() for needle in needles):
            matches.append((hwnd, text))
        return True

    win32gui.EnumWindows(_collect, None)
    if not matches:
        return None, None
    return matches[0]


class WindowCapture:
    def __init__(self, title=None, patterns=None):
        self.title = title or config.WINDOW_TITLE
        self.patterns = patterns
        self.hwnd = None
        self.window_text = None
        self.find_window()

    def find_window(self):
        self.hwnd, self.window_text = find_emulator_window(self.title, self.patterns)
        if self.hwnd:
            logger.info(f"Found emulator window: {self.window_text} ({self.hwnd})")
        else:
            logger.warning(f"Emulator window not found (title={self.title!r})")
        return self.hwnd

    def is_window_active(self):
        return bool(self.hwnd) and win32gui.IsWindow(self.hwnd) and win32gui.IsWindowVisible(self.hwnd)

    def capture(self):
        if not self.is_window_active() and not self.find_window():
            return None

        left, top, right, bottom = win32gui.GetClientRect(self.hwnd)
        width, height = right - left, bottom - top
        if width <= 0 or height <= 0:
            return None

        hwnd_dc = None
        mfc_dc = None
        save_dc = None
        bitmap = None
        try:
            hwnd_dc = win32gui.GetDC(self.hwnd)
            mfc_dc = win32ui.CreateDCFromHandle(hwnd_dc)
            save_dc = mfc_dc.CreateCompatibleDC()
            bitmap = win32ui.CreateBitmap()
            bitmap.CreateCompatibleBitmap(mfc_dc, width, height)
            save_dc.SelectObject(bitmap)
            save_dc.BitBlt((0, 0), (width, height), mfc_dc, (0, 0), win32con.SRCCOPY)
            raw = bitmap.GetBitmapBits(True)
        except (pywintypes.error, win32ui.error) as exc:
            raise CaptureUnavailable(f"BitBlt failed: {exc}") from exc
        finally:
            if bitmap is not None:
                win32gui.DeleteObject(bitmap.GetHandle())
            if save_dc is not None:
                save_dc.DeleteDC()
            if mfc_dc is not None:
                mfc_dc.DeleteDC()
            if hwnd_dc is not None:
                win32gui.ReleaseDC(self.hwnd, hwnd_dc)

        bgra = np.frombuffer(raw, dtype=np.uint8).reshape(height, width, 4)
        rgb = cv2.cvtColor(bgra, cv2.COLOR_BGRA2RGB)
        return normalize_frame(rgb)
