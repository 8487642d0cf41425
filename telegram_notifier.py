import html
import logging
from dataclasses import dataclass

import requests

import config
from events import ErrorOccurred, StateChanged, TileLearned

logger = logging.getLogger(__name__)


@dataclass
class TelegramConfig:
    bot_token: str
    chat_id: str
    enabled: bool = True
    timeout_seconds: float = 5.0


class TelegramNotifier:
    """Event bus subscriber that mirrors lifecycle, errors and learning progress to a chat."""

    def __init__(self, bot_token, chat_id, enabled=True, timeout_seconds=5.0, tile_milestone=None, session=None):
        clean_token = (bot_token or "").strip()
        clean_chat_id = str(chat_id).strip() if chat_id is not None else ""
        self.config = TelegramConfig(
            bot_token=clean_token,
            chat_id=clean_chat_id,
            enabled=bool(enabled),
            timeout_seconds=max(1.0, float(timeout_seconds)),
        )
        self.tile_milestone = max(1, int(tile_milestone or config.TELEGRAM_TILE_MILESTONE))
        self.tiles_learned = 0

        self._session = session or requests.Session()
        self.base_url = f"https://api.telegram.org/bot{self.config.bot_token}"
        self.enabled = self.config.enabled and bool(self.config.bot_token and self.config.chat_id)

        if self.enabled:
            logger.info("Telegram notifier enabled")
        else:
            logger.info("Telegram notifier disabled")

    @classmethod
    def from_config(cls):
        return cls(
            config.TELEGRAM_BOT_TOKEN,
            config.TELEGRAM_CHAT_ID,
            config.TELEGRAM_ENABLED,
            getattr(config, "TELEGRAM_TIMEOUT", 5.0),
        )

    def send_message(self, message):
        if not self.enabled:
            return False

        safe_message = html.escape(str(message or "")).strip()
        if not safe_message:
            logger.warning("Skipping Telegram send because message is empty")
            return False

        url = f"{self.base_url}/sendMessage"
        payload = {
            "chat_id": self.config.chat_id,
            "text": safe_message,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

        try:
            response = self._session.post(url, json=payload, timeout=self.config.timeout_seconds)
            response.raise_for_status()
            body = response.json()
            if not body.get("ok", False):
                logger.error("Telegram API rejected message: %s", body)
                return False
            logger.debug("Telegram message sent")
            return True
        except requests.RequestException as exc:
            logger.error("Error sending Telegram message: %s", exc)
            return False
        except ValueError as exc:
            logger.error("Invalid Telegram API JSON response: %s", exc)
            return False

    def handle_event(self, event):
        if isinstance(event, StateChanged) and event.scope == "controller":
            if event.current == "exploring" and event.previous == "initializing":
                self.notify_explorer_started()
            elif event.current == "idle" and event.previous != "idle":
                self.notify_explorer_stopped()
        elif isinstance(event, ErrorOccurred):
            self.notify_error(event.kind, event.message)
        elif isinstance(event, TileLearned):
            self.tiles_learned += 1
            if self.tiles_learned % self.tile_milestone == 0:
                self.notify_tile_milestone(self.tiles_learned)

    def notify_explorer_started(self):
        self.send_message("🤖 Explorer Started")

    def notify_explorer_stopped(self):
        self.send_message("⏹️ Explorer Stopped")

    def notify_error(self, kind, message):
        self.send_message(f"⚠️ {kind}: {message}")

    def notify_tile_milestone(self, total_tiles):
        safe_total = max(0, int(total_tiles))
        self.send_message(f"📊 Milestone reached! Tiles learned this session: {safe_total}")
