import pytest
import requests

from events import ErrorOccurred, StateChanged, TileLearned
from telegram_notifier import TelegramNotifier


class FakeResponse:
    def __init__(self, body=None, status_error=None):
        self.body = body if body is not None else {"ok": True}
        self.status_error = status_error

    def raise_for_status(self):
        if self.status_error is not None:
            raise self.status_error

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.error is not None:
            raise self.error
        return self.response


def make_notifier(session=None, milestone=3, enabled=True):
    return TelegramNotifier("token", "1234", enabled=enabled, tile_milestone=milestone, session=session or FakeSession())


def sent_texts(notifier):
    return [payload["text"] for _, payload, _ in notifier._session.posts]


@pytest.mark.unit
class TestSendMessage:
    def test_posts_escaped_html(self):
        notifier = make_notifier()
        assert notifier.send_message("<b>hi</b>") is True
        url, payload, timeout = notifier._session.posts[0]
        assert url.endswith("/bottoken/sendMessage")
        assert payload["text"] == "&lt;b&gt;hi&lt;/b&gt;"
        assert payload["chat_id"] == "1234"
        assert timeout == 5.0

    def test_disabled_without_credentials(self):
        notifier = TelegramNotifier("", "", session=FakeSession())
        assert notifier.enabled is False
        assert notifier.send_message("hello") is False
        assert notifier._session.posts == []

    def test_empty_message_is_skipped(self):
        notifier = make_notifier()
        assert notifier.send_message("   ") is False

    def test_api_rejection(self):
        notifier = make_notifier(FakeSession(FakeResponse({"ok": False, "description": "chat not found"})))
        assert notifier.send_message("hello") is False

    def test_network_error(self):
        notifier = make_notifier(FakeSession(error=requests.ConnectionError("offline")))
        assert notifier.send_message("hello") is False

    def test_bad_json(self):
        notifier = make_notifier(FakeSession(FakeResponse(ValueError("not json"))))
        assert notifier.send_message("hello") is False


@pytest.mark.unit
class TestEventHandling:
    def test_lifecycle_events(self):
        notifier = make_notifier()
        notifier.handle_event(StateChanged("controller", "initializing", "exploring"))
        notifier.handle_event(StateChanged("controller", "error", "exploring"))
        notifier.handle_event(StateChanged("game", "overworld", "battle"))
        notifier.handle_event(StateChanged("controller", "exploring", "idle"))
        assert sent_texts(notifier) == ["🤖 Explorer Started", "⏹️ Explorer Stopped"]

    def test_error_event(self):
        notifier = make_notifier()
        notifier.handle_event(ErrorOccurred("input", "key refused"))
        assert sent_texts(notifier) == ["⚠️ input: key refused"]

    def test_tile_milestones(self):
        notifier = make_notifier(milestone=3)
        for signature in range(7):
            notifier.handle_event(TileLearned(signature, "unknown", "walkable", 1.0))
        assert notifier.tiles_learned == 7
        assert len(sent_texts(notifier)) == 2
        assert sent_texts(notifier)[-1].endswith("6")
