import itertools

import pytest
from fastapi.testclient import TestClient

from chatdesk.api import create_app
from chatdesk.config import Settings
from chatdesk.db import ChatStore
from chatdesk.poller import ChatPoller


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, sender_name, content, conversation_id, avatar=None):
        self.sent.append({"sender_name": sender_name, "content": content, "conversation_id": conversation_id})


@pytest.fixture(autouse=True)
def clock(monkeypatch):
    """Strictly increasing epoch-ms stamps so ordering never ties."""
    ticks = itertools.count(1_700_000_000_000, 1000)
    monkeypatch.setattr("chatdesk.db.store._now_ms", lambda: next(ticks))


@pytest.fixture
def store():
    s = ChatStore("sqlite://").open()
    yield s
    s.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(store, notifier):
    app = create_app(store, notifier=notifier, settings=Settings(seed=False))
    return TestClient(app)


@pytest.fixture
def poller(client):
    return ChatPoller(session=client, list_interval=0.05, message_interval=0.05)
