from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from sqlmodel import SQLModel

from app.domain.errors import NotFoundError
from app.infra import db
from app.services.notification_service import EVENT_NEW_NOTIFICATION, NotificationService


class RecordingChannel:
    def __init__(self, *connected: str) -> None:
        self.connected = set(connected)
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def is_connected(self, channel_ref: str) -> bool:
        return channel_ref in self.connected

    def emit(self, channel_ref: str, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append((channel_ref, event_type, payload))


class BrokenChannel(RecordingChannel):
    def emit(self, channel_ref: str, event_type: str, payload: dict[str, Any]) -> None:
        raise ConnectionError("socket went away")


@pytest.fixture()
def notification_db(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    test_engine = db.build_engine(f"sqlite:///{tmp_path / 'notifications_test.db'}")
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    yield
    test_engine.dispose()


def test_notify_persists_and_pushes_to_live_channel(notification_db: None) -> None:
    channel = RecordingChannel("chan-1")
    service = NotificationService(channel)

    notification = service.notify("employee-1", "You have been assigned the task", "chan-1")

    stored = service.list_notifications("employee-1")
    assert [item.id for item in stored] == [notification.id]
    assert stored[0].is_read is False
    assert len(channel.events) == 1
    channel_ref, event_type, payload = channel.events[0]
    assert channel_ref == "chan-1"
    assert event_type == EVENT_NEW_NOTIFICATION
    assert payload["id"] == notification.id
    assert payload["message"] == "You have been assigned the task"


def test_notify_without_live_channel_only_persists(notification_db: None) -> None:
    channel = RecordingChannel()
    service = NotificationService(channel)

    service.notify("client-1", "no ref")
    service.notify("client-1", "stale ref", "gone")

    assert channel.events == []
    assert {item.message for item in service.list_notifications("client-1")} == {"no ref", "stale ref"}


def test_push_failure_never_propagates(notification_db: None, caplog: pytest.LogCaptureFixture) -> None:
    service = NotificationService(BrokenChannel("chan-1"))

    notification = service.notify("employee-1", "still stored", "chan-1")

    assert service.list_notifications("employee-1")[0].id == notification.id
    assert service.push("chan-1", "progress_notification", {}) is False
    assert "realtime push" in caplog.text


def test_mark_as_read_is_scoped_to_recipient(notification_db: None) -> None:
    service = NotificationService(RecordingChannel())
    notification = service.notify("employee-1", "hello")

    with pytest.raises(NotFoundError):
        service.mark_as_read(notification.id, "employee-2")

    updated = service.mark_as_read(notification.id, "employee-1")
    assert updated.is_read is True


def test_mark_all_as_read_only_touches_unread_rows(notification_db: None) -> None:
    service = NotificationService(RecordingChannel())
    first = service.notify("employee-1", "one")
    service.notify("employee-1", "two")
    service.notify("employee-2", "other")
    service.mark_as_read(first.id, "employee-1")

    updated = service.mark_all_as_read("employee-1")

    assert [item.message for item in updated] == ["two"]
    assert all(item.is_read for item in service.list_notifications("employee-1"))
    assert not service.list_notifications("employee-2")[0].is_read
