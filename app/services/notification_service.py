from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session, col, select

from app.domain.errors import NotFoundError
from app.domain.models import Notification, NotificationRead
from app.infra.db import get_engine
from app.infra.realtime import RealtimeChannel, notification_hub

logger = logging.getLogger(__name__)

EVENT_NEW_NOTIFICATION = "new_notification"
EVENT_LEVEL_UP = "level_up_notification"
EVENT_PROGRESS = "progress_notification"


class NotificationService:
    def __init__(self, channel: RealtimeChannel | None = None) -> None:
        self._channel: RealtimeChannel = channel if channel is not None else notification_hub

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def notify(self, recipient_id: str, message: str, channel_ref: str | None = None) -> Notification:
        notification = Notification(recipient_id=recipient_id, message=message)
        with self._session() as session:
            session.add(notification)
            session.commit()
            session.refresh(notification)

        if channel_ref:
            self.push(
                channel_ref,
                EVENT_NEW_NOTIFICATION,
                NotificationRead.model_validate(notification).model_dump(mode="json"),
            )
        return notification

    def push(self, channel_ref: str | None, event_type: str, payload: dict[str, Any]) -> bool:
        if not channel_ref:
            return False
        try:
            if not self._channel.is_connected(channel_ref):
                return False
            self._channel.emit(channel_ref, event_type, payload)
        except Exception:
            logger.exception("realtime push of %s to channel %s failed", event_type, channel_ref)
            return False
        return True

    def list_notifications(self, recipient_id: str) -> list[Notification]:
        with self._session() as session:
            return list(
                session.exec(
                    select(Notification)
                    .where(Notification.recipient_id == recipient_id)
                    .order_by(col(Notification.created_at).desc())
                ).all()
            )

    def mark_as_read(self, notification_id: str, recipient_id: str) -> Notification:
        with self._session() as session:
            row = session.exec(
                select(Notification)
                .where(Notification.id == notification_id)
                .where(Notification.recipient_id == recipient_id)
            ).first()
            if row is None:
                raise NotFoundError("notification not found")
            row.is_read = True
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    def mark_all_as_read(self, recipient_id: str) -> list[Notification]:
        with self._session() as session:
            rows = list(
                session.exec(
                    select(Notification)
                    .where(Notification.recipient_id == recipient_id)
                    .where(col(Notification.is_read).is_(False))
                ).all()
            )
            for row in rows:
                row.is_read = True
                session.add(row)
            session.commit()
            for row in rows:
                session.refresh(row)
            return rows
