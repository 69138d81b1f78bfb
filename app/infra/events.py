from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlalchemy import event as sa_event
from sqlmodel import Session

from app.domain.models import EventEnvelope, EventRecord
from app.infra import db

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventEnvelope], None]

PENDING_EVENTS_KEY = "event_bus.pending"


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        record = EventRecord(
            event_id=event.event_id,
            event_type=event.event_type,
            actor_id=event.actor_id,
            ts=event.ts,
            payload=event.payload,
        )
        if session is not None:
            # Subscribers hear about the event only once the caller's transaction commits.
            session.add(record)
            self._defer(session, event)
            return

        with Session(db.get_engine()) as own_session:
            own_session.add(record)
            own_session.commit()
        self._dispatch(event)

    def publish_dict(
        self,
        event_type: str,
        payload: dict[str, Any],
        actor_id: str | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            actor_id=actor_id,
            payload=payload,
        )
        self.publish(event)
        return event

    def _defer(self, session: Session, event: EventEnvelope) -> None:
        pending: list[EventEnvelope] | None = session.info.get(PENDING_EVENTS_KEY)
        if pending is None:
            pending = []
            session.info[PENDING_EVENTS_KEY] = pending
            sa_event.listen(session, "after_commit", self._dispatch_pending)
            sa_event.listen(session, "after_rollback", self._discard_pending)
        pending.append(event)

    def _dispatch_pending(self, session: Session) -> None:
        pending: list[EventEnvelope] = session.info.get(PENDING_EVENTS_KEY, [])
        events = list(pending)
        pending.clear()
        for event in events:
            self._dispatch(event)

    def _discard_pending(self, session: Session) -> None:
        pending: list[EventEnvelope] = session.info.get(PENDING_EVENTS_KEY, [])
        if pending:
            logger.info("dropping %d unpublished events after rollback", len(pending))
            pending.clear()

    def _dispatch(self, event: EventEnvelope) -> None:
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("event handler failed for %s", event.event_type)


event_bus = EventBus()
