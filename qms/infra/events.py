from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session

from qms.domain.models import EventEnvelope, EventRecord
from qms.infra.db import engine

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventEnvelope], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(
        self,
        event: EventEnvelope,
        session: Session | None = None,
        *,
        bind: Engine | None = None,
    ) -> None:
        should_commit = session is None
        if session is None:
            session = Session(bind or engine)
        try:
            record = EventRecord(
                event_id=event.event_id,
                event_type=event.event_type,
                department_id=event.department_id,
                ts=event.ts,
                actor_id=event.actor_id,
                correlation_id=event.correlation_id,
                payload=event.payload,
            )
            session.add(record)
            if should_commit:
                session.commit()
        finally:
            if should_commit:
                session.close()

        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        logger.debug("dispatching %s to %d handler(s)", event.event_type, len(handlers))
        for handler in handlers:
            handler(event)

    def publish_dict(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        department_id: str | None = None,
        actor_id: str | None = None,
        bind: Engine | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            department_id=department_id,
            actor_id=actor_id,
            payload=payload,
        )
        self.publish(event, bind=bind)
        return event


event_bus = EventBus()
