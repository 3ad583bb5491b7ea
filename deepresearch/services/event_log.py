from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from deepresearch.config import settings
from deepresearch.models.events import EventType, ResearchEvent
from deepresearch.services import logger as log_service
from deepresearch.services.research_store import ResearchStore


class EventLog:
    """Append-only per-session event log with a polling follower."""

    def __init__(self, store: ResearchStore):
        self.store = store

    async def append(
        self,
        session_id: str,
        event_type: EventType | ResearchEvent,
        data: dict[str, Any] | None = None,
    ) -> ResearchEvent:
        if isinstance(event_type, ResearchEvent):
            event = event_type
        else:
            event = ResearchEvent(session_id=session_id, event=EventType(event_type), data=data or {})
        return await self.store.append_event(event)

    async def emit(self, event: ResearchEvent) -> ResearchEvent | None:
        """Append without letting a store failure interrupt the caller."""
        try:
            return await self.store.append_event(event)
        except Exception as e:
            log_service.log_event(
                event_type="event_append_failed",
                message="Failed to persist research event",
                session_id=event.session_id,
                research_event=event.event.value,
                error=str(e),
            )
            return None

    async def follow(
        self,
        session_id: str,
        last_event_id: int | None = None,
        *,
        poll_interval: float | None = None,
        batch_size: int | None = None,
    ) -> AsyncIterator[ResearchEvent]:
        """Yield events after ``last_event_id`` until the session is terminal.

        A full batch is followed by an immediate re-poll. Once the session
        reports a terminal status, remaining events are drained and the
        generator stops.
        """
        interval = settings.stream_poll_interval_seconds if poll_interval is None else poll_interval
        limit = max(int(batch_size or settings.stream_batch_size), 1)
        cursor = last_event_id

        while True:
            events = await self.store.list_events(session_id, after_id=cursor, limit=limit)
            for event in events:
                cursor = event.id
                yield event
            if len(events) >= limit:
                continue

            session = await self.store.get_session(session_id)
            if session is None or session.status.is_terminal:
                while True:
                    remaining = await self.store.list_events(session_id, after_id=cursor, limit=limit)
                    if not remaining:
                        return
                    for event in remaining:
                        cursor = event.id
                        yield event

            await asyncio.sleep(interval)
