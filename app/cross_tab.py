"""Notify other running windows when a draft is written or cleared.

Each window appends an event row to ``draft_events`` when it publishes, and
polls that table from a Qt timer to pick up rows written by everyone else.
Rows tagged with this window's own tab id are skipped at delivery time, so a
window never reacts to its own publish. Delivery is at-most-once and unordered
with respect to local edits; handlers must compare ``saved_at`` themselves.
"""

from __future__ import annotations

import datetime
import json
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from PySide6.QtCore import QObject, QTimer
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from database import DraftEvent
from drafts import DraftEnvelope, DraftKey, dumps, utc_now
from tab_identity import get_tab_id


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 500


@dataclass(frozen=True)
class DraftUpdate:
    key: DraftKey
    draft: Optional[DraftEnvelope]

    @property
    def cleared(self) -> bool:
        return self.draft is None


Handler = Callable[[DraftUpdate], None]


class Subscription:
    def __init__(self, bus: "CrossTabBus", handler: Handler) -> None:
        self._bus = bus
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._bus._remove(self)


class CrossTabBus(QObject):
    def __init__(
        self,
        session_factory,
        *,
        tab_id: Optional[str] = None,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.session_factory = session_factory
        self.tab_id = tab_id or get_tab_id()
        self._subscriptions: List[Subscription] = []
        # Only events written after this window opened are interesting.
        self._cursor = self._latest_event_id()
        self._timer = QTimer(self)
        self._timer.setInterval(max(1, int(poll_interval_ms)))
        self._timer.timeout.connect(self.poll)

    def _latest_event_id(self) -> int:
        try:
            with self.session_factory() as session:
                return int(session.scalar(select(func.max(DraftEvent.id))) or 0)
        except SQLAlchemyError as exc:
            logger.warning("Draft event feed unavailable: %s", exc)
            return 0

    def start(self) -> None:
        self._timer.start()

    def stop(self) -> None:
        self._timer.stop()

    @property
    def running(self) -> bool:
        return self._timer.isActive()

    def publish(self, key: DraftKey, envelope: Optional[DraftEnvelope]) -> None:
        try:
            payload = dumps(envelope.to_dict()) if envelope is not None else "null"
        except (TypeError, ValueError) as exc:
            logger.warning("Cannot broadcast draft %s: %s", key.storage_key, exc)
            return
        event = DraftEvent(
            storage_key=key.storage_key,
            entity_type=key.entity_type,
            entity_id=key.entity_id,
            tab_id=self.tab_id,
            payloadJSON=payload,
            created_at=utc_now(),
        )
        try:
            with self.session_factory() as session:
                session.add(event)
                session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Failed to broadcast draft %s: %s", key.storage_key, exc)

    def subscribe(self, handler: Handler) -> Subscription:
        subscription = Subscription(self, handler)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def _decode(self, event: DraftEvent) -> Optional[DraftUpdate]:
        try:
            key = DraftKey.from_storage_key(event.storage_key)
            payload = json.loads(event.payloadJSON)
            draft = DraftEnvelope.from_dict(payload) if payload is not None else None
            if draft is not None and draft.key != key:
                raise ValueError("envelope does not match event key")
        except ValueError as exc:
            logger.warning("Dropping malformed draft event #%s: %s", event.id, exc)
            return None
        return DraftUpdate(key=key, draft=draft)

    def poll(self) -> int:
        """Deliver foreign events written since the last poll; returns how many were delivered."""
        try:
            with self.session_factory() as session:
                latest = int(session.scalar(select(func.max(DraftEvent.id))) or 0)
                if latest < self._cursor:
                    # Feed restarted below our position (rowid reuse after a full prune).
                    logger.info("Draft event feed rewound from #%d to #%d", self._cursor, latest)
                    self._cursor = 0
                events = session.scalars(
                    select(DraftEvent).where(DraftEvent.id > self._cursor).order_by(DraftEvent.id.asc())
                ).all()
        except SQLAlchemyError as exc:
            logger.warning("Failed to poll draft events: %s", exc)
            return 0

        delivered = 0
        for event in events:
            self._cursor = max(self._cursor, event.id)
            if event.tab_id == self.tab_id:
                continue
            update = self._decode(event)
            if update is None:
                continue
            for subscription in list(self._subscriptions):
                if not subscription.active:
                    continue
                try:
                    subscription.handler(update)
                except Exception:  # noqa: BLE001
                    logger.exception("Draft update handler failed for %s", update.key.storage_key)
            delivered += 1
        return delivered

    def prune(self, older_than: datetime.timedelta) -> int:
        cutoff = utc_now() - older_than
        try:
            with self.session_factory() as session:
                result = session.execute(delete(DraftEvent).where(DraftEvent.created_at < cutoff))
                session.commit()
                return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            logger.warning("Failed to prune draft events: %s", exc)
            return 0
