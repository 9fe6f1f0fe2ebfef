"""Entry points host forms use to work with drafts by (entity_type, entity_id)."""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import sessionmaker

import database
from cross_tab import CrossTabBus, DraftUpdate, Subscription
from draft_defaults import load_settings
from drafts import Clock, DraftEnvelope, DraftKey, DraftStore
from tab_identity import get_tab_id as _current_tab_id


logger = logging.getLogger(__name__)


class DraftService:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        settings: Optional[Dict[str, Any]] = None,
        tab_id: Optional[str] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.session_factory = session_factory or database.DraftSessionLocal
        self.tab_id = tab_id or _current_tab_id()
        self.bus = CrossTabBus(
            self.session_factory,
            tab_id=self.tab_id,
            poll_interval_ms=self.settings["cross_tab"]["poll_interval_ms"],
        )
        self.store = DraftStore(
            self.session_factory,
            tab_id=self.tab_id,
            bus=self.bus,
            clock=clock,
            max_drafts=self.settings["storage"]["max_drafts"],
            prune_fraction=self.settings["storage"]["prune_fraction"],
        )

    def save_draft(self, entity_type: str, entity_id: Any, data: Any) -> Optional[DraftEnvelope]:
        return self.store.save(DraftKey(entity_type, entity_id), data)

    def load_draft(self, entity_type: str, entity_id: Any) -> Optional[DraftEnvelope]:
        return self.store.load(DraftKey(entity_type, entity_id))

    def clear_draft(self, entity_type: str, entity_id: Any) -> None:
        self.store.clear(DraftKey(entity_type, entity_id))

    def on_draft_updated(self, handler: Callable[[DraftUpdate], None]) -> Subscription:
        return self.bus.subscribe(handler)

    def get_tab_id(self) -> str:
        return self.tab_id

    def start(self) -> None:
        retention = datetime.timedelta(hours=self.settings["cross_tab"]["event_retention_hours"])
        removed = self.bus.prune(retention)
        if removed:
            logger.info("Removed %d expired draft events", removed)
        self.bus.start()

    def stop(self) -> None:
        self.bus.stop()
