"""In-memory editing state of one entity and the wiring around it.

An EditSession keeps the server-confirmed baseline and the user's working copy
apart, recomputes the change set after every edit, feeds the autosave scheduler
and listens for drafts written by other windows. Drafts arriving from elsewhere
are only announced (``pending_remote``); applying one is always a user decision.
"""

from __future__ import annotations

import copy
import datetime
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from autosave import DEFAULT_DEBOUNCE_MS, DEFAULT_RESTORE_SETTLE_MS, AutoSaveScheduler
from change_tracker import EMPTY_CHANGE_SET, ChangeSet, generate_patch, track_changes
from cross_tab import CrossTabBus, DraftUpdate
from drafts import Clock, DraftEnvelope, DraftKey, DraftStore, utc_now
from forms import FormDefinition
from sections import FALLBACK_SECTION, SectionChangeMap, dirty_sections, empty_sections, route


logger = logging.getLogger(__name__)

Listener = Callable[["EditSession"], None]
DraftListener = Callable[[DraftEnvelope], None]


class EditSession:
    def __init__(
        self,
        store: DraftStore,
        entity_type: str,
        *,
        labels: Optional[Mapping[str, str]] = None,
        ignore: Iterable[str] = (),
        field_sections: Optional[Mapping[str, str]] = None,
        sections: Optional[Iterable[str]] = None,
        fallback_section: str = FALLBACK_SECTION,
        bus: Optional[CrossTabBus] = None,
        clock: Optional[Clock] = None,
        delay_ms: int = DEFAULT_DEBOUNCE_MS,
        settle_ms: int = DEFAULT_RESTORE_SETTLE_MS,
        per_section_drafts: bool = False,
    ) -> None:
        self.store = store
        self.entity_type = entity_type
        self.labels = dict(labels or {})
        self.ignore = tuple(ignore)
        self.field_sections = dict(field_sections or {})
        self.sections = list(sections or ())
        self.fallback_section = fallback_section
        self.delay_ms = delay_ms
        self.settle_ms = settle_ms
        self.per_section_drafts = per_section_drafts
        self._clock = clock or utc_now

        self.key: Optional[DraftKey] = None
        self.scheduler: Optional[AutoSaveScheduler] = None
        self._baseline: Dict[str, Any] = {}
        self._working: Dict[str, Any] = {}
        self.is_editing = False
        self.loaded_at: Optional[datetime.datetime] = None
        self.change_set: ChangeSet = EMPTY_CHANGE_SET
        self.section_changes: SectionChangeMap = self._empty_sections()
        self.recovered_draft: Optional[DraftEnvelope] = None
        self.pending_remote: Optional[DraftEnvelope] = None
        self._remote_seen_at: Optional[datetime.datetime] = None
        self.section_saved_at: Dict[str, datetime.datetime] = {}

        self._change_listeners: List[Listener] = []
        self._remote_listeners: List[DraftListener] = []
        self._autosave_listeners: List[DraftListener] = []
        self._subscription = bus.subscribe(self._on_remote_update) if bus is not None else None

    @classmethod
    def from_form(cls, store: DraftStore, form: FormDefinition, **kwargs: Any) -> "EditSession":
        return cls(
            store,
            form.entity_type,
            labels=form.labels,
            ignore=form.ignore,
            field_sections=form.field_sections,
            sections=form.sections,
            fallback_section=form.fallback_section,
            **kwargs,
        )

    # -- snapshots ---------------------------------------------------------

    @property
    def baseline(self) -> Dict[str, Any]:
        return copy.deepcopy(self._baseline)

    @property
    def working(self) -> Dict[str, Any]:
        return copy.deepcopy(self._working)

    @property
    def is_dirty(self) -> bool:
        return self.is_editing and self.change_set.has_changes

    @property
    def last_auto_save(self) -> Optional[datetime.datetime]:
        return self.scheduler.last_auto_save if self.scheduler is not None else None

    def generate_patch(self) -> Dict[str, Any]:
        return generate_patch(self._baseline, self._working, self.ignore)

    # -- listeners ---------------------------------------------------------

    def add_listener(self, callback: Listener) -> None:
        self._change_listeners.append(callback)

    def add_remote_listener(self, callback: DraftListener) -> None:
        self._remote_listeners.append(callback)

    def add_autosave_listener(self, callback: DraftListener) -> None:
        self._autosave_listeners.append(callback)

    def _notify(self) -> None:
        for callback in list(self._change_listeners):
            callback(self)

    # -- lifecycle ---------------------------------------------------------

    def load(self, entity_id: Any, entity: Mapping[str, Any]) -> Optional[DraftEnvelope]:
        """Seed baseline and working copy; returns a recoverable draft if one is stored."""
        if self.scheduler is not None:
            self.scheduler.cancel()
            self.scheduler.deleteLater()
        self.key = DraftKey(self.entity_type, str(entity_id))
        self._baseline = copy.deepcopy(dict(entity))
        self._working = copy.deepcopy(self._baseline)
        self.scheduler = AutoSaveScheduler(
            self.store,
            self.key,
            lambda: copy.deepcopy(self._working),
            delay_ms=self.delay_ms,
            settle_ms=self.settle_ms,
            clock=self._clock,
        )
        self.scheduler.saved.connect(self._on_autosaved)
        self.scheduler.mark_persisted(self._baseline)
        self.loaded_at = self._clock()
        self.recovered_draft = None
        self.pending_remote = None
        self._remote_seen_at = None
        self.section_saved_at = {}
        self.is_editing = True
        self.scheduler.set_edit_mode(True)
        self._recompute()

        draft = self.store.load(self.key)
        if draft is not None:
            merged = self._merge_draft(draft)
            if merged is None or not track_changes(self._baseline, merged, ignore=self.ignore).has_changes:
                logger.debug("Dropping stale draft %s", self.key.storage_key)
                self.store.clear_entity(self.key.entity_type, self.key.entity_id)
            else:
                self.recovered_draft = draft
        self._notify()
        return self.recovered_draft

    def begin_edit(self) -> None:
        self._require_loaded()
        self.is_editing = True
        self.scheduler.set_edit_mode(True)
        self._recompute()
        self._notify()

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self.scheduler is not None:
            self.scheduler.cancel()

    def _require_loaded(self) -> None:
        if self.key is None or self.scheduler is None:
            raise RuntimeError("load() an entity before editing it")

    # -- edits -------------------------------------------------------------

    def set_field(self, field: str, value: Any) -> None:
        self.update({field: value})

    def update(self, values: Mapping[str, Any]) -> None:
        self._require_loaded()
        if not self.is_editing:
            raise RuntimeError("Session is not in edit mode")
        for field, value in values.items():
            self._working[field] = copy.deepcopy(value)
        self._recompute()
        self.scheduler.notify_change()
        self._notify()

    def poll(self, now: Optional[datetime.datetime] = None) -> bool:
        return self.scheduler.poll(now) if self.scheduler is not None else False

    def flush(self) -> bool:
        return self.scheduler.flush() if self.scheduler is not None else False

    def _recompute(self) -> None:
        self.change_set = track_changes(self._baseline, self._working, self.labels, self.ignore)
        if self.is_editing:
            self.section_changes = route(
                self.change_set,
                self.field_sections,
                fallback=self.fallback_section,
                sections=self.sections,
            )
        else:
            self.section_changes = self._empty_sections()

    def _empty_sections(self) -> SectionChangeMap:
        return empty_sections(self.field_sections, self.fallback_section, self.sections)

    # -- drafts ------------------------------------------------------------

    def _merge_draft(self, draft: DraftEnvelope) -> Optional[Dict[str, Any]]:
        if not isinstance(draft.data, dict):
            logger.warning("Ignoring draft %s with non-object data", draft.key.storage_key)
            return None
        merged = copy.deepcopy(self._baseline)
        merged.update(copy.deepcopy(draft.data))
        return merged

    def restore_draft(self, draft: Optional[DraftEnvelope] = None) -> bool:
        """Replace the working copy with a stored draft without re-triggering autosave."""
        self._require_loaded()
        draft = draft or self.recovered_draft or self.pending_remote
        if draft is None:
            return False
        merged = self._merge_draft(draft)
        if merged is None:
            return False
        with self.scheduler.restoring():
            self.is_editing = True
            self.scheduler.set_edit_mode(True)
            self._working = merged
            self._recompute()
        self.scheduler.mark_persisted(self._working)
        self.recovered_draft = None
        self.pending_remote = None
        self._remote_seen_at = draft.metadata.saved_at
        self._notify()
        return True

    def dismiss_draft(self) -> None:
        """Drop the recovered draft the user chose not to restore."""
        self._require_loaded()
        self.recovered_draft = None
        self.store.clear_entity(self.key.entity_type, self.key.entity_id)
        self._notify()

    def dismiss_remote(self) -> None:
        if self.pending_remote is not None:
            self._remote_seen_at = self.pending_remote.metadata.saved_at
            self.pending_remote = None
            self._notify()

    def _reference_time(self) -> Optional[datetime.datetime]:
        candidates = [
            stamp for stamp in (self.loaded_at, self.last_auto_save, self._remote_seen_at) if stamp is not None
        ]
        return max(candidates) if candidates else None

    def _on_remote_update(self, update: DraftUpdate) -> None:
        if self.key is None or update.key != self.key:
            return
        if update.draft is None:
            logger.debug("Draft %s was cleared in another window", update.key.storage_key)
            return
        saved_at = update.draft.metadata.saved_at
        reference = self._reference_time()
        # Delivery order is not guaranteed, so compare timestamps instead of trusting arrival.
        if reference is not None and saved_at <= reference:
            return
        if self.pending_remote is not None and saved_at <= self.pending_remote.metadata.saved_at:
            return
        merged = self._merge_draft(update.draft)
        if merged is None or not track_changes(self._working, merged, ignore=self.ignore).has_changes:
            return
        logger.info("Newer draft for %s available from %s", update.key.storage_key, update.draft.metadata.tab_id)
        self.pending_remote = update.draft
        for callback in list(self._remote_listeners):
            callback(update.draft)
        self._notify()

    def _section_fields(self, section: str) -> List[str]:
        return [
            field
            for field in self._working
            if field not in self.ignore and self.field_sections.get(field, self.fallback_section) == section
        ]

    def _on_autosaved(self, envelope: DraftEnvelope) -> None:
        if self.per_section_drafts and self.key is not None:
            dirty = set(dirty_sections(self.section_changes))
            for section in self.section_changes:
                section_key = self.key.section(section)
                if section in dirty:
                    slice_ = {field: self._working.get(field) for field in self._section_fields(section)}
                    saved = self.store.save(section_key, slice_)
                    if saved is not None:
                        self.section_saved_at[section] = saved.metadata.saved_at
                elif section in self.section_saved_at:
                    self.store.clear(section_key)
                    self.section_saved_at.pop(section, None)
        for callback in list(self._autosave_listeners):
            callback(envelope)
        self._notify()

    # -- resolution --------------------------------------------------------

    def discard(self) -> None:
        """Revert to the baseline, forget every stored draft and leave edit mode."""
        self._require_loaded()
        self.scheduler.cancel()
        self._working = copy.deepcopy(self._baseline)
        self.store.clear_entity(self.key.entity_type, self.key.entity_id)
        self.scheduler.mark_persisted(self._baseline)
        self._leave_edit_mode()

    def commit(self, entity: Optional[Mapping[str, Any]] = None) -> None:
        """Promote the confirmed entity (or the working copy) to the new baseline."""
        self._require_loaded()
        self.scheduler.cancel()
        confirmed = dict(entity) if entity is not None else self._working
        self._baseline = copy.deepcopy(confirmed)
        self._working = copy.deepcopy(self._baseline)
        self.store.clear_entity(self.key.entity_type, self.key.entity_id)
        self.scheduler.mark_persisted(self._baseline)
        self._leave_edit_mode()

    def _leave_edit_mode(self) -> None:
        self.recovered_draft = None
        self.pending_remote = None
        self.section_saved_at = {}
        self.is_editing = False
        self.scheduler.set_edit_mode(False)
        self._recompute()
        self._notify()
