from __future__ import annotations

import contextlib
import datetime
import logging
from typing import Any, Callable, Iterator, Optional

from PySide6.QtCore import QObject, Qt, QTimer, Signal

from drafts import Clock, DraftEnvelope, DraftKey, DraftStore, dumps, utc_now


logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 800
DEFAULT_RESTORE_SETTLE_MS = 300


class AutoSaveScheduler(QObject):
    """Trailing debounce between working-copy edits and draft persistence.

    Every ``notify_change`` restarts the delay; once it elapses without another
    edit the current snapshot is written through the DraftStore. A Qt timer
    drives this in the application, while ``poll(now)`` lets callers advance
    the schedule from their own clock.
    """

    saved = Signal(object)

    def __init__(
        self,
        store: DraftStore,
        key: DraftKey,
        snapshot: Callable[[], Any],
        *,
        delay_ms: int = DEFAULT_DEBOUNCE_MS,
        settle_ms: int = DEFAULT_RESTORE_SETTLE_MS,
        clock: Optional[Clock] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.store = store
        self.key = key
        self._snapshot = snapshot
        self.delay = datetime.timedelta(milliseconds=max(0, int(delay_ms)))
        self.settle = datetime.timedelta(milliseconds=max(0, int(settle_ms)))
        self._clock = clock or utc_now
        self._edit_mode = False
        self._restoring = False
        self._suppress_until: Optional[datetime.datetime] = None
        self._due_at: Optional[datetime.datetime] = None
        self._last_payload: Optional[str] = None
        self.last_auto_save: Optional[datetime.datetime] = None
        self.last_envelope: Optional[DraftEnvelope] = None

        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setTimerType(Qt.PreciseTimer)
        self._timer.timeout.connect(self._on_timeout)

    @property
    def edit_mode(self) -> bool:
        return self._edit_mode

    def set_edit_mode(self, enabled: bool) -> None:
        self._edit_mode = bool(enabled)
        if not self._edit_mode:
            self.cancel()

    @property
    def pending(self) -> bool:
        return self._due_at is not None

    @property
    def due_at(self) -> Optional[datetime.datetime]:
        return self._due_at

    def is_restoring(self, now: Optional[datetime.datetime] = None) -> bool:
        if self._restoring:
            return True
        if self._suppress_until is None:
            return False
        return (now or self._clock()) < self._suppress_until

    @contextlib.contextmanager
    def restoring(self) -> Iterator[None]:
        """Suppress autosave while a draft is applied and for the settle window after it."""
        self._restoring = True
        self.cancel()
        try:
            yield
        finally:
            self._restoring = False
            self._suppress_until = self._clock() + self.settle

    def mark_persisted(self, payload: Any) -> None:
        """Treat ``payload`` as already saved, e.g. a freshly loaded baseline."""
        try:
            self._last_payload = dumps(payload)
        except (TypeError, ValueError):
            self._last_payload = None

    def notify_change(self) -> None:
        now = self._clock()
        if not self._edit_mode or self.is_restoring(now):
            return
        self._due_at = now + self.delay
        self._timer.start(int(self.delay.total_seconds() * 1000))

    def cancel(self) -> None:
        self._due_at = None
        self._timer.stop()

    def poll(self, now: Optional[datetime.datetime] = None) -> bool:
        """Persist if the debounce window has elapsed at ``now``."""
        now = now or self._clock()
        if self._due_at is None or now < self._due_at:
            return False
        return self._persist()

    def flush(self) -> bool:
        """Persist a pending change immediately, e.g. before the window closes."""
        if self._due_at is None:
            return False
        return self._persist()

    def _on_timeout(self) -> None:
        now = self._clock()
        if self._due_at is not None and now < self._due_at:
            remaining = self._due_at - now
            self._timer.start(max(1, int(remaining.total_seconds() * 1000)))
            return
        self.poll(now)

    def _persist(self) -> bool:
        self._timer.stop()
        self._due_at = None
        if not self._edit_mode or self.is_restoring():
            return False
        data = self._snapshot()
        try:
            payload = dumps(data)
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping autosave for %s: %s", self.key.storage_key, exc)
            return False
        if payload == self._last_payload:
            return False
        envelope = self.store.save(self.key, data)
        if envelope is None:
            return False
        self._last_payload = payload
        self.last_envelope = envelope
        self.last_auto_save = envelope.metadata.saved_at
        self.saved.emit(envelope)
        return True
