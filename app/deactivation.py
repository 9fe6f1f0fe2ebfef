"""Guard against leaving an editor with unsaved changes.

States move Clean -> Dirty on the first real change, Dirty ->
AwaitingResolution when the user tries to leave, and back to Clean (save
succeeded, or discard) or Dirty (cancel, or the save failed). A request made
while dirty stays open until ``resolve`` is called; the outcome is announced
through ``decided`` so whoever shows the prompt can answer later.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from PySide6.QtCore import QObject, Signal

from edit_session import EditSession


logger = logging.getLogger(__name__)

SaveHandler = Callable[[Dict[str, Any], Dict[str, Any]], Optional[Mapping[str, Any]]]


class DeactivationState(enum.Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    AWAITING_RESOLUTION = "awaiting_resolution"


class Resolution(enum.Enum):
    SAVE = "save"
    DISCARD = "discard"
    CANCEL = "cancel"


class DeactivationCoordinator(QObject):
    decided = Signal(bool)
    prompt_requested = Signal()
    save_failed = Signal(object)
    state_changed = Signal(object)

    def __init__(
        self,
        session: EditSession,
        save_handler: SaveHandler,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.session = session
        self.save_handler = save_handler
        self.last_error: Optional[BaseException] = None
        self.last_decision: Optional[bool] = None
        self._pending = False
        self._state = DeactivationState.DIRTY if session.is_dirty else DeactivationState.CLEAN
        session.add_listener(self._on_session_changed)

    @property
    def state(self) -> DeactivationState:
        return self._state

    @property
    def pending(self) -> bool:
        return self._pending

    def _set_state(self, state: DeactivationState) -> None:
        if state is self._state:
            return
        logger.debug("Deactivation state %s -> %s", self._state.value, state.value)
        self._state = state
        self.state_changed.emit(state)

    def _on_session_changed(self, session: EditSession) -> None:
        # A question is open; only the answer may move the state now.
        if self._state is DeactivationState.AWAITING_RESOLUTION:
            return
        self._set_state(DeactivationState.DIRTY if session.is_dirty else DeactivationState.CLEAN)

    def refresh(self) -> DeactivationState:
        self._on_session_changed(self.session)
        return self._state

    def _decide(self, allowed: bool) -> bool:
        self.last_decision = allowed
        self.decided.emit(allowed)
        return allowed

    def request_deactivation(self) -> Optional[bool]:
        """Ask to leave.

        Returns True when nothing is unsaved. Otherwise the request stays open,
        ``prompt_requested`` fires and None is returned; the answer arrives via
        ``decided`` once ``resolve`` runs. A prompt slot that resolves straight
        away gets its decision returned here as well.
        """
        if self._pending:
            return None
        if self.refresh() is DeactivationState.CLEAN:
            return self._decide(True)
        self._pending = True
        self._set_state(DeactivationState.AWAITING_RESOLUTION)
        self.prompt_requested.emit()
        if self._pending:
            return None
        return self.last_decision

    def resolve(self, choice: Union[Resolution, str]) -> Optional[bool]:
        """Answer the open question; returns the decision, or None if nothing was pending."""
        resolution = Resolution(choice)
        if not self._pending:
            logger.debug("Ignoring %s: no deactivation pending", resolution.value)
            return None
        self._pending = False

        if resolution is Resolution.SAVE:
            allowed = self._save()
        elif resolution is Resolution.DISCARD:
            self.session.discard()
            self._set_state(DeactivationState.CLEAN)
            allowed = True
        else:
            self._set_state(DeactivationState.DIRTY)
            allowed = False
        return self._decide(allowed)

    def _save(self) -> bool:
        patch = self.session.generate_patch()
        try:
            confirmed = self.save_handler(patch, self.session.working)
        except Exception as exc:  # noqa: BLE001
            # Working copy and drafts stay untouched so the user can retry.
            logger.warning("Saving %s failed: %s", self.session.key.storage_key if self.session.key else "entity", exc)
            self.last_error = exc
            self._set_state(DeactivationState.DIRTY)
            self.save_failed.emit(exc)
            return False
        self.last_error = None
        self.session.commit(confirmed)
        self._set_state(DeactivationState.CLEAN)
        return True

    def needs_close_prompt(self) -> bool:
        """Whether a window close must ask synchronously before going away."""
        return self.refresh() is not DeactivationState.CLEAN
