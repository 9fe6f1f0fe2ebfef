from __future__ import annotations

import secrets
import time
from typing import Optional


def generate_tab_id() -> str:
    """Random identifier for one running window; 64 random bits make collisions negligible."""
    return f"tab_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


class TabIdentity:
    """Lazily assigns a tab id on first use and keeps it for the object's lifetime."""

    def __init__(self) -> None:
        self._tab_id: Optional[str] = None

    def id(self) -> str:
        if self._tab_id is None:
            self._tab_id = generate_tab_id()
        return self._tab_id


_CURRENT_TAB = TabIdentity()


def get_tab_id() -> str:
    """Identifier of the current process; never written to disk as a setting."""
    return _CURRENT_TAB.id()
