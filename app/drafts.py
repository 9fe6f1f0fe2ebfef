"""Durable draft storage shared by every open window of the application.

A draft is the full working snapshot of an entity being edited, wrapped in an
envelope that records when and by which window it was written. Drafts live in
``drafts.db`` so they survive restarts; every window addresses the same slot
through a storage key derived from ``(entity_type, entity_id)``.

Writes are best-effort: a failed save is logged and otherwise ignored because
the in-memory working copy of the editor stays authoritative.
"""

from __future__ import annotations

import datetime
import decimal
import json
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Generic, List, Optional, TypeVar

from sqlalchemy import delete, func, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from database import DraftRecord
from tab_identity import get_tab_id

if TYPE_CHECKING:
    from cross_tab import CrossTabBus


logger = logging.getLogger(__name__)

T = TypeVar("T")

DRAFT_VERSION = 1
DRAFT_KEY_PREFIX = "draft_"
KEY_SEPARATOR = "::"
SECTION_SEPARATOR = "."
DEFAULT_MAX_DRAFTS = 200
DEFAULT_PRUNE_FRACTION = 0.25
SQLITE_FULL = 13

Clock = Callable[[], datetime.datetime]


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def is_storage_full(exc: SQLAlchemyError) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    code = getattr(exc.orig, "sqlite_errorcode", None)
    if code is not None:
        # Extended result codes keep the primary code in the low byte.
        return (code & 0xFF) == SQLITE_FULL
    return "database or disk is full" in str(exc.orig or exc).lower()


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    """JSON encoding used for every persisted payload; dates become ISO strings."""
    return json.dumps(value, default=_json_default, ensure_ascii=False)


def _parse_timestamp(value: Any) -> datetime.datetime:
    if not isinstance(value, str):
        raise ValueError("timestamp must be an ISO string")
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


@dataclass(frozen=True)
class DraftKey:
    entity_type: str
    entity_id: str

    def __post_init__(self) -> None:
        if not self.entity_type:
            raise ValueError("entity_type must not be empty")
        if KEY_SEPARATOR in self.entity_type:
            raise ValueError(f"entity_type must not contain {KEY_SEPARATOR!r}")
        object.__setattr__(self, "entity_id", str(self.entity_id))

    @property
    def storage_key(self) -> str:
        return f"{DRAFT_KEY_PREFIX}{self.entity_type}{KEY_SEPARATOR}{self.entity_id}"

    def section(self, section_id: str) -> "DraftKey":
        """Sub-key holding the slice of one form section."""
        return DraftKey(f"{self.entity_type}{SECTION_SEPARATOR}{section_id}", self.entity_id)

    @classmethod
    def from_storage_key(cls, storage_key: str) -> "DraftKey":
        if not storage_key.startswith(DRAFT_KEY_PREFIX) or KEY_SEPARATOR not in storage_key:
            raise ValueError(f"Not a draft storage key: {storage_key!r}")
        entity_type, entity_id = storage_key[len(DRAFT_KEY_PREFIX):].split(KEY_SEPARATOR, 1)
        return cls(entity_type, entity_id)


@dataclass(frozen=True)
class DraftMetadata:
    entity_type: str
    entity_id: str
    tab_id: str
    saved_at: datetime.datetime
    version: int = DRAFT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "tab_id": self.tab_id,
            "saved_at": self.saved_at.isoformat(),
            "version": self.version,
        }


@dataclass(frozen=True)
class DraftEnvelope(Generic[T]):
    data: T
    metadata: DraftMetadata

    @property
    def key(self) -> DraftKey:
        return DraftKey(self.metadata.entity_type, self.metadata.entity_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "metadata": self.metadata.to_dict()}

    @classmethod
    def from_dict(cls, payload: Any) -> "DraftEnvelope":
        """Validate a decoded envelope; raises ValueError on any shape or version mismatch."""
        if not isinstance(payload, dict) or "data" not in payload:
            raise ValueError("envelope must be an object with data and metadata")
        meta = payload.get("metadata")
        if not isinstance(meta, dict):
            raise ValueError("envelope metadata missing")
        if meta.get("version") != DRAFT_VERSION:
            raise ValueError(f"unsupported draft version {meta.get('version')!r}")
        for field in ("entity_type", "entity_id", "tab_id"):
            if not isinstance(meta.get(field), str) or not meta.get(field):
                raise ValueError(f"envelope metadata.{field} missing")
        metadata = DraftMetadata(
            entity_type=meta["entity_type"],
            entity_id=meta["entity_id"],
            tab_id=meta["tab_id"],
            saved_at=_parse_timestamp(meta.get("saved_at")),
            version=DRAFT_VERSION,
        )
        return cls(data=payload["data"], metadata=metadata)


class DraftStore:
    """Key/value persistence for draft envelopes, addressed by DraftKey."""

    def __init__(
        self,
        session_factory,
        *,
        tab_id: Optional[str] = None,
        bus: Optional["CrossTabBus"] = None,
        clock: Optional[Clock] = None,
        max_drafts: int = DEFAULT_MAX_DRAFTS,
        prune_fraction: float = DEFAULT_PRUNE_FRACTION,
    ) -> None:
        self.session_factory = session_factory
        self.tab_id = tab_id or get_tab_id()
        self.bus = bus
        self._clock = clock or utc_now
        self.max_drafts = max(1, int(max_drafts))
        self.prune_fraction = min(1.0, max(0.01, float(prune_fraction)))
        self._last_saved: Dict[str, datetime.datetime] = {}

    def _next_timestamp(self, key: DraftKey) -> datetime.datetime:
        now = self._clock()
        previous = self._last_saved.get(key.storage_key)
        # Wall clocks can step backwards; keep this window's own writes ordered.
        if previous is not None and now < previous:
            now = previous
        self._last_saved[key.storage_key] = now
        return now

    def save(self, key: DraftKey, data: T) -> Optional[DraftEnvelope[T]]:
        """Persist ``data`` under ``key``; returns the envelope or None when the write failed."""
        envelope = DraftEnvelope(
            data=data,
            metadata=DraftMetadata(
                entity_type=key.entity_type,
                entity_id=key.entity_id,
                tab_id=self.tab_id,
                saved_at=self._next_timestamp(key),
            ),
        )
        try:
            payload = dumps(envelope.to_dict())
        except (TypeError, ValueError) as exc:
            logger.warning("Draft %s is not serializable, skipping save: %s", key.storage_key, exc)
            return None

        try:
            self._write(key, envelope, payload)
        except SQLAlchemyError as exc:
            logger.warning("Failed to save draft %s: %s", key.storage_key, exc)
            # Lock timeouts are transient; only a full disk justifies dropping other drafts.
            if is_storage_full(exc):
                self._handle_storage_pressure()
            return None

        logger.debug("Saved draft %s at %s", key.storage_key, envelope.metadata.saved_at.isoformat())
        if self.count() > self.max_drafts:
            self._handle_storage_pressure(keep=key.storage_key)
        if self.bus is not None:
            self.bus.publish(key, envelope)
        return envelope

    def _write(self, key: DraftKey, envelope: DraftEnvelope, payload: str) -> None:
        values = {
            "storage_key": key.storage_key,
            "entity_type": key.entity_type,
            "entity_id": key.entity_id,
            "tab_id": envelope.metadata.tab_id,
            "saved_at": envelope.metadata.saved_at,
            "payloadJSON": payload,
        }
        stmt = sqlite_insert(DraftRecord).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DraftRecord.storage_key],
            set_={name: stmt.excluded[name] for name in values if name != "storage_key"},
        )
        with self.session_factory() as session:
            session.execute(stmt)
            session.commit()

    def load(self, key: DraftKey) -> Optional[DraftEnvelope]:
        try:
            with self.session_factory() as session:
                raw = session.scalars(
                    select(DraftRecord.payloadJSON).where(DraftRecord.storage_key == key.storage_key)
                ).first()
        except SQLAlchemyError as exc:
            logger.warning("Failed to read draft %s: %s", key.storage_key, exc)
            return None
        if raw is None:
            return None

        try:
            envelope = DraftEnvelope.from_dict(json.loads(raw))
            if envelope.key != key:
                raise ValueError("envelope belongs to another key")
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError too.
            logger.warning("Discarding corrupted draft %s: %s", key.storage_key, exc)
            self._remove(key)
            return None
        return envelope

    def has_draft(self, key: DraftKey) -> bool:
        try:
            with self.session_factory() as session:
                return session.scalars(
                    select(DraftRecord.id).where(DraftRecord.storage_key == key.storage_key)
                ).first() is not None
        except SQLAlchemyError as exc:
            logger.warning("Failed to check draft %s: %s", key.storage_key, exc)
            return False

    def _remove(self, key: DraftKey) -> bool:
        try:
            with self.session_factory() as session:
                result = session.execute(delete(DraftRecord).where(DraftRecord.storage_key == key.storage_key))
                session.commit()
                return bool(result.rowcount)
        except SQLAlchemyError as exc:
            logger.warning("Failed to clear draft %s: %s", key.storage_key, exc)
            return False

    def clear(self, key: DraftKey) -> None:
        """Remove the draft for ``key``; clearing an absent key does nothing."""
        removed = self._remove(key)
        self._last_saved.pop(key.storage_key, None)
        if removed:
            logger.debug("Cleared draft %s", key.storage_key)
            if self.bus is not None:
                self.bus.publish(key, None)

    def list_keys(self, entity_type: Optional[str] = None, entity_id: Optional[str] = None) -> List[DraftKey]:
        stmt = select(DraftRecord.entity_type, DraftRecord.entity_id)
        if entity_type is not None:
            stmt = stmt.where(
                or_(
                    DraftRecord.entity_type == entity_type,
                    DraftRecord.entity_type.startswith(f"{entity_type}{SECTION_SEPARATOR}", autoescape=True),
                )
            )
        if entity_id is not None:
            stmt = stmt.where(DraftRecord.entity_id == str(entity_id))
        try:
            with self.session_factory() as session:
                rows = session.execute(stmt.order_by(DraftRecord.storage_key)).all()
        except SQLAlchemyError as exc:
            logger.warning("Failed to list drafts: %s", exc)
            return []
        return [DraftKey(row.entity_type, row.entity_id) for row in rows]

    def clear_entity(self, entity_type: str, entity_id: str) -> int:
        """Clear the entity's draft and every section sub-draft (``<type>.<section>``)."""
        keys = self.list_keys(entity_type, entity_id)
        for key in keys:
            self.clear(key)
        return len(keys)

    def get_all_drafts(self, entity_type: str) -> List[DraftEnvelope]:
        """Every readable draft of one entity type; unreadable rows are skipped, not purged."""
        try:
            with self.session_factory() as session:
                rows = session.scalars(
                    select(DraftRecord.payloadJSON)
                    .where(DraftRecord.entity_type == entity_type)
                    .order_by(DraftRecord.saved_at.desc())
                ).all()
        except SQLAlchemyError as exc:
            logger.warning("Failed to list drafts for %s: %s", entity_type, exc)
            return []
        drafts: List[DraftEnvelope] = []
        for raw in rows:
            try:
                drafts.append(DraftEnvelope.from_dict(json.loads(raw)))
            except ValueError as exc:
                logger.warning("Skipping unreadable %s draft: %s", entity_type, exc)
        return drafts

    def count(self) -> int:
        try:
            with self.session_factory() as session:
                return int(session.scalar(select(func.count(DraftRecord.id))) or 0)
        except SQLAlchemyError as exc:
            logger.warning("Failed to count drafts: %s", exc)
            return 0

    def _handle_storage_pressure(self, keep: Optional[str] = None) -> int:
        """Drop the oldest share of drafts (by saved_at) to make room for new writes."""
        try:
            with self.session_factory() as session:
                rows = session.execute(
                    select(DraftRecord.id, DraftRecord.storage_key).order_by(
                        DraftRecord.saved_at.asc(), DraftRecord.id.asc()
                    )
                ).all()
                candidates = [row for row in rows if row.storage_key != keep]
                remove_count = min(len(candidates), math.ceil(len(rows) * self.prune_fraction))
                victims = [row.id for row in candidates[:remove_count]]
                if victims:
                    session.execute(delete(DraftRecord).where(DraftRecord.id.in_(victims)))
                    session.commit()
        except SQLAlchemyError as exc:
            logger.warning("Failed to prune drafts: %s", exc)
            return 0
        if victims:
            logger.info("Pruned %d old drafts to free storage", len(victims))
        return len(victims)
