from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest
from sqlalchemy import func, select, update

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from cross_tab import CrossTabBus  # noqa: E402
from database import DraftEvent  # noqa: E402
from drafts import DraftKey, DraftStore, utc_now  # noqa: E402

KEY = DraftKey("employee-profile", "7")


@pytest.fixture()
def tabs(drafts_factory, clock):
    bus_a = CrossTabBus(drafts_factory, tab_id="tab_a")
    bus_b = CrossTabBus(drafts_factory, tab_id="tab_b")
    store_a = DraftStore(drafts_factory, tab_id="tab_a", bus=bus_a, clock=clock)
    return bus_a, bus_b, store_a


def test_publish_reaches_other_tab_but_not_publisher(tabs):
    bus_a, bus_b, store_a = tabs
    seen_a, seen_b = [], []
    bus_a.subscribe(seen_a.append)
    bus_b.subscribe(seen_b.append)

    envelope = store_a.save(KEY, {"city": "Fes"})

    assert bus_a.poll() == 0
    assert bus_b.poll() == 1
    assert seen_a == []
    assert len(seen_b) == 1
    update = seen_b[0]
    assert update.key == KEY
    assert update.draft.data == {"city": "Fes"}
    assert update.draft.metadata.tab_id == "tab_a"
    assert update.draft.metadata.saved_at == envelope.metadata.saved_at


def test_events_are_delivered_once(tabs):
    _, bus_b, store_a = tabs
    seen = []
    bus_b.subscribe(seen.append)
    store_a.save(KEY, {"city": "Fes"})
    bus_b.poll()
    bus_b.poll()
    assert len(seen) == 1


def test_clear_is_broadcast_without_draft(tabs):
    _, bus_b, store_a = tabs
    store_a.save(KEY, {"city": "Fes"})
    bus_b.poll()
    seen = []
    bus_b.subscribe(seen.append)

    store_a.clear(KEY)
    bus_b.poll()
    assert len(seen) == 1
    assert seen[0].cleared is True
    assert seen[0].draft is None


def test_malformed_event_is_dropped(tabs, drafts_factory):
    _, bus_b, _ = tabs
    seen = []
    bus_b.subscribe(seen.append)
    with drafts_factory() as session:
        session.add(
            DraftEvent(
                storage_key=KEY.storage_key,
                entity_type=KEY.entity_type,
                entity_id=KEY.entity_id,
                tab_id="tab_x",
                payloadJSON="{broken",
            )
        )
        session.add(
            DraftEvent(
                storage_key="not-a-draft-key",
                entity_type="x",
                entity_id="1",
                tab_id="tab_x",
                payloadJSON="null",
            )
        )
        session.commit()

    assert bus_b.poll() == 0
    assert seen == []


def test_failing_handler_does_not_block_others(tabs):
    _, bus_b, store_a = tabs
    seen = []

    def _explode(_update):
        raise RuntimeError("boom")

    bus_b.subscribe(_explode)
    bus_b.subscribe(seen.append)
    store_a.save(KEY, {"city": "Fes"})

    assert bus_b.poll() == 1
    assert len(seen) == 1


def test_unsubscribed_handler_is_not_called(tabs):
    _, bus_b, store_a = tabs
    seen = []
    subscription = bus_b.subscribe(seen.append)
    subscription.unsubscribe()
    subscription.unsubscribe()

    store_a.save(KEY, {"city": "Fes"})
    bus_b.poll()
    assert seen == []


def test_new_window_ignores_earlier_events(tabs, drafts_factory):
    _, _, store_a = tabs
    store_a.save(KEY, {"city": "Fes"})

    late = CrossTabBus(drafts_factory, tab_id="tab_c")
    seen = []
    late.subscribe(seen.append)
    assert late.poll() == 0
    assert seen == []


def test_prune_removes_expired_events(tabs, drafts_factory):
    bus_a, _, store_a = tabs
    store_a.save(KEY, {"city": "Fes"})
    with drafts_factory() as session:
        session.add(
            DraftEvent(
                storage_key=KEY.storage_key,
                entity_type=KEY.entity_type,
                entity_id=KEY.entity_id,
                tab_id="tab_x",
                payloadJSON="null",
                created_at=utc_now() - datetime.timedelta(hours=48),
            )
        )
        session.commit()

    assert bus_a.prune(datetime.timedelta(hours=24)) == 1


def test_timer_controls(tabs):
    bus_a, _, _ = tabs
    assert bus_a.running is False
    bus_a.start()
    assert bus_a.running is True
    bus_a.stop()
    assert bus_a.running is False


def test_open_window_keeps_receiving_after_full_prune(tabs, drafts_factory, clock):
    _, bus_b, store_a = tabs
    for employee_id in ("7", "8", "9"):
        store_a.save(DraftKey("employee-profile", employee_id), {"city": "Fes"})
    assert bus_b.poll() == 3

    with drafts_factory() as session:
        session.execute(update(DraftEvent).values(created_at=utc_now() - datetime.timedelta(hours=48)))
        session.commit()
    bus_c = CrossTabBus(drafts_factory, tab_id="tab_c")
    assert bus_c.prune(datetime.timedelta(hours=24)) == 3

    seen = []
    bus_b.subscribe(seen.append)
    store_c = DraftStore(drafts_factory, tab_id="tab_c", bus=bus_c, clock=clock)
    store_c.save(KEY, {"city": "Oujda"})

    with drafts_factory() as session:
        assert session.scalars(select(DraftEvent.id)).all() == [4]
    assert bus_b.poll() == 1
    assert seen[0].draft.data == {"city": "Oujda"}


def test_cursor_past_the_feed_is_rewound(tabs, drafts_factory):
    _, bus_b, store_a = tabs
    # Feeds written before ids were made monotonic can restart at 1.
    bus_b._cursor = 50
    seen = []
    bus_b.subscribe(seen.append)

    store_a.save(KEY, {"city": "Fes"})

    assert bus_b.poll() == 1
    assert seen[0].draft.data == {"city": "Fes"}
    with drafts_factory() as session:
        assert bus_b._cursor == session.scalar(select(func.max(DraftEvent.id)))
    assert bus_b.poll() == 0
