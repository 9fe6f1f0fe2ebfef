from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from autosave import AutoSaveScheduler  # noqa: E402
from drafts import DraftKey, DraftStore  # noqa: E402

KEY = DraftKey("employee-profile", "7")


@pytest.fixture()
def working():
    return {"city": "Rabat"}


@pytest.fixture()
def store(drafts_factory, clock):
    return DraftStore(drafts_factory, tab_id="tab_a", clock=clock)


@pytest.fixture()
def scheduler(store, working, clock):
    scheduler = AutoSaveScheduler(store, KEY, lambda: dict(working), delay_ms=800, settle_ms=300, clock=clock)
    scheduler.mark_persisted(dict(working))
    scheduler.set_edit_mode(True)
    return scheduler


def _ms(value: int) -> datetime.timedelta:
    return datetime.timedelta(milliseconds=value)


def test_burst_of_edits_is_saved_once_after_quiet_period(scheduler, store, working, clock):
    saved = []
    scheduler.saved.connect(lambda envelope: saved.append(envelope))

    for index, city in enumerate(("Fes", "Meknes", "Tangier")):
        if index:
            clock.advance(ms=100)
        working["city"] = city
        scheduler.notify_change()
    third_edit = clock.now

    clock.set(third_edit + _ms(799))
    assert scheduler.poll() is False
    clock.set(third_edit + _ms(800))
    assert scheduler.poll() is True

    assert len(saved) == 1
    assert saved[0].metadata.saved_at == third_edit + _ms(800)
    assert store.load(KEY).data == {"city": "Tangier"}
    assert scheduler.last_auto_save == third_edit + _ms(800)
    assert scheduler.pending is False
    assert scheduler.poll(third_edit + _ms(5000)) is False


def test_no_autosave_outside_edit_mode(scheduler, store, working):
    scheduler.set_edit_mode(False)
    working["city"] = "Fes"
    scheduler.notify_change()
    assert scheduler.pending is False
    assert scheduler.flush() is False
    assert store.has_draft(KEY) is False


def test_leaving_edit_mode_cancels_pending_save(scheduler, working, clock):
    working["city"] = "Fes"
    scheduler.notify_change()
    scheduler.set_edit_mode(False)
    assert scheduler.pending is False
    assert scheduler.poll(clock.now + _ms(1000)) is False


def test_restore_suppresses_autosave_for_settle_window(scheduler, store, working, clock):
    with scheduler.restoring():
        working["city"] = "Agadir"
        scheduler.notify_change()
        assert scheduler.is_restoring() is True
    assert scheduler.pending is False

    clock.advance(ms=299)
    scheduler.notify_change()
    assert scheduler.pending is False

    clock.advance(ms=1)
    scheduler.notify_change()
    assert scheduler.pending is True
    assert scheduler.poll(clock.now + _ms(800)) is True
    assert store.load(KEY).data == {"city": "Agadir"}


def test_restoring_cancels_a_pending_save(scheduler, working, clock):
    working["city"] = "Fes"
    scheduler.notify_change()
    with scheduler.restoring():
        pass
    assert scheduler.pending is False


def test_unchanged_snapshot_is_not_rewritten(scheduler, store, working, clock):
    working["city"] = "Fes"
    scheduler.notify_change()
    assert scheduler.poll(clock.now + _ms(800)) is True

    scheduler.notify_change()
    assert scheduler.poll(clock.now + _ms(800)) is False

    working["city"] = "Rabat"
    scheduler.notify_change()
    assert scheduler.poll(clock.now + _ms(800)) is True
    assert store.load(KEY).data == {"city": "Rabat"}


def test_flush_saves_pending_change_immediately(scheduler, store, working):
    working["city"] = "Oujda"
    scheduler.notify_change()
    assert scheduler.flush() is True
    assert store.load(KEY).data == {"city": "Oujda"}
    assert scheduler.flush() is False


def test_due_time_moves_with_each_edit(scheduler, clock):
    scheduler.notify_change()
    first_due = scheduler.due_at
    clock.advance(ms=300)
    scheduler.notify_change()
    assert scheduler.due_at == first_due + _ms(300)
