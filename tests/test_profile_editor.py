from __future__ import annotations

import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import create_employee  # noqa: E402
from deactivation import DeactivationState, Resolution  # noqa: E402
from draft_defaults import build_default_settings  # noqa: E402
from draft_service import DraftService  # noqa: E402
from drafts import DraftKey  # noqa: E402
from ui.profile_editor import DIRTY_MARKER, ProfileEditorWindow  # noqa: E402
from ui.unsaved_changes_dialog import UnsavedChangesDialog  # noqa: E402


@pytest.fixture()
def editor(employee_factory, drafts_factory, clock):
    with employee_factory() as session:
        employee = create_employee(
            session,
            {"first_name": "Imane", "last_name": "Tazi", "city": "Marrakech", "base_salary": 3000.0},
        )
    service = DraftService(drafts_factory, settings=build_default_settings(), tab_id="tab_a", clock=clock)
    window = ProfileEditorWindow(
        employee_id=employee["id"],
        service=service,
        employee_session_factory=employee_factory,
    )
    assert window.load() is True
    yield window
    window.session.close()
    window.deleteLater()


def test_editor_starts_clean(editor):
    assert editor._widgets["city"].text() == "Marrakech"
    assert editor.save_button.isEnabled() is False
    assert all(not editor.tabs.tabText(index).endswith(DIRTY_MARKER) for index in editor._tab_index.values())


def test_editing_marks_only_the_changed_tab(editor):
    editor._widgets["city"].textEdited.emit("Agadir")

    assert editor.session.generate_patch() == {"city": "Agadir"}
    assert editor.tabs.tabText(editor._tab_index["contact"]).endswith(DIRTY_MARKER)
    assert not editor.tabs.tabText(editor._tab_index["personal"]).endswith(DIRTY_MARKER)
    assert editor.save_button.isEnabled() is True


def test_autosave_updates_status_label(editor):
    editor._widgets["city"].textEdited.emit("Agadir")
    editor.session.flush()

    assert editor.draft_status_label.text().startswith("Draft saved at")
    key = DraftKey("employee-profile", editor.employee_id)
    assert editor.service.store.load(key).data["city"] == "Agadir"


def test_leaving_a_clean_editor_skips_the_dialog(editor, monkeypatch):
    monkeypatch.setattr(UnsavedChangesDialog, "ask", lambda self: pytest.fail("dialog should not open"))

    assert editor.request_leave() is True


def test_leaving_with_discard_restores_the_baseline(editor, monkeypatch):
    monkeypatch.setattr(UnsavedChangesDialog, "ask", lambda self: Resolution.DISCARD)
    editor._widgets["city"].textEdited.emit("Agadir")

    assert editor.request_leave() is True
    assert editor._widgets["city"].text() == "Marrakech"
    assert editor.coordinator.state is DeactivationState.CLEAN


def test_leaving_with_cancel_keeps_the_edit(editor, monkeypatch):
    monkeypatch.setattr(UnsavedChangesDialog, "ask", lambda self: Resolution.CANCEL)
    editor._widgets["city"].textEdited.emit("Agadir")

    assert editor.request_leave() is False
    assert editor.session.working["city"] == "Agadir"
    assert editor.coordinator.state is DeactivationState.DIRTY
