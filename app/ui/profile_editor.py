from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from PySide6.QtGui import QCloseEvent
from PySide6.QtWidgets import (
    QComboBox,
    QDialog,
    QDoubleSpinBox,
    QFormLayout,
    QFrame,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
    QPushButton,
    QTabWidget,
    QVBoxLayout,
    QWidget,
)

from database import get_employee, update_employee
from deactivation import DeactivationCoordinator, DeactivationState
from draft_service import DraftService
from drafts import DraftEnvelope
from edit_session import EditSession
from forms import EMPLOYEE_PROFILE_FORM, FieldDefinition, FormDefinition
from ui.change_confirmation_dialog import ChangeConfirmationDialog
from ui.unsaved_changes_dialog import UnsavedChangesDialog


logger = logging.getLogger(__name__)

DIRTY_MARKER = " *"


def _timestamp(envelope: DraftEnvelope) -> str:
    return envelope.metadata.saved_at.astimezone().strftime("%H:%M:%S")


class ProfileEditorWindow(QMainWindow):
    def __init__(
        self,
        *,
        employee_id: int,
        service: DraftService,
        employee_session_factory: Callable,
        form: FormDefinition = EMPLOYEE_PROFILE_FORM,
        edited_by: str = "hr",
        parent=None,
    ) -> None:
        super().__init__(parent)
        self.employee_id = employee_id
        self.service = service
        self.employee_session_factory = employee_session_factory
        self.form = form
        self.edited_by = edited_by
        self._populating = False
        self._widgets: Dict[str, QWidget] = {}
        self._tab_index: Dict[str, int] = {}

        autosave = service.settings["autosave"]
        self.session = EditSession.from_form(
            service.store,
            form,
            bus=service.bus,
            delay_ms=autosave["debounce_ms"],
            settle_ms=autosave["restore_settle_ms"],
            per_section_drafts=autosave["per_section_drafts"],
        )
        self.coordinator = DeactivationCoordinator(self.session, self._save_to_database, self)
        self.coordinator.save_failed.connect(self._show_save_error)
        self.coordinator.state_changed.connect(self._on_state_changed)
        self.session.add_listener(self._on_session_changed)
        self.session.add_autosave_listener(self._on_autosaved)
        self.session.add_remote_listener(self._on_remote_draft)

        self.setWindowTitle(form.title)
        self.resize(760, 560)
        self._build_ui()

    # -- layout ------------------------------------------------------------

    def _build_ui(self) -> None:
        central = QWidget()
        layout = QVBoxLayout(central)

        self.heading = QLabel()
        self.heading.setStyleSheet("font-size:16px; font-weight:600;")
        layout.addWidget(self.heading)

        self.remote_banner = QFrame()
        self.remote_banner.setStyleSheet("background:#3a3320; border-radius:6px;")
        banner_layout = QHBoxLayout(self.remote_banner)
        self.remote_label = QLabel()
        self.remote_label.setStyleSheet("color:#f5b942;")
        banner_layout.addWidget(self.remote_label, 1)
        load_button = QPushButton("Load it")
        load_button.clicked.connect(self._handle_load_remote)
        banner_layout.addWidget(load_button)
        dismiss_button = QPushButton("Dismiss")
        dismiss_button.clicked.connect(self._handle_dismiss_remote)
        banner_layout.addWidget(dismiss_button)
        self.remote_banner.hide()
        layout.addWidget(self.remote_banner)

        self.tabs = QTabWidget()
        for section in self.form.sections:
            fields = self.form.fields_in(section)
            if not fields:
                continue
            page = QWidget()
            form_layout = QFormLayout(page)
            for definition in fields:
                widget = self._build_field(definition)
                self._widgets[definition.name] = widget
                form_layout.addRow(definition.label, widget)
            self._tab_index[section] = self.tabs.addTab(page, self.form.section_titles.get(section, section))
        layout.addWidget(self.tabs, 1)

        footer = QHBoxLayout()
        self.draft_status_label = QLabel("No draft saved yet")
        self.draft_status_label.setStyleSheet("color:#a8aec6;")
        footer.addWidget(self.draft_status_label)
        footer.addStretch()

        self.edit_button = QPushButton("Edit")
        self.edit_button.clicked.connect(self._handle_begin_edit)
        footer.addWidget(self.edit_button)

        self.discard_button = QPushButton("Discard changes")
        self.discard_button.clicked.connect(self._handle_discard)
        footer.addWidget(self.discard_button)

        self.save_button = QPushButton("Save")
        self.save_button.setDefault(True)
        self.save_button.clicked.connect(self._handle_save)
        footer.addWidget(self.save_button)
        layout.addLayout(footer)

        self.setCentralWidget(central)

    def _build_field(self, definition: FieldDefinition) -> QWidget:
        name = definition.name
        if definition.kind == "number":
            widget = QDoubleSpinBox()
            widget.setRange(0, 10_000_000)
            widget.setDecimals(2)
            widget.valueChanged.connect(lambda value, field=name: self._on_widget_edited(field, float(value)))
        elif definition.kind == "choice":
            widget = QComboBox()
            widget.addItems(list(definition.choices))
            widget.currentTextChanged.connect(lambda text, field=name: self._on_widget_edited(field, text))
        elif definition.kind == "multiline":
            widget = QPlainTextEdit()
            widget.textChanged.connect(
                lambda field=name, source=widget: self._on_widget_edited(field, source.toPlainText())
            )
        else:
            widget = QLineEdit()
            if definition.kind == "date":
                widget.setPlaceholderText("YYYY-MM-DD")
            widget.textEdited.connect(lambda text, field=name: self._on_widget_edited(field, text))
        return widget

    # -- data flow ---------------------------------------------------------

    def load(self) -> bool:
        """Fetch the employee and offer to restore a leftover draft."""
        with self.employee_session_factory() as employee_session:
            entity = get_employee(self.employee_id, employee_session)
        if entity is None:
            QMessageBox.warning(self, "Employee not found", f"No employee with id {self.employee_id}.")
            return False
        recovered = self.session.load(self.employee_id, entity)
        self._populate()
        if recovered is not None:
            answer = QMessageBox.question(
                self,
                "Restore draft",
                f"Unsaved changes from {_timestamp(recovered)} were found for this profile. Restore them?",
            )
            if answer == QMessageBox.Yes:
                self.session.restore_draft(recovered)
                self._populate()
            else:
                self.session.dismiss_draft()
        self._refresh()
        return True

    def _populate(self) -> None:
        working = self.session.working
        self._populating = True
        try:
            for name, widget in self._widgets.items():
                value = working.get(name)
                if isinstance(widget, QDoubleSpinBox):
                    widget.setValue(float(value or 0))
                elif isinstance(widget, QComboBox):
                    index = widget.findText(str(value or ""))
                    widget.setCurrentIndex(max(0, index))
                elif isinstance(widget, QPlainTextEdit):
                    widget.setPlainText(str(value or ""))
                else:
                    widget.setText("" if value is None else str(value))
        finally:
            self._populating = False

    def _on_widget_edited(self, field: str, value: Any) -> None:
        if self._populating or not self.session.is_editing:
            return
        self.session.set_field(field, value)

    def _save_to_database(self, patch: Dict[str, Any], working: Dict[str, Any]) -> Dict[str, Any]:
        with self.employee_session_factory() as employee_session:
            return update_employee(employee_session, self.employee_id, patch, edited_by=self.edited_by)

    # -- session callbacks -------------------------------------------------

    def _on_session_changed(self, session: EditSession) -> None:
        self._refresh()

    def _on_state_changed(self, state: DeactivationState) -> None:
        logger.debug("Editor for employee %s is %s", self.employee_id, state.value)

    def _on_autosaved(self, envelope: DraftEnvelope) -> None:
        self.draft_status_label.setText(f"Draft saved at {_timestamp(envelope)}")

    def _on_remote_draft(self, envelope: DraftEnvelope) -> None:
        self.remote_label.setText(
            f"A newer draft of this profile was saved in another window at {_timestamp(envelope)}."
        )
        self.remote_banner.show()

    def _refresh(self) -> None:
        entity = self.session.working
        self.heading.setText(f"{entity.get('first_name', '')} {entity.get('last_name', '')}".strip())
        for section, index in self._tab_index.items():
            title = self.form.section_titles.get(section, section)
            changes = self.session.section_changes.get(section)
            dirty = changes is not None and changes.has_changes
            self.tabs.setTabText(index, f"{title}{DIRTY_MARKER}" if dirty else title)
        editing = self.session.is_editing
        for widget in self._widgets.values():
            widget.setEnabled(editing)
        self.edit_button.setVisible(not editing)
        self.save_button.setEnabled(self.session.is_dirty)
        self.discard_button.setEnabled(self.session.is_dirty)
        if self.session.pending_remote is None:
            self.remote_banner.hide()

    def _show_save_error(self, exc: BaseException) -> None:
        QMessageBox.critical(self, "Save failed", f"The profile could not be saved:\n{exc}")

    # -- actions -----------------------------------------------------------

    def _handle_begin_edit(self) -> None:
        self.session.begin_edit()

    def _handle_save(self) -> None:
        if not self.session.is_dirty:
            return
        dialog = ChangeConfirmationDialog(self.session.change_set, parent=self)
        if dialog.exec() != QDialog.Accepted:
            return
        try:
            confirmed = self._save_to_database(self.session.generate_patch(), self.session.working)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Saving employee %s failed: %s", self.employee_id, exc)
            self._show_save_error(exc)
            return
        self.session.commit(confirmed)
        self._populate()
        self.draft_status_label.setText("All changes saved")

    def _handle_discard(self) -> None:
        if not self.session.is_dirty:
            return
        confirm = QMessageBox.question(
            self,
            "Discard changes",
            f"Throw away {self.session.change_set.change_count} unsaved change(s)?",
        )
        if confirm != QMessageBox.Yes:
            return
        self.session.discard()
        self._populate()
        self.draft_status_label.setText("Changes discarded")

    def _handle_load_remote(self) -> None:
        if self.session.restore_draft(self.session.pending_remote):
            self._populate()
        self.remote_banner.hide()

    def _handle_dismiss_remote(self) -> None:
        self.session.dismiss_remote()
        self.remote_banner.hide()

    def request_leave(self) -> bool:
        """Ask the user about pending edits; True when the editor may go away."""
        self.session.flush()
        allowed = self.coordinator.request_deactivation()
        if allowed is None:
            dialog = UnsavedChangesDialog(
                self.session.change_set,
                error=str(self.coordinator.last_error) if self.coordinator.last_error else None,
                parent=self,
            )
            allowed = self.coordinator.resolve(dialog.ask())
        if allowed:
            self._populate()
        return bool(allowed)

    def closeEvent(self, event: QCloseEvent) -> None:
        if self.coordinator.needs_close_prompt() and not self.request_leave():
            event.ignore()
            return
        self.session.close()
        event.accept()
