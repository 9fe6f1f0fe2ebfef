from __future__ import annotations

from typing import Optional

from PySide6.QtWidgets import QDialog, QHBoxLayout, QLabel, QPushButton, QVBoxLayout

from change_tracker import ChangeSet
from deactivation import Resolution


class UnsavedChangesDialog(QDialog):
    """Ask what to do with pending edits before the editor is left."""

    def __init__(self, change_set: ChangeSet, *, error: Optional[str] = None, parent=None) -> None:
        super().__init__(parent)
        self.setModal(True)
        self.setWindowTitle("Unsaved changes")
        self.change_set = change_set
        self.resolution = Resolution.CANCEL
        self._build_ui(error)

    def _build_ui(self, error: Optional[str]) -> None:
        layout = QVBoxLayout(self)

        count = self.change_set.change_count
        noun = "change" if count == 1 else "changes"
        message = QLabel(f"You have {count} unsaved {noun}. Save them before leaving?")
        message.setWordWrap(True)
        layout.addWidget(message)

        if self.change_set.has_changes:
            fields = QLabel(", ".join(change.label for change in self.change_set.changes))
            fields.setWordWrap(True)
            fields.setStyleSheet("color:#a8aec6;")
            layout.addWidget(fields)

        if error:
            error_label = QLabel(f"Last save failed: {error}")
            error_label.setWordWrap(True)
            error_label.setStyleSheet("color:#ff7a7a;")
            layout.addWidget(error_label)

        buttons = QHBoxLayout()
        self.save_button = QPushButton("Save")
        self.save_button.setDefault(True)
        self.save_button.clicked.connect(lambda: self._choose(Resolution.SAVE))
        buttons.addWidget(self.save_button)

        self.discard_button = QPushButton("Discard")
        self.discard_button.clicked.connect(lambda: self._choose(Resolution.DISCARD))
        buttons.addWidget(self.discard_button)

        buttons.addStretch()

        self.cancel_button = QPushButton("Continue editing")
        self.cancel_button.clicked.connect(lambda: self._choose(Resolution.CANCEL))
        buttons.addWidget(self.cancel_button)
        layout.addLayout(buttons)

    def _choose(self, resolution: Resolution) -> None:
        self.resolution = resolution
        if resolution is Resolution.CANCEL:
            self.reject()
        else:
            self.accept()

    def ask(self) -> Resolution:
        """Run modally; closing the window counts as continue editing."""
        self.resolution = Resolution.CANCEL
        self.exec()
        return self.resolution
