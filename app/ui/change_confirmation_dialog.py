from __future__ import annotations

from PySide6.QtCore import Qt
from PySide6.QtWidgets import (
    QAbstractItemView,
    QDialog,
    QDialogButtonBox,
    QHeaderView,
    QLabel,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
)

from change_tracker import ChangeSet, format_value


class ChangeConfirmationDialog(QDialog):
    """Review every modified field (old -> new) before the save is sent."""

    def __init__(self, change_set: ChangeSet, *, title: str = "Confirm changes", parent=None) -> None:
        super().__init__(parent)
        self.setModal(True)
        self.setWindowTitle(title)
        self.resize(620, 380)
        self.change_set = change_set
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)

        count = self.change_set.change_count
        summary = QLabel(f"{count} field{'s' if count != 1 else ''} will be updated.")
        summary.setStyleSheet("font-weight:600;")
        layout.addWidget(summary)

        self.table = QTableWidget(count, 3)
        self.table.setHorizontalHeaderLabels(["Field", "Current value", "New value"])
        self.table.setEditTriggers(QAbstractItemView.NoEditTriggers)
        self.table.setSelectionMode(QAbstractItemView.NoSelection)
        self.table.verticalHeader().setVisible(False)
        self.table.horizontalHeader().setSectionResizeMode(QHeaderView.Stretch)
        for row, change in enumerate(self.change_set.changes):
            cells = (
                change.label,
                format_value(change.old_value, change.type),
                format_value(change.new_value, change.type),
            )
            for column, text in enumerate(cells):
                item = QTableWidgetItem(text)
                item.setData(Qt.UserRole, change.field)
                self.table.setItem(row, column, item)
        layout.addWidget(self.table)

        buttons = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
        buttons.button(QDialogButtonBox.Ok).setText("Save changes")
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)
