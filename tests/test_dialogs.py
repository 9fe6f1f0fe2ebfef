from __future__ import annotations

import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from PySide6.QtWidgets import QApplication  # noqa: E402

from change_tracker import EMPTY_DISPLAY, track_changes  # noqa: E402
from deactivation import Resolution  # noqa: E402
from ui.change_confirmation_dialog import ChangeConfirmationDialog  # noqa: E402
from ui.unsaved_changes_dialog import UnsavedChangesDialog  # noqa: E402


class DialogTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.app = QApplication.instance() or QApplication(sys.argv)

    def setUp(self) -> None:
        self.change_set = track_changes(
            {"city": "Rabat", "phone": None, "remote": False},
            {"city": "Fes", "phone": "0611", "remote": False},
            labels={"city": "City", "phone": "Phone"},
        )

    def test_unsaved_changes_buttons_map_to_resolutions(self) -> None:
        for button, expected in (
            ("save_button", Resolution.SAVE),
            ("discard_button", Resolution.DISCARD),
            ("cancel_button", Resolution.CANCEL),
        ):
            dialog = UnsavedChangesDialog(self.change_set)
            getattr(dialog, button).click()
            self.assertIs(dialog.resolution, expected)
            dialog.deleteLater()

    def test_confirmation_lists_each_change(self) -> None:
        dialog = ChangeConfirmationDialog(self.change_set)
        self.assertEqual(dialog.table.rowCount(), 2)
        self.assertEqual(dialog.table.item(0, 0).text(), "City")
        self.assertEqual(dialog.table.item(0, 2).text(), "Fes")
        self.assertEqual(dialog.table.item(1, 1).text(), EMPTY_DISPLAY)
        self.assertEqual(dialog.table.item(1, 2).text(), "0611")
        dialog.deleteLater()
