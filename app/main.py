from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from PySide6.QtWidgets import QApplication

from database import EmployeeSessionLocal, create_employee, init_database, list_employees
from draft_defaults import load_settings
from draft_service import DraftService
from ui.profile_editor import ProfileEditorWindow


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

THEME_STYLESHEET = """
QWidget {
    background-color: #090a0e;
    color: #f5f6fa;
    font-family: 'Segoe UI', sans-serif;
    font-size: 14px;
}

QPushButton {
    background-color: #f5b942;
    color: #0b0b0f;
    border-radius: 10px;
    padding: 8px 18px;
    font-weight: 600;
    border: none;
}

QPushButton:disabled {
    background-color: #262730;
    color: #7d7f8f;
}

QLineEdit,
QComboBox,
QDoubleSpinBox,
QPlainTextEdit {
    background-color: #15161c;
    border: 1px solid #262730;
    border-radius: 8px;
    padding: 6px 10px;
}

QTabBar::tab:selected {
    color: #f9d24a;
}
"""

DEMO_EMPLOYEE = {
    "first_name": "Salma",
    "last_name": "Benali",
    "cin": "BK123456",
    "marital_status": "single",
    "date_of_birth": "1991-04-12",
    "birth_place": "Rabat",
    "professional_email": "salma.benali@example.com",
    "phone": "+212 600 000 000",
    "city": "Rabat",
    "position": "Payroll officer",
    "department": "Finance",
    "contract_type": "CDI",
    "start_date": "2021-09-01",
    "base_salary": 9500.0,
    "transport_allowance": 500.0,
    "payment_method": "bank_transfer",
    "cnss": "123456789",
}


def ensure_demo_employee() -> int:
    with EmployeeSessionLocal() as session:
        employees = list_employees(session, only_active=False)
        if employees:
            return employees[0]["id"]
        created = create_employee(session, DEMO_EMPLOYEE)
        logger.info("Seeded demo employee #%s", created["id"])
        return created["id"]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Edit an employee profile with draft recovery.")
    parser.add_argument("employee_id", nargs="?", type=int, help="Employee to open (defaults to the first one)")
    parser.add_argument("--user", default="hr", help="Name recorded in the audit log for saves")
    parser.add_argument("--debug", action="store_true", help="Log draft activity at DEBUG level")
    return parser.parse_args(argv)


def launch_app(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO, format=LOG_FORMAT)

    app = QApplication(sys.argv[:1])
    app.setStyleSheet(THEME_STYLESHEET)

    init_database()
    employee_id = args.employee_id or ensure_demo_employee()

    service = DraftService(settings=load_settings())
    logger.info("Window %s editing employee #%s", service.get_tab_id(), employee_id)
    service.start()

    window = ProfileEditorWindow(
        employee_id=employee_id,
        service=service,
        employee_session_factory=EmployeeSessionLocal,
        edited_by=args.user,
    )
    if not window.load():
        service.stop()
        return 1
    window.show()
    try:
        return app.exec()
    finally:
        service.stop()


if __name__ == "__main__":
    sys.exit(launch_app())
