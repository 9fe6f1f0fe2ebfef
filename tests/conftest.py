from __future__ import annotations

import datetime
import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from PySide6.QtWidgets import QApplication  # noqa: E402

from database import DraftBase, EmployeeBase  # noqa: E402

UTC = datetime.timezone.utc
START = datetime.datetime(2024, 3, 4, 9, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock so debounce windows can be stepped through exactly."""

    def __init__(self, start: datetime.datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, ms: int = 0, seconds: float = 0) -> datetime.datetime:
        self.now = self.now + datetime.timedelta(milliseconds=ms, seconds=seconds)
        return self.now

    def set(self, value: datetime.datetime) -> datetime.datetime:
        self.now = value
        return self.now


def _memory_engine():
    return create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def drafts_factory():
    """One in-memory drafts.db shared by every simulated window in a test."""
    engine = _memory_engine()
    DraftBase.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, future=True)
    engine.dispose()


@pytest.fixture()
def employee_factory():
    engine = _memory_engine()
    EmployeeBase.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, future=True)
    engine.dispose()


@pytest.fixture()
def employee_snapshot():
    return {
        "id": 7,
        "first_name": "Salma",
        "last_name": "Benali",
        "city": "Rabat",
        "phone": "",
        "base_salary": 9500.0,
        "contract_type": "CDI",
        "nickname": None,
        "created_at": "2024-01-01T08:00:00+00:00",
        "updated_at": "2024-01-01T08:00:00+00:00",
    }
