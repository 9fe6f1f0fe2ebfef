from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    select,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
EMPLOYEE_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'employees.db').as_posix()}"
DRAFTS_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'drafts.db').as_posix()}"
EMPLOYEE_STATUS_CHOICES = {"active", "on_leave", "inactive"}
READ_ONLY_EMPLOYEE_FIELDS = {"id", "created_at", "updated_at"}
EMPLOYEE_DATE_FIELDS = {"date_of_birth", "start_date", "end_date"}


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class EmployeeBase(DeclarativeBase):
    """Standalone metadata for HR tables living in employees.db."""

    pass


class DraftBase(DeclarativeBase):
    """Metadata for draft tables living in drafts.db, shared by every open window."""

    pass


class Employee(EmployeeBase):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(80), nullable=False)
    last_name: Mapped[str] = mapped_column(String(80), nullable=False)
    cin: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    marital_status: Mapped[str] = mapped_column(String(12), nullable=False, default="single")
    date_of_birth: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    birth_place: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    professional_email: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    personal_email: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    phone: Mapped[str] = mapped_column(String(30), nullable=False, default="")
    address: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    city: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    zip_code: Mapped[str] = mapped_column(String(12), nullable=False, default="")
    position: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    department: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    manager: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    contract_type: Mapped[str] = mapped_column(String(12), nullable=False, default="CDI")
    start_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)
    probation_period: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    base_salary: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    transport_allowance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    meal_allowance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    seniority_bonus: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="bank_transfer")
    cnss: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    amo: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    cimr: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    annual_leave: Mapped[float] = mapped_column(Float, nullable=False, default=18.0)
    status: Mapped[str] = mapped_column(String(12), default="active", nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AuditLog(EmployeeBase):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Employee")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class DraftRecord(DraftBase):
    __tablename__ = "drafts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    storage_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    entity_type: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(120), nullable=False)
    tab_id: Mapped[str] = mapped_column(String(64), nullable=False)
    saved_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payloadJSON: Mapped[str] = mapped_column(Text, nullable=False, default="{}")


class DraftEvent(DraftBase):
    """Append-only change feed polled by every window to learn about foreign draft writes."""

    __tablename__ = "draft_events"
    # Ids are never reused, so a poll cursor stays valid across prunes.
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    storage_key: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(120), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(120), nullable=False)
    tab_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payloadJSON: Mapped[str] = mapped_column(Text, nullable=False, default="null")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


employee_engine = create_engine(
    EMPLOYEE_DATABASE_URL,
    echo=False,
    future=True,
)
drafts_engine = create_engine(
    DRAFTS_DATABASE_URL,
    echo=False,
    future=True,
    connect_args={"timeout": 5},
)
EmployeeSessionLocal = sessionmaker(bind=employee_engine, expire_on_commit=False, future=True)
DraftSessionLocal = sessionmaker(bind=drafts_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    EmployeeBase.metadata.create_all(employee_engine)
    DraftBase.metadata.create_all(drafts_engine)
    with drafts_engine.begin() as conn:
        # Several application windows share drafts.db; WAL lets readers poll while another writes.
        conn.execute(text("PRAGMA journal_mode=WAL"))


def _coerce_employee_session(session):
    """Return (employee_session, should_close) ensuring we talk to the employee database."""
    if session is None:
        return EmployeeSessionLocal(), True
    return session, False


def _parse_date(value: Any) -> Optional[datetime.date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value))


def employee_to_dict(employee: Employee) -> Dict[str, Any]:
    """Serialize an employee into the JSON-native snapshot used by edit forms."""
    payload: Dict[str, Any] = {}
    for column in Employee.__table__.columns:
        value = getattr(employee, column.name)
        if isinstance(value, (datetime.date, datetime.datetime)):
            value = value.isoformat()
        payload[column.name] = value
    return payload


def get_employee(employee_id: int, employee_session=None) -> Optional[Dict[str, Any]]:
    employee_session, close_session = _coerce_employee_session(employee_session)
    try:
        employee = employee_session.get(Employee, int(employee_id))
        return employee_to_dict(employee) if employee else None
    finally:
        if close_session:
            employee_session.close()


def list_employees(employee_session=None, only_active: bool = True) -> List[Dict[str, Any]]:
    employee_session, close_session = _coerce_employee_session(employee_session)
    try:
        stmt = select(Employee)
        if only_active:
            stmt = stmt.where(Employee.status == "active")
        stmt = stmt.order_by(Employee.last_name.asc(), Employee.first_name.asc())
        return [
            {
                "id": employee.id,
                "name": employee.full_name,
                "department": employee.department,
                "position": employee.position,
                "status": employee.status,
            }
            for employee in employee_session.scalars(stmt)
        ]
    finally:
        if close_session:
            employee_session.close()


def _apply_employee_values(employee: Employee, values: Dict[str, Any]) -> List[str]:
    columns = {column.name for column in Employee.__table__.columns}
    applied: List[str] = []
    for field, value in values.items():
        if field not in columns or field in READ_ONLY_EMPLOYEE_FIELDS:
            continue
        if field in EMPLOYEE_DATE_FIELDS:
            value = _parse_date(value)
        elif field == "status" and value not in EMPLOYEE_STATUS_CHOICES:
            raise ValueError(f"Unsupported employee status: {value!r}")
        setattr(employee, field, value)
        applied.append(field)
    return applied


def create_employee(session, values: Dict[str, Any]) -> Dict[str, Any]:
    employee = Employee(first_name="", last_name="")
    _apply_employee_values(employee, values)
    session.add(employee)
    session.commit()
    session.refresh(employee)
    return employee_to_dict(employee)


def update_employee(
    session,
    employee_id: int,
    patch: Dict[str, Any],
    *,
    edited_by: str = "system",
) -> Dict[str, Any]:
    """Apply a minimal patch and return the canonical employee snapshot."""
    employee = session.get(Employee, int(employee_id))
    if employee is None:
        raise LookupError(f"Employee {employee_id} not found")
    applied = _apply_employee_values(employee, patch)
    if applied:
        employee.updated_at = _utcnow()
    session.commit()
    session.refresh(employee)
    if applied:
        record_audit_log(
            session,
            user_id=edited_by,
            action="EMPLOYEE_UPDATED",
            target_id=employee.id,
            payload={field: patch[field] for field in applied},
        )
    return employee_to_dict(employee)


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Employee",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
