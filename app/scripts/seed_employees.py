from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import Employee, EmployeeSessionLocal, create_employee, init_database, update_employee


SAMPLE_EMPLOYEES: List[Dict] = [
    {
        "first_name": "Salma",
        "last_name": "Benali",
        "cin": "BK123456",
        "date_of_birth": "1991-04-12",
        "city": "Rabat",
        "position": "Payroll officer",
        "department": "Finance",
        "contract_type": "CDI",
        "start_date": "2021-09-01",
        "base_salary": 9500.0,
        "transport_allowance": 500.0,
        "cnss": "123456789",
    },
    {
        "first_name": "Youssef",
        "last_name": "El Idrissi",
        "cin": "AB778812",
        "marital_status": "married",
        "date_of_birth": "1986-11-03",
        "city": "Casablanca",
        "position": "HR manager",
        "department": "Human resources",
        "contract_type": "CDI",
        "start_date": "2018-02-15",
        "base_salary": 16500.0,
        "transport_allowance": 800.0,
        "meal_allowance": 600.0,
        "seniority_bonus": 1200.0,
        "cnss": "987654321",
        "cimr": "C-44120",
    },
    {
        "first_name": "Imane",
        "last_name": "Tazi",
        "cin": "JC301145",
        "date_of_birth": "1999-07-21",
        "city": "Marrakech",
        "position": "Accounting intern",
        "department": "Finance",
        "contract_type": "Stage",
        "start_date": "2024-03-01",
        "end_date": "2024-08-31",
        "base_salary": 3000.0,
        "payment_method": "check",
    },
    {
        "first_name": "Karim",
        "last_name": "Alaoui",
        "cin": "BE552090",
        "date_of_birth": "1993-01-30",
        "city": "Fes",
        "position": "Developer",
        "department": "IT",
        "contract_type": "CDD",
        "start_date": "2023-05-02",
        "end_date": "2025-05-01",
        "probation_period": "3 months",
        "base_salary": 12000.0,
        "status": "on_leave",
    },
]


def seed_sample_employees() -> None:
    init_database()
    created = 0
    refreshed = 0
    with EmployeeSessionLocal() as session:
        for entry in SAMPLE_EMPLOYEES:
            existing = session.scalars(select(Employee).where(Employee.cin == entry["cin"])).first()
            if existing is None:
                create_employee(session, entry)
                created += 1
            else:
                update_employee(session, existing.id, entry, edited_by="seed")
                refreshed += 1
    print(f"Seed complete. Created {created} employees, refreshed {refreshed} profiles.")


if __name__ == "__main__":
    seed_sample_employees()
