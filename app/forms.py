from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from typing import Dict, List, Optional, Sequence, Tuple

from sections import FALLBACK_SECTION


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    label: str
    section: str
    kind: str = "text"  # text | number | date | choice | multiline | list | group
    choices: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FormDefinition:
    entity_type: str
    title: str
    fields: Tuple[FieldDefinition, ...]
    section_titles: Dict[str, str]
    ignore: Tuple[str, ...] = ()
    fallback_section: str = FALLBACK_SECTION
    extra_labels: Dict[str, str] = dataclass_field(default_factory=dict)

    @property
    def labels(self) -> Dict[str, str]:
        labels = dict(self.extra_labels)
        labels.update({item.name: item.label for item in self.fields})
        return labels

    @property
    def field_sections(self) -> Dict[str, str]:
        return {item.name: item.section for item in self.fields}

    @property
    def sections(self) -> List[str]:
        ordered = [section for section in self.section_titles if section != self.fallback_section]
        ordered.append(self.fallback_section)
        return ordered

    def fields_in(self, section: str) -> List[FieldDefinition]:
        return [item for item in self.fields if item.section == section]

    def get_field(self, name: str) -> Optional[FieldDefinition]:
        return next((item for item in self.fields if item.name == name), None)


def _fields(section: str, rows: Sequence[Tuple]) -> List[FieldDefinition]:
    return [FieldDefinition(row[0], row[1], section, *row[2:]) for row in rows]


MARITAL_STATUSES = ("single", "married", "divorced", "widowed")
CONTRACT_TYPES = ("CDI", "CDD", "Stage")
PAYMENT_METHODS = ("bank_transfer", "check", "cash")
EMPLOYEE_STATUSES = ("active", "on_leave", "inactive")

EMPLOYEE_PROFILE_FORM = FormDefinition(
    entity_type="employee-profile",
    title="Employee profile",
    fields=tuple(
        _fields(
            "personal",
            [
                ("first_name", "First name"),
                ("last_name", "Last name"),
                ("cin", "National ID (CIN)"),
                ("marital_status", "Marital status", "choice", MARITAL_STATUSES),
                ("date_of_birth", "Date of birth", "date"),
                ("birth_place", "Place of birth"),
            ],
        )
        + _fields(
            "contact",
            [
                ("professional_email", "Professional email"),
                ("personal_email", "Personal email"),
                ("phone", "Phone"),
                ("address", "Address"),
                ("city", "City"),
                ("zip_code", "Postal code"),
            ],
        )
        + _fields(
            "contract",
            [
                ("position", "Position"),
                ("department", "Department"),
                ("manager", "Manager"),
                ("contract_type", "Contract type", "choice", CONTRACT_TYPES),
                ("start_date", "Start date", "date"),
                ("end_date", "End date", "date"),
                ("probation_period", "Probation period"),
                ("status", "Status", "choice", EMPLOYEE_STATUSES),
            ],
        )
        + _fields(
            "compensation",
            [
                ("base_salary", "Base salary", "number"),
                ("transport_allowance", "Transport allowance", "number"),
                ("meal_allowance", "Meal allowance", "number"),
                ("seniority_bonus", "Seniority bonus", "number"),
                ("payment_method", "Payment method", "choice", PAYMENT_METHODS),
                ("annual_leave", "Annual leave (days)", "number"),
            ],
        )
        + _fields(
            "social",
            [
                ("cnss", "CNSS number"),
                ("amo", "AMO number"),
                ("cimr", "CIMR number"),
            ],
        )
    ),
    section_titles={
        "personal": "Personal",
        "contact": "Contact",
        "contract": "Contract",
        "compensation": "Compensation",
        "social": "Social security",
        FALLBACK_SECTION: "Other",
    },
    ignore=("id", "created_at", "updated_at"),
)

PAYROLL_FREQUENCIES = ("MONTHLY", "BIWEEKLY", "WEEKLY")

# Template items and auto rules are kept whole; any edit inside them counts as one field change.
SALARY_TEMPLATE_FORM = FormDefinition(
    entity_type="salary-template",
    title="Salary package template",
    fields=tuple(
        _fields(
            "general",
            [
                ("name", "Template name"),
                ("code", "Code"),
                ("description", "Description", "multiline"),
                ("category", "Category"),
            ],
        )
        + _fields(
            "salary",
            [
                ("base_salary", "Base salary", "number"),
                ("payroll_frequency", "Payroll frequency", "choice", PAYROLL_FREQUENCIES),
                ("working_hours_per_week", "Working hours per week", "number"),
            ],
        )
        + _fields("items", [("items", "Template items", "list")])
        + _fields("rules", [("auto_rules", "Automatic rules", "group")])
    ),
    section_titles={
        "general": "General",
        "salary": "Salary",
        "items": "Items",
        "rules": "Rules",
        FALLBACK_SECTION: "Other",
    },
    ignore=("id", "company_id", "created_at", "updated_at", "created_by", "updated_by"),
)

FORMS = {form.entity_type: form for form in (EMPLOYEE_PROFILE_FORM, SALARY_TEMPLATE_FORM)}
