from __future__ import annotations

import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from drafts import DraftKey, DraftStore  # noqa: E402
from edit_session import EditSession  # noqa: E402
from forms import EMPLOYEE_PROFILE_FORM, FORMS, SALARY_TEMPLATE_FORM  # noqa: E402
from sections import FALLBACK_SECTION  # noqa: E402


@pytest.fixture()
def template():
    return {
        "id": 3,
        "name": "Cadre standard",
        "code": "CAD-01",
        "description": "",
        "category": "management",
        "base_salary": 12000.0,
        "payroll_frequency": "MONTHLY",
        "working_hours_per_week": 44,
        "items": [
            {"name": "Transport", "nature": "ALLOWANCE", "value": 500.0, "is_taxable": False},
            {"name": "Panier", "nature": "ALLOWANCE", "value": 300.0, "is_taxable": False},
        ],
        "auto_rules": {"seniority_bonus_enabled": True, "rule_version": "MA_2025"},
        "updated_at": "2024-03-01T10:00:00+00:00",
    }


@pytest.fixture()
def template_session(drafts_factory, clock, template):
    store = DraftStore(drafts_factory, tab_id="tab_a", clock=clock)
    session = EditSession.from_form(store, SALARY_TEMPLATE_FORM, clock=clock)
    session.load(3, template)
    return session


def test_forms_are_registered_by_entity_type():
    assert FORMS["employee-profile"] is EMPLOYEE_PROFILE_FORM
    assert FORMS["salary-template"] is SALARY_TEMPLATE_FORM


def test_sections_end_with_fallback():
    assert SALARY_TEMPLATE_FORM.sections == ["general", "salary", "items", "rules", FALLBACK_SECTION]
    assert EMPLOYEE_PROFILE_FORM.sections[-1] == FALLBACK_SECTION
    assert SALARY_TEMPLATE_FORM.get_field("items").kind == "list"
    assert SALARY_TEMPLATE_FORM.get_field("missing") is None


def test_item_edit_marks_only_items_section(template_session, template):
    items = [dict(item) for item in template["items"]]
    items[1]["value"] = 350.0

    template_session.set_field("items", items)

    sections = template_session.section_changes
    assert sections["items"].modified_fields == ["items"]
    assert not sections["general"].has_changes
    assert not sections["rules"].has_changes
    assert template_session.generate_patch() == {"items": items}


def test_nested_rule_change_is_one_field_change(template_session, template):
    rules = dict(template["auto_rules"], seniority_bonus_enabled=False)

    template_session.update({"auto_rules": rules, "updated_at": "2024-03-05T00:00:00+00:00"})

    change_set = template_session.change_set
    assert change_set.modified_fields == ["auto_rules"]
    assert change_set.get("auto_rules").label == "Automatic rules"
    assert template_session.section_changes["rules"].has_changes


def test_template_drafts_use_their_own_key(template_session, clock):
    template_session.set_field("name", "Cadre senior")
    template_session.flush()

    draft = template_session.store.load(DraftKey("salary-template", "3"))
    assert draft.data["name"] == "Cadre senior"
    assert template_session.store.load(DraftKey("employee-profile", "3")) is None
