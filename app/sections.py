from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from change_tracker import ChangeSet, FieldChange

FALLBACK_SECTION = "other"

SectionChangeMap = Dict[str, ChangeSet]


def section_ids(
    field_to_section: Mapping[str, str],
    fallback: str = FALLBACK_SECTION,
    sections: Optional[Iterable[str]] = None,
) -> List[str]:
    """Known sections in display order; the fallback section always comes last."""
    ordered: List[str] = []
    for section in list(sections or ()) + list(field_to_section.values()):
        if section not in ordered and section != fallback:
            ordered.append(section)
    ordered.append(fallback)
    return ordered


def empty_sections(
    field_to_section: Mapping[str, str],
    fallback: str = FALLBACK_SECTION,
    sections: Optional[Iterable[str]] = None,
) -> SectionChangeMap:
    return {section: ChangeSet() for section in section_ids(field_to_section, fallback, sections)}


def route(
    change_set: ChangeSet,
    field_to_section: Mapping[str, str],
    *,
    fallback: str = FALLBACK_SECTION,
    sections: Optional[Iterable[str]] = None,
) -> SectionChangeMap:
    """Partition a change set by section; unmapped fields land in ``fallback``."""
    buckets: Dict[str, List[FieldChange]] = {
        section: [] for section in section_ids(field_to_section, fallback, sections)
    }
    for change in change_set.changes:
        section = field_to_section.get(change.field, fallback)
        buckets.setdefault(section, []).append(change)
    return {section: ChangeSet(tuple(changes)) for section, changes in buckets.items()}


def dirty_sections(section_changes: SectionChangeMap) -> List[str]:
    return [section for section, changes in section_changes.items() if changes.has_changes]
