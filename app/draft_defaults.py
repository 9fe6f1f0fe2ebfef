from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict

from database import DATA_DIR


logger = logging.getLogger(__name__)

SETTINGS_FILE = DATA_DIR / "draft_settings.json"

DEFAULT_DRAFT_SETTINGS: Dict[str, Dict[str, Any]] = {
    "autosave": {
        "debounce_ms": 800,
        "restore_settle_ms": 300,
        "per_section_drafts": False,
    },
    "cross_tab": {
        "poll_interval_ms": 500,
        "event_retention_hours": 24,
    },
    "storage": {
        "max_drafts": 200,
        "prune_fraction": 0.25,
    },
}

# Lower bounds applied after merging user overrides.
_MINIMUMS: Dict[str, Dict[str, float]] = {
    "autosave": {"debounce_ms": 50, "restore_settle_ms": 0},
    "cross_tab": {"poll_interval_ms": 50, "event_retention_hours": 1},
    "storage": {"max_drafts": 1, "prune_fraction": 0.01},
}


def _deep_update(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_update(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _normalize_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    for section, limits in _MINIMUMS.items():
        group = settings.get(section)
        if not isinstance(group, dict):
            settings[section] = copy.deepcopy(DEFAULT_DRAFT_SETTINGS[section])
            continue
        for key, minimum in limits.items():
            default = DEFAULT_DRAFT_SETTINGS[section][key]
            try:
                value = type(default)(group.get(key, default))
            except (TypeError, ValueError):
                value = default
            group[key] = max(type(default)(minimum), value)
    prune_fraction = settings["storage"]["prune_fraction"]
    settings["storage"]["prune_fraction"] = min(1.0, prune_fraction)
    settings["autosave"]["per_section_drafts"] = bool(settings["autosave"].get("per_section_drafts", False))
    return settings


def build_default_settings() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the settings safely."""
    return copy.deepcopy(DEFAULT_DRAFT_SETTINGS)


def load_settings(path: Path | None = None) -> Dict[str, Any]:
    target = path or SETTINGS_FILE
    overrides: Dict[str, Any] = {}
    if target.exists():
        try:
            data = json.loads(target.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("settings root must be an object")
            overrides = data
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable draft settings %s: %s", target, exc)
    return _normalize_settings(_deep_update(DEFAULT_DRAFT_SETTINGS, overrides))


def save_settings(settings: Dict[str, Any], path: Path | None = None) -> Path:
    target = path or SETTINGS_FILE
    normalized = _normalize_settings(_deep_update(DEFAULT_DRAFT_SETTINGS, settings))
    target.write_text(json.dumps(normalized, indent=2, sort_keys=True), encoding="utf-8")
    return target
