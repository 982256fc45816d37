"""
Stage action configs and completion checks.

Each action ``type`` has its own config variant carrying only the fields
that type needs. ``parse_action_config`` turns the stored JSON config into
that variant (rejecting unknown keys at authoring time), and
``check_completion`` validates a caller-reported completion payload
against it.

Completion payloads arrive from the floor UI as::

    {"id": "weigh", "completed": true, "data": {"value": 12.4}}

``completed`` defaults to true when omitted.

Usage:
    from floortrack.services.action_rules import parse_action_config, check_completion

    cfg = parse_action_config("measurement", {"unit": "kg", "min_value": 10})
    problem = check_completion(cfg, {"value": 9.5})   # -> "Measurement too low ..."
"""

import math
from dataclasses import asdict, dataclass, field, fields

from floortrack.core.exceptions import ValidationError


# ── Config variants ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ScanConfig:
    expected_value: str | None = None
    expected_prefix: str | None = None

    def check(self, data: dict) -> str | None:
        scanned = data.get("scanned_value")
        if self.expected_value is None and self.expected_prefix is None:
            return None
        if scanned is None:
            return "Scan value missing"
        scanned = str(scanned)
        if self.expected_value is not None and scanned != self.expected_value:
            return f"Invalid scan value. Expected: {self.expected_value}"
        if self.expected_prefix is not None and not scanned.startswith(self.expected_prefix):
            return f"Invalid scan value. Expected prefix: {self.expected_prefix}"
        return None


@dataclass(frozen=True)
class MeasurementConfig:
    unit: str | None = None
    min_value: float | None = None
    max_value: float | None = None

    def __post_init__(self):
        for name in ("min_value", "max_value"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
                raise ValidationError(f"Measurement {name} must be a number")
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise ValidationError("Measurement min_value must not exceed max_value")

    def check(self, data: dict) -> str | None:
        if self.min_value is None and self.max_value is None:
            return None
        raw = data.get("value")
        if isinstance(raw, bool):
            return "Measurement value must be numeric"
        try:
            value = float(raw)
        except (TypeError, ValueError):
            return "Measurement value must be numeric"
        # nan compares False against both bounds
        if not math.isfinite(value):
            return "Measurement value must be numeric"
        unit = f" {self.unit}" if self.unit else ""
        if self.min_value is not None and value < self.min_value:
            return f"Measurement too low. Minimum: {self.min_value}{unit}"
        if self.max_value is not None and value > self.max_value:
            return f"Measurement too high. Maximum: {self.max_value}{unit}"
        return None


@dataclass(frozen=True)
class InspectionConfig:
    checklist: tuple = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.checklist, (list, tuple)):
            raise ValidationError("Inspection checklist must be a list")
        object.__setattr__(self, "checklist", tuple(str(c) for c in self.checklist))

    def check(self, data: dict) -> str | None:
        checked = data.get("checked") or []
        if not isinstance(checked, list):
            return "Inspection checked must be a list of checklist entries"
        checked = {str(c) for c in checked if isinstance(c, (str, int, float))}
        unchecked = [c for c in self.checklist if c not in checked]
        if unchecked:
            return f"Inspection incomplete: {', '.join(unchecked)}"
        return None


@dataclass(frozen=True)
class ApprovalConfig:
    def check(self, data: dict) -> str | None:
        if not data.get("approved"):
            return "Approval required to advance"
        return None


@dataclass(frozen=True)
class PhotoConfig:
    def check(self, data: dict) -> str | None:
        return None


@dataclass(frozen=True)
class NoteConfig:
    def check(self, data: dict) -> str | None:
        return None


ACTION_CONFIGS = {
    "scan": ScanConfig,
    "measurement": MeasurementConfig,
    "inspection": InspectionConfig,
    "approval": ApprovalConfig,
    "photo": PhotoConfig,
    "note": NoteConfig,
}


# ── Parsing ──────────────────────────────────────────────────────────────────

def parse_action_config(action_type: str, raw: dict | None):
    """Build the typed config for *action_type* from its JSON form."""
    config_cls = ACTION_CONFIGS.get(action_type)
    if config_cls is None:
        raise ValidationError(
            f"Unknown action type: {action_type!r}",
            details={"allowed_types": sorted(ACTION_CONFIGS)},
        )
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ValidationError(f"Config for {action_type} action must be an object")
    allowed = {f.name for f in fields(config_cls)}
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ValidationError(
            f"Unknown config keys for {action_type} action: {', '.join(unknown)}",
            details={"unknown_keys": unknown, "allowed_keys": sorted(allowed)},
        )
    return config_cls(**raw)


def config_to_json(config) -> dict:
    """Serialise a config variant for storage, dropping unset fields."""
    data = asdict(config)
    if "checklist" in data:
        data["checklist"] = list(data["checklist"])
    return {k: v for k, v in data.items() if v is not None}


# ── Completion checks ────────────────────────────────────────────────────────

def normalize_completed_actions(completed_actions) -> dict:
    """Index the caller's completion list by action id.

    Entries flagged ``completed: false`` are dropped.
    """
    if completed_actions is None:
        return {}
    if not isinstance(completed_actions, (list, tuple)):
        raise ValidationError("completed_actions must be a list")
    indexed = {}
    for entry in completed_actions:
        if isinstance(entry, str):
            entry = {"id": entry}
        if not isinstance(entry, dict) or not entry.get("id"):
            raise ValidationError("Each completed action needs an id")
        if entry.get("completed", True) is False:
            continue
        if entry.get("data") is not None and not isinstance(entry["data"], dict):
            raise ValidationError(
                f"Completed action {entry['id']}: data must be an object",
                details={"action_id": str(entry["id"])},
            )
        indexed[str(entry["id"])] = entry
    return indexed


def check_completion(config, data: dict | None) -> str | None:
    """Return a problem description, or None when the payload satisfies *config*."""
    if data is not None and not isinstance(data, dict):
        return "Completion data must be an object"
    return config.check(data or {})
