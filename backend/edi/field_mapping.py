"""
Field Mapping Engine

A document map is an ordered list of rules:

    {"source_field": "PONumber", "target_field": "po_number",
     "transform": "trim", "default_value": None}

``apply_field_mappings`` renames/transforms partner fields into canonical
ones (inbound); ``reverse_field_mappings`` walks the same rules with the
roles swapped (outbound). Both are pure.

Mapping is additive: fields no rule mentions pass through unchanged, and
a renamed source field is replaced by its target unless a rule wrote that
same field in the row. A value that cannot be transformed becomes None;
one bad field never aborts the batch.

Unknown transform names are rejected when a map is saved
(``validate_rules``), never while applying it.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any

import structlog

from core.errors import ConfigurationError, TransformError

logger = structlog.get_logger()

TRANSFORMS = frozenset({"uppercase", "lowercase", "trim", "number", "date", "boolean"})

_TRUE_VALUES = {"true", "yes", "1", "y"}
_FALSE_VALUES = {"false", "no", "0", "n"}

_DATE_FORMATS = ("%Y-%m-%d", "%Y%m%d", "%m/%d/%Y", "%m/%d/%y", "%d-%b-%Y")


@dataclass
class FieldMappingRule:
    source_field: str
    target_field: str
    transform: str | None = None
    default_value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldMappingRule":
        """Accepts snake_case or the camelCase keys older map exports use."""
        return cls(
            source_field=str(data.get("source_field") or data.get("sourceField") or "").strip(),
            target_field=str(data.get("target_field") or data.get("targetField") or "").strip(),
            transform=(data.get("transform") or None),
            default_value=data.get("default_value", data.get("defaultValue")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── Rule validation / (de)serialization ───────────────────────────────────


def validate_rules(raw_rules: Iterable[Mapping[str, Any] | FieldMappingRule]) -> list[FieldMappingRule]:
    """Normalise and validate a rule list; raises ConfigurationError on the first bad rule."""
    rules: list[FieldMappingRule] = []
    for position, raw in enumerate(raw_rules, start=1):
        rule = raw if isinstance(raw, FieldMappingRule) else FieldMappingRule.from_dict(raw)
        if not rule.source_field or not rule.target_field:
            raise ConfigurationError(f"Mapping rule {position}: source_field and target_field are required")
        if rule.transform is not None:
            rule.transform = str(rule.transform).strip().lower()
            if rule.transform not in TRANSFORMS:
                raise ConfigurationError(
                    f"Mapping rule {position}: unknown transform '{rule.transform}'",
                    details={"allowed": sorted(TRANSFORMS)},
                )
        rules.append(rule)
    return rules


def load_rules(serialized: str | None) -> list[FieldMappingRule]:
    if not serialized:
        return []
    try:
        payload = json.loads(serialized)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Stored mapping rules are not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise ConfigurationError("Stored mapping rules must be a JSON array")
    return validate_rules(payload)


def dump_rules(rules: Iterable[FieldMappingRule]) -> str:
    return json.dumps([rule.to_dict() for rule in rules])


# ── Transforms ────────────────────────────────────────────────────────────


def parse_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def coerce_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else value
    text = str(value).strip().replace(",", "")
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    if number.is_integer() and "." not in text and "e" not in text.lower():
        return int(number)
    return number


def coerce_date(value: Any) -> Any:
    """ISO date when the value parses, otherwise the value unchanged."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return value


def apply_transform(value: Any, transform: str | None) -> Any:
    if transform is None:
        return value
    if transform == "uppercase":
        return value.upper() if isinstance(value, str) else value
    if transform == "lowercase":
        return value.lower() if isinstance(value, str) else value
    if transform == "trim":
        return value.strip() if isinstance(value, str) else value
    if transform == "number":
        return coerce_number(value)
    if transform == "date":
        return coerce_date(value)
    if transform == "boolean":
        return parse_bool(value)
    raise TransformError(f"Unknown transform '{transform}'")


# ── Apply / reverse ───────────────────────────────────────────────────────


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _map_row(row: Mapping[str, Any], pairs: list[tuple[str, str, FieldMappingRule]]) -> dict[str, Any]:
    out = dict(row)
    renamed: set[str] = set()
    written: set[str] = set()

    for source, target, rule in pairs:
        value = row.get(source)
        if _is_missing(value):
            if rule.default_value is None:
                continue
            value = rule.default_value
        try:
            out[target] = apply_transform(value, rule.transform)
        except (TransformError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(
                "field_mapping.value_dropped",
                source_field=source,
                target_field=target,
                transform=rule.transform,
                error=str(exc),
            )
            out[target] = None
        written.add(target)
        if source != target:
            renamed.add(source)

    for source in renamed - written:
        out.pop(source, None)
    return out


def _map_rows(rows: Iterable[Any], pairs: list[tuple[str, str, FieldMappingRule]]) -> list[dict[str, Any]]:
    mapped: list[dict[str, Any]] = []
    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            logger.warning("field_mapping.row_skipped", row_index=index, row_type=type(row).__name__)
            mapped.append(row)
            continue
        mapped.append(_map_row(row, pairs))
    return mapped


def apply_field_mappings(rows: Iterable[Any], rules: Iterable[FieldMappingRule]) -> list[dict[str, Any]]:
    """Partner shape → canonical shape."""
    return _map_rows(rows, [(r.source_field, r.target_field, r) for r in rules])


def reverse_field_mappings(rows: Iterable[Any], rules: Iterable[FieldMappingRule]) -> list[dict[str, Any]]:
    """Canonical shape → partner shape (same rules, roles swapped)."""
    return _map_rows(rows, [(r.target_field, r.source_field, r) for r in rules])
