from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from cadence.core.fields import is_missing
from cadence.types import FieldMapping, MappedJob, MappingConfidence, MappingReport

UNMAPPED = "unmapped"

_WORD_PATTERN = re.compile(r"[a-z0-9]+")


def normalize_name(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def similarity(first: str, second: str) -> float:
    """Share of the longer string covered by characters of the shorter one (0..1)."""
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0
    longer, shorter = (first, second) if len(first) > len(second) else (second, first)
    matches = sum(1 for char in shorter if char in longer)
    return matches / len(longer)


def word_overlap(first: str, second: str) -> float:
    left = set(_WORD_PATTERN.findall(first.lower()))
    right = set(_WORD_PATTERN.findall(second.lower()))
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def suggest_mapping(fields: Sequence[Any], columns: Sequence[str]) -> list[FieldMapping]:
    """Propose a one-to-one column -> creation field mapping.

    Columns are visited in order; each template field is used at most once. Columns
    without a close enough field are left out of the result.
    """
    candidates = sorted(
        (item for item in fields if item.field_category == "creation"),
        key=lambda item: (item.display_order, item.field_key),
    )
    used: set[str] = set()
    mappings: list[FieldMapping] = []

    for column in columns:
        available = [item for item in candidates if item.field_key not in used]
        if not available:
            break
        match = _best_match(column, available)
        if match is not None:
            mappings.append(match)
            used.add(match.template_field_key)
    return mappings


def _best_match(column: str, fields: Sequence[Any]) -> FieldMapping | None:
    column_lower = column.lower().strip()
    column_norm = normalize_name(column_lower)
    if not column_norm:
        return None

    best_field: Any = None
    best_confidence: MappingConfidence = "low"
    best_score = 0.0

    for item in fields:
        label_lower = item.field_label.lower().strip()
        key_lower = item.field_key.lower().strip()
        label_norm = normalize_name(label_lower)
        key_norm = normalize_name(key_lower)

        if column_lower in {label_lower, key_lower} or column_norm in {label_norm, key_norm}:
            return _mapping(column, item, "high")

        contains = any(
            needle and (needle in column_lower or column_lower in needle)
            for needle in (label_lower, key_lower)
        )
        if contains:
            score = similarity(column_lower, label_lower)
            if score > best_score:
                best_score = score
                best_field = item
                best_confidence = "high" if score > 0.8 else "medium"

        fuzzy = max(similarity(column_norm, label_norm), word_overlap(column_lower, label_lower))
        if fuzzy > 0.6 and fuzzy > best_score:
            best_score = fuzzy
            best_field = item
            best_confidence = "medium" if fuzzy > 0.8 else "low"

    if best_field is not None and best_score > 0.5:
        return _mapping(column, best_field, best_confidence)
    return None


def _mapping(column: str, item: Any, confidence: MappingConfidence) -> FieldMapping:
    return FieldMapping(
        document_column=column,
        template_field_key=item.field_key,
        template_field_label=item.field_label,
        field_category=item.field_category,
        confidence=confidence,
    )


def mapping_from_pairs(pairs: Mapping[str, str | None], fields: Sequence[Any]) -> list[FieldMapping]:
    """Build mapping entries from ``{column: field_key}``; ``None`` or ``"unmapped"`` skips a column."""
    by_key = {item.field_key: item for item in fields}
    mappings: list[FieldMapping] = []
    for column, key in pairs.items():
        if not key or key == UNMAPPED:
            continue
        item = by_key.get(key)
        if item is None:
            raise ValueError(f"unknown template field '{key}'")
        mappings.append(_mapping(column, item, "high"))
    return mappings


def validate_mapping(
    fields: Sequence[Any],
    columns: Sequence[str],
    mappings: Sequence[FieldMapping],
) -> MappingReport:
    creation = [item for item in fields if item.field_category == "creation"]
    active, ignored = _split_targets(mappings, creation)
    mapped_keys = {entry.template_field_key for entry in active}
    mapped_columns = {entry.document_column for entry in active}

    missing_required = [
        item.field_label for item in creation if item.is_required and item.field_key not in mapped_keys
    ]
    unmapped_optional = [
        item.field_label for item in creation if not item.is_required and item.field_key not in mapped_keys
    ]
    unmapped_columns = [column for column in columns if column not in mapped_columns]

    warnings: list[str] = _ignored_warnings(ignored)
    if unmapped_columns:
        warnings.append(
            f"{len(unmapped_columns)} column(s) from document are not mapped: {', '.join(unmapped_columns)}"
        )
    if unmapped_optional:
        warnings.append(f"Optional field(s) without a column: {', '.join(unmapped_optional)}")
    low_confidence = [entry for entry in active if entry.confidence == "low"]
    if low_confidence:
        warnings.append(f"{len(low_confidence)} mapping(s) have low confidence. Please review.")

    return MappingReport(
        is_valid=not missing_required,
        missing_required_fields=missing_required,
        unmapped_optional_fields=unmapped_optional,
        unmapped_columns=unmapped_columns,
        warnings=warnings,
    )


def apply_mapping(
    rows: Sequence[Mapping[str, Any]],
    mappings: Sequence[FieldMapping],
    fields: Sequence[Any],
) -> list[MappedJob]:
    creation = [item for item in fields if item.field_category == "creation"]
    active, ignored = _split_targets(mappings, creation)
    mapped_keys = {entry.template_field_key for entry in active}
    shared_warnings = _ignored_warnings(ignored)

    mapped_jobs: list[MappedJob] = []
    for index, row in enumerate(rows):
        values: dict[str, Any] = {}
        for entry in active:
            if entry.document_column in row:
                values[entry.template_field_key] = row[entry.document_column]

        errors: list[str] = []
        for item in creation:
            if not item.is_required:
                continue
            if item.field_key not in mapped_keys:
                errors.append(f'Required field "{item.field_label}" has no mapping')
            elif is_missing(values.get(item.field_key)):
                errors.append(f'Required field "{item.field_label}" is missing')

        mapped_jobs.append(
            MappedJob(
                index=index,
                creation_values=values,
                is_valid=not errors,
                errors=errors,
                warnings=list(shared_warnings),
            )
        )
    return mapped_jobs


def _split_targets(
    mappings: Sequence[FieldMapping], creation: Sequence[Any]
) -> tuple[list[FieldMapping], list[FieldMapping]]:
    """Separate entries that fill a creation field from those that cannot.

    Entries set to ``UNMAPPED`` are dropped from both lists.
    """
    creation_keys = {item.field_key for item in creation}
    active: list[FieldMapping] = []
    ignored: list[FieldMapping] = []
    for entry in mappings:
        if entry.template_field_key == UNMAPPED:
            continue
        if entry.template_field_key in creation_keys:
            active.append(entry)
        else:
            ignored.append(entry)
    return active, ignored


def _ignored_warnings(ignored: Sequence[FieldMapping]) -> list[str]:
    return [
        f'Column "{entry.document_column}" targets unknown creation field "{entry.template_field_key}"; ignored'
        for entry in ignored
    ]
