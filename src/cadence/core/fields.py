from __future__ import annotations

import re
from datetime import date, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d", "%d.%m.%Y", "%m/%d/%y")
_TRUE_WORDS = {"true", "yes", "y", "1", "x", "on", "checked", "done"}
_FALSE_WORDS = {"false", "no", "n", "0", "off", "unchecked", ""}


class TextValue(BaseModel):
    kind: Literal["text", "textarea"]
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, value: Any) -> str:
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        return str(value).strip()


class NumberValue(BaseModel):
    kind: Literal["number"]
    value: float

    @field_validator("value", mode="before")
    @classmethod
    def parse_number(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("booleans are not numbers")
        if isinstance(value, str):
            cleaned = value.strip().replace(",", "")
            if not cleaned:
                raise ValueError("empty number")
            return cleaned
        return value


class DateValue(BaseModel):
    kind: Literal["date"]
    value: date

    @field_validator("value", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str):
            text = value.strip()
            for fmt in _DATE_FORMATS:
                try:
                    return datetime.strptime(text, fmt).date()
                except ValueError:
                    continue
            if "T" in text:
                return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return value


class SelectValue(BaseModel):
    kind: Literal["select"]
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, value: Any) -> str:
        return str(value).strip()


class CheckboxValue(BaseModel):
    kind: Literal["checkbox"]
    value: bool

    @field_validator("value", mode="before")
    @classmethod
    def parse_flag(cls, value: Any) -> Any:
        if isinstance(value, str):
            word = value.strip().lower()
            if word in _TRUE_WORDS:
                return True
            if word in _FALSE_WORDS:
                return False
        return value


FieldValue = Annotated[
    Union[TextValue, NumberValue, DateValue, SelectValue, CheckboxValue],
    Field(discriminator="kind"),
]
_FIELD_VALUE = TypeAdapter(FieldValue)


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def coerce_field_value(field: Any, raw: Any) -> Any:
    """Validate ``raw`` against the field's declared type and return a JSON-safe scalar.

    Raises ``ValueError`` with a label-based message when the value does not fit.
    """
    if is_missing(raw):
        return None

    try:
        parsed = _FIELD_VALUE.validate_python({"kind": field.field_type, "value": raw})
    except ValidationError as exc:
        raise ValueError(f'Field "{field.field_label}" must be a valid {field.field_type}') from exc

    if isinstance(parsed, SelectValue):
        options = [str(option) for option in (field.config or {}).get("options", [])]
        if options and parsed.value not in options:
            raise ValueError(f'Field "{field.field_label}" must be one of: {", ".join(options)}')

    value = parsed.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def coerce_values(fields: list[Any], values: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Coerce every supplied value whose key is declared in ``fields``.

    Returns the coerced map and per-field error messages. Undeclared keys are reported.
    """
    by_key = {item.field_key: item for item in fields}
    coerced: dict[str, Any] = {}
    errors: list[str] = []
    for key, raw in values.items():
        field = by_key.get(key)
        if field is None:
            errors.append(f'Unknown field "{key}"')
            continue
        try:
            value = coerce_field_value(field, raw)
        except ValueError as exc:
            errors.append(str(exc))
            continue
        if value is not None:
            coerced[key] = value
    return coerced, errors


def missing_required(fields: list[Any], values: dict[str, Any], *, category: str) -> list[str]:
    return [
        f'Field "{item.field_label}" is required'
        for item in fields
        if item.field_category == category and item.is_required and is_missing(values.get(item.field_key))
    ]


def generate_field_key(label: str, taken: set[str]) -> str:
    base = re.sub(r"[^a-z0-9]+", "_", label.strip().lower()).strip("_") or "field"
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}_{suffix}"
        suffix += 1
    return candidate
