"""
Input Field Validation
======================
Checks a workflow request context against the operator-declared input
fields before the workflow webhook is allowed to fire.

Field declarations come from the server configuration, either as a JSON
array or as a ``{"values": [...]}`` field collection:

    [{"fieldName": "query", "fieldType": "text", "required": true}]

Each declaration set is compiled once into a pydantic model. Optional
fields may be left out but, when present, must still have the declared
type (``null`` is rejected).
"""

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Annotated, Any, Union

from pydantic import (
    AllowInfNan,
    AwareDatetime,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    create_model,
)

FIELD_TYPES = ("text", "number", "boolean", "date", "json", "array")

ERROR_HEADER = "Input validation failed. The following fields have errors:"


def _text_or_datetime(value: Any) -> Any:
    # Stops lax datetime parsing from accepting unix timestamps
    if not isinstance(value, (str, datetime)):
        raise ValueError("Expected an ISO-8601 date-time string")
    return value


FIELD_ANNOTATIONS: dict[str, Any] = {
    "text": StrictStr,
    "number": Union[StrictInt, Annotated[StrictFloat, AllowInfNan(False)]],
    "boolean": StrictBool,
    "date": Annotated[AwareDatetime, BeforeValidator(_text_or_datetime)],
    "json": dict[str, Any],
    "array": list[Any],
}

EXPECTED_KIND = {
    "text": "string",
    "number": "number",
    "boolean": "boolean",
    "date": "string",
    "json": "object",
    "array": "array",
}


@dataclass(frozen=True)
class InputFieldConfig:
    """One declared input field of the workflow."""
    field_name: str
    field_type: str = "text"
    required: bool = False

    @classmethod
    def from_dict(cls, data: Mapping) -> "InputFieldConfig":
        name = data.get("fieldName") or data.get("field_name")
        if not name or not isinstance(name, str):
            raise ValueError(f"Input field is missing a fieldName: {dict(data)}")
        field_type = data.get("fieldType") or data.get("field_type") or "text"
        if field_type not in FIELD_TYPES:
            raise ValueError(
                f"Input field '{name}' has unsupported type '{field_type}' "
                f"(expected one of: {', '.join(FIELD_TYPES)})"
            )
        required = data.get("required")
        if required is None:
            required = False
        elif not isinstance(required, bool):
            raise ValueError(
                f"Input field '{name}' has a non-boolean 'required' value: {required!r}"
            )
        return cls(name, field_type, required)

    def to_dict(self) -> dict:
        return {
            "fieldName": self.field_name,
            "fieldType": self.field_type,
            "required": self.required,
        }


@dataclass
class ValidationResult:
    valid: bool
    data: Any = None
    errors: list[str] = field(default_factory=list)


def validate_input_fields(record: Any, fields) -> ValidationResult:
    """Validate ``record`` against ``fields``.

    Every problem is collected; nothing short-circuits. Error strings
    have the form ``"<fieldName>: <reason>"``. On success ``data`` holds
    the declared fields that were supplied, with their original values.
    """
    if not fields:
        return ValidationResult(valid=True, data=record)

    fields = tuple(fields)
    if not isinstance(record, Mapping):
        errors = [f"{f.field_name}: Required" for f in fields if f.required]
        if not errors:
            errors = [f"requestContext: Expected object, received {_kind_of(record)}"]
        return ValidationResult(valid=False, errors=errors)

    try:
        build_record_model(fields).model_validate(dict(record))
    except ValidationError as e:
        return ValidationResult(valid=False, errors=_field_errors(e, record, fields))

    data = {f.field_name: record[f.field_name] for f in fields if f.field_name in record}
    return ValidationResult(valid=True, data=data)


@lru_cache(maxsize=32)
def build_record_model(fields: tuple[InputFieldConfig, ...]) -> type[BaseModel]:
    """Compile field declarations into a pydantic model.

    Attributes get positional names and the declared field name as alias,
    so any field name is accepted (even ones that clash with BaseModel).
    """
    definitions: dict[str, Any] = {}
    for idx, f in enumerate(fields):
        annotation = FIELD_ANNOTATIONS[f.field_type]
        # Defaults are not validated, so an omitted optional field passes
        # while an explicit null is still checked against the annotation
        default = ... if f.required else None
        definitions[f"field_{idx}"] = (annotation, Field(default, alias=f.field_name))

    return create_model(
        "RequestContext",
        __config__=ConfigDict(extra="ignore"),
        **definitions,
    )


def format_validation_errors(errors: list[str]) -> str:
    """Render validation errors as a numbered list under a fixed header."""
    lines = [f"  {idx}. {err}" for idx, err in enumerate(errors, start=1)]
    return "\n".join([ERROR_HEADER, *lines])


def parse_input_fields(mode: str, fields_json: str | None = None,
                       fields: Any = None) -> tuple[InputFieldConfig, ...]:
    """Parse input field declarations from configuration.

    ``mode`` is ``"json"`` (``fields_json`` holds a JSON array string) or
    ``"fields"`` (``fields`` holds a ``{"values": [...]}`` collection or a
    plain list of field dicts). Anything else yields no fields.
    """
    raw: Any = []
    if mode == "json" and fields_json:
        try:
            raw = json.loads(fields_json)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in input fields: {e}") from e
        if not isinstance(raw, list):
            raw = []
    elif mode == "fields" and fields:
        raw = fields.get("values", []) if isinstance(fields, Mapping) else fields

    return tuple(InputFieldConfig.from_dict(item) for item in raw)


def _field_errors(error: ValidationError, record: Mapping,
                  fields: tuple[InputFieldConfig, ...]) -> list[str]:
    """One ``"<fieldName>: <reason>"`` entry per failing field, in declaration order."""
    types = {f.field_name: f.field_type for f in fields}
    reasons: dict[str, str] = {}
    for err in error.errors():
        name = str(err["loc"][0]) if err["loc"] else "requestContext"
        if name in reasons:
            # Union members and nested keys report several errors per field
            continue
        if err["type"] == "missing":
            reasons[name] = "Required"
            continue
        field_type = types.get(name)
        value = record.get(name)
        if field_type == "date" and isinstance(value, str):
            reasons[name] = "Invalid datetime"
        elif field_type in EXPECTED_KIND:
            reasons[name] = f"Expected {EXPECTED_KIND[field_type]}, received {_kind_of(value)}"
        else:
            reasons[name] = err["msg"]
    return [f"{name}: {reason}" for name, reason in reasons.items()]


def _kind_of(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "nan" if isinstance(value, float) and math.isnan(value) else "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__
