"""JSON Schema validation for test plans."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import urlparse

from jsonschema import Draft7Validator, FormatChecker, ValidationError
from jsonschema.exceptions import best_match

from .errors import SchemaValidationError
from .models import STEP_TYPES, TestPlan

FORMAT_CHECKER = FormatChecker()


@FORMAT_CHECKER.checks("uri")
def _is_absolute_url(value: object) -> bool:
    if not isinstance(value, str):
        return True
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


_TEXT = {"type": "string", "minLength": 1}
_URL = {"type": "string", "minLength": 1, "format": "uri"}


def _timeout(maximum: int) -> Dict[str, Any]:
    return {"type": "integer", "minimum": 1, "maximum": maximum}


def _step_schema(type_name: str, properties: Dict[str, Any], required: Iterable[str] = ()) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {"type": {"const": type_name}, **properties},
        "required": ["type", *required],
        "additionalProperties": False,
    }


PLAN_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "version": {"const": "1"},
        "name": _TEXT,
        "baseUrl": _URL,
        "steps": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {"type": {"enum": sorted(STEP_TYPES)}},
                "required": ["type"],
            },
        },
    },
    "required": ["version", "steps"],
}

STEP_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "goto": _step_schema("goto", {"url": _URL}, ["url"]),
    "click": _step_schema("click", {"target": _TEXT, "selector": _TEXT}, ["target"]),
    "fill": _step_schema("fill", {"field": _TEXT, "value": _TEXT, "selector": _TEXT}, ["field", "value"]),
    "expect": _step_schema(
        "expect",
        {
            "textVisible": _TEXT,
            "urlIncludes": _TEXT,
            "elementVisible": _TEXT,
            "timeoutMs": _timeout(60_000),
        },
    ),
    "login": _step_schema("login", {"username": _TEXT, "password": _TEXT}, ["username", "password"]),
    "waitFor": _step_schema(
        "waitFor",
        {
            "textVisible": _TEXT,
            "selector": _TEXT,
            "timeoutMs": _timeout(120_000),
        },
    ),
    "extractTextList": _step_schema(
        "extractTextList",
        {"selector": _TEXT, "outputKey": _TEXT, "limit": {"type": "integer", "minimum": 1}},
        ["selector", "outputKey"],
    ),
}

# Mutually exclusive condition fields; exactly one must be set.
EXCLUSIVE_FIELDS: Dict[str, Tuple[str, ...]] = {
    "expect": ("textVisible", "urlIncludes", "elementVisible"),
    "waitFor": ("textVisible", "selector", "timeoutMs"),
}

_PLAN_VALIDATOR = Draft7Validator(PLAN_SCHEMA, format_checker=FORMAT_CHECKER)
_STEP_VALIDATORS = {
    name: Draft7Validator(schema, format_checker=FORMAT_CHECKER) for name, schema in STEP_SCHEMAS.items()
}


def _first_error(validator: Draft7Validator, payload: Any) -> Optional[ValidationError]:
    return best_match(validator.iter_errors(payload))


def _check_exclusive(step: Dict[str, Any], index: int) -> None:
    step_type = step["type"]
    keys = EXCLUSIVE_FIELDS.get(step_type)
    if not keys:
        return
    present = [key for key in keys if step.get(key) is not None]
    if len(present) != 1:
        options = ", ".join(keys[:-1]) + f", or {keys[-1]}"
        raise SchemaValidationError(
            f"{step_type} step must set exactly one of {options}",
            ["steps", index],
        )


def validate_plan(raw: Any) -> TestPlan:
    """Validate raw plan data and return a typed plan.

    Steps are checked in order so the reported error is always the first
    violated constraint of the earliest offending step.

    Raises:
        SchemaValidationError: If the data does not match the plan grammar.
    """
    error = _first_error(_PLAN_VALIDATOR, raw)
    if error is not None:
        raise SchemaValidationError(error.message, error.absolute_path)

    for index, step in enumerate(raw["steps"]):
        step_error = _first_error(_STEP_VALIDATORS[step["type"]], step)
        if step_error is not None:
            raise SchemaValidationError(step_error.message, ["steps", index, *step_error.absolute_path])
        _check_exclusive(step, index)

    return TestPlan.from_dict(raw)


def load_plan(source: Path) -> TestPlan:
    """Read a plan JSON file and validate it."""
    path = Path(source)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SchemaValidationError(f"Plan file is not valid JSON: {exc}") from exc
    return validate_plan(raw)
