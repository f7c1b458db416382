"""Allow-listed, fail-closed repair patch validation and application."""
from __future__ import annotations

import re
from typing import Any, Dict

from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match

from testair_core.errors import PatchRejectedError, SchemaValidationError
from testair_core.models import PatchOperation, RepairPatch, TestPlan, coerce_integral
from testair_core.schema import validate_plan

MAX_OPERATIONS = 8
ALLOWED_OPS = ("replace", "add")
ALLOWED_FIELDS = (
    "target",
    "selector",
    "field",
    "value",
    "url",
    "textVisible",
    "urlIncludes",
    "elementVisible",
    "timeoutMs",
)
PATCH_PATH_PATTERN = re.compile(r"^/steps/(\d+)/(" + "|".join(ALLOWED_FIELDS) + r")$")

PATCH_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "reason": {"type": "string", "minLength": 1},
        "operations": {
            "type": "array",
            "maxItems": MAX_OPERATIONS,
            "items": {
                "type": "object",
                "properties": {
                    "op": {"enum": list(ALLOWED_OPS)},
                    "path": {"type": "string", "pattern": PATCH_PATH_PATTERN.pattern},
                    "value": {"anyOf": [{"type": "string"}, {"type": "integer", "minimum": 0}]},
                },
                "required": ["op", "path", "value"],
            },
        },
    },
    "required": ["reason", "operations"],
}

_PATCH_VALIDATOR = Draft7Validator(PATCH_SCHEMA)


def parse_repair_patch(raw: Any) -> RepairPatch:
    """Validate a candidate patch from a repair adapter.

    Raises:
        PatchRejectedError: If any part of the patch falls outside the allow-list.
    """
    error = best_match(_PATCH_VALIDATOR.iter_errors(raw))
    if error is not None:
        location = " -> ".join(str(part) for part in error.absolute_path)
        raise PatchRejectedError(f"{location}: {error.message}" if location else error.message)
    return RepairPatch(
        reason=raw["reason"],
        operations=[PatchOperation(op=item["op"], path=item["path"], value=coerce_integral(item["value"]))
                    for item in raw["operations"]],
    )


def apply_repair_patch(plan: TestPlan, patch: RepairPatch) -> TestPlan:
    """Return a new plan with the addressed leaf fields overwritten.

    The input plan is never modified. Step count and step kinds are preserved;
    the result is re-validated as a whole.

    Raises:
        PatchRejectedError: On an out-of-range index, a disallowed path or a
            patched plan that no longer validates.
    """
    if len(patch.operations) > MAX_OPERATIONS:
        raise PatchRejectedError(f"Patch has {len(patch.operations)} operations; at most {MAX_OPERATIONS} allowed")

    patched = plan.to_dict()
    steps = patched["steps"]
    for operation in patch.operations:
        if operation.op not in ALLOWED_OPS:
            raise PatchRejectedError(f"Unsupported patch op: {operation.op}")
        match = PATCH_PATH_PATTERN.match(operation.path)
        if match is None:
            raise PatchRejectedError(f"Unsupported patch path: {operation.path}")
        step_index = int(match.group(1))
        if step_index >= len(steps):
            raise PatchRejectedError(f"Patch step index out of range: {step_index}")
        steps[step_index][match.group(2)] = operation.value

    try:
        return validate_plan(patched)
    except SchemaValidationError as exc:
        raise PatchRejectedError(f"Patched plan failed validation: {exc}") from exc
