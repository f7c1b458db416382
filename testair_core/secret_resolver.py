"""Late binding and redaction of ${SECRET:NAME} placeholders."""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import dotenv_values

from .errors import SecretResolutionError
from .models import TestPlan

SECRET_PATTERN = re.compile(r"\$\{SECRET:([A-Z0-9_]+)\}")
REDACTED_PLACEHOLDER = "${SECRET:***}"
SECRET_FIELDS = ("value", "username", "password")


def resolve_secret_placeholders(value: str, store: Mapping[str, Optional[str]]) -> str:
    """Replace every placeholder in ``value`` with its entry from ``store``.

    Raises:
        SecretResolutionError: If a referenced name is missing or empty.
    """

    def _lookup(match: re.Match) -> str:
        name = match.group(1)
        resolved = store.get(name)
        if not resolved:
            raise SecretResolutionError(name)
        return resolved

    return SECRET_PATTERN.sub(_lookup, value)


def redact_secret_placeholders(value: str) -> str:
    return SECRET_PATTERN.sub(lambda _match: REDACTED_PLACEHOLDER, value)


def redact_plan(plan: TestPlan) -> TestPlan:
    """Return a copy of ``plan`` whose secret-bearing fields are redacted."""
    redacted = plan.copy()
    for step in redacted.steps:
        for name in SECRET_FIELDS:
            current = getattr(step, name, None)
            if isinstance(current, str):
                setattr(step, name, redact_secret_placeholders(current))
    return redacted


def build_secret_store(env_file: Optional[Path] = None) -> Dict[str, str]:
    """Process environment overlaid with the values of an optional dotenv file."""
    store: Dict[str, str] = dict(os.environ)
    if env_file:
        for key, value in dotenv_values(env_file).items():
            if value is not None:
                store[key] = value
    return store
