"""Tests for secret placeholder resolution and redaction."""
from __future__ import annotations

import pytest

from testair_core.errors import SecretResolutionError
from testair_core.schema import validate_plan
from testair_core.secret_resolver import (REDACTED_PLACEHOLDER, build_secret_store, redact_plan,
                                          redact_secret_placeholders, resolve_secret_placeholders)


def test_resolves_every_placeholder():
    store = {"USERNAME": "alice", "PASSWORD": "s3cret"}
    assert resolve_secret_placeholders("${SECRET:USERNAME}:${SECRET:PASSWORD}", store) == "alice:s3cret"


def test_plain_values_pass_through():
    assert resolve_secret_placeholders("hello", {}) == "hello"


@pytest.mark.parametrize("store", [{}, {"PASSWORD": ""}])
def test_missing_or_empty_secret_raises(store):
    with pytest.raises(SecretResolutionError) as excinfo:
        resolve_secret_placeholders("${SECRET:PASSWORD}", store)
    assert str(excinfo.value) == "Missing secret value for PASSWORD"


def test_lowercase_names_are_not_placeholders():
    assert resolve_secret_placeholders("${SECRET:password}", {}) == "${SECRET:password}"


def test_redaction():
    assert redact_secret_placeholders("u=${SECRET:USERNAME}") == f"u={REDACTED_PLACEHOLDER}"


def test_redact_plan_leaves_original_untouched():
    plan = validate_plan({
        "version": "1",
        "steps": [
            {"type": "login", "username": "${SECRET:USERNAME}", "password": "${SECRET:PASSWORD}"},
            {"type": "fill", "field": "q", "value": "${SECRET:QUERY}"},
        ],
    })
    redacted = redact_plan(plan)

    assert redacted.steps[0].username == REDACTED_PLACEHOLDER
    assert redacted.steps[0].password == REDACTED_PLACEHOLDER
    assert redacted.steps[1].value == REDACTED_PLACEHOLDER
    assert plan.steps[0].password == "${SECRET:PASSWORD}"


def test_env_file_overrides_process_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("TESTAIR_SAMPLE", "from-env")
    env_file = tmp_path / ".env"
    env_file.write_text("TESTAIR_SAMPLE=from-file\nPASSWORD=pw\n", encoding="utf-8")

    store = build_secret_store(env_file)
    assert store["TESTAIR_SAMPLE"] == "from-file"
    assert store["PASSWORD"] == "pw"
    assert build_secret_store()["TESTAIR_SAMPLE"] == "from-env"
