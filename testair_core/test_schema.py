"""Tests for plan validation."""
from __future__ import annotations

import json

import pytest

from testair_core.errors import SchemaValidationError
from testair_core.models import ClickStep, ExpectStep, GotoStep, LoginStep
from testair_core.schema import load_plan, validate_plan


def _plan(*steps):
    return {"version": "1", "steps": list(steps)}


def test_valid_plan_becomes_typed_steps():
    plan = validate_plan({
        "version": "1",
        "name": "Smoke",
        "baseUrl": "https://example.com",
        "steps": [
            {"type": "goto", "url": "https://example.com"},
            {"type": "click", "target": "More information"},
            {"type": "login", "username": "${SECRET:USERNAME}", "password": "${SECRET:PASSWORD}"},
            {"type": "expect", "textVisible": "Example Domain", "timeoutMs": 5000},
        ],
    })

    assert plan.name == "Smoke"
    assert plan.base_url == "https://example.com"
    assert [type(step) for step in plan.steps] == [GotoStep, ClickStep, LoginStep, ExpectStep]
    assert plan.steps[3].text_visible == "Example Domain"
    assert plan.steps[3].timeout_ms == 5000


def test_empty_steps_rejected():
    with pytest.raises(SchemaValidationError) as excinfo:
        validate_plan(_plan())
    assert excinfo.value.path == ["steps"]


def test_unknown_version_rejected():
    with pytest.raises(SchemaValidationError):
        validate_plan({"version": "2", "steps": [{"type": "goto", "url": "https://example.com"}]})


def test_unknown_step_type_rejected():
    with pytest.raises(SchemaValidationError) as excinfo:
        validate_plan(_plan({"type": "hover", "target": "Menu"}))
    assert excinfo.value.path[:2] == ["steps", "0"]


def test_empty_click_target_points_at_field():
    with pytest.raises(SchemaValidationError) as excinfo:
        validate_plan(_plan(
            {"type": "goto", "url": "https://example.com"},
            {"type": "click", "target": ""},
        ))
    assert excinfo.value.path == ["steps", "1", "target"]
    assert str(excinfo.value).startswith("steps -> 1 -> target: ")


def test_goto_requires_absolute_url():
    with pytest.raises(SchemaValidationError) as excinfo:
        validate_plan(_plan({"type": "goto", "url": "/relative/path"}))
    assert excinfo.value.path == ["steps", "0", "url"]


def test_unknown_step_field_rejected():
    with pytest.raises(SchemaValidationError):
        validate_plan(_plan({"type": "click", "target": "Go", "force": True}))


@pytest.mark.parametrize("step", [
    {"type": "expect"},
    {"type": "expect", "textVisible": "a", "urlIncludes": "b"},
    {"type": "waitFor"},
    {"type": "waitFor", "selector": "#a", "timeoutMs": 100},
])
def test_exactly_one_condition_required(step):
    with pytest.raises(SchemaValidationError) as excinfo:
        validate_plan(_plan(step))
    assert excinfo.value.path == ["steps", "0"]
    assert "exactly one of" in str(excinfo.value)


def test_timeout_bounds():
    validate_plan(_plan({"type": "waitFor", "timeoutMs": 120_000}))
    with pytest.raises(SchemaValidationError):
        validate_plan(_plan({"type": "expect", "urlIncludes": "x", "timeoutMs": 60_001}))
    with pytest.raises(SchemaValidationError):
        validate_plan(_plan({"type": "waitFor", "timeoutMs": 0}))


def test_extract_limit_must_be_positive():
    with pytest.raises(SchemaValidationError):
        validate_plan(_plan({"type": "extractTextList", "selector": "li", "outputKey": "items", "limit": 0}))


def test_first_offending_step_is_reported():
    with pytest.raises(SchemaValidationError) as excinfo:
        validate_plan(_plan(
            {"type": "goto", "url": "https://example.com"},
            {"type": "fill", "field": "q"},
            {"type": "click"},
        ))
    assert excinfo.value.path[:2] == ["steps", "1"], "应报告最早出错的步骤"


def test_load_plan_reads_file(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(json.dumps(_plan({"type": "goto", "url": "https://example.com"})), encoding="utf-8")
    assert load_plan(path).steps[0].url == "https://example.com"


def test_load_plan_rejects_bad_json(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(SchemaValidationError):
        load_plan(path)


def test_integral_float_numbers_become_ints():
    plan = validate_plan(_plan(
        {"type": "waitFor", "timeoutMs": 250.0},
        {"type": "extractTextList", "selector": "li", "outputKey": "items", "limit": 3.0},
    ))
    assert plan.steps[0].timeout_ms == 250 and type(plan.steps[0].timeout_ms) is int
    assert type(plan.steps[1].limit) is int


def test_fractional_timeout_rejected():
    with pytest.raises(SchemaValidationError):
        validate_plan(_plan({"type": "waitFor", "timeoutMs": 250.5}))
