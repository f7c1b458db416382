"""Tests for plan generation adapters."""
from __future__ import annotations

import asyncio

import pytest

from testair_ai.models import PlanRequest, parse_provider
from testair_ai.planner import MockPlannerAdapter, create_plan_from_prompt
from testair_core.errors import SchemaValidationError
from testair_core.models import LoginStep


def test_mock_login_plan():
    plan = asyncio.run(create_plan_from_prompt(PlanRequest(prompt="Check the Login flow", url="https://app.test")))

    assert plan.steps[0].url == "https://app.test"
    assert isinstance(plan.steps[1], LoginStep)
    assert plan.steps[1].password == "${SECRET:PASSWORD}"
    assert plan.steps[2].url_includes == "dashboard"


def test_mock_public_plan_defaults_url():
    plan = asyncio.run(create_plan_from_prompt(PlanRequest(prompt="homepage loads"), MockPlannerAdapter()))

    assert plan.steps[0].url == "https://example.com"
    assert plan.steps[1].text_visible == "Example Domain"


def test_invalid_adapter_output_is_rejected():

    class BrokenAdapter:
        async def plan(self, request):
            return {"version": "1", "steps": [{"type": "goto", "url": "not a url"}]}

    with pytest.raises(SchemaValidationError):
        asyncio.run(create_plan_from_prompt(PlanRequest(prompt="anything"), BrokenAdapter()))


def test_parse_provider():
    assert parse_provider(None) == "mock"
    assert parse_provider("openai") == "openai"
    with pytest.raises(ValueError):
        parse_provider("anthropic")
