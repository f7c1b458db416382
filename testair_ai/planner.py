"""Plan generation through a planner adapter; output is always schema-validated."""
from __future__ import annotations

from typing import Any, Optional

from testair_core.models import TestPlan
from testair_core.schema import validate_plan

from .models import PlannerAdapter, PlanRequest
from .openai_adapters import OpenAIPlannerAdapter

DEFAULT_URL = "https://example.com"


class MockPlannerAdapter:
    """Deterministic stand-in used when no LLM provider is configured."""

    async def plan(self, request: PlanRequest) -> Any:
        url = request.url or DEFAULT_URL
        if "login" in request.prompt.lower():
            return {
                "version": "1",
                "name": "Mock login flow",
                "steps": [
                    {"type": "goto", "url": url},
                    {"type": "login", "username": "${SECRET:USERNAME}", "password": "${SECRET:PASSWORD}"},
                    {"type": "expect", "urlIncludes": "dashboard"},
                ],
            }
        return {
            "version": "1",
            "name": "Mock public flow",
            "steps": [
                {"type": "goto", "url": url},
                {"type": "expect", "textVisible": "Example Domain"},
            ],
        }


async def create_plan_from_prompt(request: PlanRequest, adapter: Optional[PlannerAdapter] = None) -> TestPlan:
    raw = await (adapter or MockPlannerAdapter()).plan(request)
    return validate_plan(raw)


def planner_adapter_for_provider(provider: str) -> PlannerAdapter:
    if provider == "openai":
        return OpenAIPlannerAdapter()
    return MockPlannerAdapter()
