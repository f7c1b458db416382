"""Request types and adapter interfaces for the planner and repair collaborators."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from testair_core.models import RunResult, TestPlan

PROVIDERS = ("mock", "openai")


@dataclass
class PlanRequest:
    prompt: str
    url: Optional[str] = None


@dataclass
class RepairRequest:
    plan: TestPlan
    run_result: RunResult
    dom_snippet: Optional[str] = None
    last_screenshot_path: Optional[str] = None


class PlannerAdapter(Protocol):
    async def plan(self, request: PlanRequest) -> Any:
        """Return an unvalidated candidate plan."""


class RepairAdapter(Protocol):
    async def repair(self, request: RepairRequest) -> Any:
        """Return an unvalidated candidate repair patch."""


def parse_provider(value: Optional[str]) -> str:
    if not value:
        return "mock"
    if value not in PROVIDERS:
        raise ValueError(f"Unsupported provider: {value}. Expected mock|openai")
    return value
