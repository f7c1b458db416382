"""OpenAI-backed planner and repair adapters."""
from __future__ import annotations

import json
from typing import Any, List, Optional

from testair_core.models import RunResult, TestPlan

from .llm_client import LLMClient
from .models import PlanRequest, RepairRequest
from .patch import ALLOWED_FIELDS, ALLOWED_OPS

DOM_SNIPPET_LIMIT = 2000


def summarize_run_failure(run_result: RunResult) -> str:
    failed = run_result.failed_step
    if failed is None:
        return "No failed step in run result."
    return json.dumps(
        {
            "runId": run_result.run_id,
            "failedStep": {
                "index": failed.index,
                "type": failed.type,
                "description": failed.description,
                "error": failed.error,
            },
        },
        ensure_ascii=False,
        indent=2,
    )


def _join(lines: List[Optional[str]], separator: str) -> str:
    return separator.join(line for line in lines if line)


class OpenAIPlannerAdapter:
    """Asks the model for a version 1 plan as raw JSON."""

    def __init__(self, client: Optional[LLMClient] = None) -> None:
        self.client = client or LLMClient()

    async def plan(self, request: PlanRequest) -> Any:
        user_prompt = _join([
            f"Natural language test request: {request.prompt}",
            f"Optional URL hint: {request.url}" if request.url else None,
            "Return ONLY valid JSON for the test plan.",
            "Plan must match DSL version 1 and include at least one step.",
            "Use ${SECRET:NAME} placeholders for any secrets (never real values).",
            'Top-level keys must be exactly: ["version", "name", "baseUrl", "steps"]',
        ], "\n")
        return await self.client.chat_completion_json([
            {
                "role": "developer",
                "content": ("You generate deterministic website test plans as JSON. "
                            "Output must be raw JSON only, no markdown, no prose."),
            },
            {"role": "user", "content": user_prompt},
        ])


class OpenAIRepairAdapter:
    """Asks the model for a constrained patch against a failed run."""

    def __init__(self, client: Optional[LLMClient] = None) -> None:
        self.client = client or LLMClient()

    async def repair(self, request: RepairRequest) -> Any:
        plan: TestPlan = request.plan
        user_prompt = _join([
            "Given a failed deterministic browser run, return a constrained JSON patch object.",
            f"Allowed ops: {', '.join(ALLOWED_OPS)}",
            f"Allowed paths: /steps/{{index}}/{'|'.join(ALLOWED_FIELDS)}",
            "Return ONLY JSON with shape: { reason: string, operations: [{ op, path, value }] }.",
            "Do not include explanations outside JSON.",
            f"Current plan:\n{json.dumps(plan.to_dict(), ensure_ascii=False, indent=2)}",
            f"Failure summary:\n{summarize_run_failure(request.run_result)}",
            f"DOM snippet:\n{request.dom_snippet[:DOM_SNIPPET_LIMIT]}" if request.dom_snippet else None,
            f"Screenshot path: {request.last_screenshot_path}" if request.last_screenshot_path else None,
            'Patch keys must be exactly: ["reason", "operations"]',
        ], "\n\n")
        return await self.client.chat_completion_json([
            {
                "role": "developer",
                "content": ("You repair test plans by outputting a minimal safe JSON patch object only. "
                            "No markdown. No comments."),
            },
            {"role": "user", "content": user_prompt},
        ])
