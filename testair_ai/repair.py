"""Repair adapters and the bounded self-repair loop around ``run_plan``."""
from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Optional

from testair_core.compiler import compile_plan
from testair_core.errors import ArtifactIOError, PatchRejectedError, RepairTimeoutError
from testair_core.models import RepairPatch, RunResult, TestPlan
from testair_core.runner import RunOptions, run_plan
from testair_core.secret_resolver import redact_plan

from .llm_client import LLMClientError
from .models import RepairAdapter, RepairRequest
from .openai_adapters import OpenAIRepairAdapter
from .patch import apply_repair_patch, parse_repair_patch

LOGGER = logging.getLogger("testair.repair")

DEFAULT_ADAPTER_TIMEOUT_S = 30.0
MOCK_REPLACEMENT_TARGET = "Submit"


class MockRepairAdapter:
    """Proposes a new target for a failed click; gives up on anything else."""

    async def repair(self, request: RepairRequest) -> Any:
        failed = request.run_result.failed_step
        if failed is None:
            return {"reason": "No failure detected", "operations": []}

        operations = []
        if failed.type == "click":
            compiled = compile_plan(request.plan)
            source_index = compiled[failed.index].source_step_index if failed.index < len(compiled) else failed.index
            operations.append({"op": "replace", "path": f"/steps/{source_index}/target",
                               "value": MOCK_REPLACEMENT_TARGET})
        return {"reason": "Fallback selector refinement from failed click target", "operations": operations}


def repair_adapter_for_provider(provider: str) -> RepairAdapter:
    if provider == "openai":
        return OpenAIRepairAdapter()
    return MockRepairAdapter()


async def create_repair_patch(
    request: RepairRequest,
    adapter: Optional[RepairAdapter] = None,
    *,
    timeout_s: float = DEFAULT_ADAPTER_TIMEOUT_S,
) -> RepairPatch:
    """Ask the adapter for a patch and validate it against the allow-list.

    Raises:
        RepairTimeoutError: If the adapter does not answer within ``timeout_s``.
        PatchRejectedError: If the returned patch is outside the allow-list.
    """
    try:
        raw = await asyncio.wait_for((adapter or MockRepairAdapter()).repair(request), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise RepairTimeoutError(f"Repair adapter timed out after {timeout_s}s") from exc
    return parse_repair_patch(raw)


async def _read_dom_snippet(result: RunResult) -> str:
    dom_path = result.artifacts.failure_dom_path
    if not dom_path:
        return ""
    try:
        return await asyncio.to_thread(Path(dom_path).read_text, encoding="utf-8")
    except OSError as exc:
        LOGGER.warning("Could not read DOM snapshot %s: %s", dom_path, exc)
        return ""


async def _write_repaired_plan(path: Path, plan: TestPlan) -> None:
    payload = json.dumps(redact_plan(plan).to_dict(), ensure_ascii=False, indent=2)
    try:
        await asyncio.to_thread(path.write_text, payload, encoding="utf-8")
    except OSError as exc:
        LOGGER.error("%s", ArtifactIOError(f"Failed to write repaired plan {path}: {exc}"))


async def run_with_repair(
    plan: TestPlan,
    options: Optional[RunOptions] = None,
    adapter: Optional[RepairAdapter] = None,
    *,
    max_attempts: int = 0,
    adapter_timeout_s: float = DEFAULT_ADAPTER_TIMEOUT_S,
    **run_kwargs: Any,
) -> RunResult:
    """Run ``plan``; after a failure, request and apply patches until it passes.

    Every adapter request consumes one attempt. A timed-out request or a
    rejected patch keeps the current plan; an empty patch ends the loop. An
    accepted patch re-runs the whole plan on a fresh session.
    """
    options = options or RunOptions()
    adapter = adapter or MockRepairAdapter()
    current = plan
    result = await run_plan(current, options, **run_kwargs)

    attempt = 0
    while result.status == "failed" and attempt < max_attempts and not options.dry_run:
        attempt += 1
        request = RepairRequest(
            plan=current,
            run_result=result,
            dom_snippet=await _read_dom_snippet(result),
            last_screenshot_path=result.artifacts.failure_screenshot_path,
        )
        try:
            patch = await create_repair_patch(request, adapter, timeout_s=adapter_timeout_s)
            if not patch.operations:
                LOGGER.info("Repair attempt %d returned no operations (%s); stopping", attempt, patch.reason)
                break
            repaired = apply_repair_patch(current, patch)
        except (RepairTimeoutError, LLMClientError) as exc:
            LOGGER.warning("Repair attempt %d produced no patch: %s", attempt, exc)
            continue
        except PatchRejectedError as exc:
            LOGGER.warning("Repair attempt %d rejected: %s", attempt, exc)
            continue

        current = repaired
        repaired_path = Path(result.artifacts.run_dir) / f"plan.repaired.{attempt}.json"
        await _write_repaired_plan(repaired_path, current)
        LOGGER.info("Repair attempt %d applied (%s); re-running from step 1", attempt, patch.reason)
        result = await run_plan(current, dataclasses.replace(options, run_id=None), **run_kwargs)

    return result
