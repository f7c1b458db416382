"""Lowers a validated plan into primitive compiled steps."""
from __future__ import annotations

import json
from typing import Callable, Dict, List

from jinja2 import BaseLoader, Environment

from .models import (ClickStep, CompiledStep, ExpectStep, ExtractTextListStep, FillStep, GotoStep, LoginStep,
                     PayloadValue, PlanStep, TestPlan, WaitForStep)

COMPILED_STEP_TYPES = ("goto", "click", "fill", "expect", "waitFor", "extractTextList")
DEFAULT_EXTRACT_LIMIT = 5
LOGIN_SUBMIT_TARGET = "Sign in"
LOGIN_SETTLE_MS = 2000

StepCompiler = Callable[[PlanStep, int, int], List[CompiledStep]]


def _normalize_text(value: str) -> str:
    return value.strip()


def _conditions(step: PlanStep, keys: Dict[str, str]) -> Dict[str, PayloadValue]:
    payload: Dict[str, PayloadValue] = {}
    for attr, key in keys.items():
        value = getattr(step, attr)
        if value is not None:
            payload[key] = value
    return payload


def _compile_goto(step: GotoStep, source_index: int, start: int) -> List[CompiledStep]:
    return [CompiledStep(start, source_index, "goto", f"goto {step.url}", {"url": step.url})]


def _compile_click(step: ClickStep, source_index: int, start: int) -> List[CompiledStep]:
    return [
        CompiledStep(
            start,
            source_index,
            "click",
            f"click {step.target}",
            {"target": _normalize_text(step.target), "selector": step.selector or ""},
        )
    ]


def _compile_fill(step: FillStep, source_index: int, start: int) -> List[CompiledStep]:
    return [
        CompiledStep(
            start,
            source_index,
            "fill",
            f"fill {step.field}",
            {"field": _normalize_text(step.field), "value": step.value, "selector": step.selector or ""},
        )
    ]


def _compile_expect(step: ExpectStep, source_index: int, start: int) -> List[CompiledStep]:
    payload = _conditions(
        step,
        {
            "text_visible": "textVisible",
            "url_includes": "urlIncludes",
            "element_visible": "elementVisible",
            "timeout_ms": "timeoutMs",
        },
    )
    return [CompiledStep(start, source_index, "expect", "expect condition", payload)]


def _compile_wait_for(step: WaitForStep, source_index: int, start: int) -> List[CompiledStep]:
    payload = _conditions(step, {"text_visible": "textVisible", "selector": "selector", "timeout_ms": "timeoutMs"})
    return [CompiledStep(start, source_index, "waitFor", "wait for condition", payload)]


def _compile_extract_text_list(step: ExtractTextListStep, source_index: int, start: int) -> List[CompiledStep]:
    return [
        CompiledStep(
            start,
            source_index,
            "extractTextList",
            f"extract text list {step.output_key}",
            {
                "selector": step.selector,
                "limit": step.limit if step.limit is not None else DEFAULT_EXTRACT_LIMIT,
                "outputKey": step.output_key,
            },
        )
    ]


def _compile_login(step: LoginStep, source_index: int, start: int) -> List[CompiledStep]:
    # 固定宏：按字段名定位用户名/密码输入框，再点击常见的登录按钮。
    return [
        CompiledStep(start, source_index, "fill", "login username",
                     {"field": "username", "value": step.username, "selector": ""}),
        CompiledStep(start + 1, source_index, "fill", "login password",
                     {"field": "password", "value": step.password, "selector": ""}),
        CompiledStep(start + 2, source_index, "click", "login submit",
                     {"target": LOGIN_SUBMIT_TARGET, "selector": ""}),
        CompiledStep(start + 3, source_index, "waitFor", "wait for post-login navigation",
                     {"timeoutMs": LOGIN_SETTLE_MS}),
    ]


STEP_COMPILERS: Dict[str, StepCompiler] = {
    GotoStep.type: _compile_goto,
    ClickStep.type: _compile_click,
    FillStep.type: _compile_fill,
    ExpectStep.type: _compile_expect,
    LoginStep.type: _compile_login,
    WaitForStep.type: _compile_wait_for,
    ExtractTextListStep.type: _compile_extract_text_list,
}


def compile_plan(plan: TestPlan) -> List[CompiledStep]:
    """Lower every plan step into compiled steps with contiguous indices."""
    compiled: List[CompiledStep] = []
    for source_index, step in enumerate(plan.steps):
        handler = STEP_COMPILERS.get(step.type)
        if handler is None:
            raise ValueError(f"Unsupported step type: {step.type}")
        compiled.extend(handler(step, source_index, len(compiled)))
    return compiled


def format_compiled_step(step: CompiledStep) -> str:
    arguments = ", ".join(
        f"{key}={json.dumps(value, ensure_ascii=False)}" for key, value in step.payload.items() if value != ""
    )
    return f"{step.index + 1}. {step.type}({arguments})"


def compiled_to_dry_run_lines(plan: TestPlan) -> List[str]:
    return [format_compiled_step(step) for step in compile_plan(plan)]


_SCRIPT_TEMPLATE = """\
\"\"\"Playwright skeleton exported from {{ name }}.\"\"\"
import asyncio

from playwright.async_api import async_playwright


async def run() -> None:
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=True)
        page = await browser.new_page()
{%- for line in lines %}
        # {{ line }}
{%- endfor %}
        await browser.close()


if __name__ == "__main__":
    asyncio.run(run())
"""


def generate_playwright_script(plan: TestPlan) -> str:
    """Render a Playwright script skeleton listing the compiled steps."""
    template = Environment(loader=BaseLoader(), keep_trailing_newline=True).from_string(_SCRIPT_TEMPLATE)
    return template.render(name=plan.name or "testair plan", lines=compiled_to_dry_run_lines(plan))
