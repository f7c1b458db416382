"""Run orchestrator: executes compiled steps against one browser session."""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .browser import BrowserSession, PageLike, SessionFactory, playwright_session
from .compiler import DEFAULT_EXTRACT_LIMIT, compile_plan
from .errors import ActionTimeoutError, ArtifactIOError, TestairError
from .locator import resolve_locator
from .models import CompiledStep, PayloadValue, RunArtifacts, RunResult, SiteProfile, StepResult, TestPlan
from .secret_resolver import build_secret_store, resolve_secret_placeholders
from .site_profile import SiteProfileStore, domain_for_steps

DEFAULT_TIMEOUT_MS = 10_000
DOM_SNAPSHOT_LIMIT = 20_000
RESULT_FILE = "RunResult.json"
TRACE_FILE = "trace.zip"
RUN_LOG_FILE = "runner.log"

STEP_HANDLERS: Dict[str, str] = {
    "goto": "_handle_goto",
    "click": "_handle_click",
    "fill": "_handle_fill",
    "expect": "_handle_expect",
    "waitFor": "_handle_wait_for",
    "extractTextList": "_handle_extract_text_list",
}

_WHITESPACE = re.compile(r"\s+")


@dataclass
# pylint: disable=too-few-public-methods
class RunOptions:
    """Runtime knobs for a single run."""

    run_id: Optional[str] = None
    artifacts_root: Path = Path("runs")
    site_profiles_root: Optional[Path] = None
    env_file: Optional[Path] = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    headless: bool = True
    dry_run: bool = False

    @property
    def profiles_root(self) -> Path:
        if self.site_profiles_root is not None:
            return Path(self.site_profiles_root)
        return Path(self.artifacts_root) / "site-profiles"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_run_id() -> str:
    return f"run_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def _elapsed_ms(start: float) -> int:
    return int(round((time.monotonic() - start) * 1000))


def _ensure_value(value: Optional[PayloadValue], key: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"Missing {key}")
    return value


class Runner:
    """Executes a TestPlan step by step and persists the RunResult."""

    def __init__(
        self,
        options: Optional[RunOptions] = None,
        *,
        session_factory: Optional[SessionFactory] = None,
        profile_store: Optional[SiteProfileStore] = None,
        secrets: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.options = options or RunOptions()
        self.session_factory = session_factory or playwright_session
        self.profile_store = profile_store or SiteProfileStore(self.options.profiles_root)
        self.secrets = secrets
        self.logger = logging.getLogger("testair.runner")
        self.logger.setLevel(logging.INFO)

    async def run(self, plan: TestPlan) -> RunResult:
        run_id = self.options.run_id or build_run_id()
        run_dir = Path(self.options.artifacts_root) / run_id
        await asyncio.to_thread(run_dir.mkdir, parents=True, exist_ok=True)
        artifacts = RunArtifacts(
            run_dir=str(run_dir),
            trace_path=str(run_dir / TRACE_FILE),
            result_path=str(run_dir / RESULT_FILE),
        )
        compiled = compile_plan(plan)
        logger, log_handler = self._attach_run_logger(run_id, run_dir / RUN_LOG_FILE)

        try:
            if self.options.dry_run:
                result = self._dry_run_result(run_id, plan, compiled, artifacts)
            else:
                result = await self._execute(run_id, plan, compiled, artifacts, logger)
            await self._write_run_result(Path(artifacts.result_path), result)
            logger.info("Run %s finished with status %s", run_id, result.status)
        finally:
            self.logger.removeHandler(log_handler)
            log_handler.close()
        return result

    def _dry_run_result(
        self,
        run_id: str,
        plan: TestPlan,
        compiled: List[CompiledStep],
        artifacts: RunArtifacts,
    ) -> RunResult:
        timestamp = now_iso()
        steps = [
            StepResult(
                index=step.index,
                type=step.type,
                description=f"DRY RUN: {step.description}",
                status="passed",
                started_at=timestamp,
                ended_at=timestamp,
                duration_ms=0,
            ) for step in compiled
        ]
        return RunResult(
            run_id=run_id,
            status="passed",
            started_at=timestamp,
            ended_at=timestamp,
            duration_ms=0,
            plan=plan,
            artifacts=artifacts,
            steps=steps,
        )

    # pylint: disable=too-many-arguments,too-many-positional-arguments,too-many-locals
    async def _execute(
        self,
        run_id: str,
        plan: TestPlan,
        compiled: List[CompiledStep],
        artifacts: RunArtifacts,
        logger: logging.LoggerAdapter,
    ) -> RunResult:
        started_at = now_iso()
        clock = time.monotonic()
        status = "passed"
        step_results: List[StepResult] = []
        outputs: Dict[str, List[str]] = {}
        if self.secrets is None:
            self.secrets = build_secret_store(self.options.env_file)

        profile = await asyncio.to_thread(self.profile_store.load, domain_for_steps(compiled))
        logger.info("Starting run %s (%d compiled steps, site profile %s)", run_id, len(compiled), profile.domain)

        try:
            async with self.session_factory(self.options.headless) as session:
                await self._start_trace(session, logger)
                try:
                    for step in compiled:
                        step_result = await self._run_step(session.page, step, profile, outputs, artifacts, logger)
                        step_results.append(step_result)
                        if step_result.status == "failed":
                            status = "failed"
                            break
                finally:
                    await self._stop_trace(session, Path(artifacts.trace_path), logger)
        finally:
            profile.updated_at = now_iso()
            try:
                await asyncio.to_thread(self.profile_store.save, profile)
            except ArtifactIOError as exc:
                logger.error("%s", exc)

        return RunResult(
            run_id=run_id,
            status=status,
            started_at=started_at,
            ended_at=now_iso(),
            duration_ms=_elapsed_ms(clock),
            plan=plan,
            artifacts=artifacts,
            steps=step_results,
            outputs=outputs,
        )

    # pylint: disable=too-many-arguments,too-many-positional-arguments
    async def _run_step(
        self,
        page: PageLike,
        step: CompiledStep,
        profile: SiteProfile,
        outputs: Dict[str, List[str]],
        artifacts: RunArtifacts,
        logger: logging.LoggerAdapter,
    ) -> StepResult:
        started_at = now_iso()
        clock = time.monotonic()
        logger.info("Step %s: %s", step.index + 1, step.description)

        handler_name = STEP_HANDLERS.get(step.type)
        try:
            if handler_name is None:
                raise ValueError(f"Unsupported step type: {step.type}")
            extracted = await getattr(self, handler_name)(page, step, profile)
        except (TestairError, PlaywrightError, ValueError) as exc:
            duration = _elapsed_ms(clock)
            error_message = str(exc)
            logger.warning("Step %s failed: %s", step.index + 1, error_message)
            screenshot_path, dom_path = await self._capture_failure(page, Path(artifacts.run_dir), step, logger)
            artifacts.failure_screenshot_path = screenshot_path
            artifacts.failure_dom_path = dom_path
            return StepResult(
                index=step.index,
                type=step.type,
                description=step.description,
                status="failed",
                started_at=started_at,
                ended_at=now_iso(),
                duration_ms=duration,
                error=error_message,
                artifact_paths=[path for path in (screenshot_path, dom_path) if path],
            )

        if extracted is not None:
            output_key, values = extracted
            outputs[output_key] = values
        return StepResult(
            index=step.index,
            type=step.type,
            description=step.description,
            status="passed",
            started_at=started_at,
            ended_at=now_iso(),
            duration_ms=_elapsed_ms(clock),
        )

    async def _handle_goto(self, page: PageLike, step: CompiledStep, _profile: SiteProfile) -> None:
        url = _ensure_value(step.payload.get("url"), "url")
        timeout = self.options.timeout_ms
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(f"Navigation to {url} timed out after {timeout}ms") from exc

    async def _handle_click(self, page: PageLike, step: CompiledStep, profile: SiteProfile) -> None:
        target = _ensure_value(step.payload.get("target"), "target")
        selector = step.payload.get("selector")
        timeout = self.options.timeout_ms
        resolved = await resolve_locator(page, target, selector if isinstance(selector, str) else None, profile, timeout)
        try:
            await resolved.locator.click(timeout=timeout)
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(f'Click on "{target}" timed out after {timeout}ms') from exc

    async def _handle_fill(self, page: PageLike, step: CompiledStep, profile: SiteProfile) -> None:
        field = _ensure_value(step.payload.get("field"), "field")
        value = _ensure_value(step.payload.get("value"), "value")
        selector = step.payload.get("selector")
        timeout = self.options.timeout_ms
        resolved = await resolve_locator(page, field, selector if isinstance(selector, str) else None, profile, timeout)
        secret_value = resolve_secret_placeholders(value, self.secrets or {})
        try:
            await resolved.locator.fill(secret_value, timeout=timeout)
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(f'Fill of "{field}" timed out after {timeout}ms') from exc

    async def _handle_expect(self, page: PageLike, step: CompiledStep, _profile: SiteProfile) -> None:
        payload = step.payload
        timeout = payload.get("timeoutMs")
        if not isinstance(timeout, int):
            timeout = self.options.timeout_ms

        if isinstance(payload.get("textVisible"), str):
            text = payload["textVisible"]
            await self._wait_visible(page.get_by_text(text).first, "visible", f'text "{text}"', timeout)
        elif isinstance(payload.get("urlIncludes"), str):
            fragment = payload["urlIncludes"]
            try:
                await page.wait_for_url(lambda url: fragment in url, timeout=timeout)
            except PlaywrightTimeoutError as exc:
                raise ActionTimeoutError(f'URL did not include "{fragment}" within {timeout}ms') from exc
        elif isinstance(payload.get("elementVisible"), str):
            selector = payload["elementVisible"]
            await self._wait_visible(page.locator(selector).first, "visible", f"element {selector}", timeout)
        else:
            raise ValueError("expect step missing valid payload")

    async def _handle_wait_for(self, page: PageLike, step: CompiledStep, _profile: SiteProfile) -> None:
        payload = step.payload
        timeout = self.options.timeout_ms
        if isinstance(payload.get("textVisible"), str):
            text = payload["textVisible"]
            await self._wait_visible(page.get_by_text(text).first, "visible", f'text "{text}"', timeout)
        elif isinstance(payload.get("selector"), str):
            selector = payload["selector"]
            await self._wait_visible(page.locator(selector).first, "attached", f"element {selector}", timeout)
        elif isinstance(payload.get("timeoutMs"), int):
            await page.wait_for_timeout(payload["timeoutMs"])
        else:
            raise ValueError("waitFor step missing valid payload")

    async def _handle_extract_text_list(
        self,
        page: PageLike,
        step: CompiledStep,
        _profile: SiteProfile,
    ) -> Tuple[str, List[str]]:
        selector = _ensure_value(step.payload.get("selector"), "selector")
        output_key = _ensure_value(step.payload.get("outputKey"), "outputKey")
        limit = step.payload.get("limit")
        if not isinstance(limit, int):
            limit = DEFAULT_EXTRACT_LIMIT

        rows = page.locator(selector)
        count = await rows.count()
        values: List[str] = []
        for index in range(min(limit, count)):
            text = _WHITESPACE.sub(" ", await rows.nth(index).inner_text()).strip()
            if text:
                values.append(text)
        return output_key, values

    @staticmethod
    async def _wait_visible(locator, state: str, what: str, timeout: int) -> None:
        try:
            await locator.wait_for(state=state, timeout=timeout)
        except PlaywrightTimeoutError as exc:
            raise ActionTimeoutError(f"Timed out after {timeout}ms waiting for {what}") from exc

    async def _capture_failure(
        self,
        page: PageLike,
        run_dir: Path,
        step: CompiledStep,
        logger: logging.LoggerAdapter,
    ) -> Tuple[Optional[str], Optional[str]]:
        number = step.index + 1
        screenshot_path: Optional[str] = str(run_dir / f"failure-step-{number}.png")
        dom_path: Optional[str] = str(run_dir / f"failure-step-{number}.dom.html")

        try:
            await page.screenshot(path=screenshot_path, full_page=True)
        except (PlaywrightError, OSError) as exc:
            logger.error("%s", ArtifactIOError(f"Screenshot capture failed: {exc}"))
            screenshot_path = None

        try:
            html = await page.content()
            await asyncio.to_thread(Path(dom_path).write_text, html[:DOM_SNAPSHOT_LIMIT], encoding="utf-8")
        except (PlaywrightError, OSError) as exc:
            logger.error("%s", ArtifactIOError(f"DOM snapshot failed: {exc}"))
            dom_path = None

        return screenshot_path, dom_path

    @staticmethod
    async def _start_trace(session: BrowserSession, logger: logging.LoggerAdapter) -> None:
        try:
            await session.start_trace()
        except PlaywrightError as exc:
            logger.error("%s", ArtifactIOError(f"Tracing could not start: {exc}"))

    @staticmethod
    async def _stop_trace(session: BrowserSession, path: Path, logger: logging.LoggerAdapter) -> None:
        try:
            await session.stop_trace(path)
        except (PlaywrightError, OSError) as exc:
            logger.error("%s", ArtifactIOError(f"Trace flush failed: {exc}"))

    @staticmethod
    async def _write_run_result(path: Path, result: RunResult) -> None:
        payload = json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
        try:
            await asyncio.to_thread(path.write_text, payload, encoding="utf-8")
        except OSError as exc:
            raise ArtifactIOError(f"Failed to write run result {path}: {exc}") from exc

    def _attach_run_logger(self, run_id: str, log_path: Path) -> Tuple[logging.LoggerAdapter, logging.Handler]:
        # 共用同一个 logger；按 run_id 过滤，避免并发运行互相写入对方的 runner.log
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        handler.addFilter(lambda record: getattr(record, "run_id", None) == run_id)
        self.logger.addHandler(handler)
        return logging.LoggerAdapter(self.logger, {"run_id": run_id}), handler


async def run_plan(
    plan: TestPlan,
    options: Optional[RunOptions] = None,
    *,
    session_factory: Optional[SessionFactory] = None,
    profile_store: Optional[SiteProfileStore] = None,
    secrets: Optional[Mapping[str, str]] = None,
) -> RunResult:
    """Execute ``plan`` once and return its persisted RunResult."""
    runner = Runner(options, session_factory=session_factory, profile_store=profile_store, secrets=secrets)
    return await runner.run(plan)


def load_run_result(artifacts_root: Path, run_id: str) -> RunResult:
    """Read a persisted RunResult back for replay."""
    path = Path(artifacts_root) / run_id / RESULT_FILE
    return RunResult.from_dict(json.loads(path.read_text(encoding="utf-8")))
