"""Data models for plans, compiled steps, site profiles and run records."""
from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Union

PayloadValue = Union[str, int]

STEP_STATUSES = ("passed", "failed", "skipped")
RUN_STATUSES = ("passed", "failed")


def _key(name: str, default: Any = None) -> Any:
    """Declare a dataclass field serialized under a camelCase JSON key."""
    return field(default=default, metadata={"key": name})


def coerce_integral(value: Any) -> Any:
    """JSON Schema's ``integer`` admits ``250.0``; store such values as ``int``."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


@dataclass
class PlanStep:
    """Base class for the plan step variants, tagged by ``type``."""

    type: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            payload[item.metadata.get("key", item.name)] = value
        return payload

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "PlanStep":
        kwargs = {}
        for item in fields(cls):
            key = item.metadata.get("key", item.name)
            if key in raw:
                kwargs[item.name] = coerce_integral(raw[key])
        return cls(**kwargs)


@dataclass
class GotoStep(PlanStep):
    type: ClassVar[str] = "goto"

    url: str = ""


@dataclass
class ClickStep(PlanStep):
    type: ClassVar[str] = "click"

    target: str = ""
    selector: Optional[str] = None


@dataclass
class FillStep(PlanStep):
    type: ClassVar[str] = "fill"

    field: str = ""
    value: str = ""
    selector: Optional[str] = None


@dataclass
class ExpectStep(PlanStep):
    type: ClassVar[str] = "expect"

    text_visible: Optional[str] = _key("textVisible")
    url_includes: Optional[str] = _key("urlIncludes")
    element_visible: Optional[str] = _key("elementVisible")
    timeout_ms: Optional[int] = _key("timeoutMs")


@dataclass
class LoginStep(PlanStep):
    type: ClassVar[str] = "login"

    username: str = ""
    password: str = ""


@dataclass
class WaitForStep(PlanStep):
    type: ClassVar[str] = "waitFor"

    text_visible: Optional[str] = _key("textVisible")
    selector: Optional[str] = None
    timeout_ms: Optional[int] = _key("timeoutMs")


@dataclass
class ExtractTextListStep(PlanStep):
    type: ClassVar[str] = "extractTextList"

    selector: str = ""
    output_key: str = _key("outputKey", "")
    limit: Optional[int] = None


STEP_TYPES: Dict[str, type] = {
    step_cls.type: step_cls
    for step_cls in (GotoStep, ClickStep, FillStep, ExpectStep, LoginStep, WaitForStep, ExtractTextListStep)
}


@dataclass
class TestPlan:
    """A declarative, versioned sequence of test steps."""

    __test__ = False

    version: str
    steps: List[PlanStep]
    name: Optional[str] = None
    base_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"version": self.version}
        if self.name is not None:
            payload["name"] = self.name
        if self.base_url is not None:
            payload["baseUrl"] = self.base_url
        payload["steps"] = [step.to_dict() for step in self.steps]
        return payload

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TestPlan":
        """Build a plan from already-validated data. Use ``validate_plan`` for untrusted input."""
        return cls(
            version=raw["version"],
            name=raw.get("name"),
            base_url=raw.get("baseUrl"),
            steps=[STEP_TYPES[step["type"]].from_dict(step) for step in raw["steps"]],
        )

    def copy(self) -> "TestPlan":
        return copy.deepcopy(self)


@dataclass
class CompiledStep:
    """Primitive, directly executable lowering of a plan step."""

    index: int
    source_step_index: int
    type: str
    description: str
    payload: Dict[str, PayloadValue] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "sourceStepIndex": self.source_step_index,
            "type": self.type,
            "description": self.description,
            "payload": dict(self.payload),
        }


@dataclass
class SiteProfile:
    """Per-domain cache of learned selectors, keyed by target text."""

    domain: str
    selectors: Dict[str, str] = field(default_factory=dict)
    updated_at: str = "1970-01-01T00:00:00.000Z"

    def remembered(self, target: str) -> Optional[str]:
        return self.selectors.get(target) or None

    def remember(self, target: str, selector: str) -> None:
        self.selectors[target] = selector

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "selectors": dict(self.selectors),
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SiteProfile":
        selectors = raw.get("selectors")
        if not isinstance(selectors, dict):
            selectors = {}
        return cls(
            domain=str(raw.get("domain") or "default"),
            selectors={str(key): str(value) for key, value in selectors.items()},
            updated_at=str(raw.get("updatedAt") or "1970-01-01T00:00:00.000Z"),
        )


@dataclass
class StepResult:
    """Captures outcome data for a single compiled step."""

    index: int
    type: str
    description: str
    status: str
    started_at: str
    ended_at: str
    duration_ms: int
    error: Optional[str] = None
    artifact_paths: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "index": self.index,
            "type": self.type,
            "description": self.description,
            "status": self.status,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationMs": self.duration_ms,
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.artifact_paths is not None:
            payload["artifactPaths"] = list(self.artifact_paths)
        return payload

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "StepResult":
        return cls(
            index=raw["index"],
            type=raw["type"],
            description=raw["description"],
            status=raw["status"],
            started_at=raw["startedAt"],
            ended_at=raw["endedAt"],
            duration_ms=raw["durationMs"],
            error=raw.get("error"),
            artifact_paths=raw.get("artifactPaths"),
        )


@dataclass
class RunArtifacts:
    run_dir: str
    trace_path: str
    result_path: str
    failure_screenshot_path: Optional[str] = None
    failure_dom_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "runDir": self.run_dir,
            "tracePath": self.trace_path,
            "resultPath": self.result_path,
        }
        if self.failure_screenshot_path is not None:
            payload["failureScreenshotPath"] = self.failure_screenshot_path
        if self.failure_dom_path is not None:
            payload["failureDomPath"] = self.failure_dom_path
        return payload

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RunArtifacts":
        return cls(
            run_dir=raw["runDir"],
            trace_path=raw["tracePath"],
            result_path=raw["resultPath"],
            failure_screenshot_path=raw.get("failureScreenshotPath"),
            failure_dom_path=raw.get("failureDomPath"),
        )


@dataclass
class RunResult:
    """Aggregated run outcome, persisted once as RunResult.json."""

    run_id: str
    status: str
    started_at: str
    ended_at: str
    duration_ms: int
    plan: TestPlan
    artifacts: RunArtifacts
    steps: List[StepResult] = field(default_factory=list)
    outputs: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def failed_step(self) -> Optional[StepResult]:
        for step in self.steps:
            if step.status == "failed":
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "status": self.status,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationMs": self.duration_ms,
            "plan": self.plan.to_dict(),
            "steps": [step.to_dict() for step in self.steps],
            "outputs": {key: list(values) for key, values in self.outputs.items()},
            "artifacts": self.artifacts.to_dict(),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "RunResult":
        return cls(
            run_id=raw["runId"],
            status=raw["status"],
            started_at=raw["startedAt"],
            ended_at=raw["endedAt"],
            duration_ms=raw["durationMs"],
            plan=TestPlan.from_dict(raw["plan"]),
            artifacts=RunArtifacts.from_dict(raw["artifacts"]),
            steps=[StepResult.from_dict(step) for step in raw.get("steps", [])],
            outputs={key: list(values) for key, values in (raw.get("outputs") or {}).items()},
        )


@dataclass
class PatchOperation:
    op: str
    path: str
    value: PayloadValue

    def to_dict(self) -> Dict[str, Any]:
        return {"op": self.op, "path": self.path, "value": self.value}


@dataclass
class RepairPatch:
    """Bounded, allow-listed set of field overwrites proposed after a failed run."""

    reason: str
    operations: List[PatchOperation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"reason": self.reason, "operations": [op.to_dict() for op in self.operations]}
