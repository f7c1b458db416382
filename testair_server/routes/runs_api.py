"""REST API for submitting runs and fetching run records / artifacts."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify, request, send_file
from playwright.async_api import Error as PlaywrightError

from testair_core.errors import SchemaValidationError, TestairError
from testair_core.runner import RESULT_FILE, RunOptions, run_plan
from testair_core.schema import validate_plan

LOGGER = logging.getLogger("testair.server")

runs_api_bp = Blueprint("runs_api", __name__)


def create_success_response(data: Any = None, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"success": True, "data": data, "error": None, "meta": meta or {}}


def create_error_response(code: str, message: str, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "success": False,
        "data": None,
        "error": {
            "code": code,
            "message": message,
        },
        "meta": meta or {},
    }


def _artifacts_root() -> Path:
    return Path(current_app.config["ARTIFACTS_ROOT"])


def resolve_artifact_path(run_dir: Path, name: str) -> Optional[Path]:
    """Resolve ``name`` inside ``run_dir``; ``None`` if it escapes the directory."""
    base = run_dir.resolve()
    candidate = (base / name).resolve()
    if candidate == base or base not in candidate.parents:
        return None
    return candidate


def _validate_body(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return "请求体必须是 JSON 对象"
    env_ref = data.get("envRef")
    if env_ref is not None and (not isinstance(env_ref, str) or not env_ref):
        return "envRef must be a non-empty string"
    metadata = data.get("metadata")
    if metadata is not None:
        if not isinstance(metadata, dict) or not all(
                isinstance(key, str) and isinstance(value, str) for key, value in metadata.items()):
            return "metadata must map strings to strings"
    if "dryRun" in data and not isinstance(data["dryRun"], bool):
        return "dryRun must be a boolean"
    return None


@runs_api_bp.route("/runs", methods=["POST"])
def create_run():
    """提交并同步执行一次测试运行。"""
    data = request.get_json(silent=True)
    problem = _validate_body(data)
    if problem:
        return jsonify(create_error_response("INVALID_REQUEST", problem)), 400

    try:
        plan = validate_plan(data.get("plan"))
    except SchemaValidationError as exc:
        return jsonify(create_error_response("INVALID_PLAN", str(exc))), 400

    options = RunOptions(
        artifacts_root=_artifacts_root(),
        env_file=Path(data["envRef"]) if data.get("envRef") else None,
        dry_run=bool(data.get("dryRun", False)),
    )
    LOGGER.info("Starting run for plan %s", plan.name or "<unnamed>")
    try:
        result = asyncio.run(run_plan(plan, options, **current_app.config.get("TESTAIR_RUN_KWARGS", {})))
    except (TestairError, PlaywrightError) as exc:
        LOGGER.error("Run failed to complete: %s", exc)
        return jsonify(create_error_response("RUN_FAILED", str(exc))), 500

    return jsonify(
        create_success_response({
            "runId": result.run_id,
            "status": result.status,
            "resultPath": result.artifacts.result_path,
            "metadata": data.get("metadata") or {},
        })), 201


@runs_api_bp.route("/runs/<run_id>", methods=["GET"])
def get_run(run_id: str):
    """读取已持久化的运行记录。"""
    run_dir = resolve_artifact_path(_artifacts_root(), run_id)
    result_path = run_dir / RESULT_FILE if run_dir else None
    if result_path is None or not result_path.is_file():
        return jsonify(create_error_response("RUN_NOT_FOUND", "Run not found")), 404
    return jsonify(create_success_response(json.loads(result_path.read_text(encoding="utf-8"))))


@runs_api_bp.route("/runs/<run_id>/artifacts/<path:name>", methods=["GET"])
def get_artifact(run_id: str, name: str):
    """下载运行目录中的产物文件。"""
    run_dir = resolve_artifact_path(_artifacts_root(), run_id)
    artifact_path = resolve_artifact_path(run_dir, name) if run_dir else None
    if artifact_path is None:
        return jsonify(create_error_response("INVALID_ARTIFACT_PATH", "Invalid artifact path")), 400
    if not artifact_path.is_file():
        return jsonify(create_error_response("ARTIFACT_NOT_FOUND", "Artifact not found")), 404
    return send_file(artifact_path, as_attachment=True)
