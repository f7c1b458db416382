"""Tests for the runs REST API."""
from __future__ import annotations

import pytest
from playwright.async_api import Error as PlaywrightError

from testair_server.app import create_app
from testair_server.routes.runs_api import resolve_artifact_path

PLAN = {
    "version": "1",
    "steps": [
        {"type": "goto", "url": "https://example.com"},
        {"type": "expect", "textVisible": "Example Domain"},
    ],
}


@pytest.fixture
def client(tmp_path, session_factory):
    app = create_app({
        "TESTING": True,
        "ARTIFACTS_ROOT": str(tmp_path / "runs"),
        "TESTAIR_RUN_KWARGS": {"session_factory": session_factory, "secrets": {}},
    })
    return app.test_client()


def test_invalid_body_rejected(client):
    response = client.post("/runs", json={"plan": {"version": "1", "steps": []}})
    assert response.status_code == 400
    body = response.get_json()
    assert body["success"] is False
    assert body["error"]["code"] == "INVALID_PLAN"


def test_non_object_body_rejected(client):
    response = client.post("/runs", json=["not", "an", "object"])
    assert response.status_code == 400
    assert response.get_json()["error"]["code"] == "INVALID_REQUEST"


def test_bad_metadata_rejected(client):
    response = client.post("/runs", json={"plan": PLAN, "metadata": {"build": 42}})
    assert response.status_code == 400


def test_create_and_fetch_run(client, fake_page):
    fake_page.add("text~:Example Domain")
    response = client.post("/runs", json={"plan": PLAN, "metadata": {"build": "42"}})

    assert response.status_code == 201
    data = response.get_json()["data"]
    assert data["status"] == "passed"
    assert data["metadata"] == {"build": "42"}
    assert data["resultPath"].endswith("RunResult.json")

    fetched = client.get(f"/runs/{data['runId']}")
    assert fetched.status_code == 200
    assert fetched.get_json()["data"]["runId"] == data["runId"]

    trace = client.get(f"/runs/{data['runId']}/artifacts/trace.zip")
    assert trace.status_code == 200
    assert trace.data == b"PK fake trace"


def test_dry_run_submission(client, session_factory):
    response = client.post("/runs", json={"plan": PLAN, "dryRun": True})
    assert response.status_code == 201
    assert session_factory.sessions == []


def test_unknown_run_is_404(client):
    assert client.get("/runs/run_missing").status_code == 404
    assert client.get("/runs/run_missing/artifacts/trace.zip").status_code == 404


def test_missing_artifact_is_404(client):
    run_id = client.post("/runs", json={"plan": PLAN, "dryRun": True}).get_json()["data"]["runId"]
    assert client.get(f"/runs/{run_id}/artifacts/failure-step-1.png").status_code == 404


def test_artifact_path_must_stay_inside_run_dir(tmp_path):
    run_dir = tmp_path / "runs" / "run_1"
    run_dir.mkdir(parents=True)

    assert resolve_artifact_path(run_dir, "trace.zip") == (run_dir / "trace.zip").resolve()
    assert resolve_artifact_path(run_dir, "../run_2/RunResult.json") is None
    assert resolve_artifact_path(run_dir, "..") is None
    assert resolve_artifact_path(run_dir, ".") is None


def test_browser_launch_error_uses_error_envelope(tmp_path, make_session_factory):
    factory = make_session_factory(fail_launch=PlaywrightError("Executable doesn't exist at /ms-playwright/chromium"))
    app = create_app({
        "TESTING": True,
        "ARTIFACTS_ROOT": str(tmp_path / "runs"),
        "TESTAIR_RUN_KWARGS": {"session_factory": factory, "secrets": {}},
    })
    response = app.test_client().post("/runs", json={"plan": PLAN})

    assert response.status_code == 500
    body = response.get_json()
    assert body["success"] is False
    assert body["error"]["code"] == "RUN_FAILED"
    assert "Executable doesn't exist" in body["error"]["message"]
