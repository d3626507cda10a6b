"""
Route Workspace Service - Route Group Submission API (FastAPI)

Purpose
=======
Back the route workspace UI: take a route group draft, resolve which of its
stops already exist, create the missing ones, and submit the route group to
the route-management backend, exposing live per-phase progress.

Endpoints
---------
- POST   /api/route-groups/submissions                 open a submission (CONFIRMATION)
- GET    /api/route-groups/submissions/{id}            live SubmissionState snapshot
- POST   /api/route-groups/submissions/{id}/proceed    run the attempt to completion
- GET    /api/route-groups/submissions/{id}/draft      resolved draft document (?format=yaml|json)
- DELETE /api/route-groups/submissions/{id}            close the view (no cancellation)
- POST   /api/route-groups/stop-resolution             preview new vs. existing stops
- POST   /api/routes/opposite                          generate the opposite-direction route

Run
---
$ uvicorn app:app --reload --port 8080

Environment
-----------
- PYTHON >= 3.10
- pip install fastapi uvicorn httpx pyyaml
- ROUTE_MANAGEMENT_BASE_URL, ROUTE_MANAGEMENT_TOKEN, ROUTE_MANAGEMENT_TIMEOUT_S
- STOP_CREATION_DELAY_S, STOP_LOOKUP_DELAY_S, VERIFY_EXISTING_STOPS
- SUBMISSION_TTL_S, MAX_SUBMISSIONS

Draft documents are accepted as JSON or, with a YAML content type
(application/yaml, text/yaml), as YAML.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from route_auto_generation import generate_opposite_route
from route_management.http import RouteManagementClient
from route_workspace import (
    RouteGroupDraft,
    apply_resolved_stops,
    draft_from_dict,
    draft_from_yaml,
    draft_to_dict,
    draft_to_yaml,
    route_from_document,
    route_to_document,
)
from stop_resolver import StopExistenceResolver
from submission import RouteGroupSubmission, SubmissionPhase, SubmissionResult

# ---------------------------
# Config
# ---------------------------
STOP_CREATION_DELAY_S = float(os.getenv("STOP_CREATION_DELAY_S", "0.5"))
STOP_LOOKUP_DELAY_S = float(os.getenv("STOP_LOOKUP_DELAY_S", "0.1"))
VERIFY_EXISTING_STOPS = os.getenv("VERIFY_EXISTING_STOPS", "").lower() in {
    "1",
    "true",
    "yes",
    "on",
}
# Finished or never-started submissions are dropped after this long.
SUBMISSION_TTL_S = float(os.getenv("SUBMISSION_TTL_S", "3600"))
MAX_SUBMISSIONS = int(os.getenv("MAX_SUBMISSIONS", "200"))


@dataclass
class SubmissionEntry:
    draft: RouteGroupDraft
    submission: RouteGroupSubmission
    result: Optional[SubmissionResult] = None
    updated_at: float = field(default_factory=time.time)

    @property
    def is_running(self) -> bool:
        state = self.submission.state
        return state.phase != SubmissionPhase.CONFIRMATION and not state.is_terminal


SUBMISSIONS: Dict[str, SubmissionEntry] = {}

# ---------------------------
# App & state
# ---------------------------
app = FastAPI(title="Route Workspace Service")


@app.on_event("startup")
async def init_route_management_client() -> None:
    try:
        app.state.route_management_client = RouteManagementClient.from_env()
    except RuntimeError as exc:
        print(f"[route_management] client not configured: {exc}")
        app.state.route_management_client = None


@app.on_event("shutdown")
async def shutdown_route_management_client() -> None:
    client = getattr(app.state, "route_management_client", None)
    if client is not None and hasattr(client, "aclose"):
        await client.aclose()


def _backend(request: Request):
    client = getattr(request.app.state, "route_management_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="route management backend not configured")
    return client


def _prune_submissions(now: Optional[float] = None, keep: Optional[str] = None) -> None:
    """Drop idle entries past the TTL, then the oldest idle ones above the cap.

    Running submissions and ``keep`` are never dropped.
    """
    now = time.time() if now is None else now
    for submission_id, entry in list(SUBMISSIONS.items()):
        if submission_id == keep or entry.is_running:
            continue
        if now - entry.updated_at > SUBMISSION_TTL_S:
            SUBMISSIONS.pop(submission_id, None)
    idle = sorted(
        (entry.updated_at, submission_id)
        for submission_id, entry in SUBMISSIONS.items()
        if submission_id != keep and not entry.is_running
    )
    excess = len(SUBMISSIONS) - MAX_SUBMISSIONS
    for _ts, submission_id in idle[: max(0, excess)]:
        SUBMISSIONS.pop(submission_id, None)


async def _read_draft(request: Request) -> RouteGroupDraft:
    body = await request.body()
    content_type = request.headers.get("content-type", "").lower()
    try:
        if "yaml" in content_type:
            return draft_from_yaml(body.decode("utf-8"))
        return draft_from_dict(json.loads(body or b"null"))
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"invalid route group draft: {exc}") from exc


def _get_entry(submission_id: str) -> SubmissionEntry:
    entry = SUBMISSIONS.get(submission_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="submission not found")
    return entry


def _result_body(submission_id: str, entry: SubmissionEntry, result: SubmissionResult) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "submission_id": submission_id,
        "state": result.state.to_dict(),
        "ok": result.ok,
        "route_group_id": result.route_group_id,
        "summary": result.summary,
        "created_stops": [
            {"name": pair.original.name, "id": pair.created.id}
            for pair in result.created_stops
        ],
        # Draft with everything found or created folded in, for the UI to adopt.
        "resolved_draft": draft_to_dict(apply_resolved_stops(entry.draft, result.resolved_stops())),
    }
    if result.failure is not None:
        body["failure"] = {
            "phase": result.failure.phase,
            "message": result.failure.message,
            "details": result.failure.details,
        }
    return body


# ---------------------------
# Submissions
# ---------------------------
@app.post("/api/route-groups/submissions")
async def open_submission(request: Request):
    draft = await _read_draft(request)
    backend = _backend(request)
    submission = RouteGroupSubmission(
        draft,
        backend,
        backend,
        backend,
        lookup_delay_s=STOP_LOOKUP_DELAY_S,
        creation_delay_s=STOP_CREATION_DELAY_S,
        verify_existing=VERIFY_EXISTING_STOPS,
    )
    submission_id = uuid.uuid4().hex
    SUBMISSIONS[submission_id] = SubmissionEntry(draft=draft, submission=submission)
    _prune_submissions(keep=submission_id)
    return JSONResponse(
        {
            "submission_id": submission_id,
            "state": submission.snapshot().to_dict(),
            "summary": submission.confirmation_summary(),
        }
    )


@app.get("/api/route-groups/submissions/{submission_id}")
async def get_submission(submission_id: str):
    entry = _get_entry(submission_id)
    body: Dict[str, Any] = {
        "submission_id": submission_id,
        "state": entry.submission.snapshot().to_dict(),
    }
    if entry.result is not None:
        body["route_group_id"] = entry.result.route_group_id
        body["summary"] = entry.result.summary
    return JSONResponse(body)


@app.post("/api/route-groups/submissions/{submission_id}/proceed")
async def proceed_submission(submission_id: str):
    entry = _get_entry(submission_id)
    if entry.submission.state.phase != SubmissionPhase.CONFIRMATION:
        raise HTTPException(status_code=409, detail="submission already started")
    result = await entry.submission.proceed()
    entry.result = result
    entry.updated_at = time.time()
    return JSONResponse(_result_body(submission_id, entry, result))


@app.get("/api/route-groups/submissions/{submission_id}/draft")
async def get_submission_draft(submission_id: str, fmt: str = Query("json", alias="format")):
    """Draft with the last attempt's found and created stops folded in."""
    entry = _get_entry(submission_id)
    draft = entry.draft
    if entry.result is not None:
        draft = apply_resolved_stops(draft, entry.result.resolved_stops())
    if fmt == "yaml":
        return Response(content=draft_to_yaml(draft), media_type="application/yaml")
    if fmt != "json":
        raise HTTPException(status_code=400, detail="format must be json or yaml")
    return JSONResponse(draft_to_dict(draft))


@app.delete("/api/route-groups/submissions/{submission_id}")
async def close_submission(submission_id: str):
    entry = SUBMISSIONS.pop(submission_id, None)
    if entry is None:
        raise HTTPException(status_code=404, detail="submission not found")
    entry.submission.reset()
    return JSONResponse({"ok": True, "submission_id": submission_id})


# ---------------------------
# Workspace helpers
# ---------------------------
@app.post("/api/route-groups/stop-resolution")
async def preview_stop_resolution(request: Request):
    draft = await _read_draft(request)
    resolver = StopExistenceResolver(
        _backend(request),
        delay_s=STOP_LOOKUP_DELAY_S,
        verify_existing=VERIFY_EXISTING_STOPS,
    )
    resolution = await resolver.resolve(draft)
    annotated = RouteGroupDraft(
        id=draft.id,
        name=draft.name,
        name_sinhala=draft.name_sinhala,
        name_tamil=draft.name_tamil,
        description=draft.description,
        routes=resolution.routes,
    )
    return JSONResponse(
        {
            "status": resolution.status.value,
            "message": resolution.message,
            "details": resolution.details,
            "counts": {
                "found": resolution.found_count,
                "not_found": resolution.not_found_count,
                "error": resolution.error_count,
            },
            "create_list": [stop.to_document() for stop in resolution.create_list],
            "draft": draft_to_dict(annotated),
        }
    )


@app.post("/api/routes/opposite")
async def opposite_route(payload: Dict[str, Any] = Body(...)):
    route_data = payload.get("route")
    if not isinstance(route_data, dict):
        raise HTTPException(status_code=400, detail="route is required")
    try:
        source = route_from_document(route_data)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"invalid route: {exc}") from exc
    generated = generate_opposite_route(
        source,
        swap_words=bool(payload.get("swap_words", True)),
        name_suffix=payload.get("name_suffix") or None,
    )
    if not generated.success or generated.route is None:
        raise HTTPException(status_code=400, detail=generated.message)
    return JSONResponse(
        {
            "message": generated.message,
            "warnings": generated.warnings,
            "route": route_to_document(generated.route),
        }
    )
