#!/usr/bin/env python3
"""
Route group submitter - run a workspace document through the submission flow.

Usage:
    ROUTE_MANAGEMENT_BASE_URL=https://api.example.lk \
    ROUTE_MANAGEMENT_TOKEN=... \
    python examples/submit_route_group.py draft.yaml [--dry-run]

The draft may be YAML (.yaml, .yml) or JSON.

With --dry-run only the stop existence check runs: nothing is created.
"""

import asyncio
import json
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from route_management import RouteManagementError  # noqa: E402
from route_management.http import RouteManagementClient  # noqa: E402
from route_workspace import (  # noqa: E402
    RouteGroupDraft,
    apply_resolved_stops,
    draft_from_dict,
    draft_from_yaml,
    draft_to_dict,
    draft_to_yaml,
)
from stop_resolver import StopExistenceResolver  # noqa: E402
from submission import RouteGroupSubmission, SubmissionState  # noqa: E402


YAML_SUFFIXES = {".yaml", ".yml"}


def load_draft(path: Path) -> RouteGroupDraft:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in YAML_SUFFIXES:
        return draft_from_yaml(text)
    return draft_from_dict(json.loads(text))


def save_draft(draft: RouteGroupDraft, path: Path) -> Path:
    out = path.with_name(f"{path.stem}.resolved{path.suffix}")
    if path.suffix.lower() in YAML_SUFFIXES:
        out.write_text(draft_to_yaml(draft), encoding="utf-8")
    else:
        out.write_text(json.dumps(draft_to_dict(draft), indent=2, ensure_ascii=False), encoding="utf-8")
    return out


def print_progress(state: SubmissionState) -> None:
    phases = state.to_dict()["perPhaseStatus"]
    line = "  ".join(f"{name}={status['status']}" for name, status in phases.items())
    print(f"[{state.phase.value}] {line}")


async def dry_run(client: RouteManagementClient, draft) -> int:
    resolution = await StopExistenceResolver(client).resolve(draft)
    print("\n" + "=" * 60)
    print(resolution.message)
    print("=" * 60)
    for line in resolution.details:
        print(f"  - {line}")
    if resolution.create_list:
        print("\nStops to create:")
        for stop in resolution.create_list:
            print(f"  + {stop.name}")
    return 0 if resolution.ok else 1


async def submit(client: RouteManagementClient, draft, path: Path) -> int:
    print(json.dumps(draft.summary(), indent=2, ensure_ascii=False))
    submission = RouteGroupSubmission(draft, client, client, client, on_change=print_progress)
    result = await submission.proceed()

    if result.ok:
        print(f"\n✓ SUCCESS: route group {result.route_group_id}")
        print(json.dumps(result.summary, indent=2))
        try:
            stored = await client.get_route_group(result.route_group_id)
        except RouteManagementError as exc:
            print(f"Could not read the route group back: {exc}")
        else:
            routes = stored.get("routes") or []
            print(f"Read back '{stored.get('name')}' with {len(routes)} route(s)")
        return 0

    print(f"\n✗ FAILED in {result.failure.phase if result.failure else '?'}: {result.state.error}")
    for line in result.failure.details if result.failure else []:
        print(f"  - {line}")
    if result.created_stops:
        # Keep the stops this attempt created so a retry does not look for them again.
        resolved = apply_resolved_stops(draft, result.resolved_stops())
        out = save_draft(resolved, path)
        print(f"\n{len(result.created_stops)} stop(s) were created; updated draft written to {out}")
    return 1


async def main() -> int:
    args = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    if len(args) != 1:
        print(__doc__)
        return 2

    path = Path(args[0])
    draft = load_draft(path)
    client = RouteManagementClient.from_env()
    try:
        if "--dry-run" in sys.argv:
            return await dry_run(client, draft)
        return await submit(client, draft, path)
    finally:
        await client.aclose()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
