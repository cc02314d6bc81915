"""Reconciliation tools: bulk member sync and repository linking.

Both run the same code paths as the event-driven engine.  ``member_sync_project``
runs in the handler (bounded by the request semaphore) and returns the
report; ``repository_link`` either queues a link task or makes one
immediate attempt.
"""

import mcp.types as types

from ...core.async_utils import run_sync, run_sync_limited
from ...sync.engine import SyncEngine
from ...sync.models import RepositoryLinkTask
from .errors import build_error_response
from .registry import SYNC_ADMIN, ToolSpec, int_argument

SYNC_TOOLS = [
    types.Tool(
        name="member_sync_project",
        description="Push every active member of a Redmine project into its GitLab group at the access level of their roles (Manager -> Owner, Developer -> Developer, Reporter -> Reporter). The group defaults to the project's mapped or inherited group. Returns added/updated/failed counts. Requires SYNC_ADMIN permission.",
        inputSchema={
            "type": "object",
            "properties": {
                "tracker_project_id": {
                    "type": "integer",
                    "description": "Redmine project id (required)",
                },
                "hosting_group_id": {
                    "type": "integer",
                    "description": "GitLab group id (optional; defaults to the mapped group)",
                },
            },
            "required": ["tracker_project_id"],
        },
    ),
    types.Tool(
        name="repository_link",
        description="Link the GitLab repository of a Redmine project. By default queues a link task with the normal retry schedule. Set immediate=true to make one attempt now; it then needs not_before (Unix seconds) and only considers repositories modified after it. Requires SYNC_ADMIN permission.",
        inputSchema={
            "type": "object",
            "properties": {
                "tracker_project_id": {
                    "type": "integer",
                    "description": "Redmine project id (required)",
                },
                "hosting_project_id": {
                    "type": "integer",
                    "description": "GitLab project id (optional; defaults to the mapped project)",
                },
                "not_before": {
                    "type": "number",
                    "description": "Only repositories modified after this Unix timestamp qualify (default: now)",
                },
                "immediate": {
                    "type": "boolean",
                    "description": "Attempt the link now instead of queueing (default: false)",
                    "default": False,
                },
            },
            "required": ["tracker_project_id"],
        },
    ),
]


async def _group_for_project(engine: SyncEngine, project_id: int) -> int | None:
    mapping = await run_sync(engine.mapping_index.find_mapping, project_id)
    if mapping is not None and mapping.hosting_group_id is not None:
        return mapping.hosting_group_id
    project = await run_sync(engine.redmine.get_project, project_id)
    if project is None:
        return None
    inherited = await run_sync(engine.mapping_index.find_inherited_group, project)
    return inherited.hosting_group_id if inherited else None


async def _handle_member_sync(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    project_id = int_argument(args, "tracker_project_id")
    group_id = int_argument(args, "hosting_group_id", required=False)
    if group_id is None:
        group_id = await _group_for_project(engine, project_id)
    if group_id is None:
        return build_error_response(
            "not_found",
            f"Redmine project {project_id} has no GitLab group",
            "Map the project with mapping_set or pass hosting_group_id.",
        )

    report = await run_sync_limited(
        engine.reconciler.sync_project_members, group_id, project_id
    )

    text = report.summary()
    if report.errors:
        text += "\n\nErrors:\n" + "\n".join(f"- {e}" for e in report.errors)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=report.model_dump(),
    )


async def _handle_repository_link(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    project_id = int_argument(args, "tracker_project_id")
    hosting_project_id = int_argument(args, "hosting_project_id", required=False)
    if hosting_project_id is None:
        mapping = await run_sync(engine.mapping_index.find_mapping, project_id)
        if mapping is not None:
            hosting_project_id = mapping.hosting_project_id

    not_before = args.get("not_before")
    if not_before is not None:
        not_before = float(not_before)

    if not args.get("immediate", False):
        task = await run_sync(
            engine.orchestrator.schedule_repository_link,
            project_id,
            hosting_project_id,
            not_before,
        )
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=(
                        f"Queued repository link for Redmine project {project_id} "
                        f"(cutoff {task.not_before_timestamp:.0f})."
                    ),
                )
            ],
            structuredContent={"queued": True, "task": task.model_dump()},
        )

    if not_before is None:
        return build_error_response(
            "validation_error",
            "not_before is required when immediate=true",
            "Pass the Unix time the GitLab project was created.",
        )
    task = RepositoryLinkTask(
        tracker_project_id=project_id,
        hosting_project_id=hosting_project_id,
        not_before_timestamp=not_before,
    )
    url = await run_sync(engine.linker.link, task)
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=f"Linked Redmine project {project_id} to {url}",
            )
        ],
        structuredContent={"queued": False, "repository_url": url},
    )


# ToolSpec list for registry-based dispatch
SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_TOOLS[0],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_member_sync,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[1],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_repository_link,
    ),
]
