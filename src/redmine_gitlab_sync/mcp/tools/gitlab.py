"""GitLab inspection tools."""

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.engine import SyncEngine
from .registry import SYNC_VIEW, ToolSpec, int_argument

GITLAB_TOOLS = [
    types.Tool(
        name="gitlab_list_groups",
        description="List GitLab groups (id, name, path) visible to the sync token. Use it to pick a hosting_group_id for mapping_set. Requires SYNC_VIEW permission.",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="gitlab_orphan_projects",
        description="List the GitLab projects of a group that no Redmine project is mapped to. Requires SYNC_VIEW permission.",
        inputSchema={
            "type": "object",
            "properties": {
                "hosting_group_id": {
                    "type": "integer",
                    "description": "GitLab group id (required)",
                },
            },
            "required": ["hosting_group_id"],
        },
    ),
]


async def _handle_list_groups(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    groups = await run_sync(engine.gitlab.list_groups)

    if not groups:
        return types.CallToolResult(
            content=[types.TextContent(type="text", text="No groups found.")],
            structuredContent={"groups": []},
        )

    lines = [f"{g['id']}\t{g['path']}\t{g['name']}" for g in groups]
    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent={"groups": groups},
    )


async def _handle_orphan_projects(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    group_id = int_argument(args, "hosting_group_id")

    def find_orphans() -> list[dict]:
        projects = engine.gitlab.list_group_projects(group_id)
        return engine.mapping_index.orphan_projects(group_id, projects)

    orphans = [
        {"id": p["id"], "name": p.get("name", ""), "path": p.get("path", "")}
        for p in await run_sync(find_orphans)
    ]

    if not orphans:
        text = f"Every project in group {group_id} is mapped."
    else:
        text = f"{len(orphans)} unmapped project(s) in group {group_id}:\n" + "\n".join(
            f"{p['id']}\t{p['path']}" for p in orphans
        )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={"hosting_group_id": group_id, "projects": orphans},
    )


# ToolSpec list for registry-based dispatch
GITLAB_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=GITLAB_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_list_groups,
    ),
    ToolSpec(
        tool=GITLAB_TOOLS[1],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_orphan_projects,
    ),
]
