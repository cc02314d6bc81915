"""Identity cache tools: inspect and invalidate Redmine -> GitLab user matches."""

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.engine import SyncEngine
from .registry import SYNC_ADMIN, SYNC_VIEW, ToolSpec, int_argument

IDENTITY_TOOLS = [
    types.Tool(
        name="identity_cache_stats",
        description="Summarise the identity cache: total cached users, counts per match method (external_identity, username, email) and how many were resolved in the last 24 hours. Requires SYNC_VIEW permission.",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="identity_cache_invalidate",
        description="Drop cached GitLab identities so the next membership change re-resolves them. Pass tracker_user_id to drop one user, or omit it to clear the whole cache. Requires SYNC_ADMIN permission.",
        inputSchema={
            "type": "object",
            "properties": {
                "tracker_user_id": {
                    "type": "integer",
                    "description": "Redmine user id (optional; omit to clear all)",
                },
            },
            "required": [],
        },
    ),
]


async def _handle_stats(engine: SyncEngine, args: dict) -> types.CallToolResult:
    stats = await run_sync(engine.orchestrator.get_identity_cache_stats)

    lines = [f"Cached identities: {stats.total}"]
    for method, count in sorted(stats.by_method.items()):
        lines.append(f"  {method}: {count}")
    lines.append(f"Resolved in the last 24h: {stats.recent_count}")

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=stats.model_dump(),
    )


async def _handle_invalidate(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    user_id = int_argument(args, "tracker_user_id", required=False)
    removed = await run_sync(engine.orchestrator.invalidate_identity_cache, user_id)

    if user_id is None:
        text = f"Cleared identity cache ({removed} entries removed)."
    elif removed:
        text = f"Removed cached identity for Redmine user {user_id}."
    else:
        text = f"Redmine user {user_id} was not cached."

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={"tracker_user_id": user_id, "removed": removed},
    )


# ToolSpec list for registry-based dispatch
IDENTITY_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=IDENTITY_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_stats,
    ),
    ToolSpec(
        tool=IDENTITY_TOOLS[1],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_invalidate,
    ),
]
