"""Project mapping tools.

``mapping_get`` and ``mapping_inherited_group`` read the stored
Redmine -> GitLab associations.  ``mapping_set`` writes one, optionally
running the full project-created flow (repository link, member sync,
badge, integration) as if Redmine had just created the project.
"""

import mcp.types as types

from ...core.async_utils import run_sync
from ...sync.engine import SyncEngine
from ...sync.models import MappingKind
from .errors import build_error_response
from .registry import SYNC_ADMIN, SYNC_VIEW, ToolSpec, int_argument

MAPPING_TOOLS = [
    types.Tool(
        name="mapping_get",
        description="Get the stored GitLab mapping of a Redmine project: group id, project id and mapping kind (group or project). Requires SYNC_VIEW permission.",
        inputSchema={
            "type": "object",
            "properties": {
                "tracker_project_id": {
                    "type": "integer",
                    "description": "Redmine project id (required)",
                },
            },
            "required": ["tracker_project_id"],
        },
    ),
    types.Tool(
        name="mapping_set",
        description="Create or replace the GitLab mapping of a Redmine project. Set on_created=true to also queue the project-created follow-up work: repository linking (when hosting_project_id is given), bulk member sync, and the optional badge and integration setup. Requires SYNC_ADMIN permission.",
        inputSchema={
            "type": "object",
            "properties": {
                "tracker_project_id": {
                    "type": "integer",
                    "description": "Redmine project id (required)",
                },
                "hosting_group_id": {
                    "type": "integer",
                    "description": "GitLab group id",
                },
                "hosting_project_id": {
                    "type": "integer",
                    "description": "GitLab project id",
                },
                "mapping_kind": {
                    "type": "string",
                    "enum": ["group", "project"],
                    "description": "Mapping kind (default: project when hosting_project_id is given, else group)",
                },
                "on_created": {
                    "type": "boolean",
                    "description": "Queue project-created follow-up work (default: false)",
                    "default": False,
                },
            },
            "required": ["tracker_project_id"],
        },
    ),
    types.Tool(
        name="mapping_inherited_group",
        description="Find the GitLab group a Redmine project uses, walking up its parent projects until one is mapped to a group. Returns the group id and the project it was found on. Requires SYNC_VIEW permission.",
        inputSchema={
            "type": "object",
            "properties": {
                "tracker_project_id": {
                    "type": "integer",
                    "description": "Redmine project id (required)",
                },
            },
            "required": ["tracker_project_id"],
        },
    ),
]


async def _handle_get(engine: SyncEngine, args: dict) -> types.CallToolResult:
    project_id = int_argument(args, "tracker_project_id")
    mapping = await run_sync(engine.mapping_index.find_mapping, project_id)

    if mapping is None:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"Redmine project {project_id} is not mapped.",
                )
            ],
            structuredContent={"mapping": None},
        )

    text = (
        f"Redmine project {project_id} ({mapping.mapping_kind.value})\n"
        f"GitLab group: {mapping.hosting_group_id}\n"
        f"GitLab project: {mapping.hosting_project_id}"
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={"mapping": mapping.model_dump(mode="json")},
    )


async def _handle_set(engine: SyncEngine, args: dict) -> types.CallToolResult:
    project_id = int_argument(args, "tracker_project_id")
    group_id = int_argument(args, "hosting_group_id", required=False)
    hosting_project_id = int_argument(args, "hosting_project_id", required=False)
    if group_id is None and hosting_project_id is None:
        return build_error_response(
            "validation_error",
            "hosting_group_id or hosting_project_id is required",
            "Provide the GitLab group id, project id, or both.",
        )

    if args.get("on_created", False):
        task = await run_sync(
            engine.orchestrator.on_project_created,
            project_id,
            group_id,
            hosting_project_id,
        )
        mapping = await run_sync(engine.mapping_index.find_mapping, project_id)
        text = f"Mapped Redmine project {project_id} and queued follow-up work."
        if task is not None:
            text += f"\nRepository link queued (cutoff {task.not_before_timestamp:.0f})."
    else:
        kind = args.get("mapping_kind") or (
            MappingKind.PROJECT if hosting_project_id else MappingKind.GROUP
        )
        mapping = await run_sync(
            engine.mapping_index.upsert_mapping,
            project_id,
            hosting_group_id=group_id,
            hosting_project_id=hosting_project_id,
            mapping_kind=kind,
        )
        text = (
            f"Mapped Redmine project {project_id} -> group {group_id}, "
            f"project {hosting_project_id} ({mapping.mapping_kind.value})."
        )

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={"mapping": mapping.model_dump(mode="json")},
    )


async def _handle_inherited_group(
    engine: SyncEngine, args: dict
) -> types.CallToolResult:
    project_id = int_argument(args, "tracker_project_id")
    project = await run_sync(engine.redmine.get_project, project_id)
    if project is None:
        return build_error_response(
            "not_found",
            f"Redmine project {project_id} not found",
            "Check the Redmine project id.",
        )

    inherited = await run_sync(engine.mapping_index.find_inherited_group, project)
    if inherited is None:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"No GitLab group found for {project.identifier} or its parents.",
                )
            ],
            structuredContent={"inherited_group": None},
        )

    source = inherited.inherited_from
    text = (
        f"GitLab group {inherited.hosting_group_id} "
        f"(from project {source.identifier}, id {source.id})"
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={"inherited_group": inherited.model_dump(mode="json")},
    )


# ToolSpec list for registry-based dispatch
MAPPING_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=MAPPING_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_get,
    ),
    ToolSpec(
        tool=MAPPING_TOOLS[1],
        permissions=frozenset({SYNC_ADMIN}),
        handler=_handle_set,
    ),
    ToolSpec(
        tool=MAPPING_TOOLS[2],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_inherited_group,
    ),
]
