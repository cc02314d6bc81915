"""MCP server for administering the Redmine -> GitLab sync engine.

This module implements the Model Context Protocol server that lets an
operator (or an AI agent) inspect mappings and the identity cache, and
trigger member syncs and repository links, while the engine's worker
queue processes Redmine events in the background.

Transport: stdio
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..config_loader import ensure_config
from ..core.async_utils import run_sync
from ..logger import setup_logging
from ..sync.engine import SyncEngine
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

SERVER_NAME = "redmine-gitlab-sync"
DEFAULT_LOG_FILE = "/tmp/redmine-gitlab-sync.log"

# Initialize server instance
server = Server(SERVER_NAME)

# Global engine instance (initialized in lifespan)
_engine: SyncEngine | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(engine: SyncEngine, args: dict) -> types.CallToolResult:
    """Handle ping tool -- test GitLab connectivity and report queue state."""
    try:
        version = await run_sync(engine.gitlab.get_version)
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"GitLab connection failed: {e}. Check GITLAB_API_URL and GITLAB_API_TOKEN.",
                )
            ],
            isError=True,
        )
    pending = engine.queue.pending()
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=(
                    f"Connected to GitLab {version}. "
                    f"Queue running: {engine.queue.is_running}, pending jobs: {pending}"
                ),
            )
        ],
        structuredContent={
            "gitlab_version": version,
            "queue_running": engine.queue.is_running,
            "pending_jobs": pending,
        },
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test GitLab connectivity and report the GitLab version and worker queue state",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_engine() -> SyncEngine:
    """Get the global SyncEngine instance.

    Raises:
        RuntimeError: If the engine is not initialized
    """
    if _engine is None:
        raise RuntimeError("SyncEngine not initialized. Server lifespan not started.")
    return _engine


def set_engine(engine: SyncEngine | None) -> None:
    global _engine
    _engine = engine


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the registry of all tools, filtered by an optional permissions file."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """Return all registered (and permitted) tools from the ToolRegistry."""
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    engine = get_engine()
    try:
        return await get_registry().call_tool(name, arguments, engine)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), builds the
    engine via the lifespan manager, and serves until the client
    disconnects.

    Args:
        config_overrides: Optional dict with config values to override
            (gitlab_url, gitlab_token, redmine_url, redmine_api_key,
            insecure, debug, log_file, permissions_file)
    """
    overrides = config_overrides or {}

    # Must run before stdio_server so nothing reaches stdout during negotiation
    setup_logging(
        mode="mcp", debug=overrides.get("debug", False), log_file=overrides.get("log_file")
    )

    set_registry(build_registry(overrides.get("permissions_file")))

    # set_engine() is called here rather than in the lifespan so the global
    # lands in this module even when it runs as __main__.
    async with server_lifespan(config_overrides=config_overrides) as ctx:
        set_engine(ctx["engine"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_engine(None)
            set_registry(None)


def parse_args(argv: list[str] | None = None) -> dict:
    """Parse CLI arguments into a config overrides dict."""
    parser = argparse.ArgumentParser(
        description="Redmine GitLab Sync - keeps GitLab groups and repositories in step with Redmine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .gitlab_sync/config.yml)
  redmine-gitlab-sync

  # Override connection settings
  redmine-gitlab-sync --gitlab-url https://gitlab.example.com --redmine-url https://redmine.example.com

  # Read-only admin surface
  redmine-gitlab-sync --permissions-file /etc/gitlab-sync/read-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr.
        """,
    )
    parser.add_argument("--gitlab-url", help="Override GitLab URL (GITLAB_API_URL)")
    parser.add_argument(
        "--gitlab-token",
        help="Override GitLab admin token (GITLAB_API_TOKEN)"
        " (visible in process list -- prefer the env var)",
    )
    parser.add_argument("--redmine-url", help="Override Redmine URL (REDMINE_URL)")
    parser.add_argument(
        "--redmine-api-key",
        help="Override Redmine API key (REDMINE_API_KEY)"
        " (visible in process list -- prefer the env var)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (SYNC_VIEW, SYNC_ADMIN), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a commented starter .gitlab_sync/config.yml if no config file exists, then exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"{SERVER_NAME} version {__version__}",
    )

    args = parser.parse_args(argv)

    overrides: dict = {}
    for key in ("gitlab_url", "gitlab_token", "redmine_url", "redmine_api_key"):
        value = getattr(args, key)
        if value:
            overrides[key] = value
    if args.insecure:
        overrides["insecure"] = True
    if args.debug:
        overrides["debug"] = True
    if args.log_file:
        overrides["log_file"] = args.log_file
    if args.permissions_file:
        overrides["permissions_file"] = args.permissions_file
    if args.init_config:
        overrides["init_config"] = True
    return overrides


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    config_overrides = parse_args()

    if config_overrides.pop("init_config", False):
        path = ensure_config()
        print(f"Config file: {path}", file=sys.stderr)
        return

    secret_keys = {"gitlab_token", "redmine_api_key"}
    shown = [k for k in config_overrides if k not in secret_keys]
    if shown:
        print(f"Config overrides from CLI: {', '.join(shown)}", file=sys.stderr)

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
