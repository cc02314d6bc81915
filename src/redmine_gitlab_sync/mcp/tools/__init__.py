"""MCP tool handlers for administering the sync engine.

This package contains MCP tool implementations that wrap the engine's
components with async handlers and structured error responses.
"""

from .errors import build_error_response, translate_sync_error
from .gitlab import GITLAB_SPECS, GITLAB_TOOLS
from .identity import IDENTITY_SPECS, IDENTITY_TOOLS
from .mapping import MAPPING_SPECS, MAPPING_TOOLS
from .registry import (
    SYNC_ADMIN,
    SYNC_VIEW,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = (
    IDENTITY_SPECS + MAPPING_SPECS + GITLAB_SPECS + SYNC_SPECS
)

__all__ = [
    "build_error_response",
    "translate_sync_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    "SYNC_VIEW",
    "SYNC_ADMIN",
    # Spec lists
    "ALL_SPECS",
    "IDENTITY_SPECS",
    "MAPPING_SPECS",
    "GITLAB_SPECS",
    "SYNC_SPECS",
    # Tool lists
    "IDENTITY_TOOLS",
    "MAPPING_TOOLS",
    "GITLAB_TOOLS",
    "SYNC_TOOLS",
]
