"""Error response builders for MCP tool handlers.

Structured error responses carry a corrective action so an agent can
recover without human intervention.  ``translate_sync_error`` maps the
engine's exception taxonomy onto those responses.
"""

import mcp.types as types

from ...errors import (
    HostingApiError,
    IdentityNotFound,
    MaxAttemptsExceeded,
    RepositoryNotReady,
    StorageError,
    SyncError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, permission_denied,
            connection_error, hosting_error, storage_error, not_ready,
            validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Group 7 not found", "Use gitlab_list_groups to find group ids.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_sync_error(error: SyncError) -> types.CallToolResult:
    """Translate an engine exception into a structured error response."""
    match error:
        case IdentityNotFound():
            return build_error_response(
                "not_found",
                str(error),
                "Create the GitLab account or link the user's SSO identity, "
                "then run identity_cache_invalidate and retry.",
            )
        case HostingApiError(status_code=None):
            return build_error_response(
                "connection_error",
                str(error),
                "Check GITLAB_API_URL and network connectivity, then retry.",
            )
        case HostingApiError(status_code=401 | 403):
            return build_error_response(
                "permission_denied",
                str(error),
                "Check that GITLAB_API_TOKEN belongs to an administrator.",
            )
        case HostingApiError(status_code=404):
            return build_error_response(
                "not_found",
                str(error),
                "Use gitlab_list_groups to verify group and project ids.",
            )
        case HostingApiError() if not error.retryable:
            return build_error_response(
                "hosting_error",
                str(error),
                "GitLab rejected the request; check the ids and parameters.",
            )
        case StorageError():
            return build_error_response(
                "storage_error",
                str(error),
                "Check GITLAB_SYNC_STATE_DIR is writable and Redmine is reachable.",
            )
        case RepositoryNotReady() | MaxAttemptsExceeded():
            return build_error_response(
                "not_ready",
                str(error),
                "Wait for GitLab to finish creating the repository, then "
                "run repository_link again with an earlier not_before.",
            )
        case _:
            return build_error_response(
                "server_error",
                str(error),
                "Check the server log and retry later.",
            )
