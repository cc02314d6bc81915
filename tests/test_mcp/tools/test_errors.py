"""Tests for mcp/tools/errors.py: error response builders.

Covers:
- build_error_response() structure and format
- translate_sync_error() mapping of the engine's exception taxonomy
"""

import mcp.types as types
import pytest

from redmine_gitlab_sync.errors import (
    HostingApiError,
    IdentityNotFound,
    MaxAttemptsExceeded,
    RepositoryNotReady,
    StorageError,
    SyncError,
)
from redmine_gitlab_sync.mcp.tools.errors import build_error_response, translate_sync_error


def _get_error_text(result: types.CallToolResult) -> str:
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


class TestBuildErrorResponse:
    def test_format(self):
        result = build_error_response("not_found", "Group 7 not found", "List groups.")
        assert isinstance(result, types.CallToolResult)
        assert result.isError is True
        assert len(result.content) == 1
        assert _get_error_text(result) == (
            "Error (not_found): Group 7 not found\n\nAction: List groups."
        )


class TestTranslateSyncError:
    @pytest.mark.parametrize(
        "error, error_type",
        [
            (IdentityNotFound(7, "jdoe"), "not_found"),
            (HostingApiError("refused"), "connection_error"),
            (HostingApiError("no", status_code=401), "permission_denied"),
            (HostingApiError("no", status_code=403), "permission_denied"),
            (HostingApiError("gone", status_code=404), "not_found"),
            (HostingApiError("bad", status_code=400), "hosting_error"),
            (HostingApiError("down", status_code=503), "server_error"),
            (StorageError("disk full"), "storage_error"),
            (RepositoryNotReady(1, 2), "not_ready"),
            (MaxAttemptsExceeded(1, 555, 10), "not_ready"),
            (SyncError("other"), "server_error"),
        ],
    )
    def test_mapping(self, error, error_type):
        result = translate_sync_error(error)
        assert result.isError is True
        text = _get_error_text(result)
        assert text.startswith(f"Error ({error_type}): {error}")
        assert "\n\nAction: " in text

    def test_identity_hint_mentions_cache_tool(self):
        text = _get_error_text(translate_sync_error(IdentityNotFound(7)))
        assert "identity_cache_invalidate" in text
