"""Common utilities for MCP tools.

This module provides shared functionality for all MCP tools including:
- Unified response formatting
- Error handling
"""

from datetime import datetime, timezone
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def build_success_response(
    data: dict[str, Any],
    source: str = "monitor",
) -> dict[str, Any]:
    """Build a standardized success response.

    Args:
        data: The response data.
        source: Component that produced the data ("monitor", "ledger", ...).

    Returns:
        Standardized response dictionary.
    """
    return {
        "status": "success",
        "data": data,
        "metadata": {
            "fetched_at": datetime.now(timezone.utc).isoformat(),
            "source": source,
        },
    }


def build_error_response(
    message: str,
    error_type: str = "UNKNOWN_ERROR",
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a standardized error response.

    Args:
        message: Error message.
        error_type: Error type identifier.
        data: Optional details for the caller (e.g. ``requires_code``).

    Returns:
        Standardized error response dictionary.
    """
    response: dict[str, Any] = {
        "status": "error",
        "error": {
            "message": message,
            "type": error_type,
        },
        "metadata": {
            "fetched_at": datetime.now(timezone.utc).isoformat(),
        },
    }
    if data is not None:
        response["data"] = data
    return response
