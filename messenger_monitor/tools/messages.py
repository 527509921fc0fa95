"""MCP tool for replaying collected messages."""

from typing import Any

import structlog

from messenger_monitor.tools.common import build_error_response, build_success_response

logger = structlog.get_logger(__name__)

MAX_LIMIT = 500


async def list_messages(
    ledger: Any,
    limit: int = 50,
) -> dict[str, Any]:
    """List the most recent messages, oldest first.

    Args:
        ledger: MessageLedger instance.
        limit: Maximum number of messages (1-500, default: 50)

    Returns:
        Standardized response containing:
            - messages: List of message dictionaries
            - count: Number of messages returned
            - total: Number of messages in the ledger
    """
    logger.info("list_messages_called", limit=limit)

    # Clamp into [1, MAX_LIMIT]
    limit = max(1, min(limit, MAX_LIMIT))

    try:
        messages = ledger.get_all()
        recent = messages[-limit:]
        return build_success_response(
            {
                "messages": [message.model_dump() for message in recent],
                "count": len(recent),
                "total": len(messages),
            },
            source="ledger",
        )
    except Exception as e:
        logger.error("list_messages_failed", error=str(e), exc_info=True)
        return build_error_response(
            message=f"Failed to list messages: {str(e)}",
            error_type="LEDGER_ERROR",
        )
