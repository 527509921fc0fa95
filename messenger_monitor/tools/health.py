"""MCP tool for health checking.

This module provides the health_check tool which reports the state of the
monitoring session and the message ledger.
"""

from datetime import datetime, timezone
from typing import Any

import structlog

from messenger_monitor.tools.common import build_error_response, build_success_response

logger = structlog.get_logger(__name__)


async def health_check(
    controller: Any,
    ledger: Any,
) -> dict[str, Any]:
    """Check health of MCP server components.

    Verifies the status of:
    - Browser session
    - Polling loop
    - Message ledger

    Args:
        controller: SessionController instance.
        ledger: MessageLedger instance.

    Returns:
        Standardized response containing:
            - browser_status: "open" or "closed"
            - monitoring: Whether the polling loop is active
            - awaiting_code: Whether a login waits for a one-time code
            - messages: Number of messages in the ledger
            - subscribers: Number of live event subscribers
            - checked_at: Timestamp of health check

    Examples:
        >>> response = await health_check(controller, ledger)
        >>> print(response["data"]["browser_status"])
        closed
    """
    logger.info("health_check_called")

    try:
        status = controller.get_status()

        result = {
            "browser_status": "open" if status.session_open else "closed",
            "monitoring": status.running,
            "awaiting_code": status.awaiting_code,
            "messages": len(ledger),
            "subscribers": ledger.subscriber_count,
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }

        return build_success_response(result, source="health_check")

    except Exception as e:
        logger.error("health_check_failed", error=str(e), exc_info=True)
        return build_error_response(
            message=f"Health check failed: {str(e)}",
            error_type="HEALTH_CHECK_ERROR",
        )
