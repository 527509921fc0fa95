"""MCP tools for controlling the monitoring session.

This module provides start_monitoring, stop_monitoring and
get_monitoring_status on top of a SessionController.
"""

from typing import Any

import structlog
from pydantic import SecretStr

from messenger_monitor.browser.auth import Credentials
from messenger_monitor.tools.common import build_error_response, build_success_response

logger = structlog.get_logger(__name__)


async def start_monitoring(
    controller: Any,
    identifier: str | None = None,
    secret: str | None = None,
    code: str | None = None,
) -> dict[str, Any]:
    """Start monitoring, logging in first if needed.

    Without identifier and secret the operator must log in manually in the
    browser window. When the site asks for a one-time code the response is
    an error of type ``CODE_REQUIRED`` with ``data.requires_code`` set; call
    again with the same identifier and secret plus ``code``.

    Args:
        controller: SessionController instance.
        identifier: Login identifier (phone number).
        secret: Account password.
        code: One-time code sent by the site.

    Returns:
        Standardized response containing:
            - running: Whether monitoring is active
            - already_running: Whether it was active before this call
            - message: Human-readable result
    """
    logger.info(
        "start_monitoring_called",
        with_credentials=bool(identifier and secret),
        with_code=bool(code),
    )

    credentials = None
    if identifier and secret:
        credentials = Credentials(
            identifier=identifier,
            secret=SecretStr(secret),
            one_time_code=code or None,
        )
    elif identifier or secret:
        return build_error_response(
            message="identifier and secret must be given together",
            error_type="VALIDATION_ERROR",
        )
    elif code:
        # Resuming a parked code prompt needs no credentials
        if not controller.get_status().awaiting_code:
            return build_error_response(
                message="No login is waiting for a one-time code",
                error_type="VALIDATION_ERROR",
            )
        credentials = Credentials(identifier="", secret=SecretStr(""), one_time_code=code)

    try:
        result = await controller.start(credentials)
    except Exception as e:
        logger.error("start_monitoring_failed", error=str(e), exc_info=True)
        return build_error_response(
            message=f"Failed to start monitoring: {str(e)}",
            error_type="START_ERROR",
        )

    if result.requires_code:
        return build_error_response(
            message=result.message or "One-time code required",
            error_type="CODE_REQUIRED",
            data={"requires_code": True},
        )

    if not result.success:
        return build_error_response(
            message=result.error_message or "Failed to start monitoring",
            error_type=result.error_type or "START_ERROR",
        )

    return build_success_response(
        {
            "running": True,
            "already_running": result.already_running,
            "message": result.message,
        }
    )


async def stop_monitoring(controller: Any) -> dict[str, Any]:
    """Stop monitoring and close the browser.

    Args:
        controller: SessionController instance.

    Returns:
        Standardized response containing ``running: False``.
    """
    logger.info("stop_monitoring_called")

    try:
        await controller.stop()
    except Exception as e:
        logger.error("stop_monitoring_failed", error=str(e), exc_info=True)
        return build_error_response(
            message=f"Failed to stop monitoring: {str(e)}",
            error_type="STOP_ERROR",
        )

    return build_success_response({"running": False, "message": "Monitoring stopped"})


async def get_monitoring_status(controller: Any) -> dict[str, Any]:
    """Report the current session status.

    Args:
        controller: SessionController instance.

    Returns:
        Standardized response containing:
            - running: Whether monitoring is active
            - session_open: Whether a browser session exists
            - current_location: URL of the document view
            - seen_count: Number of distinct messages forwarded
            - awaiting_code: Whether a login waits for a one-time code
    """
    logger.info("monitoring_status_called")

    try:
        status = controller.get_status()
        return build_success_response(status.model_dump())
    except Exception as e:
        logger.error("monitoring_status_failed", error=str(e), exc_info=True)
        return build_error_response(
            message=f"Failed to get monitoring status: {str(e)}",
            error_type="STATUS_ERROR",
        )
