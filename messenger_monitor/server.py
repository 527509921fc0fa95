"""FastMCP server entry point for the Messenger Monitor.

This module provides the MCP server that exposes monitoring control and the
collected messages through FastMCP tools, plus HTTP routes for liveness and
a server-sent-events message stream.
"""

import logging
import sys
from contextlib import asynccontextmanager

import structlog
from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse

from messenger_monitor.config import load_selectors, settings
from messenger_monitor.messages.ledger import MessageLedger
from messenger_monitor.messages.stream import SSE_HEADERS, message_events
from messenger_monitor.monitor.controller import SessionController


# Configure structlog
def configure_logging() -> None:
    """Configure structlog for JSON or console output."""
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        cache_logger_on_first_use=True,
    )


# Initialize logging
configure_logging()
logger = structlog.get_logger(__name__)

# Global instances (initialized in lifespan)
ledger: MessageLedger | None = None
controller: SessionController | None = None


def _not_initialized() -> dict:
    logger.error("server_not_initialized")
    return {
        "status": "error",
        "error": {"message": "Server not initialized", "type": "INITIALIZATION_ERROR"},
    }


@asynccontextmanager
async def lifespan(server):
    """Manage server startup and shutdown."""
    global ledger, controller

    logger.info(
        "mcp_server_starting",
        log_level=settings.log_level,
        log_format=settings.log_format,
        targets=settings.target_names,
    )

    # Load selectors
    try:
        selectors = load_selectors()
        logger.info("selectors_loaded", path=settings.selectors_path)
    except Exception as e:
        logger.error("failed_to_load_selectors", error=str(e), exc_info=True)
        sys.exit(1)

    ledger = MessageLedger()
    controller = SessionController(ledger, selectors)
    logger.info("mcp_server_startup_complete")

    try:
        yield
    finally:
        logger.info("mcp_server_shutting_down")

        # Browser must not outlive the server
        try:
            await controller.stop()
        except Exception as e:
            logger.warning("monitoring_shutdown_error", error=str(e))

        logger.info("mcp_server_shutdown_complete")


# Create FastMCP instance
mcp = FastMCP("Messenger Monitor", lifespan=lifespan)


# Tool: Start Monitoring
@mcp.tool()
async def start_monitoring(
    identifier: str | None = None,
    secret: str | None = None,
    code: str | None = None,
) -> dict:
    """Start monitoring the messenger for messages from the target correspondents.

    Opens a browser, logs in, navigates to the messenger and starts polling.
    Without identifier and secret, log in manually in the opened browser
    window within the manual login timeout.

    Args:
        identifier: Login phone number (optional)
        secret: Account password (optional, required with identifier)
        code: One-time code, when a previous call answered CODE_REQUIRED

    Returns:
        Dictionary containing:
            - status: "success" or "error"
            - data: Start result (if success)
                - running: Whether monitoring is active (bool)
                - already_running: Whether it was already active (bool)
                - message: Result description (str)
            - error: Error details (if error); type CODE_REQUIRED means
              call again with the one-time code
            - metadata: Response metadata
    """
    from messenger_monitor.tools.monitoring import start_monitoring as start_impl

    if not controller:
        return _not_initialized()

    return await start_impl(controller, identifier=identifier, secret=secret, code=code)


# Tool: Stop Monitoring
@mcp.tool()
async def stop_monitoring() -> dict:
    """Stop monitoring and close the browser.

    Safe to call when monitoring is not running.

    Returns:
        Dictionary containing:
            - status: "success" or "error"
            - data: running is False (if success)
            - metadata: Response metadata
    """
    from messenger_monitor.tools.monitoring import stop_monitoring as stop_impl

    if not controller:
        return _not_initialized()

    return await stop_impl(controller)


# Tool: Monitoring Status
@mcp.tool()
async def monitoring_status() -> dict:
    """Get the current monitoring status.

    Returns:
        Dictionary containing:
            - status: "success" or "error"
            - data: Session status (if success)
                - running: Whether monitoring is active (bool)
                - session_open: Whether a browser session exists (bool)
                - current_location: Current page URL (str or None)
                - seen_count: Distinct messages forwarded this session (int)
                - awaiting_code: Whether login waits for a one-time code (bool)
            - metadata: Response metadata
    """
    from messenger_monitor.tools.monitoring import get_monitoring_status as status_impl

    if not controller:
        return _not_initialized()

    return await status_impl(controller)


# Tool: List Messages
@mcp.tool()
async def list_messages(limit: int = 50) -> dict:
    """List messages collected since the server started.

    Args:
        limit: Maximum number of most recent messages to return (1-500, default: 50)

    Returns:
        Dictionary containing:
            - status: "success" or "error"
            - data: Message history (if success)
                - messages: List of message dictionaries
                    - id: Message identifier (str)
                    - text: Message text (str)
                    - sender_name: Sender (str)
                    - phone_number: Phone number found in the message (str or None)
                    - observed_at: ISO 8601 timestamp (str)
                    - source: Extraction strategy or "system" (str)
                - count: Number of messages returned (int)
                - total: Number of messages collected (int)
            - metadata: Response metadata
    """
    from messenger_monitor.tools.messages import list_messages as list_impl

    if not ledger:
        return _not_initialized()

    return await list_impl(ledger, limit=limit)


# Tool: Health Check
@mcp.tool()
async def health_check() -> dict:
    """Check health of MCP server components.

    Returns:
        Dictionary containing:
            - status: "success" or "error"
            - data: Health status (if success)
                - browser_status: "open" or "closed" (str)
                - monitoring: Whether the polling loop is active (bool)
                - awaiting_code: Whether login waits for a one-time code (bool)
                - messages: Number of collected messages (int)
                - subscribers: Number of live event subscribers (int)
                - checked_at: ISO 8601 timestamp
            - metadata: Response metadata
    """
    from messenger_monitor.tools.health import health_check as health_check_impl

    if not controller or not ledger:
        return _not_initialized()

    return await health_check_impl(controller, ledger)


# HTTP health endpoint (for Docker healthcheck)
@mcp.custom_route("/health", methods=["GET"])
async def http_health(request: Request) -> JSONResponse:
    """HTTP endpoint for container healthchecks."""
    if not controller:
        return JSONResponse({"status": "initializing"})

    status = controller.get_status()
    return JSONResponse(
        {
            "status": "healthy",
            "monitoring": status.running,
            "session_open": status.session_open,
        }
    )


# HTTP message stream
@mcp.custom_route("/events", methods=["GET"])
async def http_events(request: Request) -> StreamingResponse | JSONResponse:
    """Server-sent events: history as ``allMessages``, then ``newMessage`` per message."""
    if not ledger:
        return JSONResponse({"status": "initializing"}, status_code=503)

    return StreamingResponse(
        message_events(ledger, request.is_disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


if __name__ == "__main__":
    # Recommended: uv run fastmcp run messenger_monitor/server.py
    logger.info("starting_mcp_server_directly")
    mcp.run(transport="http", host=settings.mcp_host, port=settings.mcp_port)
