"""MCP tools module for messenger monitoring.

This module provides FastMCP tools for:
- Starting and stopping monitoring
- Monitoring status
- Message history
- Health check
"""

from messenger_monitor.tools.monitoring import (
    get_monitoring_status,
    start_monitoring,
    stop_monitoring,
)
from messenger_monitor.tools.messages import list_messages
from messenger_monitor.tools.health import health_check

__all__ = [
    "start_monitoring",
    "stop_monitoring",
    "get_monitoring_status",
    "list_messages",
    "health_check",
]
