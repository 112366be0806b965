"""
Client-side WhatsApp connection monitoring.
"""
from konver.monitor.scheduler import PeriodicTask
from konver.monitor.connection_monitor import (
    ConnectionState,
    WhatsAppConnectionMonitor,
    log_notifier,
)

__all__ = [
    "PeriodicTask",
    "ConnectionState",
    "WhatsAppConnectionMonitor",
    "log_notifier",
]
