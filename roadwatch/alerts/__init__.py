"""
RoadWatch AI - Alert System
Incident broadcast and background maintenance.
"""

from roadwatch.alerts.broadcast import (
    BroadcastSink,
    LoggingSink,
    TelegramChannelSink,
    ContactNotifier,
    LoggingContactNotifier,
    TelegramContactNotifier,
    Broadcaster,
    create_sink,
    create_contact_notifier,
    format_incident_message,
)
from roadwatch.alerts.scheduler import (
    MaintenanceScheduler,
    build_digest,
)

__all__ = [
    # Broadcast
    "BroadcastSink",
    "LoggingSink",
    "TelegramChannelSink",
    "ContactNotifier",
    "LoggingContactNotifier",
    "TelegramContactNotifier",
    "Broadcaster",
    "create_sink",
    "create_contact_notifier",
    "format_incident_message",
    # Scheduler
    "MaintenanceScheduler",
    "build_digest",
]
