"""
RoadWatch AI - Error Taxonomy
"""


class RoadWatchError(Exception):
    """Base class for all application errors."""


class BackendUnavailableError(RoadWatchError):
    """AI backend is not configured, timed out, or returned garbage."""


class StoreUnavailableError(RoadWatchError):
    """Persistence call failed; the transaction was rolled back."""


class MalformedLocationError(RoadWatchError, ValueError):
    """Coordinates are missing or outside the valid range."""


class IncidentNotFoundError(RoadWatchError, LookupError):
    """No incident exists with the requested id."""

    def __init__(self, incident_id: str):
        super().__init__(f"Incident not found: {incident_id}")
        self.incident_id = incident_id


class BroadcastError(RoadWatchError):
    """Broadcast sink rejected or failed to deliver a message."""
