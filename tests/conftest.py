"""
Pytest configuration and fixtures
"""
import pytest
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from roadwatch.alerts.broadcast import BroadcastSink, ContactNotifier
from roadwatch.core.exceptions import BroadcastError
from roadwatch.crowdsource.policy import VerificationPolicy
from roadwatch.crowdsource.store import IncidentStore
from roadwatch.database.connection import DatabaseConnection


# Reference report time used across suites (naive UTC)
T0 = datetime(2026, 3, 14, 8, 0, 0)

# Carrefour Bastos, Yaounde
BASTOS = (3.8480, 11.5021)


class RecordingSink(BroadcastSink):
    """Broadcast sink that keeps every message in memory."""

    def __init__(self):
        self.messages = []

    async def emit(self, text, critical=False):
        self.messages.append((text, critical))


class RecordingNotifier(ContactNotifier):
    """Contact notifier that keeps alerts in memory; listed contacts fail."""

    def __init__(self, unreachable=()):
        self.alerts = []
        self.unreachable = set(unreachable)

    async def notify(self, contact, text):
        if contact in self.unreachable:
            raise BroadcastError(f"chat {contact} not found")
        self.alerts.append((contact, text))


def make_store(database_url="sqlite://", policy=None):
    """Fresh store on its own database with tables created."""
    db = DatabaseConnection(database_url=database_url)
    db.create_tables()
    return IncidentStore(db, policy or VerificationPolicy())


@pytest.fixture
def store():
    """Incident store backed by an in-memory SQLite database."""
    store = make_store()
    yield store
    store.db.close()


@pytest.fixture
def file_store(tmp_path):
    """Incident store backed by a SQLite file (safe for multiple threads)."""
    store = make_store(f"sqlite:///{tmp_path / 'roadwatch_test.db'}")
    yield store
    store.db.close()


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def flooding_reports():
    """Two flooding reports by different reporters, ~15 m and 3 minutes apart."""
    return [
        {"reporter_id": "reporter-a", "latitude": 3.8480, "longitude": 11.5021, "minutes": 0},
        {"reporter_id": "reporter-b", "latitude": 3.8481, "longitude": 11.5022, "minutes": 3},
    ]
