import itertools
import os
import tempfile
from datetime import datetime, timedelta

import pytest
from prometheus_client import REGISTRY

# Set test environment variables
os.environ["TESTING"] = "true"


@pytest.fixture(autouse=True)
def clear_prometheus_registry():
    """Clear the default prometheus registry before each test."""
    collectors = list(REGISTRY._collector_to_names.keys())
    for collector in collectors:
        REGISTRY.unregister(collector)
    yield


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    from src.factory import create_app
    from src.database import db
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "TRUST_ALERT_WEBHOOK_URL": "",
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


class FakeClock:
    """Deterministic clock handed to the engine."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 6, 1, 12, 0, 0))


@pytest.fixture
def policy():
    from src.services.trust_policy import default_policy
    return default_policy()


@pytest.fixture
def engine(app, policy, clock):
    """Engine bound to the app's session with a fake clock and no webhook."""
    from src.database import db
    from src.services.alerting_service import AlertingService
    from src.services.trust_engine import TrustEngine
    return TrustEngine(db.session, policy, alerting=AlertingService(webhook_url=""), clock=clock)


@pytest.fixture
def notification(clock):
    """Build lifecycle notifications relative to the fake clock."""
    job_ids = itertools.count(1)

    def build(raw_kind, subject_id="cust-1", role="customer", days_ago=0,
              related_entity_id=None, **extra):
        data = {
            "subject_id": subject_id,
            "role": role,
            "raw_kind": raw_kind,
            "occurred_at": (clock.now - timedelta(days=days_ago)).isoformat(),
            "related_entity_id": (related_entity_id if related_entity_id is not None
                                  else f"job-{next(job_ids)}"),
        }
        data.update(extra)
        return data

    return build
