import base64
import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from maester_api.engine.job_manager import JobManager
from maester_api.engine.job_store import JobStore
from maester_api.engine.models import Job, utcnow

RAW_RESULTS = {
    "Result": "Failed",
    "TotalCount": 99,  # engine totals are never trusted
    "Blocks": [
        {
            "Name": "EIDSCA.AF01 Authentication",
            "Tests": [
                {
                    "Name": "Default Authorization Settings",
                    "Result": "Passed",
                    "Duration": "00:00:01.5000000",
                    "Tag": ["EIDSCA", "EIDSCA.AF01", "Severity:High"],
                },
                {
                    "Name": "Guest access",
                    "Id": "EIDSCA.AF02",
                    "Severity": "critical",
                    "Result": "Failed",
                    "DurationMs": 20,
                    "Tag": ["Severity:Low"],
                    "ErrorRecord": [{"Exception": {"Message": "Expected true"}}],
                    "ResultDetail": {"TestDescription": "Guests are restricted", "TestResult": "Guests can invite"},
                },
            ],
        },
        {
            "Name": "Maester Entra",
            "Blocks": [
                {
                    "Name": "Conditional Access",
                    "Tests": [
                        {
                            "Name": "MFA for admins",
                            "Result": "Skipped",
                            "Tag": ["MT.1001"],
                            "ResultDetail": {"SkippedReason": "NotConnectedExchange", "Service": "Exchange"},
                        },
                        {"Name": "Legacy auth  blocked", "Result": "Inconclusive"},
                    ],
                }
            ],
        },
    ],
}


class FakeLauncher:
    def __init__(self):
        self.launched = []
        self.reaped = []
        self.reap_finished_calls = 0

    def launch(self, bundle):
        self.launched.append(bundle)
        return object()

    def reap(self, job_id):
        self.reaped.append(job_id)
        return True

    def reap_finished(self):
        self.reap_finished_calls += 1
        return 0


def jwt_with(claims):
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).decode().rstrip("=")
    return f"eyJhbGciOiJub25lIn0.{payload}.sig"


def backdate(store, job_id, **delta):
    with store.SessionLocal() as db:
        job = db.get(Job, job_id)
        job.created_at = utcnow() - timedelta(**delta)
        job.updated_at = job.created_at
        db.commit()


@pytest.fixture
def store(tmp_path):
    job_store = JobStore(f"sqlite:///{tmp_path / 'jobs.db'}")
    yield job_store
    job_store.engine.dispose()


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def manager(store, launcher):
    return JobManager(store, launcher, max_running_per_tenant=1, settings={"database_url": store.database_url})


@pytest.fixture
def client(manager):
    from maester_api.main import app
    from maester_api.api.routes import get_job_manager

    app.dependency_overrides[get_job_manager] = lambda: manager
    yield TestClient(app)
    app.dependency_overrides.clear()
