"""
Issue Tracker - Test Configuration and Fixtures
"""
import os
import shutil
import tempfile

import pytest
from fastapi.testclient import TestClient

# Set testing environment before the app (and its engine) is imported
_TMP = tempfile.mkdtemp(prefix="issue_tracker_tests_")
os.environ["ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DATABASE_DSN"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only"
os.environ["SHARED_PASSWORD"] = "1111"
os.environ["COUNTER_BACKEND"] = "sql"
os.environ["LIVE_POLL_SECONDS"] = "0.2"

from issue_tracker.main import app  # noqa: E402
from issue_tracker.db.base import Base  # noqa: E402
from issue_tracker.db.session import SessionLocal, engine  # noqa: E402

PASSWORD = "1111"


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    shutil.rmtree(_TMP, ignore_errors=True)


@pytest.fixture(autouse=True)
def fresh_schema():
    """Every test starts with empty tables (and therefore a fresh counter)."""
    Base.metadata.create_all(bind=engine)
    yield
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def login(client: TestClient, role: str, password: str = PASSWORD):
    return client.post(
        "/login",
        data={"role": role, "password": password},
        follow_redirects=False,
    )


@pytest.fixture
def client():
    """Anonymous client."""
    return TestClient(app)


@pytest.fixture
def sales_client():
    c = TestClient(app)
    assert login(c, "sales_manager").status_code == 303
    return c


@pytest.fixture
def support_client():
    c = TestClient(app)
    assert login(c, "product_support").status_code == 303
    return c


@pytest.fixture
def tech_client():
    c = TestClient(app)
    assert login(c, "tech_support_team").status_code == 303
    return c


@pytest.fixture
def standard_form():
    return {
        "actionable": "Follow up required",
        "detailed_actionable": "Customer asked for a callback about disbursal",
        "lsq_link": "https://lsq.example.com/lead/42",
        "urn": "URN-1001",
        "comments": "",
    }


@pytest.fixture
def loan_form():
    return {
        "entity": "Applicant",
        "issue_type": "pan_issue",
        "sub_issue": "Primary PAN Available",
        "action_requested": "No Action (resolve as is)",
        "opportunity_id": "idep123abc",
        "lsq_url": "https://lsq.example.com/opportunity/IDEP123ABC",
        "applicant_name": "Asha Rao",
        "notes": "",
    }


def attachment(name: str = "statement.pdf", body: bytes = b"%PDF-1.4 test", content_type: str = "application/pdf"):
    return {"attachments": (name, body, content_type)}
