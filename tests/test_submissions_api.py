import asyncio
import dataclasses
import io
from datetime import datetime, timezone

from starlette.datastructures import UploadFile

from issue_tracker.auth.user import Role, User
from issue_tracker.core.config import settings
from issue_tracker.core.id_allocator import IdAllocator, InMemoryCounterStore, StoreUnavailable, get_allocator
from issue_tracker.db.models import FormType, Submission
from issue_tracker.main import app
from issue_tracker.utils.storage import LocalFileStorage
from issue_tracker.utils.submissions import (
    CreatedSubmission,
    create_standard_submission,
    feed_marker,
    search_submissions,
    standard_form_from,
)

from conftest import attachment, login


class DownStore:
    def increment(self, name):
        raise StoreUnavailable("counter store offline")


def _submit_standard(client, form, files=None):
    return client.post("/submit", data=form, files=files if files is not None else attachment())


class TestLogin:
    """Role picker plus one shared password."""

    def test_login_page_lists_roles(self, client):
        response = client.get("/login")
        assert response.status_code == 200
        assert "Sales Manager" in response.text
        assert "Tech Support Team" in response.text

    def test_wrong_password(self, client):
        response = login(client, "sales_manager", password="nope")
        assert response.status_code == 400
        assert "Invalid password" in response.text
        assert "sid" not in response.cookies

    def test_missing_role(self, client):
        response = client.post("/login", data={"role": "", "password": "1111"}, follow_redirects=False)
        assert response.status_code == 400
        assert "Please select a role" in response.text

    def test_redirects_to_role_home(self, client):
        assert login(client, "sales_manager").headers["location"] == "/loan-issue"
        assert login(client, "product_support").headers["location"] == "/submit"
        assert login(client, "tech_support_team").headers["location"] == "/submissions"

    def test_next_url_is_honoured_when_local(self, client):
        response = client.post(
            "/login",
            data={"role": "tech_support_team", "password": "1111", "next_url": "/submissions?q=URN"},
            follow_redirects=False,
        )
        assert response.headers["location"] == "/submissions?q=URN"

    def test_external_next_url_is_ignored(self, client):
        response = client.post(
            "/login",
            data={"role": "tech_support_team", "password": "1111", "next_url": "https://evil.example/"},
            follow_redirects=False,
        )
        assert response.headers["location"] == "/submissions"

    def test_logout_clears_session(self, sales_client):
        response = sales_client.post("/logout", follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == "/login"


class TestAccess:
    def test_anonymous_page_redirects_to_login(self, client):
        response = client.get("/submissions", follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"].startswith("/login?redirect_url=")

    def test_anonymous_api_gets_401_json(self, client):
        response = client.get("/api/submissions")
        assert response.status_code == 401
        assert response.json()["detail"] == "Session expired"

    def test_sales_manager_cannot_view_list(self, sales_client):
        assert sales_client.get("/submissions").status_code == 403
        assert sales_client.get("/submit").status_code == 403

    def test_product_support_cannot_open_loan_form(self, support_client):
        assert support_client.get("/loan-issue").status_code == 403

    def test_tech_support_is_read_only(self, tech_client, standard_form):
        assert tech_client.get("/submissions").status_code == 200
        assert _submit_standard(tech_client, standard_form).status_code == 403

    def test_root_redirects_to_home(self, sales_client):
        response = sales_client.get("/", follow_redirects=False)
        assert response.headers["location"] == "/loan-issue"

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"


class TestStandardSubmission:
    def test_ids_are_sequential(self, support_client, standard_form):
        first = _submit_standard(support_client, standard_form)
        second = _submit_standard(support_client, {**standard_form, "urn": "URN-1002"})

        assert first.status_code == 200
        assert "Submission SUB-0001 created successfully!" in first.text
        assert "Submission SUB-0002 created successfully!" in second.text

    def test_row_and_attachment_persisted(self, support_client, standard_form, db_session):
        _submit_standard(support_client, standard_form, attachment("scan.png", b"\x89PNG data", "image/png"))

        s = db_session.get(Submission, "SUB-0001")
        assert s is not None
        assert s.form_type.value == "standard"
        assert s.urn == "URN-1001"
        assert s.submitted_by == "product_support"
        assert len(s.attachments) == 1
        assert s.attachments[0].file_name == "scan.png"
        assert s.attachments[0].file_size == 9
        assert s.attachments[0].url.startswith("/uploads/SUB-0001/")

    def test_file_is_required(self, support_client, standard_form):
        response = support_client.post("/submit", data=standard_form)
        assert response.status_code == 400
        assert "Please attach a file" in response.text

    def test_validation_failure_does_not_consume_an_id(self, support_client, standard_form):
        bad = _submit_standard(support_client, {**standard_form, "actionable": "Not an option"})
        assert bad.status_code == 400
        assert "Please select an actionable" in bad.text

        ok = _submit_standard(support_client, standard_form)
        assert "SUB-0001" in ok.text

    def test_rejects_total_above_cap(self, support_client, standard_form, db_session, monkeypatch):
        monkeypatch.setattr(settings, "ATTACHMENT_MAX_MB", 0)
        response = _submit_standard(support_client, standard_form)

        assert response.status_code == 400
        assert "exceeds maximum limit" in response.text
        assert db_session.query(Submission).count() == 0

    def test_warns_on_large_total(self, support_client, standard_form, monkeypatch):
        monkeypatch.setattr(settings, "ATTACHMENT_WARN_MB", 0)
        response = _submit_standard(support_client, standard_form)

        assert response.status_code == 200
        assert "Large total file size detected" in response.text


class TestLoanIssueSubmission:
    def test_decision_shown_and_persisted(self, sales_client, tech_client, loan_form):
        response = sales_client.post("/loan-issue", data=loan_form)
        assert response.status_code == 200
        assert "Submission SUB-0001 created successfully!" in response.text
        assert "Reject Lead (full or entity-specific)" in response.text
        assert "Overridden from requested: No Action (resolve as is)" in response.text

        data = tech_client.get("/api/submissions/SUB-0001").json()
        assert data["form_type"] == "loan_issue"
        assert data["issue_type"] == "pan_issue"
        assert data["opportunity_id"] == "IDEP123ABC"
        assert data["recommended_action"] == "Reject Lead (full or entity-specific)"
        assert data["reason"].endswith("(Overridden from requested: No Action (resolve as is))")
        assert data["next_steps"] == [
            "Relogin with correct mobile no linked to PAN.",
            "API Call: Check PAN mapping in database (e.g., query for full phone no).",
        ]
        assert data["report_date"] == datetime.now(timezone.utc).date().isoformat()
        assert data["attachments"] == []

    def test_multiple_attachments(self, sales_client, tech_client, loan_form):
        files = [
            ("attachments", ("a.txt", b"aaa", "text/plain")),
            ("attachments", ("b.txt", b"bbbb", "text/plain")),
        ]
        assert sales_client.post("/loan-issue", data=loan_form, files=files).status_code == 200

        data = tech_client.get("/api/submissions/SUB-0001").json()
        assert [a["file_name"] for a in data["attachments"]] == ["a.txt", "b.txt"]

    def test_sub_issue_dropped_for_types_without_one(self, sales_client, tech_client, loan_form):
        form = {**loan_form, "issue_type": "swapping", "sub_issue": "Mapping Error"}
        assert sales_client.post("/loan-issue", data=form).status_code == 200
        assert tech_client.get("/api/submissions/SUB-0001").json()["sub_issue"] == ""

    def test_invalid_opportunity_id(self, sales_client, loan_form):
        response = sales_client.post("/loan-issue", data={**loan_form, "opportunity_id": "OPP-1"})
        assert response.status_code == 400
        assert "Opportunity ID must be in format IDEP" in response.text

    def test_sub_issue_required_when_defined(self, sales_client, loan_form):
        response = sales_client.post("/loan-issue", data={**loan_form, "sub_issue": ""})
        assert response.status_code == 400
        assert "Please select a sub-issue" in response.text

    def test_other_requires_notes(self, sales_client, loan_form):
        form = {**loan_form, "issue_type": "other", "sub_issue": "", "notes": ""}
        response = sales_client.post("/loan-issue", data=form)
        assert response.status_code == 400
        assert "Notes are required" in response.text

    def test_allocation_failure_creates_nothing(self, sales_client, loan_form, db_session):
        app.dependency_overrides[get_allocator] = lambda: IdAllocator(DownStore())

        response = sales_client.post("/loan-issue", data=loan_form)

        assert response.status_code == 503
        assert "try again" in response.text
        assert db_session.query(Submission).count() == 0


class TestDecisionPreview:
    def test_preview(self, sales_client):
        response = sales_client.post(
            "/api/decision",
            json={"issue_type": "system_issue_ui", "notes": "issue was resolved already"},
        )
        assert response.status_code == 200
        assert response.json()["recommended_action"] == "No Action (resolve as is)"

    def test_unrecognized_type(self, sales_client):
        data = sales_client.post("/api/decision", json={"issue_type": "Something entirely unrecognized"}).json()
        assert data == {
            "recommended_action": "Manual Review",
            "reason": "Unclassified issue.",
            "next_steps": ["Escalate to support team."],
        }

    def test_requires_sales_manager(self, support_client):
        response = support_client.post("/api/decision", json={"issue_type": "swapping"})
        assert response.status_code == 403


class TestListing:
    def test_newest_first_and_search(self, support_client, sales_client, tech_client, standard_form, loan_form):
        _submit_standard(support_client, standard_form)
        _submit_standard(support_client, {**standard_form, "urn": "URN-2002"})
        sales_client.post("/loan-issue", data=loan_form)

        everything = tech_client.get("/api/submissions").json()
        assert everything["count"] == 3
        assert [i["id"] for i in everything["items"]] == ["SUB-0003", "SUB-0002", "SUB-0001"]

        by_urn = tech_client.get("/api/submissions", params={"q": "urn-2002"}).json()
        assert [i["id"] for i in by_urn["items"]] == ["SUB-0002"]

        by_type = tech_client.get("/api/submissions", params={"form_type": "loan_issue"}).json()
        assert [i["id"] for i in by_type["items"]] == ["SUB-0003"]

        by_issue = tech_client.get("/api/submissions", params={"q": "pan issue"}).json()
        assert [i["id"] for i in by_issue["items"]] == ["SUB-0003"]

    def test_list_page_marks_filtered_results(self, support_client, standard_form):
        _submit_standard(support_client, standard_form)
        response = support_client.get("/submissions", params={"q": "URN-1001"})
        assert response.status_code == 200
        assert "(filtered)" in response.text
        assert "/submissions/SUB-0001" in response.text

    def test_detail_lookup_is_case_insensitive(self, support_client, standard_form):
        _submit_standard(support_client, standard_form)
        response = support_client.get("/submissions/sub-0001")
        assert response.status_code == 200
        assert "URN-1001" in response.text

    def test_unknown_id_is_404(self, tech_client):
        assert tech_client.get("/submissions/SUB-9999").status_code == 404
        assert tech_client.get("/api/submissions/SUB-9999").status_code == 404

    def test_like_wildcards_are_literal(self, support_client, tech_client, standard_form):
        """% and _ in the query match themselves, not any character."""
        _submit_standard(support_client, standard_form)
        _submit_standard(support_client, {**standard_form, "urn": "URN_2002", "detailed_actionable": "50% done"})

        def ids(q):
            return [i["id"] for i in tech_client.get("/api/submissions", params={"q": q}).json()["items"]]

        assert ids("URN_1001") == []
        assert ids("URN_2002") == ["SUB-0002"]
        assert ids("%") == ["SUB-0002"]
        assert ids("\\") == []

    def test_five_digit_ids_sort_after_four_digit_ids(self, db_session):
        """Rows created in the same instant still come out newest id first."""
        now = datetime.now(timezone.utc)
        for sid in ("SUB-9998", "SUB-10000", "SUB-9999"):
            db_session.add(
                Submission(id=sid, form_type=FormType.STANDARD, submitted_by="product_support", submitted_at=now, created_at=now)
            )
        db_session.commit()

        assert [s.id for s in search_submissions(db_session)] == ["SUB-10000", "SUB-9999", "SUB-9998"]
        assert feed_marker(db_session) == (3, "SUB-10000")


class TestLiveFeed:
    def test_snapshot_on_connect(self, support_client, standard_form):
        _submit_standard(support_client, standard_form)
        sid = support_client.cookies.get("sid")

        with support_client.websocket_connect("/ws/submissions", headers={"cookie": f"sid={sid}"}) as ws:
            message = ws.receive_json()

        assert message["type"] == "snapshot"
        assert message["count"] == 1
        assert message["items"][0]["id"] == "SUB-0001"

    def test_rejects_roles_without_list_access(self, sales_client):
        sid = sales_client.cookies.get("sid")
        with sales_client.websocket_connect("/ws/submissions", headers={"cookie": f"sid={sid}"}) as ws:
            message = ws.receive_json()
        assert message == {"type": "error", "reason": "unauthorized"}


class TestCreateFlow:
    def test_result_carries_row_and_warning_only(self, db_session, tmp_path, monkeypatch):
        """Stored files surface through the row's attachments, not a side list."""
        monkeypatch.setattr(settings, "ATTACHMENT_WARN_MB", 0)
        form = standard_form_from(
            {"actionable": "Other", "detailed_actionable": "x", "lsq_link": "https://lsq.example.com/1", "urn": "U-1"}
        )
        upload = UploadFile(file=io.BytesIO(b"abc"), filename="a.txt", size=3)

        created = asyncio.run(
            create_standard_submission(
                db_session,
                IdAllocator(InMemoryCounterStore(), counter_name="TEST"),
                LocalFileStorage(str(tmp_path)),
                User(Role.PRODUCT_SUPPORT),
                form,
                [upload],
            )
        )

        assert [f.name for f in dataclasses.fields(CreatedSubmission)] == ["submission", "decision", "size_warning"]
        assert created.submission.id == "SUB-0001"
        assert created.decision is None
        assert created.size_warning.startswith("Large total file size detected")
        assert [(a.file_name, a.file_size) for a in created.submission.attachments] == [("a.txt", 3)]
