import pytest

from app.qms.db import session_scope
from app.qms.models import AuditEvent


@pytest.fixture()
def assessment(login, make_assessment):
    login()
    return make_assessment("Operations audit")


def _create_ncr(client, assessment_id, **fields):
    payload = {"title": "Calibration overdue", "description": "Gauge G-12 past due", "severity": "MAJOR", **fields}
    r = client.post(f"/api/assessments/{assessment_id}/non-conformities", json=payload)
    assert r.status_code == 201, r.json
    return r.json["data"]


def _transition(client, ncr_id, status, **extra):
    return client.post(f"/api/non-conformities/{ncr_id}/transition", json={"status": status, **extra})


def test_create_ncr_opens_record(client, assessment):
    ncr = _create_ncr(client, assessment["id"], severity="minor")
    assert ncr["status"] == "OPEN"
    assert ncr["severity"] == "MINOR"
    assert ncr["assessment"]["id"] == assessment["id"]
    assert ncr["allowed_transitions"] == ["IN_PROGRESS"]
    assert ncr["corrective_actions"] == []
    assert ncr["closed_at"] is None

    with session_scope(client.application) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "ncr.create").count() == 1


def test_create_ncr_validation(client, assessment):
    url = f"/api/assessments/{assessment['id']}/non-conformities"
    assert client.post(url, json={"description": "d", "severity": "MAJOR"}).status_code == 400
    assert client.post(url, json={"title": "t", "severity": "MAJOR"}).status_code == 400
    r = client.post(url, json={"title": "t", "description": "d", "severity": "SEVERE"})
    assert r.status_code == 400
    assert r.json["error"]["message"] == "Invalid severity: SEVERE. Must be one of: MINOR, MAJOR, CRITICAL"

    r = client.post(url, json={"title": 12, "description": "d", "severity": "MAJOR"})
    assert r.status_code == 400
    assert r.json["error"]["message"] == "title must be a string."
    assert client.post(url, json={"title": "t", "description": "d", "severity": 3}).status_code == 400

    ncr = _create_ncr(client, assessment["id"])
    r = _transition(client, ncr["id"], ["IN_PROGRESS"])
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"
    assert _transition(client, ncr["id"], "IN_PROGRESS", reason=5).status_code == 400
    assert client.patch(f"/api/non-conformities/{ncr['id']}", json={"root_cause": {"why": "x"}}).status_code == 400


def test_ncr_cannot_link_response_from_another_assessment(client, assessment, make_assessment, questions):
    other = make_assessment("Other")
    r = client.put(
        f"/api/assessments/{other['id']}/responses",
        json={"question_id": questions["8.4-01"], "score": 4},
    )
    response_id = r.json["data"]["id"]
    r = client.post(
        f"/api/assessments/{assessment['id']}/non-conformities",
        json={"title": "t", "description": "d", "severity": "MINOR", "response_id": response_id},
    )
    assert r.status_code == 400


def test_viewer_can_read_but_not_create(client, login, assessment):
    ncr = _create_ncr(client, assessment["id"])
    login("viewer@example.com")
    assert client.get(f"/api/non-conformities/{ncr['id']}").status_code == 200
    r = client.post(
        f"/api/assessments/{assessment['id']}/non-conformities",
        json={"title": "t", "description": "d", "severity": "MINOR"},
    )
    assert r.status_code == 403


def test_other_organization_is_denied(client, login, assessment):
    ncr = _create_ncr(client, assessment["id"])
    login("outsider@example.com")
    assert client.get(f"/api/non-conformities/{ncr['id']}").status_code == 403
    assert client.get("/api/non-conformities").json["pagination"]["total"] == 0
    assert client.get(f"/api/assessments/{assessment['id']}/non-conformities").status_code == 404


def test_generate_ncrs_from_failing_responses(client, assessment, questions):
    r = client.post(
        f"/api/assessments/{assessment['id']}/responses/bulk",
        json={
            "responses": [
                {"question_id": questions["8.1-01"], "score": 2, "is_draft": False, "justification": "Partial"},
                {"question_id": questions["8.4-01"], "score": 0, "is_draft": False, "justification": "Missing"},
                {"question_id": questions["8.6-01"], "score": 5, "is_draft": False},
                {"question_id": questions["8.7-01"], "score": 1},
            ]
        },
    )
    assert r.status_code == 200

    url = f"/api/assessments/{assessment['id']}/non-conformities/from-responses"
    r = client.post(url)
    assert r.status_code == 201
    data = r.json["data"]
    assert data["created"] == 2
    assert data["message"] == "Created 2 non-conformity record(s) from failing responses"
    by_title = {n["title"]: n for n in data["ncrs"]}
    assert by_title["Non-Compliance: 8.1-01"]["severity"] == "MINOR"
    assert by_title["Non-Compliance: 8.4-01"]["severity"] == "MAJOR"
    assert by_title["Non-Compliance: 8.4-01"]["response"]["score"] == 0
    assert "8.4 Control of externally provided" in by_title["Non-Compliance: 8.4-01"]["description"]

    r = client.post(url)
    assert r.status_code == 200
    assert r.json["data"]["created"] == 0
    assert r.json["data"]["message"] == "No failing responses found without existing NCRs"


def test_list_filters(client, assessment):
    _create_ncr(client, assessment["id"], title="Training records missing", severity="MINOR")
    second = _create_ncr(client, assessment["id"], title="Supplier not evaluated", severity="CRITICAL")
    _transition(client, second["id"], "IN_PROGRESS")

    r = client.get("/api/non-conformities?severity=critical")
    assert [n["title"] for n in r.json["data"]] == ["Supplier not evaluated"]
    r = client.get("/api/non-conformities?status=OPEN")
    assert [n["title"] for n in r.json["data"]] == ["Training records missing"]
    r = client.get(f"/api/assessments/{assessment['id']}/non-conformities?search=training")
    assert r.json["pagination"]["total"] == 1
    assert client.get("/api/non-conformities?status=LOST").status_code == 400


def test_lifecycle_guards(client, assessment):
    ncr = _create_ncr(client, assessment["id"])

    r = _transition(client, ncr["id"], "RESOLVED")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "INVALID_TRANSITION"

    r = _transition(client, ncr["id"], "IN_PROGRESS")
    assert r.status_code == 200
    assert r.json["data"]["allowed_transitions"] == ["OPEN", "RESOLVED"]

    r = _transition(client, ncr["id"], "RESOLVED")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "ACTIONS_INCOMPLETE"

    r = _transition(client, ncr["id"], "OPEN", reason="Needs more evidence")
    assert r.status_code == 200
    with session_scope(client.application) as s:
        ev = (
            s.query(AuditEvent)
            .filter(AuditEvent.action == "ncr.status_change")
            .order_by(AuditEvent.id.desc())
            .first()
        )
        assert ev.reason == "Needs more evidence"


def test_close_requires_root_cause_and_verified_actions(client, assessment):
    ncr = _create_ncr(client, assessment["id"])
    r = client.post(f"/api/non-conformities/{ncr['id']}/actions", json={"description": "Recalibrate gauge"})
    action_id = r.json["data"]["id"]
    _transition(client, ncr["id"], "IN_PROGRESS")
    client.patch(f"/api/actions/{action_id}/status", json={"status": "IN_PROGRESS"})
    client.patch(f"/api/actions/{action_id}/status", json={"status": "COMPLETED"})
    assert _transition(client, ncr["id"], "RESOLVED").status_code == 200

    r = _transition(client, ncr["id"], "CLOSED")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "OPEN_ACTIONS_REMAIN"
    assert r.json["error"]["details"] == {"unverified_actions": 1}

    assert client.post(f"/api/actions/{action_id}/verify", json={}).status_code == 200

    r = _transition(client, ncr["id"], "CLOSED")
    assert r.status_code == 400
    assert "root cause" in r.json["error"]["message"]

    r = _transition(client, ncr["id"], "CLOSED", root_cause="Calibration schedule not tracked")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["status"] == "CLOSED"
    assert data["root_cause"] == "Calibration schedule not tracked"
    assert data["closed_at"] is not None
    assert data["allowed_transitions"] == []

    r = _transition(client, ncr["id"], "OPEN")
    assert r.status_code == 400
    assert r.json["error"]["code"] == "TERMINAL_STATE"

    r = client.patch(f"/api/non-conformities/{ncr['id']}", json={"title": "Edited"})
    assert r.status_code == 400
    r = client.post(f"/api/non-conformities/{ncr['id']}/actions", json={"description": "Late"})
    assert r.status_code == 400


def test_update_ncr_fields(client, assessment):
    ncr = _create_ncr(client, assessment["id"])
    r = client.patch(
        f"/api/non-conformities/{ncr['id']}",
        json={"severity": "critical", "root_cause": "No schedule", "root_cause_method": "5 Whys"},
    )
    assert r.status_code == 200
    assert r.json["data"]["severity"] == "CRITICAL"
    assert r.json["data"]["root_cause_method"] == "5 Whys"
    assert client.patch(f"/api/non-conformities/{ncr['id']}", json={"title": " "}).status_code == 400


def test_summary_counts(client, assessment):
    _create_ncr(client, assessment["id"], severity="MINOR")
    ncr = _create_ncr(client, assessment["id"], severity="MAJOR")
    _transition(client, ncr["id"], "IN_PROGRESS")

    r = client.get(f"/api/assessments/{assessment['id']}/non-conformities/summary")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["total"] == 2
    assert data["by_status"] == {"OPEN": 1, "IN_PROGRESS": 1, "RESOLVED": 0, "CLOSED": 0}
    assert data["by_severity"] == {"MINOR": 1, "MAJOR": 1, "CRITICAL": 0}
    assert data["open_count"] == 2
    assert data["closed_count"] == 0


def test_delete_ncr(client, login, assessment):
    ncr = _create_ncr(client, assessment["id"])
    with_action = _create_ncr(client, assessment["id"], title="Has action")
    client.post(f"/api/non-conformities/{with_action['id']}/actions", json={"description": "Fix"})

    r = client.delete(f"/api/non-conformities/{with_action['id']}")
    assert r.status_code == 400
    assert "has corrective actions" in r.json["error"]["message"]

    login("auditor@example.com")
    assert client.delete(f"/api/non-conformities/{ncr['id']}").status_code == 403

    login()
    r = client.delete(f"/api/non-conformities/{ncr['id']}")
    assert r.status_code == 200
    assert r.json["data"] == {"deleted": True, "id": ncr["id"]}
    assert client.get(f"/api/non-conformities/{ncr['id']}").status_code == 404


def test_workflow_endpoint(client, login):
    login("viewer@example.com")
    r = client.get("/api/workflow")
    assert r.status_code == 200
    assert r.json["data"]["non_conformity"]["transitions"]["OPEN"] == ["IN_PROGRESS"]
