from app.qms.constants import TEMPLATE_IDS
from app.qms.db import session_scope
from app.qms.models import AuditEvent


def _advance(client, assessment_id, *statuses):
    for status in statuses:
        r = client.post(f"/api/assessments/{assessment_id}/status", json={"status": status})
        assert r.status_code == 200, r.json
    return r.json["data"]


def test_create_assessment_starts_as_draft_led_by_creator(client, login, user_ids):
    login("auditor@example.com")
    r = client.post(
        "/api/assessments",
        json={
            "title": "  Leadership review  ",
            "audit_type": "surveillance",
            "template_id": TEMPLATE_IDS["LEADERSHIP"],
            "scheduled_date": "2026-11-02",
            "team_member_ids": [user_ids["auditor2@example.com"]],
        },
    )
    assert r.status_code == 201
    data = r.json["data"]
    assert data["title"] == "Leadership review"
    assert data["status"] == "DRAFT"
    assert data["audit_type"] == "SURVEILLANCE"
    assert data["scheduled_date"] == "2026-11-02"
    assert data["lead_auditor"]["email"] == "auditor@example.com"
    assert data["template"]["id"] == TEMPLATE_IDS["LEADERSHIP"]
    assert data["allowed_transitions"] == ["ARCHIVED", "IN_PROGRESS"]
    assert [m["user"]["email"] for m in data["team_members"]] == ["auditor2@example.com"]

    with session_scope(client.application) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "assessment.create").one()
        assert ev.entity_id == str(data["id"])
        assert ev.actor_user_email == "auditor@example.com"


def test_create_assessment_validation(client, login, user_ids):
    login()
    r = client.post("/api/assessments", json={"title": "  "})
    assert r.status_code == 400
    assert r.json["error"]["code"] == "VALIDATION_ERROR"

    r = client.post("/api/assessments", json={"title": "X", "audit_type": "GUESSWORK"})
    assert r.status_code == 400

    r = client.post("/api/assessments", json={"title": "X", "template_id": "no-such-template"})
    assert r.status_code == 404

    r = client.post("/api/assessments", json={"title": "X", "team_member_ids": [user_ids["outsider@example.com"]]})
    assert r.status_code == 400
    assert "team members" in r.json["error"]["message"]

    r = client.post("/api/assessments", json={"title": "X", "scheduled_date": "next tuesday"})
    assert r.status_code == 400


def test_viewer_cannot_create(client, login):
    login("viewer@example.com")
    r = client.post("/api/assessments", json={"title": "Nope"})
    assert r.status_code == 403
    assert r.json["error"]["message"] == "Missing permission: assessments.create"


def test_list_filters_and_paginates(client, login, make_assessment, user_ids):
    login()
    first = make_assessment("Supplier audit")
    make_assessment("Leadership audit")
    make_assessment("Calibration audit")
    _advance(client, first["id"], "IN_PROGRESS")

    r = client.get("/api/assessments?limit=2")
    assert r.status_code == 200
    assert r.json["pagination"] == {"page": 1, "limit": 2, "total": 3, "total_pages": 2}
    assert len(r.json["data"]) == 2

    r = client.get("/api/assessments?status=in_progress")
    assert [a["title"] for a in r.json["data"]] == ["Supplier audit"]

    r = client.get("/api/assessments?search=leader")
    assert [a["title"] for a in r.json["data"]] == ["Leadership audit"]

    r = client.get(f"/api/assessments?lead_auditor_id={user_ids['auditor@example.com']}")
    assert r.json["data"] == []

    r = client.get("/api/assessments?status=PAUSED")
    assert r.status_code == 400


def test_other_organization_cannot_see_assessment(client, login, make_assessment):
    login()
    a = make_assessment()
    login("outsider@example.com")
    assert client.get("/api/assessments").json["pagination"]["total"] == 0
    r = client.get(f"/api/assessments/{a['id']}")
    assert r.status_code == 404
    assert r.json["error"]["message"] == f"Assessment with ID {a['id']} not found"


def test_status_transitions_follow_table(client, login, make_assessment):
    login()
    a = make_assessment()

    r = client.post(f"/api/assessments/{a['id']}/status", json={"status": "COMPLETED"})
    assert r.status_code == 400
    assert r.json["error"]["message"] == "Cannot transition from DRAFT to COMPLETED"

    r = client.post(f"/api/assessments/{a['id']}/status", json={"status": "FINISHED"})
    assert r.status_code == 400

    data = _advance(client, a["id"], "IN_PROGRESS", "UNDER_REVIEW", "COMPLETED")
    assert data["status"] == "COMPLETED"
    assert data["completed_date"] is not None
    assert data["allowed_transitions"] == ["ARCHIVED"]

    data = _advance(client, a["id"], "ARCHIVED", "DRAFT")
    assert data["status"] == "DRAFT"
    assert data["completed_date"] is None


def test_completed_assessment_is_read_only(client, login, make_assessment, questions):
    login()
    a = make_assessment()
    _advance(client, a["id"], "IN_PROGRESS", "UNDER_REVIEW", "COMPLETED")
    r = client.put(
        f"/api/assessments/{a['id']}/responses",
        json={"question_id": questions["4.1-01"], "score": 4},
    )
    assert r.status_code == 400
    assert r.json["error"]["message"] == "Cannot modify responses for a completed or archived assessment"

    r = client.patch(f"/api/assessments/{a['id']}", json={"title": "Rewritten"})
    assert r.status_code == 400
    r = client.patch(f"/api/assessments/{a['id']}", json={"status": "ARCHIVED"})
    assert r.status_code == 200


def test_team_membership_controls_editing(client, login, make_assessment, user_ids, questions):
    login("auditor@example.com")
    a = make_assessment("Team audit")

    login("auditor2@example.com")
    r = client.patch(f"/api/assessments/{a['id']}", json={"scope": "Warehouse"})
    assert r.status_code == 403

    login("auditor@example.com")
    r = client.patch(
        f"/api/assessments/{a['id']}",
        json={"team_member_ids": [user_ids["auditor2@example.com"]]},
    )
    assert r.status_code == 200

    login("auditor2@example.com")
    r = client.patch(f"/api/assessments/{a['id']}", json={"scope": "Warehouse"})
    assert r.status_code == 200
    assert r.json["data"]["scope"] == "Warehouse"

    login("viewer@example.com")
    r = client.put(
        f"/api/assessments/{a['id']}/responses",
        json={"question_id": questions["4.1-01"], "score": 4},
    )
    assert r.status_code == 403


def test_manager_can_edit_any_assessment(client, login, make_assessment):
    login("auditor@example.com")
    a = make_assessment("Auditor's audit")
    login()
    r = client.patch(f"/api/assessments/{a['id']}", json={"title": "Renamed", "status": "IN_PROGRESS"})
    assert r.status_code == 200
    assert r.json["data"]["title"] == "Renamed"
    assert r.json["data"]["status"] == "IN_PROGRESS"


def test_response_validation(client, login, make_assessment, questions):
    login()
    a = make_assessment()
    url = f"/api/assessments/{a['id']}/responses"
    qid = questions["7.2-01"]

    assert client.put(url, json={"question_id": qid, "score": 6}).status_code == 400
    assert client.put(url, json={"question_id": qid, "score": -1}).status_code == 400
    assert client.put(url, json={"question_id": qid, "score": 2.5}).status_code == 400
    assert client.put(url, json={"question_id": qid, "score": True}).status_code == 400
    assert client.put(url, json={"score": 3}).status_code == 400
    assert client.put(url, json={"question_id": 99999, "score": 3}).status_code == 404

    r = client.put(url, json={"question_id": qid, "score": 2, "is_draft": False})
    assert r.status_code == 400
    assert "Justification is required" in r.json["error"]["message"]

    # drafts may hold low scores without justification
    r = client.put(url, json={"question_id": qid, "score": 2})
    assert r.status_code == 200
    assert r.json["data"]["is_draft"] is True

    r = client.put(url, json={"question_id": qid, "score": 2, "is_draft": False, "justification": "No records"})
    assert r.status_code == 200
    assert r.json["data"]["justification"] == "No records"
    assert r.json["data"]["section"]["section_number"] == "7.2"


def test_zero_and_null_scores_are_distinct(client, login, make_assessment, questions):
    login()
    a = make_assessment(template_id=TEMPLATE_IDS["PERFORMANCE"])
    url = f"/api/assessments/{a['id']}/responses"
    client.put(url, json={"question_id": questions["9.2-01"], "score": 0, "is_draft": False, "justification": "None held"})
    client.put(url, json={"question_id": questions["9.3-01"], "score": None, "is_draft": False})

    detail = client.get(f"/api/assessments/{a['id']}").json["data"]
    assert detail["overall_score"] == 0.0
    assert detail["progress"]["answered_count"] == 1
    assert detail["progress"]["total_questions"] == 6


def test_demoting_a_response_to_draft_drops_it_from_scores(client, login, make_assessment, questions):
    login()
    a = make_assessment(template_id=TEMPLATE_IDS["PERFORMANCE"])
    url = f"/api/assessments/{a['id']}/responses"
    qid = questions["9.2-01"]
    client.put(url, json={"question_id": qid, "score": 0, "is_draft": False, "justification": "None held"})
    assert client.get(f"/api/assessments/{a['id']}").json["data"]["overall_score"] == 0.0

    assert client.put(url, json={"question_id": qid, "score": 0, "is_draft": True}).status_code == 200
    assert client.get(f"/api/assessments/{a['id']}").json["data"]["overall_score"] is None

    client.put(url, json={"question_id": qid, "score": 4, "is_draft": False})
    assert client.get(f"/api/assessments/{a['id']}").json["data"]["overall_score"] == 80.0
    r = client.post(f"{url}/bulk", json={"responses": [{"question_id": qid, "score": 4, "is_draft": True}]})
    assert r.status_code == 200
    assert client.get(f"/api/assessments/{a['id']}").json["data"]["overall_score"] is None


def test_wrongly_typed_fields_are_rejected(client, login, make_assessment, questions):
    login()
    r = client.post("/api/assessments", json={"title": 42})
    assert r.status_code == 400
    assert r.json["error"]["message"] == "title must be a string."

    a = make_assessment()
    assert client.patch(f"/api/assessments/{a['id']}", json={"audit_type": ["INTERNAL"]}).status_code == 400
    assert client.post(f"/api/assessments/{a['id']}/status", json={"status": 1}).status_code == 400
    assert client.post(f"/api/assessments/{a['id']}/clone", json={"title": 7}).status_code == 400

    url = f"/api/assessments/{a['id']}/responses"
    qid = questions["4.1-01"]
    r = client.put(url, json={"question_id": qid, "score": 4, "is_draft": "false"})
    assert r.status_code == 400
    assert r.json["error"]["message"] == "is_draft must be true or false."
    assert client.put(url, json={"question_id": qid, "score": 4, "justification": 5}).status_code == 400

    r = client.put(url, data=f'{{"question_id": {qid}, "score": 1e999}}', content_type="application/json")
    assert r.status_code == 400
    assert r.json["error"]["message"] == "Score must be an integer"



def test_bulk_responses_score_the_assessment(client, login, make_assessment, questions):
    login()
    a = make_assessment(template_id=TEMPLATE_IDS["LEADERSHIP"])
    r = client.post(
        f"/api/assessments/{a['id']}/responses/bulk",
        json={
            "responses": [
                {"question_id": questions["5.1.1-01"], "score": 5, "is_draft": False},
                {"question_id": questions["5.1.2-01"], "score": 3, "is_draft": False},
                {"question_id": questions["6.1-01"], "score": None, "is_draft": False},
                {"question_id": questions["6.2-01"], "score": 1, "is_draft": False, "justification": "Not set"},
                {"question_id": questions["6.3-01"], "score": 0},
                # out of template scope
                {"question_id": questions["8.1-01"], "score": 0, "is_draft": False, "justification": "n/a"},
            ]
        },
    )
    assert r.status_code == 200, r.json
    assert r.json["data"]["count"] == 6

    detail = client.get(f"/api/assessments/{a['id']}").json["data"]
    # (100 + 60 + 20) / 3
    assert detail["overall_score"] == 60.0
    sections = {sec["section_number"]: sec for sec in detail["section_scores"]}
    assert list(sections) == ["5", "6"]
    assert sections["5"]["questions_answered"] == 2
    assert sections["5"]["total_questions"] == 5
    assert sections["5"]["compliance_percentage"] == 80.0
    assert sections["6"]["questions_answered"] == 1
    assert sections["6"]["compliance_percentage"] == 20.0
    assert detail["progress"] == {"total_questions": 8, "answered_count": 4, "draft_count": 1, "progress": 50}


def test_bulk_responses_are_all_or_nothing(client, login, make_assessment, questions):
    login()
    a = make_assessment()
    r = client.post(
        f"/api/assessments/{a['id']}/responses/bulk",
        json={"responses": [{"question_id": questions["4.1-01"], "score": 4}, {"question_id": 424242, "score": 4}]},
    )
    assert r.status_code == 400
    assert r.json["error"]["message"] == "Invalid question IDs: 424242"

    r = client.post(
        f"/api/assessments/{a['id']}/responses/bulk",
        json={"responses": [{"question_id": questions["4.1-01"], "score": 4}, {"question_id": questions["4.2-01"], "score": 9}]},
    )
    assert r.status_code == 400

    r = client.get(f"/api/assessments/{a['id']}/responses")
    assert r.json["data"]["responses"] == []

    assert client.post(f"/api/assessments/{a['id']}/responses/bulk", json={"responses": []}).status_code == 400


def test_bulk_duplicate_question_keeps_last_entry(client, login, make_assessment, questions):
    login()
    a = make_assessment()
    qid = questions["4.4-01"]
    r = client.post(
        f"/api/assessments/{a['id']}/responses/bulk",
        json={"responses": [{"question_id": qid, "score": 1}, {"question_id": qid, "score": 4}]},
    )
    assert r.status_code == 200
    assert [x["score"] for x in r.json["data"]["responses"]] == [4]


def test_response_list_filters(client, login, make_assessment, questions):
    login()
    a = make_assessment()
    url = f"/api/assessments/{a['id']}/responses"
    client.put(url, json={"question_id": questions["4.1-01"], "score": 4, "is_draft": False})
    client.put(url, json={"question_id": questions["4.2-01"], "score": None})

    data = client.get(f"{url}?is_draft=false").json["data"]
    assert [x["question"]["question_number"] for x in data["responses"]] == ["4.1-01"]
    data = client.get(f"{url}?has_score=false").json["data"]
    assert [x["question"]["question_number"] for x in data["responses"]] == ["4.2-01"]
    assert data["summary"]["total_questions"] == 36
    assert client.get(f"{url}?is_draft=maybe").status_code == 400


def test_clone_starts_a_fresh_follow_up(client, login, make_assessment, questions, user_ids):
    login("auditor@example.com")
    a = make_assessment(
        "Annual audit",
        template_id=TEMPLATE_IDS["OPERATIONS"],
        team_member_ids=[user_ids["auditor2@example.com"]],
    )
    client.put(
        f"/api/assessments/{a['id']}/responses",
        json={"question_id": questions["8.1-01"], "score": 4, "is_draft": False},
    )

    r = client.post(f"/api/assessments/{a['id']}/clone", json={})
    assert r.status_code == 201
    clone = r.json["data"]
    assert clone["title"] == "Annual audit (copy)"
    assert clone["status"] == "DRAFT"
    assert clone["previous_assessment_id"] == a["id"]
    assert clone["template"]["id"] == TEMPLATE_IDS["OPERATIONS"]
    assert clone["overall_score"] is None
    assert [m["user"]["email"] for m in clone["team_members"]] == ["auditor2@example.com"]
    assert client.get(f"/api/assessments/{clone['id']}/responses").json["data"]["responses"] == []

    r = client.post(f"/api/assessments/{a['id']}/clone", json={"title": "FY27 audit"})
    assert r.json["data"]["title"] == "FY27 audit"


def test_delete_archives_and_needs_permission(client, login, make_assessment):
    login("auditor@example.com")
    a = make_assessment()
    r = client.delete(f"/api/assessments/{a['id']}")
    assert r.status_code == 403

    login()
    r = client.delete(f"/api/assessments/{a['id']}")
    assert r.status_code == 200
    assert r.json["data"]["status"] == "ARCHIVED"
    assert client.get(f"/api/assessments/{a['id']}").status_code == 200


def test_history_lists_audit_events_newest_first(client, login, make_assessment):
    login()
    a = make_assessment()
    client.post(f"/api/assessments/{a['id']}/status", json={"status": "IN_PROGRESS", "reason": "Kick-off held"})

    r = client.get(f"/api/assessments/{a['id']}/history")
    assert r.status_code == 200
    events = r.json["data"]
    assert [e["action"] for e in events] == ["assessment.status_change", "assessment.create"]
    assert events[0]["reason"] == "Kick-off held"
    assert events[0]["metadata"] == {"from": "DRAFT", "to": "IN_PROGRESS", "title": a["title"]}
    assert events[0]["actor_email"] == "admin@example.com"
