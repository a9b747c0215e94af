from datetime import timedelta

import pytest

from conftest import auth_headers
from models.base import utcnow
from models.user import ROLE_ADMIN
from services.package_codec import PackageCodec


async def download(client, session_id, student):
    resp = await client.get(f"/exam/{session_id}/download", headers=auth_headers(student.id))
    assert resp.status_code == 200, resp.text
    body = resp.json()
    return PackageCodec(body["packageKey"].encode("ascii")).decode(body["encryptedExam"])


def answers_for(package, texts):
    by_order = {q["order"]: q["id"] for q in package["questions"]}
    return [{"questionId": by_order[order], "answerText": text} for order, text in texts.items()]


async def test_exam_flow(client, exam_session, students):
    student = students[0]
    headers = auth_headers(student.id)

    resp = await client.get(f"/exam/{exam_session.id}/download", headers=headers)
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    body = resp.json()
    assert body["sessionId"] == exam_session.id
    package = PackageCodec(body["packageKey"].encode("ascii")).decode(body["encryptedExam"])
    token = package["sessionToken"]

    resp = await client.post(f"/exam/{exam_session.id}/start", json={"sessionToken": token}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["assignmentId"] == package["assignmentId"]

    resp = await client.post(
        f"/exam/{exam_session.id}/submit",
        json={"sessionToken": token, "answers": answers_for(package, {1: "Paris", 2: "5"})},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json() == {"score": 2, "autoSubmitted": False}

    resp = await client.get(f"/exam/{exam_session.id}/result", headers=headers)
    assert resp.status_code == 200
    result = resp.json()
    assert result["score"] == 2
    assert result["totalMarks"] == 5
    assert result["passingMarks"] == 2
    assert result["result"] == "Pass"
    assert result["examHasEnded"] is False
    assert result["answers"] is None
    assert result["examTitle"] == "General Knowledge"


async def test_result_detail_after_session_end(client, ended_session, students):
    student = students[0]
    package = await download(client, ended_session.id, student)

    resp = await client.post(
        f"/exam/{ended_session.id}/submit",
        json={"sessionToken": package["sessionToken"], "answers": answers_for(package, {1: "Lyon"}), "autoSubmitted": True},
        headers=auth_headers(student.id),
    )
    assert resp.status_code == 200
    assert resp.json()["autoSubmitted"] is True

    result = (await client.get(f"/exam/{ended_session.id}/result", headers=auth_headers(student.id))).json()
    assert result["examHasEnded"] is True
    assert result["result"] == "Fail"
    assert result["answers"][0]["yourAnswer"] == "Lyon"
    assert result["answers"][0]["correctAnswer"] == "Paris"
    assert result["answers"][0]["isCorrect"] is False


async def test_missing_auth_is_401(client, exam_session):
    resp = await client.get(f"/exam/{exam_session.id}/download")
    assert resp.status_code == 401
    assert resp.json() == {"detail": "No token provided"}


async def test_bad_signature_is_401(client, exam_session):
    resp = await client.get(
        f"/exam/{exam_session.id}/download",
        headers={"Authorization": "Bearer 1:student:1700000000:deadbeef"},
    )
    assert resp.status_code == 401


async def test_admin_cannot_use_student_endpoints(client, exam_session, admin):
    resp = await client.get(f"/exam/{exam_session.id}/download", headers=auth_headers(admin.id, ROLE_ADMIN))
    assert resp.status_code == 403


async def test_unknown_session_is_404(client, students):
    resp = await client.get("/exam/9999/download", headers=auth_headers(students[0].id))
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Session not found"


async def test_inactive_session_is_403(client, exam_session, students, admin):
    resp = await client.put(
        f"/admin/sessions/{exam_session.id}/active",
        json={"isActive": False},
        headers=auth_headers(admin.id, ROLE_ADMIN),
    )
    assert resp.status_code == 200
    assert resp.json()["isActive"] is False

    resp = await client.get(f"/exam/{exam_session.id}/download", headers=auth_headers(students[0].id))
    assert resp.status_code == 403


async def test_wrong_token_and_double_submit_are_403(client, exam_session, students):
    student = students[0]
    headers = auth_headers(student.id)
    package = await download(client, exam_session.id, student)

    resp = await client.post(f"/exam/{exam_session.id}/start", json={"sessionToken": "forged"}, headers=headers)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Invalid session token"

    submit = {"sessionToken": package["sessionToken"], "answers": []}
    assert (await client.post(f"/exam/{exam_session.id}/submit", json=submit, headers=headers)).status_code == 200
    resp = await client.post(f"/exam/{exam_session.id}/submit", json=submit, headers=headers)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Exam already submitted"


async def test_result_before_submit_is_404(client, exam_session, students):
    resp = await client.get(f"/exam/{exam_session.id}/result", headers=auth_headers(students[0].id))
    assert resp.status_code == 404


@pytest.mark.parametrize("body", [{}, {"sessionToken": ""}, {"sessionToken": "x", "answers": [{"answerText": "a"}]}])
async def test_malformed_body_is_400(client, exam_session, students, body):
    resp = await client.post(f"/exam/{exam_session.id}/submit", json=body, headers=auth_headers(students[0].id))
    assert resp.status_code == 400


async def test_assigned_exams(client, exam_session, students):
    resp = await client.get("/exam/assigned", headers=auth_headers(students[1].id))
    assert resp.status_code == 200
    [item] = resp.json()
    assert item["sessionId"] == exam_session.id
    assert item["status"] == "pending"
    assert item["durationMinutes"] == 30


async def test_retake_through_download(client, exam_session, students, admin):
    student = students[0]
    first = await download(client, exam_session.id, student)
    await client.post(
        f"/exam/{exam_session.id}/submit",
        json={"sessionToken": first["sessionToken"], "answers": answers_for(first, {1: "Paris"})},
        headers=auth_headers(student.id),
    )
    second = await download(client, exam_session.id, student)
    assert second["sessionToken"] != first["sessionToken"]

    resp = await client.get(f"/admin/students/{student.id}/history", headers=auth_headers(admin.id, ROLE_ADMIN))
    assert resp.status_code == 200
    [entry] = resp.json()
    assert entry["status"] == "pending"
    assert entry["previousAttempts"][0]["score"] == 2
    assert entry["previousAttempts"][0]["attemptNumber"] == 1


# === Admin ===

async def test_admin_schedules_and_monitors(client, exam, students, admin):
    headers = auth_headers(admin.id, ROLE_ADMIN)
    now = utcnow()
    resp = await client.post("/admin/sessions", json={
        "examId": exam.id,
        "sessionName": "Spring final",
        "startTime": (now - timedelta(minutes=5)).isoformat(),
        "endTime": (now + timedelta(hours=1)).isoformat(),
        "mode": "online",
    }, headers=headers)
    assert resp.status_code == 201
    created = resp.json()
    assert created["assignedCount"] == 2
    assert created["isActive"] is False

    session_id = created["id"]
    await client.put(f"/admin/sessions/{session_id}/active", json={"isActive": True}, headers=headers)
    package = await download(client, session_id, students[0])
    await client.post(
        f"/exam/{session_id}/start", json={"sessionToken": package["sessionToken"]}, headers=auth_headers(students[0].id)
    )

    resp = await client.get(f"/admin/sessions/{session_id}/live-status", headers=headers)
    assert resp.status_code == 200
    live = resp.json()
    assert live["pollIntervalSeconds"] == 5
    states = {s["studentCode"]: s["displayStatus"] for s in live["students"]}
    assert states == {"CS-001": "online", "CS-002": "offline"}

    resp = await client.post(f"/admin/sessions/{session_id}/students/{students[0].id}/stop", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "submitted"
    assert resp.json()["autoSubmitted"] is True

    results = (await client.get(f"/admin/sessions/{session_id}/results", headers=headers)).json()
    assert {r["studentCode"]: r["result"] for r in results} == {"CS-001": "Fail", "CS-002": "Not Attempted"}

    resp = await client.delete(f"/admin/sessions/{session_id}", headers=headers)
    assert resp.status_code == 204
    resp = await client.get(f"/admin/sessions/{session_id}/results", headers=headers)
    assert resp.status_code == 404


async def test_admin_schedule_validation(client, exam, admin):
    now = utcnow()
    resp = await client.post("/admin/sessions", json={
        "examId": exam.id,
        "sessionName": "Backwards",
        "startTime": now.isoformat(),
        "endTime": (now - timedelta(hours=1)).isoformat(),
    }, headers=auth_headers(admin.id, ROLE_ADMIN))
    assert resp.status_code == 400


async def test_students_cannot_use_admin_endpoints(client, exam_session, students):
    resp = await client.get(f"/admin/sessions/{exam_session.id}/live-status", headers=auth_headers(students[0].id))
    assert resp.status_code == 403
