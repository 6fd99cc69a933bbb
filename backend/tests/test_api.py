from datetime import datetime, timedelta, timezone

import backend.routers.core as core
import database.db as db


def _start_session(minutes_ago: float = 3.0) -> int:
    return db.add_session(datetime.now(timezone.utc) - timedelta(minutes=minutes_ago))


def _current_token(client, session_id: int, headers: dict) -> str:
    res = client.get(f"/sessions/{session_id}/token", headers=headers)
    assert res.status_code == 200
    return res.json()["token"]


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_debug_dbpath_disabled_by_default(client, student_headers):
    res = client.get("/debug/dbpath", headers=student_headers)
    assert res.status_code == 404
    assert res.json()["detail"] == "Not found."


def test_debug_dbpath_requires_session_when_enabled(client, monkeypatch, teacher_headers):
    monkeypatch.setattr(core, "ENABLE_DEBUG_ENDPOINTS", True)

    res = client.get("/debug/dbpath")
    assert res.status_code == 401

    res = client.get("/debug/dbpath", headers=teacher_headers)
    assert res.status_code == 200
    assert "db_path" in res.json()


def test_attendance_config_reports_defaults(client):
    res = client.get("/config/attendance")
    assert res.status_code == 200
    assert res.json() == {
        "rotation_interval_seconds": 15,
        "present_window_minutes": 10,
        "late_window_minutes": 20,
    }


def test_auth_me_echoes_claims(client, student_headers):
    res = client.get("/auth/me", headers=student_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["subject"] == "student-001"
    assert body["role"] == "student"


def test_scan_requires_student_session(client, teacher_headers):
    res = client.post("/attendance/scan", json={"token": "x"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Missing bearer token."

    res = client.post("/attendance/scan", json={"token": "x"}, headers={"Authorization": "Bearer nope"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid or expired session token."

    res = client.post("/attendance/scan", json={"token": "x"}, headers=teacher_headers)
    assert res.status_code == 403


def test_token_endpoint_requires_teacher(client, student_headers):
    session_id = _start_session()
    res = client.get(f"/sessions/{session_id}/token", headers=student_headers)
    assert res.status_code == 403


def test_scan_marks_present_then_already_marked(client, student_headers, teacher_headers):
    session_id = _start_session(minutes_ago=3)
    token = _current_token(client, session_id, teacher_headers)

    res = client.post("/attendance/scan", json={"token": token}, headers=student_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["status"] == "present"
    assert body["session_id"] == session_id

    res = client.post("/attendance/scan", json={"token": token}, headers=student_headers)
    assert res.status_code == 409
    body = res.json()
    assert body["success"] is False
    assert body["reason"] == "AlreadyMarked"
    assert body["error"]

    res = client.get("/attendance/me", headers=student_headers)
    assert res.status_code == 200
    rows = res.json()
    assert len(rows) == 1
    assert rows[0]["status"] == "present"


def test_scan_in_late_window(client, student_headers, teacher_headers):
    session_id = _start_session(minutes_ago=15)
    token = _current_token(client, session_id, teacher_headers)

    res = client.post("/attendance/scan", json={"token": token}, headers=student_headers)
    assert res.status_code == 200
    assert res.json()["status"] == "late"


def test_scan_after_window_is_rejected(client, student_headers, teacher_headers):
    session_id = _start_session(minutes_ago=25)
    token = _current_token(client, session_id, teacher_headers)

    res = client.post("/attendance/scan", json={"token": token}, headers=student_headers)
    assert res.status_code == 403
    assert res.json()["reason"] == "WindowClosed"
    assert db.get_attendance_records(session_id=session_id) == []


def test_scan_with_rotated_token_is_rejected(client, student_headers, teacher_headers):
    session_id = _start_session()
    stale = _current_token(client, session_id, teacher_headers)

    res = client.post(f"/sessions/{session_id}/rotate", headers=teacher_headers)
    assert res.status_code == 200
    fresh = res.json()["token"]
    assert fresh != stale

    res = client.post("/attendance/scan", json={"token": stale}, headers=student_headers)
    assert res.status_code == 400
    assert res.json()["reason"] == "InvalidToken"

    res = client.post("/attendance/scan", json={"token": f"  {fresh}\n"}, headers=student_headers)
    assert res.status_code == 200


def test_scan_rejects_blank_and_forged_tokens(client, student_headers):
    res = client.post("/attendance/scan", json={"token": "   "}, headers=student_headers)
    assert res.status_code == 400
    assert res.json()["reason"] == "InvalidToken"

    res = client.post("/attendance/scan", json={"token": "eyJzaWQiOjF9.forged"}, headers=student_headers)
    assert res.status_code == 400
    assert res.json()["reason"] == "InvalidToken"


def test_scan_after_close_reports_session_closed(client, student_headers, teacher_headers):
    session_id = _start_session()
    token = _current_token(client, session_id, teacher_headers)

    res = client.post(f"/sessions/{session_id}/close", headers=teacher_headers)
    assert res.status_code == 200
    assert res.json()["status"] == "closed"

    res = client.post("/attendance/scan", json={"token": token}, headers=student_headers)
    assert res.status_code == 410
    assert res.json()["reason"] == "SessionClosed"

    res = client.get(f"/sessions/{session_id}/token", headers=teacher_headers)
    assert res.status_code == 409


def test_token_for_unknown_session(client, teacher_headers):
    res = client.get("/sessions/999/token", headers=teacher_headers)
    assert res.status_code == 404
    assert res.json()["detail"] == "Session not found."


def test_session_attendance_summary(client, make_headers, teacher_headers):
    session_id = _start_session(minutes_ago=1)
    token = _current_token(client, session_id, teacher_headers)

    for n in range(3):
        res = client.post("/attendance/scan", json={"token": token}, headers=make_headers(f"s-{n}", "student"))
        assert res.status_code == 200

    res = client.get(f"/sessions/{session_id}/attendance", headers=teacher_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 3
    assert body["present"] == 3
    assert body["late"] == 0
    assert {r["student_id"] for r in body["rows"]} == {"s-0", "s-1", "s-2"}
