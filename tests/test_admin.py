"""Admin API: X-Admin-Secret ile kullanıcı, vaka ve analiz kuyruğu yönetimi."""
from fastapi.testclient import TestClient

from .conftest import ADMIN_HEADERS, register_and_login


def test_admin_requires_secret(client: TestClient):
    assert client.get("/admin/stats").status_code == 403
    assert client.get("/admin/stats", headers={"X-Admin-Secret": "wrong"}).status_code == 403


def test_stats(client: TestClient, patient_headers, fake_ai):
    client.post("/investigations", json={"chatTranscript": "Patient: back pain."}, headers=patient_headers)
    r = client.get("/admin/stats", headers=ADMIN_HEADERS)
    assert r.status_code == 200
    j = r.json()
    assert j["investigations"]["pending_review"] >= 1
    assert set(j["investigations"]) == {
        "pending_review",
        "awaiting_lab_results",
        "awaiting_follow_up_visit",
        "pending_final_review",
        "completed",
        "rejected",
    }
    assert j["users"]["patient"] >= 1


def test_promote_user_to_doctor(client: TestClient):
    headers = register_and_login(client, "patient")
    user_id = client.get("/auth/me", headers=headers).json()["id"]
    r = client.post(f"/admin/users/{user_id}/role", json={"role": "doctor"}, headers=ADMIN_HEADERS)
    assert r.status_code == 200
    assert r.json()["role"] == "doctor"
    # Rol her istekte DB'den okunur; eski token ile doktor ekranı açılır
    assert client.get("/doctor/queue", headers=headers).status_code == 200


def test_ban_and_unban(client: TestClient):
    headers = register_and_login(client, "patient")
    user_id = client.get("/auth/me", headers=headers).json()["id"]
    assert client.post(f"/admin/users/{user_id}/ban", headers=ADMIN_HEADERS).json()["is_banned"] is True
    assert client.get("/auth/me", headers=headers).status_code == 403
    assert client.post(f"/admin/users/{user_id}/unban", headers=ADMIN_HEADERS).json()["is_banned"] is False
    assert client.get("/auth/me", headers=headers).status_code == 200


def test_unknown_user_is_404(client: TestClient):
    assert client.post("/admin/users/999999/ban", headers=ADMIN_HEADERS).status_code == 404


def test_list_users_filters(client: TestClient):
    register_and_login(client, "doctor")
    r = client.get("/admin/users", params={"role": "doctor"}, headers=ADMIN_HEADERS)
    assert r.status_code == 200
    assert r.json() and all(u["role"] == "doctor" for u in r.json())


def test_failed_jobs_are_visible(client: TestClient, patient_headers, fake_ai):
    fake_ai.fail_triage = True
    inv_id = client.post(
        "/investigations", json={"chatTranscript": "Patient: dizziness."}, headers=patient_headers
    ).json()["investigation"]["id"]
    jobs = client.get("/admin/jobs", params={"status": "failed"}, headers=ADMIN_HEADERS).json()
    job = next(j for j in jobs if j["investigation_id"] == inv_id)
    assert job["kind"] == "triage"
    assert job["error_message"]
    assert job["duration_ms"] is not None

    listed = client.get("/admin/investigations", params={"status": "pending_review"}, headers=ADMIN_HEADERS).json()
    assert inv_id in [s["id"] for s in listed]


def test_admin_cannot_chat(client: TestClient, patient_headers, fake_ai):
    inv_id = client.post(
        "/investigations", json={"chatTranscript": "Patient: cough."}, headers=patient_headers
    ).json()["investigation"]["id"]
    headers = register_and_login(client, "patient")
    user_id = client.get("/auth/me", headers=headers).json()["id"]
    client.post(f"/admin/users/{user_id}/role", json={"role": "admin"}, headers=ADMIN_HEADERS)
    r = client.post(f"/investigations/{inv_id}/messages", json={"content": "hi"}, headers=headers)
    assert r.status_code == 403
    # Admin tüm vakaları görebilir
    assert client.get(f"/investigations/{inv_id}", headers=headers).status_code == 200


def test_unhandled_error_is_logged_with_request_id(patient_headers, monkeypatch):
    from lifeline.main import app
    from lifeline.services import investigations

    def boom(db, user_id):
        raise RuntimeError("database exploded")

    monkeypatch.setattr(investigations, "list_for_patient", boom)
    with TestClient(app, raise_server_exceptions=False) as c:
        r = c.get("/investigations", headers=patient_headers)
        assert r.status_code == 500
        body = r.json()
        assert body["error"] == "Unexpected server error."
        errors = c.get("/admin/errors", headers=ADMIN_HEADERS).json()
    logged = next(e for e in errors if e["request_id"] == body["request_id"])
    assert logged["endpoint"] == "/investigations"
    assert logged["error_message"] == "database exploded"
