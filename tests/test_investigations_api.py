"""Vaka akışı uçtan uca: başvuru, arka plan analizi, doktor kararları, tahlil yükleme."""
from fastapi.testclient import TestClient

from .conftest import PNG_DATA_URI, register_and_login

TRANSCRIPT = "Patient: I have had a cough and a mild fever for five days.\n\nAI Investigator: Any chest pain?"


def _submit(client: TestClient, headers: dict, transcript: str = TRANSCRIPT, **extra) -> dict:
    r = client.post("/investigations", json={"chatTranscript": transcript, **extra}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def _get(client: TestClient, headers: dict, investigation_id: str) -> dict:
    r = client.get(f"/investigations/{investigation_id}", headers=headers)
    assert r.status_code == 200, r.text
    return r.json()


def _labs(*names: str) -> list[dict]:
    return [{"testName": n, "imageDataUri": PNG_DATA_URI} for n in names]


def test_submit_persists_then_attaches_analysis(client: TestClient, patient_headers, fake_ai):
    body = _submit(client, patient_headers)
    inv = body["investigation"]
    assert inv["status"] == "pending_review"
    assert inv["version"] == 1
    assert inv["steps"][0]["type"] == "initial_submission"
    assert inv["steps"][0]["analysisStatus"] == "pending"
    assert isinstance(body["analysisJobId"], int)

    # BackgroundTasks TestClient yanıtından önce tamamlanır
    assert len(fake_ai.triage_calls) == 1
    stored = _get(client, patient_headers, inv["id"])
    step = stored["steps"][0]
    assert step["analysisStatus"] == "done"
    assert step["aiAnalysis"]["kind"] == "triage"
    assert step["aiAnalysis"]["suggestedNextSteps"]["suggestedLabTests"] == ["Complete Blood Count", "Chest X-Ray"]
    assert stored["status"] == "pending_review"
    assert stored["version"] == 2


def test_submit_from_interview_messages(client: TestClient, patient_headers, fake_ai):
    messages = [
        {"role": "model", "content": "Hello! Please describe your main concern."},
        {"role": "user", "content": "Headache for three days."},
    ]
    body = _submit(client, patient_headers, transcript="", messages=messages)
    transcript = body["investigation"]["steps"][0]["userInput"]["chatTranscript"]
    assert transcript == "AI Investigator: Hello! Please describe your main concern.\n\nPatient: Headache for three days."


def test_submit_with_image(client: TestClient, patient_headers, fake_ai):
    body = _submit(client, patient_headers, imageDataUri=PNG_DATA_URI)
    assert body["investigation"]["steps"][0]["userInput"]["imageDataUri"] == PNG_DATA_URI
    assert fake_ai.triage_calls[0][1] == PNG_DATA_URI


def test_submit_rejects_invalid_image(client: TestClient, patient_headers, fake_ai):
    r = client.post(
        "/investigations",
        json={"chatTranscript": TRANSCRIPT, "imageDataUri": "data:application/pdf;base64,AAAA"},
        headers=patient_headers,
    )
    assert r.status_code == 422
    assert fake_ai.triage_calls == []


def test_submit_requires_transcript(client: TestClient, patient_headers, fake_ai):
    r = client.post("/investigations", json={"chatTranscript": "   "}, headers=patient_headers)
    assert r.status_code == 422
    assert "interview" in r.json()["error"]


def test_submit_requires_auth_and_patient_role(client: TestClient, doctor_headers, fake_ai):
    assert client.post("/investigations", json={"chatTranscript": TRANSCRIPT}).status_code == 401
    r = client.post("/investigations", json={"chatTranscript": TRANSCRIPT}, headers=doctor_headers)
    assert r.status_code == 403


def test_failed_analysis_keeps_submission_and_can_be_retried(client: TestClient, patient_headers, fake_ai):
    fake_ai.fail_triage = True
    inv = _submit(client, patient_headers)["investigation"]
    stored = _get(client, patient_headers, inv["id"])
    assert stored["status"] == "pending_review"
    assert stored["steps"][0]["analysisStatus"] == "failed"
    assert stored["steps"][0]["analysisError"]
    assert stored["steps"][0]["userInput"]["chatTranscript"] == TRANSCRIPT

    fake_ai.fail_triage = False
    r = client.post(f"/investigations/{inv['id']}/analysis/retry", headers=patient_headers)
    assert r.status_code == 200, r.text
    assert r.json()["investigation"]["steps"][0]["analysisStatus"] == "pending"
    stored = _get(client, patient_headers, inv["id"])
    assert stored["steps"][0]["analysisStatus"] == "done"
    assert stored["steps"][0]["analysisError"] is None


def test_retry_only_after_failure(client: TestClient, patient_headers, fake_ai):
    inv = _submit(client, patient_headers)["investigation"]
    r = client.post(f"/investigations/{inv['id']}/analysis/retry", headers=patient_headers)
    assert r.status_code == 422


def test_patient_only_sees_own_cases(client: TestClient, patient_headers, fake_ai):
    inv = _submit(client, patient_headers)["investigation"]
    other = register_and_login(client, "patient")
    assert client.get(f"/investigations/{inv['id']}", headers=other).status_code == 404
    assert all(s["id"] != inv["id"] for s in client.get("/investigations", headers=other).json())
    mine = client.get("/investigations", headers=patient_headers).json()
    assert [s["id"] for s in mine] == [inv["id"]]
    assert mine[0]["urgency"] == "Medium"
    assert mine[0]["analysisStatus"] == "done"


def test_lab_tests_path_to_completion(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv = _submit(client, patient_headers)["investigation"]
    inv_id = inv["id"]

    queue = client.get("/doctor/queue", headers=doctor_headers).json()
    assert inv_id in [s["id"] for s in queue]

    # Plan boşsa AI'ın önerdiği testler istenir
    r = client.post(f"/doctor/investigations/{inv_id}/request-labs", json={"version": 2}, headers=doctor_headers)
    assert r.status_code == 200, r.text
    inv = r.json()
    assert inv["status"] == "awaiting_lab_results"
    assert inv["doctorPlan"]["suggestedLabTests"] == ["Complete Blood Count", "Chest X-Ray"]
    assert inv["reviewedByName"] == "Dr. Mehmet Kaya"
    assert inv["version"] == 3

    # Eksik test: reddedilir, hiçbir şey değişmez
    r = client.post(
        f"/investigations/{inv_id}/lab-results",
        json={"version": 3, "labResults": _labs("Complete Blood Count")},
        headers=patient_headers,
    )
    assert r.status_code == 422
    assert "Chest X-Ray" in r.json()["error"]

    r = client.post(
        f"/investigations/{inv_id}/lab-results",
        json={"version": 3, "labResults": _labs("Complete Blood Count", "Chest X-Ray"), "note": "Taken fasting."},
        headers=patient_headers,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["investigation"]["status"] == "pending_final_review"
    assert body["analysisJobId"] is not None

    stored = _get(client, patient_headers, inv_id)
    assert len(stored["steps"]) == 2
    assert stored["steps"][1]["type"] == "lab_result_submission"
    assert stored["steps"][1]["aiAnalysis"]["kind"] == "follow_up"
    assert stored["version"] == 5
    # Takip analizine görseller gönderilmez, sadece bağlam
    context, lab_results = fake_ai.follow_up_calls[0]
    assert context["steps"][0]["userInput"]["chatTranscript"] == TRANSCRIPT
    assert [r.test_name for r in lab_results] == ["Complete Blood Count", "Chest X-Ray"]

    # Tanı/tedavi gönderilmezse takip analizindeki öneri kullanılır
    r = client.post(
        f"/doctor/investigations/{inv_id}/complete",
        json={"version": 5, "note": "Rest well."},
        headers=doctor_headers,
    )
    assert r.status_code == 200, r.text
    done = r.json()
    assert done["status"] == "completed"
    assert done["finalDiagnosis"][0]["condition"] == "Acute bronchitis"
    assert done["finalTreatmentPlan"]["medications"] == ["Paracetamol 500 mg every 6 hours for 3 days"]
    assert done["doctorNote"] == "Rest well."

    patients = client.get("/doctor/patients", headers=doctor_headers).json()
    assert inv_id in [s["id"] for s in patients]


def test_follow_up_visit_path(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    plan = {"suggestedLabTests": ["Blood Pressure Reading"], "note": "Visit a nearby clinic."}
    r = client.post(
        f"/doctor/investigations/{inv_id}/dispatch-visit",
        json={"version": 2, "plan": plan},
        headers=doctor_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "awaiting_follow_up_visit"

    r = client.post(
        f"/investigations/{inv_id}/lab-results",
        json={"version": 3, "labResults": _labs("Blood Pressure Reading")},
        headers=patient_headers,
    )
    assert r.status_code == 200, r.text
    stored = _get(client, patient_headers, inv_id)
    assert stored["status"] == "pending_final_review"
    assert stored["steps"][1]["type"] == "follow_up_submission"


def test_immediate_completion(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    r = client.post(
        f"/doctor/investigations/{inv_id}/complete",
        json={
            "version": 2,
            "finalDiagnosis": [{"condition": "Common cold", "probability": 90, "reasoning": "Mild symptoms."}],
            "finalTreatmentPlan": {"medications": [], "lifestyleChanges": ["Rest", "Fluids"]},
        },
        headers=doctor_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "completed"


def test_complete_without_diagnosis_is_rejected(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    r = client.post(f"/doctor/investigations/{inv_id}/complete", json={"version": 2}, headers=doctor_headers)
    assert r.status_code == 422
    assert _get(client, patient_headers, inv_id)["status"] == "pending_review"


def test_reject_requires_note(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    r = client.post(f"/doctor/investigations/{inv_id}/reject", json={"version": 2, "note": " "}, headers=doctor_headers)
    assert r.status_code == 422
    r = client.post(
        f"/doctor/investigations/{inv_id}/reject",
        json={"version": 2, "note": "Please go to the emergency room."},
        headers=doctor_headers,
    )
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"
    assert r.json()["doctorNote"] == "Please go to the emergency room."


def test_escalate_then_complete(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    r = client.post(f"/doctor/investigations/{inv_id}/escalate", json={"version": 2}, headers=doctor_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "pending_final_review"


def test_patient_cannot_use_doctor_endpoints(client: TestClient, patient_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    r = client.post(f"/doctor/investigations/{inv_id}/escalate", json={"version": 2}, headers=patient_headers)
    assert r.status_code == 403
    assert client.get("/doctor/queue", headers=patient_headers).status_code == 403


def test_stale_version_conflict(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    # Analiz eklendiği için sürüm 2; sürüm 1 ile gelen istek eski
    r = client.post(f"/doctor/investigations/{inv_id}/escalate", json={"version": 1}, headers=doctor_headers)
    assert r.status_code == 409
    assert _get(client, patient_headers, inv_id)["status"] == "pending_review"


def test_double_click_completion_applies_once(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    payload = {
        "version": 2,
        "finalDiagnosis": [{"condition": "Common cold", "probability": 90}],
        "finalTreatmentPlan": {"lifestyleChanges": ["Rest"]},
    }
    first = client.post(f"/doctor/investigations/{inv_id}/complete", json=payload, headers=doctor_headers)
    second = client.post(f"/doctor/investigations/{inv_id}/complete", json=payload, headers=doctor_headers)
    assert first.status_code == 200
    assert second.status_code == 409
    assert _get(client, patient_headers, inv_id)["version"] == 3


def test_other_doctor_cannot_take_over(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    r = client.post(f"/doctor/investigations/{inv_id}/escalate", json={"version": 2}, headers=doctor_headers)
    assert r.status_code == 200
    other = register_and_login(client, "doctor")
    r = client.post(f"/doctor/investigations/{inv_id}/reject", json={"version": 3, "note": "No."}, headers=other)
    assert r.status_code == 403


def test_closed_case_rejects_lab_upload(client: TestClient, patient_headers, doctor_headers, fake_ai):
    inv_id = _submit(client, patient_headers)["investigation"]["id"]
    client.post(f"/doctor/investigations/{inv_id}/reject", json={"version": 2, "note": "ER."}, headers=doctor_headers)
    r = client.post(
        f"/investigations/{inv_id}/lab-results",
        json={"version": 3, "labResults": _labs("Complete Blood Count")},
        headers=patient_headers,
    )
    assert r.status_code == 409


def test_queue_orders_by_urgency(client: TestClient, patient_headers, doctor_headers, fake_ai):
    fake_ai.urgency_by_keyword = {"crushing chest pain": "Critical", "itchy skin": "Low"}
    low = _submit(client, patient_headers, transcript="Patient: itchy skin on my arm.")["investigation"]["id"]
    critical = _submit(client, patient_headers, transcript="Patient: crushing chest pain.")["investigation"]["id"]
    queue = [s["id"] for s in client.get("/doctor/queue", headers=doctor_headers).json()]
    assert queue.index(critical) < queue.index(low)

    r = client.get("/doctor/queue", params={"status": "completed"}, headers=doctor_headers)
    assert r.status_code == 200
    assert all(s["status"] == "completed" for s in r.json())


def test_queue_limit_keeps_newest_critical_case(client: TestClient, patient_headers, doctor_headers, fake_ai):
    fake_ai.urgency_by_keyword = {"sudden weakness on one side": "Critical"}
    for i in range(3):
        _submit(client, patient_headers, transcript=f"Patient: mild cough, day {i + 1}.")
    critical = _submit(client, patient_headers, transcript="Patient: sudden weakness on one side.")["investigation"]["id"]

    full = client.get("/doctor/queue", params={"limit": 500}, headers=doctor_headers).json()
    critical_count = sum(1 for s in full if s["urgency"] == "Critical")
    assert len(full) > critical_count

    # Limit, en yeni Critical vakayı bile dışarıda bırakmamalı
    r = client.get("/doctor/queue", params={"limit": critical_count}, headers=doctor_headers)
    assert r.status_code == 200
    limited = r.json()
    assert critical in [s["id"] for s in limited]
    assert all(s["urgency"] == "Critical" for s in limited)


def test_unknown_investigation_is_404(client: TestClient, doctor_headers):
    r = client.get("/doctor/investigations/does-not-exist", headers=doctor_headers)
    assert r.status_code == 404
    assert r.json()["error"] == "Investigation not found."


def test_headache_case_scenarios(client: TestClient, patient_headers, doctor_headers, fake_ai):
    # 1. Yeni vaka
    body = _submit(client, patient_headers, transcript="I have persistent headaches and blurred vision")
    inv = body["investigation"]
    assert inv["status"] == "pending_review"
    assert len(inv["steps"]) == 1
    inv_id = inv["id"]

    # 2. Doktor test ister
    r = client.post(
        f"/doctor/investigations/{inv_id}/request-labs",
        json={"version": 2, "plan": {"suggestedLabTests": ["Fasting glucose", "CBC"]}},
        headers=doctor_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "awaiting_lab_results"
    assert r.json()["doctorPlan"]["suggestedLabTests"] == ["Fasting glucose", "CBC"]

    # 3. Hasta iki sonucu da yükler
    r = client.post(
        f"/investigations/{inv_id}/lab-results",
        json={"version": 3, "labResults": _labs("Fasting glucose", "CBC")},
        headers=patient_headers,
    )
    assert r.status_code == 200, r.text
    inv = r.json()["investigation"]
    assert inv["status"] == "pending_final_review"
    assert inv["steps"][1]["type"] == "lab_result_submission"

    # 4. Tanı ve not ile kapanış; sonrasında durum değişmez
    version = _get(client, patient_headers, inv_id)["version"]
    r = client.post(
        f"/doctor/investigations/{inv_id}/complete",
        json={
            "version": version,
            "finalDiagnosis": [{"condition": "Type 2 Diabetes", "probability": 70}],
            "note": "Start lifestyle changes and recheck in 3 months.",
        },
        headers=doctor_headers,
    )
    assert r.status_code == 200, r.text
    done = r.json()
    assert done["status"] == "completed"
    assert done["finalDiagnosis"][0]["condition"] == "Type 2 Diabetes"
    r = client.post(
        f"/doctor/investigations/{inv_id}/reject",
        json={"version": done["version"], "note": "Changed my mind."},
        headers=doctor_headers,
    )
    assert r.status_code == 409

    # 5. Yetersiz bilgi ile red
    other_id = _submit(client, patient_headers, transcript="I feel unwell")["investigation"]["id"]
    r = client.post(
        f"/doctor/investigations/{other_id}/reject",
        json={"version": 2, "note": "Insufficient information"},
        headers=doctor_headers,
    )
    assert r.status_code == 200
    assert r.json()["status"] == "rejected"
    r = client.post(f"/doctor/investigations/{other_id}/escalate", json={"version": 3}, headers=doctor_headers)
    assert r.status_code == 409
