"""Pytest fixtures: test client, test DB (in-memory SQLite), kullanıcılar ve sahte AI."""
import os
import uuid

import pytest
from fastapi.testclient import TestClient

# Test ortamında in-memory SQLite (app import edilmeden önce set edilmeli)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-dummy")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
# Kayıt rate limit yüksek olsun ki tüm testler geçebilsin
os.environ.setdefault("RATE_LIMIT_REGISTER_PER_MINUTE", "1000")

from lifeline.core.rate_limit import limiter
from lifeline.main import app
from lifeline.schemas import (
    Condition,
    FollowUpAnalysis,
    InterviewTurn,
    Medication,
    SuggestedNextSteps,
    TreatmentPlan,
    TriageAnalysis,
)
from lifeline.services import ai

ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}
# 1x1 PNG
PNG_DATA_URI = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


@pytest.fixture(scope="session", autouse=True)
def _disable_rate_limit():
    """Rate limit testi ayrı açar; diğer testlerde kapalı."""
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture(scope="function")
def client():
    """TestClient; lifespan ile in-memory DB ve tablolar hazır olur."""
    with TestClient(app) as c:
        yield c


def register_and_login(client: TestClient, role: str = "patient", full_name: str | None = None) -> dict:
    """Benzersiz e-posta ile kayıt + giriş; Authorization header döner."""
    email = f"{role}-{uuid.uuid4().hex[:10]}@example.com"
    r = client.post(
        "/auth/register",
        json={"email": email, "password": "secret123", "full_name": full_name or f"Test {role.title()}", "role": role},
    )
    assert r.status_code == 200, r.text
    r = client.post("/auth/login", json={"email": email, "password": "secret123"})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def patient_headers(client: TestClient) -> dict:
    return register_and_login(client, "patient", "Ayşe Yılmaz")


@pytest.fixture
def doctor_headers(client: TestClient) -> dict:
    return register_and_login(client, "doctor", "Dr. Mehmet Kaya")


def make_triage(urgency: str = "Medium", lab_tests: list[str] | None = None) -> TriageAnalysis:
    return TriageAnalysis(
        analysis_summary="Persistent cough with low-grade fever for five days.",
        potential_conditions=[
            Condition(condition="Acute bronchitis", probability=60, reasoning="Cough and mild fever."),
            Condition(condition="Community-acquired pneumonia", probability=25, reasoning="Fever persists."),
        ],
        suggested_next_steps=SuggestedNextSteps(
            preliminary_medications=[Medication(name="Paracetamol", dosage="500 mg as needed")],
            suggested_lab_tests=["Complete Blood Count", "Chest X-Ray"] if lab_tests is None else lab_tests,
        ),
        justification="Differentiate viral bronchitis from pneumonia.",
        urgency=urgency,
        follow_up_plan="Request user to upload lab results within 3 days.",
        is_final_diagnosis_possible=False,
    )


def make_follow_up() -> FollowUpAnalysis:
    return FollowUpAnalysis(
        refined_analysis="Normal white cell count and a clear X-ray point to viral bronchitis.",
        final_diagnosis=[Condition(condition="Acute bronchitis", probability=90, reasoning="Lab results normal.")],
        final_treatment_plan=TreatmentPlan(
            medications=["Paracetamol 500 mg every 6 hours for 3 days"],
            lifestyle_changes=["Rest", "Drink plenty of fluids"],
        ),
        justification="Symptomatic treatment is sufficient.",
        is_final_diagnosis_possible=True,
    )


class FakeAI:
    """ai modülündeki OpenAI çağrılarının yerine geçer; çağrıları kaydeder."""

    def __init__(self):
        self.triage_calls: list[tuple[str, str | None]] = []
        self.follow_up_calls: list[tuple[dict, list]] = []
        self.interview_calls: list[list] = []
        self.fail_triage = False
        self.fail_follow_up = False
        self.urgency_by_keyword: dict[str, str] = {}

    def triage_investigation(self, chat_transcript, image_data_uri=None):
        self.triage_calls.append((chat_transcript, image_data_uri))
        if self.fail_triage:
            raise ai.AIServiceError(502, "The AI model did not return a valid investigation plan.")
        urgency = next((u for k, u in self.urgency_by_keyword.items() if k in chat_transcript), "Medium")
        return make_triage(urgency=urgency)

    def follow_up_investigation(self, investigation_context, lab_results):
        self.follow_up_calls.append((investigation_context, lab_results))
        if self.fail_follow_up:
            raise ai.AIServiceError(503, "Could not reach the AI service.")
        return make_follow_up()

    def conduct_interview(self, messages, max_questions):
        self.interview_calls.append(messages)
        return InterviewTurn(next_question="How long have you had these symptoms?", question_count=1)


@pytest.fixture
def fake_ai(monkeypatch) -> FakeAI:
    fake = FakeAI()
    monkeypatch.setattr(ai, "triage_investigation", fake.triage_investigation)
    monkeypatch.setattr(ai, "follow_up_investigation", fake.follow_up_investigation)
    monkeypatch.setattr(ai, "conduct_interview", fake.conduct_interview)
    return fake
