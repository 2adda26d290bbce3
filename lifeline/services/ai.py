import json
import logging
import time

from openai import APIConnectionError, APIError, AuthenticationError, OpenAI, RateLimitError
from pydantic import ValidationError

from lifeline.core.config import get_openai_keys, settings
from lifeline.schemas.interview import InterviewTurn
from lifeline.schemas.investigation import ChatMessage, FollowUpAnalysis, LabResult, TriageAnalysis

logger = logging.getLogger(__name__)
OPENAI_TIMEOUT = 30.0
OPENAI_RETRY_WAIT = 1.5
OPENAI_RETRY_ONCE = (RateLimitError, APIConnectionError)

# Anahtar başına bir istemci (çoklu anahtar fallback için)
_openai_clients: dict[str, OpenAI] = {}

# Bir anahtar auth/rate limit verince diğerine geçilecek
OPENAI_FALLBACK_EXCEPTIONS = (AuthenticationError, RateLimitError)

# Belirsizlik varken hiç test önerilmemişse eklenen genel panel
GENERAL_HEALTH_PANEL = "General Health Panel (Complete Blood Count, Metabolic Panel)"
CERTAINTY_THRESHOLD = 95


class AIServiceError(Exception):
    """AI çağrısı başarısız. status_code: isteğe dönülecek HTTP kodu."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def _get_client_for_key(key: str) -> OpenAI:
    if key not in _openai_clients:
        _openai_clients[key] = OpenAI(api_key=key, timeout=OPENAI_TIMEOUT)
    return _openai_clients[key]


def _openai_create_with_fallback(create_fn):
    """
    create_fn(client) çağrısını yapar; AuthenticationError veya RateLimitError olursa
    sıradaki anahtarla tekrar dener. Tüm anahtarlar başarısızsa son hatayı fırlatır.
    """
    keys = get_openai_keys()
    if not keys:
        raise AIServiceError(503, "AI service is not configured (OPENAI_API_KEY missing).")
    last_exc: Exception | None = None
    for key in keys:
        try:
            return create_fn(_get_client_for_key(key))
        except OPENAI_FALLBACK_EXCEPTIONS as e:
            last_exc = e
            logger.warning("OpenAI key skipped (%s), trying next: %s", key[:12] + "...", e)
            continue
    _raise_ai_error(last_exc)


def _openai_safe_call(create_fn):
    """RateLimitError/APIConnectionError'da 1 kez 1.5 sn bekleyip tekrar dener."""
    try:
        return create_fn()
    except OPENAI_RETRY_ONCE as e:
        logger.warning("OpenAI retry after %s: %s", type(e).__name__, e)
        time.sleep(OPENAI_RETRY_WAIT)
        return create_fn()


def _raise_ai_error(exc: Exception | None) -> None:
    """OpenAI hatalarını AIServiceError'a çevirir (401 kullanıcı oturumu ile karışmasın diye 503)."""
    if isinstance(exc, AuthenticationError):
        raise AIServiceError(503, "AI access failed: check the OpenAI API key and billing.") from exc
    if isinstance(exc, RateLimitError):
        raise AIServiceError(429, "The AI service is busy. Please try again shortly.") from exc
    if isinstance(exc, APIConnectionError):
        raise AIServiceError(503, "Could not reach the AI service.") from exc
    if isinstance(exc, APIError):
        raise AIServiceError(502, "The AI service returned an error.") from exc
    raise AIServiceError(500, "Unexpected AI error.") from exc


def _json_completion(messages: list[dict], what: str) -> dict:
    """JSON modunda tamamlama ister ve sözlüğü döner."""

    def _create(client: OpenAI):
        return _openai_safe_call(lambda: client.chat.completions.create(
            model=settings.openai_model,
            messages=messages,
            response_format={"type": "json_object"},
        ))

    try:
        response = _openai_create_with_fallback(_create)
    except AIServiceError:
        raise
    except (AuthenticationError, RateLimitError, APIConnectionError, APIError) as e:
        logger.exception("OpenAI API error in %s: %s", what, e)
        _raise_ai_error(e)
    content = response.choices[0].message.content or ""
    try:
        data = json.loads(content)
    except ValueError as e:
        logger.error("%s: AI returned non-JSON content (%d chars)", what, len(content))
        raise AIServiceError(502, f"The AI model did not return a valid {what}.") from e
    if not isinstance(data, dict):
        raise AIServiceError(502, f"The AI model did not return a valid {what}.")
    return data


def _image_part(data_uri: str) -> dict:
    return {"type": "image_url", "image_url": {"url": data_uri, "detail": "high"}}


INTERVIEW_PROMPT = """You are a highly skilled and empathetic AI Doctor conducting an initial health consultation via chat. Your goal is to gather detailed information about the user's condition by asking up to {max_questions} critical questions.

Instructions:
1. Review the whole chat history.
2. Ask ONE question at a time: the single most important and logical next question, clear and easy for a non-medical person.
3. Track how many questions YOU have asked. The initial greeting does not count as a question.
4. Focus on symptoms, their duration, severity and related factors.
5. When you ask your {max_questions}th question, set "isFinalQuestion" to true. Never ask more than {max_questions} questions.
6. The final question should naturally conclude the interview, e.g. "Is there anything else you think is important for me to know before we proceed?"

Respond with a JSON object: {{"nextQuestion": string, "questionCount": integer, "isFinalQuestion": boolean}}."""


def conduct_interview(messages: list[ChatMessage], max_questions: int) -> InterviewTurn:
    history = "\n".join(
        f"{'Patient' if m.role == 'user' else 'AI Doctor'}: {m.content}" for m in messages
    )
    data = _json_completion(
        [
            {"role": "system", "content": INTERVIEW_PROMPT.format(max_questions=max_questions)},
            {"role": "user", "content": "Chat history:\n" + history},
        ],
        "interview response",
    )
    try:
        return InterviewTurn.model_validate(data)
    except ValidationError as e:
        raise AIServiceError(502, "The AI model did not return a valid interview response.") from e


TRIAGE_PROMPT = """You are a highly intelligent AI diagnostic doctor. Analyze a completed patient interview to prepare a case file and suggest the NEXT STEPS of an investigation for a human doctor. Do not make the final diagnosis yourself.

CRITICAL RULE: DO NOT PRESCRIBE A FULL TREATMENT PLAN. Until a diagnosis is confirmed with lab results you may only suggest medications for urgent symptom relief. Focus on the lab tests needed for a definitive answer.

Respond with a JSON object with exactly these keys:
- "analysisSummary": concise summary for the reviewing doctor.
- "potentialConditions": [{"condition": string, "probability": integer 0-100, "reasoning": string}].
- "suggestedNextSteps": {"preliminaryMedications": [{"name": string, "dosage": string}], "suggestedLabTests": [string]}. You MUST suggest at least one lab test if the diagnosis is not certain. Use an empty medication list when none is needed.
- "justification": rationale for the next steps.
- "urgency": one of "Low", "Medium", "High", "Critical".
- "followUpPlan": e.g. "Request user to upload lab results within 3 days."
- "isFinalDiagnosisPossible": true only if the interview alone is enough for a confident diagnosis."""


def triage_investigation(chat_transcript: str, image_data_uri: str | None = None) -> TriageAnalysis:
    """İlk başvuru: görüşme dökümü (+ opsiyonel görsel) -> triyaj analizi."""
    user_content: list[dict] = [{"type": "text", "text": "Patient interview transcript:\n" + chat_transcript}]
    if image_data_uri:
        user_content.append({"type": "text", "text": "An image was provided by the patient:"})
        user_content.append(_image_part(image_data_uri))
    data = _json_completion(
        [{"role": "system", "content": TRIAGE_PROMPT}, {"role": "user", "content": user_content}],
        "investigation plan",
    )
    data["kind"] = "triage"
    try:
        analysis = TriageAnalysis.model_validate(data)
    except ValidationError as e:
        raise AIServiceError(502, "The AI model did not return a valid investigation plan.") from e
    return ensure_lab_tests_when_uncertain(analysis)


def ensure_lab_tests_when_uncertain(analysis: TriageAnalysis) -> TriageAnalysis:
    """Olasılığı %95 altında bir durum varken test önerilmemişse genel panel eklenir."""
    uncertain = any(c.probability < CERTAINTY_THRESHOLD for c in analysis.potential_conditions)
    if uncertain and not analysis.suggested_next_steps.suggested_lab_tests:
        steps = analysis.suggested_next_steps.model_copy(update={"suggested_lab_tests": [GENERAL_HEALTH_PANEL]})
        return analysis.model_copy(update={"suggested_next_steps": steps})
    return analysis


FOLLOW_UP_PROMPT = """You are a world-class AI diagnostician. You previously analysed this case and lab tests were requested. The patient has returned with the results. Perform a deep and definitive analysis.

Respond with a JSON object with exactly these keys:
- "refinedAnalysis": how the results confirm, deny or modify the initial hypotheses (for the doctor).
- "finalDiagnosis": [{"condition": string, "probability": integer 0-100, "reasoning": string}].
- "finalTreatmentPlan": {"medications": [string with dosage and frequency], "lifestyleChanges": [string]}.
- "justification": rationale for the final plan.
- "isFinalDiagnosisPossible": false if the results are still inconclusive."""


def follow_up_investigation(investigation_context: dict, lab_results: list[LabResult]) -> FollowUpAnalysis:
    """Tahlil görselleri + vakanın tüm bağlamı -> kesin tanı/tedavi önerisi."""
    user_content: list[dict] = [
        {"type": "text", "text": "Full investigation context:\n" + json.dumps(investigation_context, ensure_ascii=False)},
    ]
    for r in lab_results:
        user_content.append({"type": "text", "text": f"Lab result: {r.test_name}"})
        user_content.append(_image_part(r.image_data_uri))
    data = _json_completion(
        [{"role": "system", "content": FOLLOW_UP_PROMPT}, {"role": "user", "content": user_content}],
        "follow-up analysis",
    )
    data["kind"] = "follow_up"
    try:
        return FollowUpAnalysis.model_validate(data)
    except ValidationError as e:
        raise AIServiceError(502, "The AI model did not return a valid follow-up analysis.") from e
