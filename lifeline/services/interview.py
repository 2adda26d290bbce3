"""AI görüşmesi: sırayla soru-cevap, max soru sayısına ulaşınca biter."""
from lifeline.core.config import settings
from lifeline.schemas.interview import InterviewTurn
from lifeline.schemas.investigation import ChatMessage
from lifeline.services import ai
from lifeline.services.workflow import WorkflowValidationError

GREETING = "Hello! I'm your AI Investigator. To get started, please briefly describe your main health concern."
CLOSING_QUESTION = (
    "Thank you for that information. Is there anything else you think is important "
    "for me to know about your condition before we proceed?"
)
SPEAKERS = {"user": "Patient", "model": "AI Investigator"}


def opening_message() -> ChatMessage:
    return ChatMessage(role="model", content=GREETING)


def questions_asked(messages: list[ChatMessage]) -> int:
    """Sorulan soru sayısı; ilk selamlama sayılmaz."""
    model_turns = sum(1 for m in messages if m.role == "model")
    if messages and messages[0].role == "model":
        model_turns -= 1
    return max(model_turns, 0)


def next_turn(messages: list[ChatMessage], max_questions: int | None = None) -> InterviewTurn:
    max_questions = max_questions or settings.interview_max_questions
    if not messages or messages[-1].role != "user" or not messages[-1].content.strip():
        raise WorkflowValidationError("Please type your answer before sending.")
    asked = questions_asked(messages)
    if asked >= max_questions or any(m.role == "model" and m.is_final_question for m in messages):
        raise WorkflowValidationError("The interview is complete. Please submit your case.")
    turn = ai.conduct_interview(messages, max_questions)
    count = asked + 1
    # Modelin sayacına güvenilmez; sınır burada uygulanır
    is_final = turn.is_final_question or count >= max_questions
    question = turn.next_question.strip() or CLOSING_QUESTION
    return InterviewTurn(next_question=question, question_count=count, is_final_question=is_final)


def build_transcript(messages: list[ChatMessage]) -> str:
    return "\n\n".join(f"{SPEAKERS[m.role]}: {m.content}" for m in messages if m.content.strip())
