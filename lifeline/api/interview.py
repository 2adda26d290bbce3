from fastapi import APIRouter, Depends, Request

from lifeline.api.deps import require_patient
from lifeline.core.config import settings
from lifeline.core.rate_limit import limiter
from lifeline.schemas import ChatMessage, InterviewRequest, InterviewTurn
from lifeline.services import interview
from lifeline.services.workflow import Actor

router = APIRouter(prefix="/interview", tags=["interview"])
_INTERVIEW_LIMIT = f"{settings.rate_limit_per_minute}/minute"


@router.post("/start", response_model=ChatMessage)
def start(_: Actor = Depends(require_patient)):
    return interview.opening_message()


@router.post("/next", response_model=InterviewTurn)
@limiter.limit(_INTERVIEW_LIMIT)
def next_question(request: Request, body: InterviewRequest, _: Actor = Depends(require_patient)):
    """Bir sonraki soruyu döner; isFinalQuestion true ise istemci başvuru ekranına geçer."""
    return interview.next_turn(body.messages)
