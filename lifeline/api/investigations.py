"""Hasta tarafı: vaka başvurusu, geçmiş, tahlil sonucu yükleme, vaka içi mesajlar."""
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlmodel import Session

from lifeline.api.deps import get_actor, require_patient
from lifeline.core.config import settings
from lifeline.core.database import get_db
from lifeline.core.rate_limit import limiter
from lifeline.schemas import (
    InvestigationRecord,
    InvestigationSummary,
    LabResultsRequest,
    MessageCreate,
    MessageResponse,
    SubmitInvestigationRequest,
    SubmitResponse,
)
from lifeline.services import interview, investigations, messages
from lifeline.services.workflow import Actor, SubmitLabResults, WorkflowValidationError

router = APIRouter(prefix="/investigations", tags=["investigations"])
_SUBMIT_LIMIT = f"{settings.rate_limit_per_minute}/minute"


@router.post("", response_model=SubmitResponse, status_code=201)
@limiter.limit(_SUBMIT_LIMIT)
def submit_investigation(
    request: Request,
    body: SubmitInvestigationRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_patient),
    db: Session = Depends(get_db),
):
    transcript = (body.chat_transcript or "").strip()
    if not transcript and body.messages:
        transcript = interview.build_transcript(body.messages)
    if not transcript:
        raise WorkflowValidationError("Please complete the interview before submitting.")
    record, job_id = investigations.submit_investigation(db, actor, transcript, body.image_data_uri)
    background_tasks.add_task(investigations.run_analysis_job, job_id)
    return SubmitResponse(investigation=record, analysis_job_id=job_id)


@router.get("", response_model=list[InvestigationSummary])
def my_investigations(actor: Actor = Depends(require_patient), db: Session = Depends(get_db)):
    return [InvestigationSummary.from_record(r) for r in investigations.list_for_patient(db, actor.uid)]


@router.get("/{investigation_id}", response_model=InvestigationRecord)
def get_investigation(investigation_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return investigations.get_for_actor(db, actor, investigation_id)


@router.post("/{investigation_id}/lab-results", response_model=SubmitResponse)
def submit_lab_results(
    investigation_id: str,
    body: LabResultsRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(require_patient),
    db: Session = Depends(get_db),
):
    action = SubmitLabResults(lab_results=body.lab_results, note=body.note)
    record, job_id = investigations.perform_action(db, actor, investigation_id, action, body.version)
    if job_id is not None:
        background_tasks.add_task(investigations.run_analysis_job, job_id)
    return SubmitResponse(investigation=record, analysis_job_id=job_id)


@router.post("/{investigation_id}/analysis/retry", response_model=SubmitResponse)
def retry_analysis(
    investigation_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    record, job_id = investigations.retry_analysis(db, actor, investigation_id)
    background_tasks.add_task(investigations.run_analysis_job, job_id)
    return SubmitResponse(investigation=record, analysis_job_id=job_id)


@router.get("/{investigation_id}/messages", response_model=list[MessageResponse])
def list_messages(investigation_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return messages.list_messages(db, actor, investigation_id)


@router.post("/{investigation_id}/messages", response_model=MessageResponse, status_code=201)
def post_message(
    investigation_id: str,
    body: MessageCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return messages.post_message(db, actor, investigation_id, body.content)


@router.patch("/{investigation_id}/messages/{message_id}", response_model=MessageResponse)
def edit_message(
    investigation_id: str,
    message_id: int,
    body: MessageCreate,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    return messages.edit_message(db, actor, investigation_id, message_id, body.content)
