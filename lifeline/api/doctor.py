"""Doktor inceleme ekranı: kuyruk, hastalarım, plan onayı ve vaka kapanışı."""
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from lifeline.api.deps import require_doctor
from lifeline.core.database import get_db
from lifeline.schemas import (
    CompleteRequest,
    InvestigationRecord,
    InvestigationStatus,
    InvestigationSummary,
    PlanRequest,
    RejectRequest,
    VersionRequest,
)
from lifeline.services import investigations
from lifeline.services.workflow import (
    Action,
    Actor,
    Complete,
    DispatchFollowUpVisit,
    EscalateFinalReview,
    Reject,
    RequestLabTests,
)

router = APIRouter(prefix="/doctor", tags=["doctor"])

DEFAULT_QUEUE = [InvestigationStatus.PENDING_REVIEW, InvestigationStatus.PENDING_FINAL_REVIEW]


@router.get("/queue", response_model=list[InvestigationSummary])
def queue(
    status: list[InvestigationStatus] | None = Query(None),
    limit: int = Query(200, ge=1, le=500),
    _: Actor = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    records = investigations.doctor_queue(db, status or DEFAULT_QUEUE, limit=limit)
    return [InvestigationSummary.from_record(r) for r in records]


@router.get("/patients", response_model=list[InvestigationSummary])
def my_patients(actor: Actor = Depends(require_doctor), db: Session = Depends(get_db)):
    return [InvestigationSummary.from_record(r) for r in investigations.doctor_patients(db, actor.uid)]


@router.get("/investigations/{investigation_id}", response_model=InvestigationRecord)
def get_investigation(investigation_id: str, actor: Actor = Depends(require_doctor), db: Session = Depends(get_db)):
    return investigations.get_for_actor(db, actor, investigation_id)


def _act(db: Session, actor: Actor, investigation_id: str, action: Action, version: int) -> InvestigationRecord:
    record, _job_id = investigations.perform_action(db, actor, investigation_id, action, version)
    return record


@router.post("/investigations/{investigation_id}/request-labs", response_model=InvestigationRecord)
def request_labs(
    investigation_id: str, body: PlanRequest, actor: Actor = Depends(require_doctor), db: Session = Depends(get_db)
):
    return _act(db, actor, investigation_id, RequestLabTests(plan=body.plan), body.version)


@router.post("/investigations/{investigation_id}/dispatch-visit", response_model=InvestigationRecord)
def dispatch_visit(
    investigation_id: str, body: PlanRequest, actor: Actor = Depends(require_doctor), db: Session = Depends(get_db)
):
    return _act(db, actor, investigation_id, DispatchFollowUpVisit(plan=body.plan), body.version)


@router.post("/investigations/{investigation_id}/escalate", response_model=InvestigationRecord)
def escalate(
    investigation_id: str, body: VersionRequest, actor: Actor = Depends(require_doctor), db: Session = Depends(get_db)
):
    return _act(db, actor, investigation_id, EscalateFinalReview(), body.version)


@router.post("/investigations/{investigation_id}/complete", response_model=InvestigationRecord)
def complete(
    investigation_id: str, body: CompleteRequest, actor: Actor = Depends(require_doctor), db: Session = Depends(get_db)
):
    action = Complete(
        final_diagnosis=body.final_diagnosis,
        final_treatment_plan=body.final_treatment_plan,
        note=body.note,
    )
    return _act(db, actor, investigation_id, action, body.version)


@router.post("/investigations/{investigation_id}/reject", response_model=InvestigationRecord)
def reject(
    investigation_id: str, body: RejectRequest, actor: Actor = Depends(require_doctor), db: Session = Depends(get_db)
):
    return _act(db, actor, investigation_id, Reject(note=body.note), body.version)
