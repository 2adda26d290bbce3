"""Vaka mesajları: hasta ve vakayı üstlenen doktor arasında."""
from datetime import datetime

from sqlmodel import Session, select

from lifeline.models import CaseMessage, Investigation
from lifeline.services.investigations import get_for_actor
from lifeline.services.workflow import Actor, InvestigationNotFound, PermissionDenied, Role, WorkflowValidationError

PREVIEW_LENGTH = 120


def _check_participant(actor: Actor, investigation_id: str, db: Session) -> None:
    record = get_for_actor(db, actor, investigation_id)
    if actor.role == Role.DOCTOR and record.reviewed_by_uid not in (None, actor.uid):
        raise PermissionDenied("This investigation is assigned to another doctor.")
    if actor.role == Role.ADMIN:
        raise PermissionDenied("Only the patient and the reviewing doctor can use this chat.")


def list_messages(db: Session, actor: Actor, investigation_id: str) -> list[CaseMessage]:
    _check_participant(actor, investigation_id, db)
    stmt = (
        select(CaseMessage)
        .where(CaseMessage.investigation_id == investigation_id)
        .order_by(CaseMessage.created_at.asc(), CaseMessage.id.asc())
    )
    return list(db.exec(stmt).all())


def post_message(db: Session, actor: Actor, investigation_id: str, content: str) -> CaseMessage:
    _check_participant(actor, investigation_id, db)
    content = content.strip()
    if not content:
        raise WorkflowValidationError("Message is empty.")
    now = datetime.utcnow()
    msg = CaseMessage(
        investigation_id=investigation_id,
        author_id=actor.uid,
        author_name=actor.name,
        author_role=actor.role.value,
        content=content,
        created_at=now,
    )
    db.add(msg)
    # Son mesaj bilgisi workflow alanı değil; versiyon değişmez
    row = db.get(Investigation, investigation_id)
    row.last_message_at = now
    row.last_message_preview = content[:PREVIEW_LENGTH]
    db.add(row)
    db.commit()
    db.refresh(msg)
    return msg


def edit_message(db: Session, actor: Actor, investigation_id: str, message_id: int, content: str) -> CaseMessage:
    _check_participant(actor, investigation_id, db)
    msg = db.get(CaseMessage, message_id)
    if msg is None or msg.investigation_id != investigation_id:
        raise InvestigationNotFound("Message not found.")
    if msg.author_id != actor.uid:
        raise PermissionDenied("You can only edit your own messages.")
    if not content.strip():
        raise WorkflowValidationError("Message is empty.")
    msg.content = content.strip()
    msg.edited = True
    msg.edited_at = datetime.utcnow()
    db.add(msg)
    db.commit()
    db.refresh(msg)
    return msg
