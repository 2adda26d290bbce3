"""Admin API: sadece ADMIN_SECRET ile erişilir. Kullanıcılar, vakalar, analiz kuyruğu, hata logları."""
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session, func, select

from lifeline.api.deps import require_admin
from lifeline.core.database import get_db
from lifeline.models import AnalysisJob, AuditLog, ErrorLog, Investigation, User
from lifeline.schemas import InvestigationStatus, InvestigationSummary
from lifeline.services import investigations

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class RoleUpdate(BaseModel):
    role: Literal["patient", "doctor", "admin"]


def _user_row(u: User) -> dict:
    return {
        "id": u.id,
        "email": u.email,
        "full_name": u.full_name,
        "role": u.role,
        "is_banned": u.is_banned,
        "created_at": u.created_at.isoformat() if u.created_at else None,
        "last_login_at": u.last_login_at.isoformat() if u.last_login_at else None,
    }


def _get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    return user


def _audit(db: Session, event: str, user_id: int | None) -> None:
    db.add(AuditLog(event=event, user_id=user_id))
    db.commit()


@router.get("/stats")
def stats(db: Session = Depends(get_db)):
    by_status = dict(
        db.exec(select(Investigation.status, func.count()).group_by(Investigation.status)).all()
    )
    by_role = dict(db.exec(select(User.role, func.count()).group_by(User.role)).all())
    failed_jobs = db.exec(select(func.count()).select_from(AnalysisJob).where(AnalysisJob.status == "failed")).one()
    return {
        "investigations": {s.value: by_status.get(s.value, 0) for s in InvestigationStatus},
        "users": by_role,
        "failed_analysis_jobs": failed_jobs,
    }


@router.get("/users")
def list_users(
    db: Session = Depends(get_db),
    role: str | None = None,
    q: str | None = None,
    limit: int = Query(200, ge=1, le=1000),
):
    stmt = select(User).order_by(User.id.desc()).limit(limit)
    if role:
        stmt = stmt.where(User.role == role)
    if q and q.strip():
        stmt = stmt.where(User.email.contains(q.strip().lower()))
    return [_user_row(u) for u in db.exec(stmt).all()]


@router.post("/users/{user_id}/role")
def set_role(user_id: int, body: RoleUpdate, db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    user.role = body.role
    db.add(user)
    db.commit()
    db.refresh(user)
    _audit(db, f"admin_set_role:{body.role}", user.id)
    return _user_row(user)


@router.post("/users/{user_id}/ban")
def ban_user(user_id: int, db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    user.is_banned = True
    db.add(user)
    db.commit()
    db.refresh(user)
    _audit(db, "admin_ban", user.id)
    return _user_row(user)


@router.post("/users/{user_id}/unban")
def unban_user(user_id: int, db: Session = Depends(get_db)):
    user = _get_user(db, user_id)
    user.is_banned = False
    db.add(user)
    db.commit()
    db.refresh(user)
    _audit(db, "admin_unban", user.id)
    return _user_row(user)


@router.get("/investigations", response_model=list[InvestigationSummary])
def list_investigations(
    db: Session = Depends(get_db),
    status: InvestigationStatus | None = None,
    limit: int = Query(200, ge=1, le=1000),
):
    return [InvestigationSummary.from_record(r) for r in investigations.list_all(db, status, limit=limit)]


@router.get("/jobs")
def list_jobs(
    db: Session = Depends(get_db),
    status_filter: str | None = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=1000),
):
    stmt = select(AnalysisJob).order_by(AnalysisJob.id.desc()).limit(limit)
    if status_filter and status_filter in ("pending", "processing", "done", "failed"):
        stmt = stmt.where(AnalysisJob.status == status_filter)
    return [
        {
            "id": j.id,
            "investigation_id": j.investigation_id,
            "step_index": j.step_index,
            "kind": j.kind,
            "status": j.status,
            "duration_ms": j.duration_ms,
            "error_message": (j.error_message or "")[:200] or None,
            "created_at": j.created_at.isoformat() if j.created_at else None,
        }
        for j in db.exec(stmt).all()
    ]


@router.get("/errors")
def list_errors(db: Session = Depends(get_db), limit: int = Query(100, ge=1, le=1000)):
    rows = db.exec(select(ErrorLog).order_by(ErrorLog.id.desc()).limit(limit)).all()
    return [
        {
            "id": e.id,
            "request_id": e.request_id,
            "endpoint": e.endpoint,
            "method": e.method,
            "error_message": e.error_message,
            "created_at": e.created_at.isoformat() if e.created_at else None,
        }
        for e in rows
    ]
