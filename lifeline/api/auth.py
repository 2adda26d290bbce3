import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, select

from lifeline.api.deps import get_current_user
from lifeline.core.config import settings
from lifeline.core.database import get_db
from lifeline.core.rate_limit import get_client_ip, limiter
from lifeline.core.security import create_access_token, hash_password, verify_password
from lifeline.models import AuditLog, SecurityLog, User
from lifeline.schemas import Token, UserCreate, UserLogin, UserResponse, UserUpdate

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])
_AUTH_RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"
_REGISTER_LIMIT = f"{settings.rate_limit_register_per_minute}/minute;100/hour"

PORTAL_NAMES = {"patient": "a patient", "doctor": "a doctor", "admin": "an administrator"}


def _audit(db: Session, event: str, user_id: int | None, ip: str | None) -> None:
    try:
        db.add(AuditLog(event=event, user_id=user_id, ip=ip))
        db.commit()
    except Exception as e:
        db.rollback()
        log.warning("AuditLog write failed (%s): %s", event, e)


def _security_event(db: Session, event: str, request: Request, user_id: int | None, detail: str) -> None:
    try:
        db.add(SecurityLog(event=event, user_id=user_id, ip=get_client_ip(request), endpoint=request.url.path, detail=detail))
        db.commit()
    except Exception as e:
        db.rollback()
        log.warning("SecurityLog write failed (%s): %s", event, e)


def _user_response(user: User) -> UserResponse:
    return UserResponse(id=user.id or 0, email=user.email, full_name=user.full_name, role=user.role)


@router.post("/register", response_model=UserResponse)
@limiter.limit(_REGISTER_LIMIT)
def register(request: Request, body: UserCreate, db: Session = Depends(get_db)):
    email = body.email.strip().lower()
    if db.exec(select(User).where(User.email == email)).first():
        raise HTTPException(status_code=400, detail="This email address is already registered.")
    user = User(
        email=email,
        hashed_password=hash_password(body.password),
        full_name=body.full_name,
        role=body.role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    _audit(db, "register", user.id, get_client_ip(request))
    log.info("registered user_id=%s role=%s", user.id, user.role)
    return _user_response(user)


@router.post("/login", response_model=Token)
@limiter.limit(_AUTH_RATE_LIMIT)
def login(request: Request, body: UserLogin, db: Session = Depends(get_db)):
    user = db.exec(select(User).where(User.email == body.email.strip().lower())).first()
    if not user or not verify_password(body.password, user.hashed_password):
        _security_event(db, "failed_login", request, user.id if user else None, body.email)
        raise HTTPException(status_code=401, detail="Incorrect email or password.")
    if user.is_banned:
        raise HTTPException(status_code=403, detail="Your account has been suspended. Please contact support.")
    if body.portal and body.portal != user.role:
        # Yanlış giriş ekranı: oturum açılmaz (istemci çıkış yaptırır)
        _security_event(db, "role_mismatch", request, user.id, f"portal={body.portal} role={user.role}")
        raise HTTPException(
            status_code=403,
            detail=f"This account is not registered as {PORTAL_NAMES[body.portal]}.",
        )
    user.last_login_at = datetime.utcnow()
    db.add(user)
    db.commit()
    _audit(db, "login", user.id, get_client_ip(request))
    token = create_access_token(user.id, user.role)
    return Token(access_token=token, role=user.role)


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return _user_response(user)


@router.patch("/me", response_model=UserResponse)
def update_me(body: UserUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if body.full_name is not None:
        full_name = body.full_name.strip()
        if not full_name:
            raise HTTPException(status_code=422, detail="Please enter your full name.")
        user.full_name = full_name
    db.add(user)
    db.commit()
    db.refresh(user)
    return _user_response(user)
