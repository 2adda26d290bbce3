import hmac

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from lifeline.core.config import settings
from lifeline.core.database import get_db
from lifeline.core.security import decode_access_token
from lifeline.models import User
from lifeline.services.workflow import Actor, Role

security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Please sign in.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    return int(payload["sub"])


def get_current_user(
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found.")
    if getattr(user, "is_banned", False):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account has been suspended. Please contact support.",
        )
    return user


def get_actor(user: User = Depends(get_current_user)) -> Actor:
    """Rol DB'deki profilden okunur (token'daki rol değil)."""
    return Actor(uid=user.id, name=user.full_name or user.email.split("@")[0], role=Role(user.role))


def require_patient(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != Role.PATIENT:
        raise HTTPException(status_code=403, detail="This page is for patients only.")
    return actor


def require_doctor(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != Role.DOCTOR:
        raise HTTPException(status_code=403, detail="This page is for doctors only.")
    return actor


def _admin_secret_matches(provided: str | None, expected: str | None) -> bool:
    """Timing-safe karşılaştırma."""
    return hmac.compare_digest((provided or "").encode("utf-8"), (expected or "").encode("utf-8"))


def require_admin(x_admin_secret: str | None = Header(None, alias="X-Admin-Secret")) -> None:
    expected = (settings.admin_secret or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API is not configured (ADMIN_SECRET missing).")
    if not _admin_secret_matches(x_admin_secret, expected):
        raise HTTPException(status_code=403, detail="Unauthorized.")
