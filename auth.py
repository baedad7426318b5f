from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import UnauthenticatedError
from models import User


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="identity-token")


def issue_identity_token(subject: str) -> str:
    """Sign an identity token for an external auth subject."""
    subject = subject.strip()
    if not subject:
        raise ValueError("Subject cannot be empty")
    return _serializer().dumps({"sub": subject})


def read_identity_token(token: Optional[str]) -> str:
    if not token:
        raise UnauthenticatedError("Unauthorized")
    settings = get_settings()
    try:
        data = _serializer().loads(token, max_age=settings.auth_max_age_secs)
    except SignatureExpired as exc:
        raise UnauthenticatedError("Session expired") from exc
    except BadSignature as exc:
        raise UnauthenticatedError("Unauthorized") from exc

    subject = data.get("sub") if isinstance(data, dict) else None
    if not isinstance(subject, str) or not subject:
        raise UnauthenticatedError("Unauthorized")
    return subject


def bearer_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_user(session: Session, subject: str) -> User:
    user = session.scalar(select(User).where(User.external_id == subject))
    if not user:
        raise UnauthenticatedError("User not found")
    return user
