import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import auth
from auth import bearer_token, issue_identity_token, read_identity_token, resolve_user
from database import Base
from errors import UnauthenticatedError
from services import UserService


def test_token_round_trip_returns_subject():
    token = issue_identity_token("auth|abc")
    assert read_identity_token(token) == "auth|abc"


def test_missing_or_tampered_token_is_rejected():
    with pytest.raises(UnauthenticatedError):
        read_identity_token(None)
    token = issue_identity_token("auth|abc")
    with pytest.raises(UnauthenticatedError):
        read_identity_token(token[:-2] + "xx")


def test_expired_token_is_rejected(monkeypatch):
    token = issue_identity_token("auth|abc")
    settings = auth.get_settings()
    monkeypatch.setattr(settings, "auth_max_age_secs", -1)
    with pytest.raises(UnauthenticatedError, match="expired"):
        read_identity_token(token)


def test_bearer_token_parsing():
    assert bearer_token("Bearer abc.def") == "abc.def"
    assert bearer_token("bearer  abc ") == "abc"
    assert bearer_token("Basic abc") is None
    assert bearer_token("Bearer ") is None
    assert bearer_token(None) is None


def test_unmapped_subject_fails_closed():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        with pytest.raises(UnauthenticatedError):
            resolve_user(session, "auth|nobody")

        created = UserService(session).ensure("auth|nobody")
        assert resolve_user(session, "auth|nobody").id == created.id
        assert UserService(session).ensure("auth|nobody").id == created.id
