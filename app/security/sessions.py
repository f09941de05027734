from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select

from app.auth import Principal, principal_from_user
from app.config import settings
from app.db import SessionLocal
from app.models import User, UserSession


AUTH_EXEMPT_PATHS = {'/health', '/docs', '/openapi.json'}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def create_user_session(db, user_id: int) -> str:
    token = secrets.token_urlsafe(48)
    db.add(
        UserSession(
            session_token=token,
            user_id=user_id,
            expires_at=_session_expiry(),
        )
    )
    db.flush()
    return token


def load_principal_from_token(db, token: str | None) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(UserSession, User)
        .join(User, User.id == UserSession.user_id)
        .where(UserSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    user_session, user = row
    now = _now()
    if user_session.revoked_at is not None or _as_utc(user_session.expires_at) <= now:
        return None

    user_session.last_seen_at = now
    user_session.expires_at = _session_expiry()
    return principal_from_user(user)


def token_from_request(request: Request) -> str | None:
    authorization = request.headers.get('authorization', '')
    scheme, _, credentials = authorization.partition(' ')
    if scheme.lower() == 'bearer' and credentials.strip():
        return credentials.strip()
    return request.cookies.get(settings.session_cookie_name)


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = token_from_request(request)
        with SessionLocal() as db:
            principal = load_principal_from_token(db, token)
            request.state.principal = principal
            db.commit()

        if request.url.path not in AUTH_EXEMPT_PATHS and request.state.principal is None:
            return JSONResponse({'detail': 'Not authenticated'}, status_code=status.HTTP_401_UNAUTHORIZED)

        response = await call_next(request)
        return response
