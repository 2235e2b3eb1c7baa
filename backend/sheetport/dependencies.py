"""
FastAPI dependencies: service singletons and subject identity.

Tests replace any of these through app.dependency_overrides.
"""
import secrets
from functools import lru_cache
from typing import Optional

import jwt
from fastapi import Depends, Request, Response

from sheetport.config import Settings, get_settings
from sheetport.services.dataset_store import InMemoryDatasetStore
from sheetport.services.import_service import ImportOrchestrator
from sheetport.services.notifications import LoggingNotifier
from sheetport.services.oauth_session_service import OAuthSessionManager
from sheetport.services.upload_service import UploadGate
from sheetport.utils.logger import get_logger

logger = get_logger(__name__)

SUBJECT_COOKIE = "subject"
SUBJECT_AUDIENCE = "sheetport-subject"


@lru_cache()
def get_session_manager() -> OAuthSessionManager:
    return OAuthSessionManager(get_settings())


@lru_cache()
def get_upload_gate() -> UploadGate:
    settings = get_settings()
    return UploadGate(settings.upload_dir, settings.max_upload_bytes, settings.staged_file_ttl_hours)


@lru_cache()
def get_orchestrator() -> ImportOrchestrator:
    return ImportOrchestrator(
        sessions=get_session_manager(),
        uploads=get_upload_gate(),
        store=InMemoryDatasetStore(),
        notifier=LoggingNotifier(),
        remote_timeout=get_settings().google_timeout_seconds,
    )


def encode_subject(subject_id: str, settings: Settings) -> str:
    return jwt.encode({"sub": subject_id, "aud": SUBJECT_AUDIENCE}, settings.session_secret, algorithm="HS256")


def read_subject(request: Request, settings: Settings) -> Optional[str]:
    """Subject id from the signed cookie, or None if absent or tampered."""
    token = request.cookies.get(SUBJECT_COOKIE)
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=["HS256"], audience=SUBJECT_AUDIENCE)
    except jwt.InvalidTokenError as e:
        logger.warning(f"Ignoring invalid subject cookie: {e}")
        return None
    return payload.get("sub")


def set_subject_cookie(response: Response, subject_id: str, settings: Settings) -> None:
    is_secure = settings.frontend_url.startswith("https") and "localhost" not in settings.frontend_url
    response.set_cookie(
        key=SUBJECT_COOKIE,
        value=encode_subject(subject_id, settings),
        httponly=True,
        secure=is_secure,
        samesite="lax",
        max_age=settings.subject_cookie_days * 86400,
        path="/",
    )


async def get_subject_id(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Identify the caller.

    Users are authenticated by the main product; here the subject is an
    opaque id carried in a signed cookie and minted on first contact.
    """
    subject_id = read_subject(request, settings)
    if subject_id is None:
        subject_id = secrets.token_urlsafe(16)
        set_subject_cookie(response, subject_id, settings)
        logger.info(f"Issued new subject {subject_id}")
    return subject_id
