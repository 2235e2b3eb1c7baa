"""
Google authorization and browse routes.

OAuth Flow:
1. Frontend calls GET /api/google/auth (or gets authUrl from an import) → authUrl
2. Frontend redirects user to authUrl
3. User grants Sheets access on Google
4. Google redirects to GET /api/google/callback with code + state
5. Backend verifies state, exchanges code, stores the session for the subject
6. Backend redirects to frontend /import; the user retries the import

Security:
- state is a signed, single-use JWT naming the subject
- the subject cookie, when present, must agree with state
- Google tokens never leave the server
"""
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import RedirectResponse

from sheetport.config import Settings, get_settings
from sheetport.dependencies import (
    get_orchestrator,
    get_session_manager,
    get_subject_id,
    read_subject,
    set_subject_cookie,
)
from sheetport.routes.imports import run_guarded
from sheetport.services.import_service import ImportOrchestrator
from sheetport.services.oauth_session_service import OAuthSessionManager
from sheetport.utils.logger import get_logger
from sheetport.utils.errors import AppError, StateMismatchError

router = APIRouter()
logger = get_logger(__name__)


def _frontend_redirect(settings: Settings, **params) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.frontend_url}/import?{urlencode(params)}", status_code=302)


@router.get("/auth")
async def get_auth_url(
    subject_id: str = Depends(get_subject_id),
    sessions: OAuthSessionManager = Depends(get_session_manager),
):
    """
    Get the Google consent URL for the current subject.

    Returns:
        { authUrl: "https://accounts.google.com/..." }
    """
    return {"authUrl": sessions.get_authorization_url(subject_id)}


@router.get("/callback")
async def oauth_callback(
    request: Request,
    code: str = None,
    state: str = None,
    error: str = None,
    settings: Settings = Depends(get_settings),
    sessions: OAuthSessionManager = Depends(get_session_manager),
):
    """
    Handle Google OAuth callback.

    On success: store the session and redirect to /import?google=connected
    On error: redirect to /import?error=<code>
    """
    # Handle user denial or OAuth errors
    if error:
        logger.warning(f"OAuth error from Google: {error}")
        return _frontend_redirect(settings, error="oauth_denied")

    if not code or not state:
        logger.warning("OAuth callback missing code or state")
        return _frontend_redirect(settings, error="missing_code")

    try:
        claimed = sessions.decode_state(state)["sub"]
        cookie_subject = read_subject(request, settings)
        if cookie_subject is not None and cookie_subject != claimed:
            logger.warning("OAuth callback subject cookie does not match state")
            raise StateMismatchError()

        session = await sessions.exchange_code(code, state)
    except AppError as e:
        logger.error(f"OAuth callback failed [{e.code.value}]: {e.message}")
        return _frontend_redirect(settings, error=e.code.value.lower())

    response = _frontend_redirect(settings, google="connected")
    if cookie_subject is None:
        set_subject_cookie(response, session.subject_id, settings)
    return response


@router.post("/logout")
async def logout(
    subject_id: str = Depends(get_subject_id),
    sessions: OAuthSessionManager = Depends(get_session_manager),
):
    """
    Disconnect Google for the current subject.

    Always reports success: local tokens are cleared even when
    revocation at Google fails.
    """
    try:
        await sessions.logout(subject_id)
    except Exception as e:
        logger.error(f"Google logout for subject {subject_id} raised: {e}")
    return {"success": True, "message": "Logged out from Google"}


@router.get("/status")
async def auth_status(
    subject_id: str = Depends(get_subject_id),
    sessions: OAuthSessionManager = Depends(get_session_manager),
):
    """
    Report the subject's Google authorization state.

    Returns:
        { authorized: bool, state: "unauthenticated" | ... }
    """
    return {
        "authorized": sessions.is_authorized(subject_id),
        "state": sessions.get_state(subject_id).value,
    }


@router.post("/refresh")
async def refresh_session(
    response: Response,
    subject_id: str = Depends(get_subject_id),
    sessions: OAuthSessionManager = Depends(get_session_manager),
):
    """
    Refresh the subject's Google access token with its refresh token.

    Returns:
        { refreshed: bool, authorized: bool }
    """
    try:
        refreshed = await sessions.refresh(subject_id)
    except AppError as e:
        logger.error(f"Google token refresh failed [{e.code.value}]: {e.message}")
        response.status_code = e.status_code
        return {"success": False, "code": e.code.value, "message": e.message}

    return {"refreshed": refreshed, "authorized": sessions.is_authorized(subject_id)}


@router.get("/sheets")
async def list_spreadsheets(
    response: Response,
    subject_id: str = Depends(get_subject_id),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """List the subject's spreadsheets, or ask for authorization."""
    return await run_guarded(orchestrator.list_spreadsheets(subject_id), response)


@router.get("/sheets/{sheet_id}/tabs")
async def list_tabs(
    sheet_id: str,
    response: Response,
    subject_id: str = Depends(get_subject_id),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """List the tabs of one spreadsheet, or ask for authorization."""
    return await run_guarded(orchestrator.list_tabs(subject_id, sheet_id), response)
