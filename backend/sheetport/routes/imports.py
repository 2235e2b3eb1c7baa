"""
Import API endpoints (proxy edge).

Upload:  POST /api/import/upload  (multipart, exactly one file)
Import:  POST /api/import         ({fileId} or {sheetId, tabId?})

Import responses share one contract:
- {success: true, data: <dataset>}
- {success: true, authRequired: true, authUrl, message}
- {success: false, code, message} with a status reflecting the kind

Authorization-required is a normal, resumable outcome, so it comes back
as a 200 with a flag the client can branch on.
"""
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, Request, Response
from starlette.datastructures import UploadFile as StarletteUploadFile

from sheetport.config import Settings, get_settings
from sheetport.dependencies import get_orchestrator, get_subject_id, get_upload_gate
from sheetport.models.imports import (
    AuthRequired,
    Browsed,
    ImportBody,
    ImportFailed,
    Imported,
)
from sheetport.models.upload import UploadResponse
from sheetport.services.import_service import ImportOrchestrator
from sheetport.services.upload_service import UploadGate
from sheetport.utils.logger import get_logger
from sheetport.utils.errors import AppError, FileTooLargeError

router = APIRouter()
logger = get_logger(__name__)

AUTH_REQUIRED_MESSAGE = "Google authentication required"

# Multipart framing overhead tolerated on top of the file size limit
MULTIPART_OVERHEAD_BYTES = 64 * 1024


def outcome_to_body(outcome: Any, response: Response) -> dict:
    """Translate an orchestrator outcome into the client contract."""
    if isinstance(outcome, Imported):
        return {"success": True, "data": outcome.dataset.model_dump(mode="json", by_alias=True)}

    if isinstance(outcome, Browsed):
        return {"success": True, "data": outcome.items}

    if isinstance(outcome, AuthRequired):
        return {
            "success": True,
            "authRequired": True,
            "authUrl": outcome.authorization_url,
            "message": AUTH_REQUIRED_MESSAGE,
        }

    if isinstance(outcome, ImportFailed):
        response.status_code = outcome.status_code
        return {"success": False, "code": outcome.error_kind.value, "message": outcome.message}

    logger.error(f"Unknown outcome type: {type(outcome).__name__}")
    response.status_code = 500
    return {"success": False, "code": "INTERNAL_ERROR", "message": "Something went wrong. Please try again."}


def find_embedded_auth_url(error: BaseException) -> Optional[str]:
    """
    Look for an authorization URL smuggled inside an unexpected error.

    Checks an ``auth_url`` attribute, ``details["authUrl"]`` and, for
    httpx status errors, a JSON body of the form {details: {authUrl}}.
    """
    url = getattr(error, "auth_url", None)
    if isinstance(url, str) and url:
        return url

    details = getattr(error, "details", None)
    if isinstance(details, dict) and isinstance(details.get("authUrl"), str):
        return details["authUrl"]

    if isinstance(error, httpx.HTTPStatusError):
        try:
            body = error.response.json()
        except ValueError:
            return None
        nested = body.get("details") if isinstance(body, dict) else None
        if isinstance(nested, dict) and isinstance(nested.get("authUrl"), str):
            return nested["authUrl"]
    return None


async def run_guarded(coro, response: Response) -> dict:
    """Await an orchestrator call and shape its outcome, never leaking a raw 500."""
    try:
        outcome = await coro
    except Exception as e:
        auth_url = find_embedded_auth_url(e)
        if auth_url:
            logger.warning(f"Recovered authorization URL from unexpected error: {type(e).__name__}")
            return outcome_to_body(AuthRequired(authorization_url=auth_url), response)
        logger.exception(f"Unexpected import error: {e}")
        response.status_code = 500
        return {"success": False, "code": "INTERNAL_ERROR", "message": "Something went wrong. Please try again."}
    return outcome_to_body(outcome, response)


@router.post("/upload")
async def upload_file(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    gate: UploadGate = Depends(get_upload_gate),
):
    """
    Validate and stage one spreadsheet upload.

    Returns:
        {fileId, originalName, path, size, mimeType}
        or {error, message} with 400 / 413
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit():
        if int(content_length) > settings.max_upload_bytes + MULTIPART_OVERHEAD_BYTES:
            error = FileTooLargeError(settings.max_upload_bytes)
            response.status_code = error.status_code
            return {"error": error.code.value, "message": error.message}

    form = await request.form()
    try:
        files = [v for _, v in form.multi_items() if isinstance(v, StarletteUploadFile)]
        staged = await gate.stage(files)
    except AppError as e:
        logger.info(f"Upload rejected [{e.code.value}]: {e.message}")
        response.status_code = e.status_code
        return {"error": e.code.value, "message": e.message}
    finally:
        await form.close()

    return UploadResponse.from_staged(staged).model_dump(by_alias=True)


@router.post("")
async def import_dataset(
    body: ImportBody,
    response: Response,
    subject_id: str = Depends(get_subject_id),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
):
    """
    Import from a staged upload or a Google Sheet.

    Request: {"fileId": "..."} or {"sheetId": "...", "tabId": "..."}
    """
    request = body.to_request()
    logger.info(f"Import request from subject {subject_id}: {type(request).__name__}")
    return await run_guarded(orchestrator.run_import(request, subject_id), response)
