"""
Liveness endpoint for the import service.
"""
import os
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from sheetport.config import Settings, get_settings

router = APIRouter()

VERSION = "0.1.0"


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)):
    """Report liveness plus whether uploads and Google sign-in can work."""
    upload_dir = settings.upload_dir
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "uploadsWritable": upload_dir.is_dir() and os.access(upload_dir, os.W_OK),
        "googleConfigured": bool(settings.google_client_id and settings.google_client_secret),
    }
