"""
Pytest fixtures for SheetPort backend tests.
"""
import asyncio
import io
from typing import List, Optional
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from sheetport import dependencies
from sheetport.config import get_settings
from sheetport.integrations.sheets_client import SheetValues
from sheetport.services.dataset_store import InMemoryDatasetStore
from sheetport.services.import_service import ImportOrchestrator
from sheetport.services.notifications import LoggingNotifier
from sheetport.services.oauth_session_service import OAuthSessionManager
from sheetport.services.upload_service import UploadGate

MAX_TEST_UPLOAD_BYTES = 1024


def _clear_caches():
    get_settings.cache_clear()
    dependencies.get_session_manager.cache_clear()
    dependencies.get_upload_gate.cache_clear()
    dependencies.get_orchestrator.cache_clear()


@pytest.fixture(autouse=True)
def settings(tmp_path, monkeypatch):
    """Test settings driven through the environment, as in production."""
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "client-123.apps.googleusercontent.com")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "shh")
    monkeypatch.setenv("SESSION_SECRET", "test-secret")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("MAX_UPLOAD_BYTES", str(MAX_TEST_UPLOAD_BYTES))
    monkeypatch.setenv("GOOGLE_RETRY_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("GOOGLE_TIMEOUT_SECONDS", "2")
    _clear_caches()
    yield get_settings()
    _clear_caches()


def make_upload(filename: str, content: bytes, content_type: str, size: Optional[int] = None) -> UploadFile:
    """Build an UploadFile the way Starlette does for a multipart part."""
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        size=size,
        headers=Headers({"content-type": content_type}),
    )


class FakeSheetsClient:
    """Stand-in for SheetsClient that records every remote call."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.tokens: List[str] = []
        self.error: Optional[Exception] = None
        self.delay: float = 0.0
        self.values = SheetValues(
            sheet_id="abc",
            title="Q3 Sales",
            tab_title="Sheet1",
            headers=["Region", "Total Sales"],
            columns=["region", "total_sales"],
            rows=[{"region": "EMEA", "total_sales": "100"}, {"region": "APAC", "total_sales": "250"}],
        )

    def factory(self, access_token: str, **kwargs) -> "FakeSheetsClient":
        self.tokens.append(access_token)
        return self

    async def _respond(self, name: str, *args, result=None):
        self.calls.append((name, *args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return result

    async def fetch_tab(self, sheet_id: str, tab_id: Optional[str] = None) -> SheetValues:
        return await self._respond("fetch_tab", sheet_id, tab_id, result=self.values)

    async def list_spreadsheets(self) -> List[dict]:
        return await self._respond("list_spreadsheets", result=[{"id": "abc", "name": "Q3 Sales"}])

    async def list_tabs(self, sheet_id: str) -> List[dict]:
        return await self._respond("list_tabs", sheet_id, result=[{"id": 0, "title": "Sheet1", "index": 0}])


@pytest.fixture
def sheets():
    return FakeSheetsClient()


@pytest.fixture
def manager(settings, sheets):
    return OAuthSessionManager(settings, client_factory=sheets.factory)


@pytest.fixture
def gate(settings):
    return UploadGate(settings.upload_dir, settings.max_upload_bytes, settings.staged_file_ttl_hours)


@pytest.fixture
def orchestrator(manager, gate):
    return ImportOrchestrator(
        sessions=manager,
        uploads=gate,
        store=InMemoryDatasetStore(),
        notifier=LoggingNotifier(),
        remote_timeout=1.0,
    )


def state_from_url(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


def token_response(access_token: str = "ya29.access", refresh_token: Optional[str] = "1//refresh", expires_in: int = 3600) -> dict:
    return {"access_token": access_token, "refresh_token": refresh_token, "expires_in": expires_in}


async def authorize(manager: OAuthSessionManager, subject_id: str, code: str = "4/code-1", **tokens):
    """Run the real state/exchange path with Google's token endpoint mocked."""
    state = state_from_url(manager.get_authorization_url(subject_id))
    with patch(
        "sheetport.services.oauth_session_service.exchange_code_for_tokens",
        new_callable=AsyncMock,
        return_value=token_response(**tokens),
    ):
        return await manager.exchange_code(code, state)
