"""
Unit tests for the import orchestrator.

The Sheets client is a recording fake so tests can assert that no
remote call happens without authorization.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from sheetport.integrations.google_auth import GOOGLE_AUTH_URL
from sheetport.models.imports import (
    AuthRequired,
    Browsed,
    ImportFailed,
    Imported,
    LocalFileImport,
    RemoteSheetImport,
)
from sheetport.models.session import AuthState
from sheetport.services.dataset_store import InMemoryDatasetStore
from sheetport.services.import_service import ImportOrchestrator
from sheetport.utils.errors import (
    AccessDeniedError,
    ErrorKind,
    ExternalAuthError,
    InvalidRequestError,
    NotFoundError,
    QuotaExceededError,
    UpstreamUnavailableError,
)
from conftest import authorize, make_upload, state_from_url


class TestRemoteImportWithoutSession:
    """Test the authorization gate."""

    @pytest.mark.asyncio
    async def test_auth_required_without_remote_call(self, orchestrator, sheets):
        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")

        assert isinstance(outcome, AuthRequired)
        assert outcome.authorization_url.startswith(GOOGLE_AUTH_URL)
        assert "state=" in outcome.authorization_url
        assert sheets.calls == []
        assert sheets.tokens == []

    @pytest.mark.asyncio
    async def test_auth_url_bound_to_subject(self, orchestrator, manager):
        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")
        state = state_from_url(outcome.authorization_url)
        assert manager.decode_state(state)["sub"] == "user-1"

    @pytest.mark.asyncio
    async def test_expired_session_requires_auth(self, orchestrator, manager, sheets):
        await authorize(manager, "user-1", expires_in=30)

        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")

        assert isinstance(outcome, AuthRequired)
        assert sheets.calls == []

    @pytest.mark.asyncio
    async def test_other_subjects_session_not_used(self, orchestrator, manager, sheets):
        await authorize(manager, "user-1")

        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-2")

        assert isinstance(outcome, AuthRequired)
        assert sheets.calls == []


class TestRemoteImport:
    """Test imports for an authorized subject."""

    @pytest.mark.asyncio
    async def test_import_after_authorization(self, orchestrator, manager, sheets):
        """The same request succeeds once the callback has completed."""
        first = await orchestrator.run_import(RemoteSheetImport("abc", "Sheet1"), "user-1")
        assert isinstance(first, AuthRequired)

        await authorize(manager, "user-1")
        outcome = await orchestrator.run_import(RemoteSheetImport("abc", "Sheet1"), "user-1")

        assert isinstance(outcome, Imported)
        dataset = outcome.dataset
        assert dataset.source == "google_sheets"
        assert dataset.name == "Q3 Sales - Sheet1"
        assert dataset.columns == ["region", "total_sales"]
        assert dataset.row_count == 2
        assert dataset.sheet["sheetId"] == "abc"
        assert dataset.sheet["tabId"] == "Sheet1"
        assert dataset.sheet["headers"] == ["Region", "Total Sales"]
        assert sheets.calls == [("fetch_tab", "abc", "Sheet1")]
        assert sheets.tokens == ["ya29.access"]

    @pytest.mark.asyncio
    async def test_dataset_saved(self, manager, gate, sheets):
        store = InMemoryDatasetStore()
        orchestrator = ImportOrchestrator(manager, gate, store, MagicMock(dataset_imported=AsyncMock()), 1.0)
        await authorize(manager, "user-1")

        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")

        assert await store.get(outcome.dataset.dataset_id) == outcome.dataset

    @pytest.mark.asyncio
    async def test_reimport_replaces_dataset(self, orchestrator, manager):
        """A (sheet, tab) pair maps to one dataset id; another tab gets its own."""
        await authorize(manager, "user-1")

        first = await orchestrator.run_import(RemoteSheetImport("abc", "Sheet1"), "user-1")
        again = await orchestrator.run_import(RemoteSheetImport("abc", "Sheet1"), "user-1")
        other = await orchestrator.run_import(RemoteSheetImport("abc", "Sheet2"), "user-1")

        assert first.dataset.dataset_id == again.dataset.dataset_id
        assert other.dataset.dataset_id != first.dataset.dataset_id

    @pytest.mark.asyncio
    async def test_stale_token_becomes_auth_required(self, orchestrator, manager, sheets):
        """A token Google rejects at call time asks for authorization again."""
        await authorize(manager, "user-1")
        sheets.error = ExternalAuthError()

        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")

        assert isinstance(outcome, AuthRequired)
        assert "state=" in outcome.authorization_url
        assert len(sheets.calls) == 1

    @pytest.mark.asyncio
    async def test_rejected_session_is_expired(self, orchestrator, manager, sheets):
        """After a rejected token, later imports are gated locally instead of calling Google."""
        await authorize(manager, "user-1")
        sheets.error = ExternalAuthError()
        await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")

        assert not manager.is_authorized("user-1")
        assert manager.get_state("user-1") != AuthState.AUTHENTICATED
        assert manager._sessions["user-1"].refresh_token == "1//refresh"

        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")
        assert isinstance(outcome, AuthRequired)
        assert len(sheets.calls) == 1

    @pytest.mark.asyncio
    async def test_reauthorized_subject_imports_after_rejection(self, orchestrator, manager, sheets):
        await authorize(manager, "user-1")
        sheets.error = ExternalAuthError()
        await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")

        sheets.error = None
        await authorize(manager, "user-1", code="4/code-2", access_token="ya29.fresh")
        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")

        assert isinstance(outcome, Imported)
        assert sheets.tokens[-1] == "ya29.fresh"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,kind", [
        (NotFoundError("Spreadsheet not found."), ErrorKind.NOT_FOUND),
        (AccessDeniedError(), ErrorKind.ACCESS_DENIED),
        (QuotaExceededError(), ErrorKind.QUOTA_EXCEEDED),
        (InvalidRequestError("Tab 'x' was not found in this spreadsheet."), ErrorKind.INVALID_REQUEST),
        (UpstreamUnavailableError(), ErrorKind.UPSTREAM_UNAVAILABLE),
    ])
    async def test_remote_failures(self, orchestrator, manager, sheets, error, kind):
        """Other Google failures keep their kind and never ask for authorization."""
        await authorize(manager, "user-1")
        sheets.error = error

        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")

        assert isinstance(outcome, ImportFailed)
        assert outcome.error_kind == kind
        assert outcome.message == error.message

    @pytest.mark.asyncio
    async def test_remote_timeout(self, manager, gate, sheets):
        orchestrator = ImportOrchestrator(manager, gate, InMemoryDatasetStore(), MagicMock(dataset_imported=AsyncMock()), 0.05)
        await authorize(manager, "user-1")
        sheets.delay = 1.0

        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")

        assert isinstance(outcome, ImportFailed)
        assert outcome.error_kind == ErrorKind.UPSTREAM_UNAVAILABLE
        assert outcome.status_code == 503


class TestLocalImport:
    """Test imports of staged uploads."""

    @pytest.mark.asyncio
    async def test_import_staged_file(self, orchestrator, gate, sheets):
        """Local imports never need Google authorization."""
        staged = await gate.stage([make_upload("report.csv", b"a,b\n1,2\n", "text/csv")])

        outcome = await orchestrator.run_import(LocalFileImport(staged.file_id), "user-1")

        assert isinstance(outcome, Imported)
        assert outcome.dataset.source == "file"
        assert outcome.dataset.name == "report.csv"
        assert outcome.dataset.file["fileId"] == staged.file_id
        assert outcome.dataset.file["size"] == 8
        assert sheets.calls == []

    @pytest.mark.asyncio
    async def test_missing_file(self, orchestrator):
        outcome = await orchestrator.run_import(LocalFileImport("1700000000000000000-0123456789abcdef"), "user-1")

        assert isinstance(outcome, ImportFailed)
        assert outcome.error_kind == ErrorKind.NOT_FOUND
        assert outcome.status_code == 404


class TestNotifications:
    """Test the post-import notification hook."""

    @pytest.mark.asyncio
    async def test_notifier_called(self, manager, gate):
        notifier = MagicMock(dataset_imported=AsyncMock())
        orchestrator = ImportOrchestrator(manager, gate, InMemoryDatasetStore(), notifier, 1.0)
        await authorize(manager, "user-1")

        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")
        await asyncio.sleep(0.01)

        notifier.dataset_imported.assert_awaited_once_with("user-1", outcome.dataset)

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_import(self, manager, gate):
        notifier = MagicMock(dataset_imported=AsyncMock(side_effect=RuntimeError("smtp down")))
        orchestrator = ImportOrchestrator(manager, gate, InMemoryDatasetStore(), notifier, 1.0)
        await authorize(manager, "user-1")

        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), "user-1")
        await asyncio.sleep(0.01)

        assert isinstance(outcome, Imported)
        notifier.dataset_imported.assert_awaited_once()


class TestBrowse:
    """Test spreadsheet and tab listing through the orchestrator."""

    @pytest.mark.asyncio
    async def test_list_requires_auth(self, orchestrator, sheets):
        assert isinstance(await orchestrator.list_spreadsheets("user-1"), AuthRequired)
        assert isinstance(await orchestrator.list_tabs("user-1", "abc"), AuthRequired)
        assert sheets.calls == []

    @pytest.mark.asyncio
    async def test_list_after_auth(self, orchestrator, manager):
        await authorize(manager, "user-1")

        sheets_outcome = await orchestrator.list_spreadsheets("user-1")
        tabs_outcome = await orchestrator.list_tabs("user-1", "abc")

        assert isinstance(sheets_outcome, Browsed)
        assert sheets_outcome.items == [{"id": "abc", "name": "Q3 Sales"}]
        assert isinstance(tabs_outcome, Browsed)
        assert tabs_outcome.items[0]["title"] == "Sheet1"
