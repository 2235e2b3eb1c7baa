"""
Import orchestration.

Decides, per request, whether an import can run now or must pause for
Google authorization, and returns exactly one ImportOutcome:

- LocalFileImport: no authorization needed; loads the staged file
- RemoteSheetImport, subject not authorized: AuthRequired, and no call
  to the Sheets API is made
- RemoteSheetImport, subject authorized: fetch with the subject's
  session. A token rejected at call time (local state was stale) expires
  the session and becomes the same AuthRequired outcome; every other
  failure is ImportFailed with its specific kind.

Authorization is keyed by subject, so the same request simply succeeds
when retried after the OAuth callback completes.
"""
import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar, Union

from sheetport.integrations.sheets_client import SheetsClient, SheetValues
from sheetport.models.imports import (
    AuthRequired,
    BrowseOutcome,
    Browsed,
    Dataset,
    ImportFailed,
    ImportOutcome,
    ImportRequest,
    Imported,
    LocalFileImport,
    RemoteSheetImport,
)
from sheetport.models.upload import UploadedFile
from sheetport.services.dataset_store import DatasetStore, dataset_id_for
from sheetport.services.notifications import Notifier, notify_imported
from sheetport.services.oauth_session_service import OAuthSessionManager
from sheetport.services.upload_service import UploadGate
from sheetport.utils.logger import get_logger
from sheetport.utils.errors import (
    AppError,
    ExternalAuthError,
    InvalidRequestError,
    UpstreamUnavailableError,
)

logger = get_logger(__name__)

T = TypeVar("T")


class ImportOrchestrator:
    """
    Runs imports from staged uploads or Google Sheets.

    Usage:
        orchestrator = ImportOrchestrator(sessions, uploads, store, notifier, timeout)
        outcome = await orchestrator.run_import(RemoteSheetImport("abc"), subject_id)
    """

    def __init__(
        self,
        sessions: OAuthSessionManager,
        uploads: UploadGate,
        store: DatasetStore,
        notifier: Notifier,
        remote_timeout: float,
    ):
        self.sessions = sessions
        self.uploads = uploads
        self.store = store
        self.notifier = notifier
        self.remote_timeout = remote_timeout

    async def run_import(self, request: ImportRequest, subject_id: str) -> ImportOutcome:
        """
        Import a dataset for a subject.

        Args:
            request: LocalFileImport or RemoteSheetImport
            subject_id: The user the import runs on behalf of

        Returns:
            Imported, AuthRequired or ImportFailed
        """
        if isinstance(request, LocalFileImport):
            return await self._import_local(request, subject_id)
        if isinstance(request, RemoteSheetImport):
            return await self._import_remote(request, subject_id)
        return ImportFailed.from_error(InvalidRequestError(f"Unsupported import request: {type(request).__name__}"))

    async def _import_local(self, request: LocalFileImport, subject_id: str) -> ImportOutcome:
        try:
            staged = self.uploads.load(request.file_id)
        except AppError as e:
            logger.info(f"Local import for subject {subject_id} failed: {e.code.value}")
            return ImportFailed.from_error(e)

        dataset = await self.store.save(self._dataset_from_file(staged))
        return self._imported(subject_id, dataset)

    async def _import_remote(self, request: RemoteSheetImport, subject_id: str) -> ImportOutcome:
        result = await self._with_session(
            subject_id,
            lambda client: client.fetch_tab(request.sheet_id, request.tab_id),
        )
        if isinstance(result, (AuthRequired, ImportFailed)):
            return result

        dataset = await self.store.save(self._dataset_from_sheet(request, result))
        return self._imported(subject_id, dataset)

    async def list_spreadsheets(self, subject_id: str) -> BrowseOutcome:
        """List the subject's spreadsheets behind the same auth gate as imports."""
        result = await self._with_session(subject_id, lambda client: client.list_spreadsheets())
        if isinstance(result, (AuthRequired, ImportFailed)):
            return result
        return Browsed(items=result)

    async def list_tabs(self, subject_id: str, sheet_id: str) -> BrowseOutcome:
        """List a spreadsheet's tabs behind the same auth gate as imports."""
        result = await self._with_session(subject_id, lambda client: client.list_tabs(sheet_id))
        if isinstance(result, (AuthRequired, ImportFailed)):
            return result
        return Browsed(items=result)

    async def _with_session(
        self,
        subject_id: str,
        call: Callable[[SheetsClient], Awaitable[T]],
    ) -> Union[T, AuthRequired, ImportFailed]:
        """Run a Google API call for the subject, or say why it cannot run."""
        if not self.sessions.is_authorized(subject_id):
            logger.info(f"Subject {subject_id} has no Google session; authorization required")
            return self._auth_required(subject_id)

        started = datetime.now(timezone.utc)
        try:
            client = self.sessions.open_client(subject_id)
            return await asyncio.wait_for(call(client), timeout=self.remote_timeout)
        except ExternalAuthError:
            # Local session looked valid but Google rejected the token
            logger.warning(f"Google rejected the session for subject {subject_id}; authorization required")
            await self.sessions.invalidate(subject_id, rejected_at=started)
            return self._auth_required(subject_id)
        except asyncio.TimeoutError:
            logger.error(f"Google call for subject {subject_id} exceeded {self.remote_timeout}s")
            return ImportFailed.from_error(UpstreamUnavailableError("Google Sheets took too long to respond. Please try again."))
        except AppError as e:
            logger.warning(f"Google call for subject {subject_id} failed: {e.code.value} - {e.message}")
            return ImportFailed.from_error(e)

    def _auth_required(self, subject_id: str) -> AuthRequired:
        return AuthRequired(authorization_url=self.sessions.get_authorization_url(subject_id))

    def _imported(self, subject_id: str, dataset: Dataset) -> Imported:
        notify_imported(self.notifier, subject_id, dataset)
        logger.info(f"Imported dataset {dataset.dataset_id} for subject {subject_id}")
        return Imported(dataset=dataset)

    @staticmethod
    def _dataset_from_file(staged: UploadedFile) -> Dataset:
        return Dataset(
            dataset_id=dataset_id_for(f"file:{staged.file_id}"),
            source="file",
            name=staged.original_name,
            file={
                "fileId": staged.file_id,
                "originalName": staged.original_name,
                "path": staged.storage_path,
                "size": staged.size_bytes,
                "mimeType": staged.declared_mime_type,
            },
            imported_at=datetime.now(timezone.utc),
        )

    @staticmethod
    def _dataset_from_sheet(request: RemoteSheetImport, values: SheetValues) -> Dataset:
        return Dataset(
            dataset_id=dataset_id_for(request.cache_key),
            source="google_sheets",
            name=f"{values.title} - {values.tab_title}",
            columns=values.columns,
            row_count=len(values.rows),
            rows=values.rows,
            sheet={
                "sheetId": request.sheet_id,
                "tabId": request.tab_id,
                "tabTitle": values.tab_title,
                "headers": values.headers,
            },
            imported_at=datetime.now(timezone.utc),
        )

