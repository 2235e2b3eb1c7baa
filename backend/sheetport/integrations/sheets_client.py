"""
Google Sheets / Drive API client integration.

This module handles direct communication with Google APIs:
1. List spreadsheets visible to the user (Drive files.list)
2. List tabs in a spreadsheet (spreadsheets.get)
3. Fetch a tab's values and shape them into header + rows
4. Map Google's error responses into application errors

Sheets API Reference: https://developers.google.com/sheets/api/reference/rest
"""
import asyncio
import re
from dataclasses import dataclass
from typing import List, Optional

import httpx

from sheetport.utils.logger import get_logger
from sheetport.utils.errors import (
    AccessDeniedError,
    ExternalAuthError,
    InvalidRequestError,
    NotFoundError,
    QuotaExceededError,
    UpstreamUnavailableError,
)

logger = get_logger(__name__)

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"

SPREADSHEET_MIME = "application/vnd.google-apps.spreadsheet"

# 403 reasons that mean the token itself is unusable, not the sheet
AUTH_REASONS = {"ACCESS_TOKEN_SCOPE_INSUFFICIENT", "insufficientPermissions", "authError"}
RATE_LIMIT_REASONS = {"RATE_LIMIT_EXCEEDED", "rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"}


@dataclass
class SheetValues:
    """A fetched tab: cleaned column names plus one dict per data row."""
    sheet_id: str
    title: str
    tab_title: str
    headers: List[str]
    columns: List[str]
    rows: List[dict]


def clean_header(header: str) -> str:
    """Turn a header cell into a snake_case column name."""
    cleaned = re.sub(r"[^\w\s]", "", str(header)).strip()
    return re.sub(r"\s+", "_", cleaned).lower()


def _error_reasons(error_data: dict) -> set:
    """Collect Google's error reason codes from either API error format."""
    error = error_data.get("error") if isinstance(error_data, dict) else None
    if not isinstance(error, dict):
        return set()
    reasons = {e.get("reason") for e in error.get("errors", []) if isinstance(e, dict)}
    for detail in error.get("details", []):
        if isinstance(detail, dict) and detail.get("reason"):
            reasons.add(detail["reason"])
    reasons.discard(None)
    return reasons


def _error_message(error_data: dict) -> str:
    error = error_data.get("error") if isinstance(error_data, dict) else None
    if isinstance(error, dict):
        return error.get("message", "")
    return ""


class SheetsClient:
    """
    Google Sheets client bound to one access token.

    Usage:
        client = SheetsClient(access_token)
        tabs = await client.list_tabs(sheet_id)
        values = await client.fetch_tab(sheet_id, tab_id)
    """

    def __init__(
        self,
        access_token: str,
        timeout: float = 15.0,
        retries: int = 2,
        backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            access_token: Valid Google OAuth access token with Sheets scope
            timeout: Per-request timeout in seconds
            retries: Retries for transient errors (429, 5xx, timeouts)
            backoff: Base delay for exponential backoff
            transport: Optional httpx transport (tests)
        """
        self.headers = {"Authorization": f"Bearer {access_token}"}
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.transport = transport

    async def _make_request(self, url: str, params: dict = None) -> dict:
        """
        Make an authenticated GET request to a Google API.

        Handles common error cases:
        - 401: Token expired/revoked -> ExternalAuthError
        - 403: Scope problem -> ExternalAuthError, quota -> QuotaExceededError,
               otherwise AccessDeniedError
        - 404: NotFoundError
        - 400: InvalidRequestError (e.g. unparsable tab range)
        - 429 / 5xx / timeouts: retried, then QuotaExceededError or
          UpstreamUnavailableError

        Returns:
            Response JSON dict
        """
        for attempt in range(self.retries + 1):
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                try:
                    response = await client.get(url, headers=self.headers, params=params)
                except (httpx.TimeoutException, httpx.TransportError) as e:
                    if attempt < self.retries:
                        wait_time = self.backoff * 2 ** attempt
                        logger.warning(f"Google API connection error, retrying in {wait_time}s...")
                        await asyncio.sleep(wait_time)
                        continue
                    logger.error(f"Google API request failed after {self.retries} retries - {e}")
                    raise UpstreamUnavailableError()

            if 200 <= response.status_code < 300:
                return response.json() if response.content else {}

            # Handle transient errors (Rate limit, Server error)
            if response.status_code == 429 or response.status_code >= 500:
                if attempt < self.retries:
                    wait_time = self.backoff * 2 ** attempt
                    logger.warning(f"Google API transient error {response.status_code}, retrying in {wait_time}s...")
                    await asyncio.sleep(wait_time)
                    continue
                if response.status_code == 429:
                    raise QuotaExceededError()
                raise UpstreamUnavailableError()

            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            reasons = _error_reasons(error_data)
            message = _error_message(error_data)

            if response.status_code == 401:
                logger.warning("Google API: Token expired or revoked")
                raise ExternalAuthError()

            if response.status_code == 403:
                if reasons & AUTH_REASONS:
                    logger.warning(f"Google API: token lacks access ({reasons})")
                    raise ExternalAuthError("Google access token lacks the required scopes.")
                if reasons & RATE_LIMIT_REASONS:
                    raise QuotaExceededError()
                raise AccessDeniedError()

            if response.status_code == 404:
                raise NotFoundError("Spreadsheet not found. Check the link and sharing settings.")

            if response.status_code == 400:
                raise InvalidRequestError(message or "Google rejected the sheet request.")

            logger.error(f"Google API error: {response.status_code} - {reasons}")
            raise UpstreamUnavailableError(f"Google API error: {response.status_code}")

        raise UpstreamUnavailableError()

    async def list_spreadsheets(self, page_size: int = 100) -> List[dict]:
        """List spreadsheets in the user's Drive, most recently modified first."""
        data = await self._make_request(
            f"{DRIVE_API_BASE}/files",
            params={
                "q": f"mimeType='{SPREADSHEET_MIME}' and trashed=false",
                "fields": "files(id,name,createdTime,modifiedTime,webViewLink)",
                "orderBy": "modifiedTime desc",
                "pageSize": page_size,
            },
        )
        return data.get("files", [])

    async def get_metadata(self, sheet_id: str) -> dict:
        return await self._make_request(
            f"{SHEETS_API_BASE}/{sheet_id}",
            params={"fields": "properties.title,sheets.properties"},
        )

    @staticmethod
    def _tabs_from_metadata(metadata: dict) -> List[dict]:
        tabs = []
        for sheet in metadata.get("sheets", []):
            props = sheet.get("properties", {})
            grid = props.get("gridProperties", {})
            tabs.append({
                "id": props.get("sheetId"),
                "title": props.get("title"),
                "index": props.get("index"),
                "rowCount": grid.get("rowCount"),
                "columnCount": grid.get("columnCount"),
            })
        return tabs

    async def list_tabs(self, sheet_id: str) -> List[dict]:
        """List tabs of a spreadsheet with their grid sizes."""
        return self._tabs_from_metadata(await self.get_metadata(sheet_id))

    @staticmethod
    def resolve_tab(tabs: List[dict], tab_id: Optional[str]) -> dict:
        """
        Pick the requested tab by numeric id or title; first tab when unset.

        Raises:
            InvalidRequestError: Spreadsheet has no tabs or tab_id matches none
        """
        if not tabs:
            raise InvalidRequestError("The spreadsheet has no tabs.")
        if tab_id is None:
            return min(tabs, key=lambda t: t.get("index") or 0)
        for tab in tabs:
            if str(tab.get("id")) == str(tab_id) or tab.get("title") == tab_id:
                return tab
        raise InvalidRequestError(f"Tab '{tab_id}' was not found in this spreadsheet.")

    async def fetch_tab(self, sheet_id: str, tab_id: Optional[str] = None) -> SheetValues:
        """
        Fetch one tab's values. The first row is the header row.

        Raises:
            ExternalAuthError: Token rejected at call time
            NotFoundError / AccessDeniedError / InvalidRequestError /
            QuotaExceededError / UpstreamUnavailableError
        """
        metadata = await self.get_metadata(sheet_id)
        tab = self.resolve_tab(self._tabs_from_metadata(metadata), tab_id)

        quoted = "'" + tab["title"].replace("'", "''") + "'"
        data = await self._make_request(
            f"{SHEETS_API_BASE}/{sheet_id}/values/{quoted}",
            params={"majorDimension": "ROWS"},
        )

        values = data.get("values", [])
        headers = [str(h) for h in values[0]] if values else []
        columns = [clean_header(h) for h in headers]
        rows = []
        for raw in values[1:]:
            row = {col: (raw[i] if i < len(raw) else "") for i, col in enumerate(columns)}
            if any(v not in ("", None) for v in row.values()):
                rows.append(row)

        logger.info(f"Fetched {len(rows)} rows from sheet {sheet_id} tab '{tab['title']}'")
        return SheetValues(
            sheet_id=sheet_id,
            title=metadata.get("properties", {}).get("title", sheet_id),
            tab_title=tab["title"],
            headers=headers,
            columns=columns,
            rows=rows,
        )
