"""
Import request and outcome models.

ImportRequest and ImportOutcome are closed unions. The orchestrator
returns exactly one ImportOutcome variant per call; AuthRequired is a
control-flow outcome, not an error, and never carries a dataset.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel

from sheetport.utils.errors import AppError, ErrorKind, STATUS_BY_KIND


# Requests

@dataclass(frozen=True)
class LocalFileImport:
    """Import a file previously staged by the upload gate."""
    file_id: str


@dataclass(frozen=True)
class RemoteSheetImport:
    """Import one tab of a Google Sheet (first tab when tab_id is None)."""
    sheet_id: str
    tab_id: Optional[str] = None

    @property
    def cache_key(self) -> str:
        return f"gsheet:{self.sheet_id}:{self.tab_id or ''}"


ImportRequest = Union[LocalFileImport, RemoteSheetImport]


class ImportBody(BaseModel):
    """Import endpoint request body: {fileId} or {sheetId, tabId?}."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    file_id: Optional[str] = None
    sheet_id: Optional[str] = None
    tab_id: Optional[str] = None

    @model_validator(mode="after")
    def check_single_source(self) -> "ImportBody":
        if bool(self.file_id) == bool(self.sheet_id):
            raise ValueError("Provide exactly one of fileId or sheetId")
        if self.tab_id and not self.sheet_id:
            raise ValueError("tabId requires sheetId")
        return self

    def to_request(self) -> ImportRequest:
        if self.file_id:
            return LocalFileImport(file_id=self.file_id)
        return RemoteSheetImport(sheet_id=self.sheet_id, tab_id=self.tab_id or None)


# Datasets

class Dataset(BaseModel):
    """Dataset record handed to the persistence store and the client."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    dataset_id: str
    source: str  # file, google_sheets
    name: str
    columns: List[str] = []
    row_count: Optional[int] = None
    rows: List[dict] = []
    file: Optional[dict] = None
    sheet: Optional[dict] = None
    imported_at: datetime


# Outcomes

@dataclass(frozen=True)
class Imported:
    dataset: Dataset


@dataclass(frozen=True)
class AuthRequired:
    authorization_url: str


@dataclass(frozen=True)
class ImportFailed:
    error_kind: ErrorKind
    message: str

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.error_kind]

    @classmethod
    def from_error(cls, error: AppError) -> "ImportFailed":
        return cls(error_kind=error.code, message=error.message)


@dataclass(frozen=True)
class Browsed:
    """Listing result for the spreadsheet/tab pickers."""
    items: List[dict[str, Any]] = field(default_factory=list)


ImportOutcome = Union[Imported, AuthRequired, ImportFailed]
BrowseOutcome = Union[Browsed, AuthRequired, ImportFailed]
