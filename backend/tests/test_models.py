"""
Unit tests for request models, error mapping and subject cookies.
"""
import pytest
from fastapi import Response
from pydantic import ValidationError
from starlette.requests import Request

from sheetport.dependencies import SUBJECT_COOKIE, encode_subject, read_subject, set_subject_cookie
from sheetport.models.imports import ImportBody, ImportFailed, LocalFileImport, RemoteSheetImport
from sheetport.services.dataset_store import dataset_id_for
from sheetport.utils.errors import (
    ErrorKind,
    FileTooLargeError,
    PermissionRevokedError,
    QuotaExceededError,
    STATUS_BY_KIND,
)
from sheetport.utils.logger import redact


def request_with_cookie(value: str) -> Request:
    headers = [(b"cookie", f"{SUBJECT_COOKIE}={value}".encode())] if value else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


class TestImportBody:
    """Test the import request body."""

    def test_file_request(self):
        assert ImportBody.model_validate({"fileId": "f1"}).to_request() == LocalFileImport("f1")

    def test_sheet_request(self):
        body = ImportBody.model_validate({"sheetId": "abc", "tabId": "0"})
        assert body.to_request() == RemoteSheetImport("abc", "0")

    def test_empty_tab_means_first(self):
        body = ImportBody.model_validate({"sheetId": "abc", "tabId": ""})
        assert body.to_request() == RemoteSheetImport("abc", None)

    @pytest.mark.parametrize("payload", [{}, {"fileId": "f1", "sheetId": "abc"}, {"tabId": "0"}])
    def test_rejects_ambiguous(self, payload):
        with pytest.raises(ValidationError):
            ImportBody.model_validate(payload)


class TestDatasetIds:
    def test_cache_key_distinguishes_tabs(self):
        assert RemoteSheetImport("abc").cache_key == "gsheet:abc:"
        assert RemoteSheetImport("abc", "7").cache_key == "gsheet:abc:7"

    def test_dataset_id_is_stable(self):
        assert dataset_id_for("gsheet:abc:") == dataset_id_for("gsheet:abc:")
        assert dataset_id_for("gsheet:abc:") != dataset_id_for("gsheet:abc:7")
        assert dataset_id_for("x").startswith("ds_")


class TestErrors:
    """Test error kinds and their client status codes."""

    def test_every_kind_has_status(self):
        assert set(STATUS_BY_KIND) == set(ErrorKind)

    def test_file_too_large(self):
        error = FileTooLargeError(50 * 1024 * 1024)
        assert error.status_code == 413
        assert error.message == "The uploaded file exceeds the 50MB size limit."

    def test_revoked_is_external_auth(self):
        assert PermissionRevokedError().code == ErrorKind.EXTERNAL_AUTH

    def test_failed_outcome_status(self):
        outcome = ImportFailed.from_error(QuotaExceededError())
        assert outcome.error_kind == ErrorKind.QUOTA_EXCEEDED
        assert outcome.status_code == 429

    def test_to_dict(self):
        body = QuotaExceededError().to_dict()
        assert body["code"] == "QUOTA_EXCEEDED"
        assert body["error"] is True


class TestSubjectCookie:
    """Test the signed subject cookie."""

    def test_roundtrip(self, settings):
        token = encode_subject("user-1", settings)
        assert read_subject(request_with_cookie(token), settings) == "user-1"

    def test_missing(self, settings):
        assert read_subject(request_with_cookie(""), settings) is None

    def test_foreign_signature(self, settings):
        token = encode_subject("user-1", settings.model_copy(update={"session_secret": "other-secret"}))
        assert read_subject(request_with_cookie(token), settings) is None

    def test_cookie_is_http_only(self, settings):
        response = Response()
        set_subject_cookie(response, "user-1", settings)
        header = response.headers["set-cookie"]
        assert header.startswith(f"{SUBJECT_COOKIE}=")
        assert "httponly" in header.lower()
        assert "samesite=lax" in header.lower()


def test_redact():
    assert redact("4/0AbCdEfGhIjK") == "4/0AbC..."
    assert redact("") == "<empty>"
