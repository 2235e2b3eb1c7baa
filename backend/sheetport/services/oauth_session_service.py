"""
Google session management service.

This module handles:
1. Issuing authorization URLs with a signed, single-use state
2. Exchanging authorization codes for tokens (at most once per code)
3. Answering "is this subject authorized" without side effects
4. Explicit token refresh and logout

Security: Google tokens are stored in-memory, keyed by subject id, and
never leave this module except bound into a SheetsClient.
In production, use Redis or a database.
"""
import asyncio
import hashlib
import secrets
import weakref
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import jwt

from sheetport.config import Settings
from sheetport.integrations.google_auth import (
    exchange_code_for_tokens,
    get_oauth_url,
    refresh_access_token,
    revoke_token,
)
from sheetport.integrations.sheets_client import SheetsClient
from sheetport.models.session import AuthState, ExternalSession
from sheetport.utils.logger import get_logger, redact
from sheetport.utils.errors import (
    AppError,
    ExternalAuthError,
    InvalidGrantError,
    PermissionRevokedError,
    StateMismatchError,
)

logger = get_logger(__name__)

STATE_ALGORITHM = "HS256"
STATE_AUDIENCE = "google-oauth-state"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _code_digest(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


class OAuthSessionManager:
    """
    Owns every subject's Google session.

    Usage:
        manager = OAuthSessionManager(settings)
        url = manager.get_authorization_url(subject_id)
        session = await manager.exchange_code(code, state)
        if manager.is_authorized(subject_id):
            client = manager.open_client(subject_id)
    """

    def __init__(self, settings: Settings, client_factory: Callable[..., SheetsClient] = SheetsClient):
        self.settings = settings
        self.client_factory = client_factory
        self._sessions: Dict[str, ExternalSession] = {}
        # nonce -> (subject_id, issued_at)
        self._pending: Dict[str, tuple] = {}
        # sha256(code) -> first seen
        self._used_codes: Dict[str, datetime] = {}
        # Entries vanish once no coroutine holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # Authorization URL / state

    def get_authorization_url(self, subject_id: str) -> str:
        """
        Build the Google consent URL for a subject.

        The state is a JWT signed with the session secret carrying the
        subject and a fresh nonce, so the callback can be bound back to
        this subject without trusting client-supplied identity.
        """
        self._prune(_now())
        nonce = secrets.token_urlsafe(16)
        issued_at = _now()
        self._pending[nonce] = (subject_id, issued_at)

        state = jwt.encode(
            {
                "sub": subject_id,
                "nonce": nonce,
                "aud": STATE_AUDIENCE,
                "iat": issued_at,
                "exp": issued_at + timedelta(seconds=self.settings.oauth_state_ttl_seconds),
            },
            self.settings.session_secret,
            algorithm=STATE_ALGORITHM,
        )
        logger.info(f"Issued Google authorization URL for subject {subject_id}")
        return get_oauth_url(state)

    def decode_state(self, state: str) -> dict:
        """
        Verify a returned state value.

        Raises:
            StateMismatchError: Bad signature, expired, or malformed
        """
        try:
            payload = jwt.decode(
                state or "",
                self.settings.session_secret,
                algorithms=[STATE_ALGORITHM],
                audience=STATE_AUDIENCE,
            )
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected OAuth state: {e}")
            raise StateMismatchError()

        if not payload.get("sub") or not payload.get("nonce"):
            raise StateMismatchError()
        return payload

    # Code exchange

    async def exchange_code(self, code: str, state: str) -> ExternalSession:
        """
        Redeem an authorization code for the subject named in state.

        Single-use: the code is recorded before the provider call, so a
        replay or a racing duplicate callback fails with InvalidGrantError
        and never replaces a session created by the first.

        Raises:
            StateMismatchError: state not issued by us or already consumed
            InvalidGrantError: code replayed or rejected by Google
            UpstreamUnavailableError: Google unreachable or timed out
        """
        payload = self.decode_state(state)
        subject_id = payload["sub"]
        self._prune(_now())

        async with self._lock_for(subject_id):
            digest = _code_digest(code or "")
            if not code or digest in self._used_codes:
                logger.warning(f"Rejected replayed authorization code for subject {subject_id}")
                raise InvalidGrantError()
            self._used_codes[digest] = _now()

            pending = self._pending.pop(payload["nonce"], None)
            if pending is None or pending[0] != subject_id:
                logger.warning(f"OAuth state nonce not recognised for subject {subject_id}")
                raise StateMismatchError()

            logger.info(f"Exchanging code {redact(code)} for subject {subject_id}")
            tokens = await exchange_code_for_tokens(code)

            previous = self._sessions.get(subject_id)
            session = ExternalSession(
                subject_id=subject_id,
                access_token=tokens["access_token"],
                # Google omits refresh_token on re-consent; keep the old one
                refresh_token=tokens.get("refresh_token") or (previous.refresh_token if previous else None),
                expiry=_now() + timedelta(seconds=tokens["expires_in"]),
                issued_at=_now(),
            )
            self._sessions[subject_id] = session
            # Other outstanding URLs for this subject are now moot
            self._drop_pending(subject_id)

        logger.info(f"Google session established for subject {subject_id}")
        return session

    # Queries

    def is_authorized(self, subject_id: str) -> bool:
        """True iff a non-expired session exists. No refresh, no mutation."""
        session = self._sessions.get(subject_id)
        if session is None:
            return False
        return not session.is_expired(_now(), self.settings.token_expiry_skew_seconds)

    def get_state(self, subject_id: str) -> AuthState:
        session = self._sessions.get(subject_id)
        if session is not None:
            if not session.is_expired(_now(), self.settings.token_expiry_skew_seconds):
                return AuthState.AUTHENTICATED
            if not self._has_pending(subject_id):
                return AuthState.EXPIRED
        if self._has_pending(subject_id):
            return AuthState.AUTHORIZATION_PENDING
        return AuthState.UNAUTHENTICATED

    def open_client(self, subject_id: str) -> SheetsClient:
        """
        Bind the subject's current access token into a Sheets client.

        Raises:
            ExternalAuthError: No session (caller should have checked)
        """
        session = self._sessions.get(subject_id)
        if session is None:
            raise ExternalAuthError("No Google session for this user.")
        return self.client_factory(
            session.access_token,
            timeout=self.settings.google_timeout_seconds,
            retries=self.settings.google_max_retries,
            backoff=self.settings.google_retry_backoff_seconds,
        )

    # Mutations

    async def refresh(self, subject_id: str) -> bool:
        """
        Refresh the access token with the stored refresh token.

        Returns:
            True if a new access token was obtained, False if there was
            nothing to refresh with

        Raises:
            UpstreamUnavailableError / AppError: Google failed transiently
        """
        async with self._lock_for(subject_id):
            session = self._sessions.get(subject_id)
            if session is None or not session.refresh_token:
                return False
            try:
                access_token, expires_in = await refresh_access_token(session.refresh_token)
            except PermissionRevokedError:
                # Revoked -> Unauthenticated
                self._sessions.pop(subject_id, None)
                logger.info(f"Google grant revoked for subject {subject_id}; session discarded")
                return False

            self._sessions[subject_id] = session.model_copy(update={
                "access_token": access_token,
                "expiry": _now() + timedelta(seconds=expires_in),
                "issued_at": _now(),
            })
        logger.info(f"Refreshed Google token for subject {subject_id}")
        return True

    async def invalidate(self, subject_id: str, rejected_at: Optional[datetime] = None) -> None:
        """
        Mark the subject's session expired after Google rejected its token.

        The refresh token is kept. A session whose token was issued after
        rejected_at (a concurrent callback or refresh) is left alone.
        """
        async with self._lock_for(subject_id):
            session = self._sessions.get(subject_id)
            if session is None:
                return
            if rejected_at is not None and session.issued_at > rejected_at:
                logger.info(f"Session for subject {subject_id} was renewed after the rejected call; kept")
                return
            self._sessions[subject_id] = session.model_copy(update={"expiry": _now()})
        logger.info(f"Google session for subject {subject_id} marked expired")

    async def logout(self, subject_id: str) -> None:
        """
        Discard the subject's Google session. Idempotent.

        Local state is always cleared; a failed revocation at Google is
        logged and otherwise ignored so the user can always sign in again.
        """
        async with self._lock_for(subject_id):
            session = self._sessions.pop(subject_id, None)
            self._drop_pending(subject_id)

        if session is None:
            logger.info(f"Logout for subject {subject_id} with no Google session")
            return

        token = session.refresh_token or session.access_token
        try:
            await revoke_token(token)
            logger.info(f"Revoked Google token for subject {subject_id}")
        except AppError as e:
            logger.warning(f"Google token revocation failed for subject {subject_id}: {e.message}")

    # Housekeeping

    def _lock_for(self, subject_id: str) -> asyncio.Lock:
        lock = self._locks.get(subject_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[subject_id] = lock
        return lock

    def _has_pending(self, subject_id: str) -> bool:
        cutoff = _now() - timedelta(seconds=self.settings.oauth_state_ttl_seconds)
        return any(owner == subject_id and issued > cutoff for owner, issued in self._pending.values())

    def _drop_pending(self, subject_id: str) -> None:
        for nonce in [n for n, (owner, _) in self._pending.items() if owner == subject_id]:
            del self._pending[nonce]

    def _prune(self, now: datetime) -> None:
        """Forget expired nonces and old code digests."""
        ttl = timedelta(seconds=self.settings.oauth_state_ttl_seconds)
        for nonce in [n for n, (_, issued) in self._pending.items() if now - issued > ttl]:
            del self._pending[nonce]
        # Google codes live ~10 minutes; keep digests for a day
        for digest in [d for d, seen in self._used_codes.items() if now - seen > timedelta(days=1)]:
            del self._used_codes[digest]

