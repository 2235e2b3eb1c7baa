"""
Google OAuth client integration.

This module handles:
1. Generating OAuth authorization URLs
2. Exchanging authorization codes for tokens
3. Refreshing expired access tokens
4. Revoking tokens on logout

Only the authorization-code flow is supported. Every call is bounded
by the configured timeout; transport failures surface as
UpstreamUnavailableError, never as raw httpx exceptions.
"""
import httpx
from typing import Optional, Tuple
from urllib.parse import urlencode

from sheetport.config import get_settings
from sheetport.utils.logger import get_logger
from sheetport.utils.errors import (
    AppError,
    InvalidGrantError,
    PermissionRevokedError,
    UpstreamUnavailableError,
)

logger = get_logger(__name__)

# Google OAuth endpoints
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"


def get_oauth_url(state: str) -> str:
    """
    Generate Google OAuth authorization URL.

    The user will be redirected to this URL to grant Sheets access.
    After granting, Google redirects back to our callback with a code
    and the same state value.

    Args:
        state: Opaque signed value binding the callback to a subject

    Returns:
        OAuth authorization URL string
    """
    settings = get_settings()
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": settings.google_redirect_uri,
        "response_type": "code",
        "scope": " ".join(settings.google_scopes),
        "access_type": "offline",  # Request refresh token
        "prompt": "consent",  # Force consent to get refresh token
        "include_granted_scopes": "true",
        "state": state,
    }

    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def _error_payload(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


async def exchange_code_for_tokens(code: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> dict:
    """
    Exchange authorization code for access and refresh tokens.

    Args:
        code: Authorization code from Google callback
        transport: Optional httpx transport (tests)

    Returns:
        Dict with access_token, refresh_token, expires_in

    Raises:
        InvalidGrantError: Code invalid, expired or already redeemed
        UpstreamUnavailableError: Timeout or connection failure
        AppError: Any other token endpoint failure
    """
    settings = get_settings()
    data = {
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": settings.google_redirect_uri,
    }

    async with httpx.AsyncClient(timeout=settings.google_timeout_seconds, transport=transport) as client:
        try:
            response = await client.post(GOOGLE_TOKEN_URL, data=data)
        except httpx.TimeoutException as e:
            logger.error(f"Token exchange timed out: {e}")
            raise UpstreamUnavailableError("Google sign-in timed out. Please try again.")
        except httpx.RequestError as e:
            logger.error(f"Token exchange request failed: {e}")
            raise UpstreamUnavailableError("Failed to connect to Google for authentication")

    if response.status_code != 200:
        error_data = _error_payload(response)
        logger.error(f"Token exchange failed: {response.status_code} {error_data.get('error')}")
        if error_data.get("error") == "invalid_grant":
            raise InvalidGrantError()
        if response.status_code >= 500:
            raise UpstreamUnavailableError()
        raise AppError("Failed to exchange authorization code with Google.")

    tokens = response.json()
    logger.info("Successfully exchanged code for tokens")

    return {
        "access_token": tokens["access_token"],
        "refresh_token": tokens.get("refresh_token"),  # May not be present on re-auth
        "expires_in": tokens.get("expires_in", 3600),
    }


async def refresh_access_token(refresh_token: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Tuple[str, int]:
    """
    Refresh an expired access token using the refresh token.

    Args:
        refresh_token: The refresh token from initial auth
        transport: Optional httpx transport (tests)

    Returns:
        Tuple of (new_access_token, expires_in_seconds)

    Raises:
        PermissionRevokedError: If refresh token is invalid/revoked
        UpstreamUnavailableError: Timeout or connection failure
        AppError: For other refresh failures
    """
    settings = get_settings()
    data = {
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }

    async with httpx.AsyncClient(timeout=settings.google_timeout_seconds, transport=transport) as client:
        try:
            response = await client.post(GOOGLE_TOKEN_URL, data=data)
        except httpx.RequestError as e:
            logger.error(f"Token refresh request failed: {e}")
            raise UpstreamUnavailableError("Failed to connect to Google for token refresh")

    if response.status_code != 200:
        error_data = _error_payload(response)

        # Check for revoked permissions
        if error_data.get("error") == "invalid_grant":
            logger.warning("Refresh token revoked or expired")
            raise PermissionRevokedError()

        logger.error(f"Token refresh failed: {response.status_code} {error_data.get('error')}")
        raise AppError("Failed to refresh Google access token")

    tokens = response.json()
    logger.info("Successfully refreshed access token")

    return tokens["access_token"], tokens.get("expires_in", 3600)


async def revoke_token(token: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
    """
    Revoke an access or refresh token at Google.

    Raises:
        UpstreamUnavailableError: Timeout or connection failure
        AppError: Google refused the revocation
    """
    settings = get_settings()
    async with httpx.AsyncClient(timeout=settings.google_timeout_seconds, transport=transport) as client:
        try:
            response = await client.post(GOOGLE_REVOKE_URL, data={"token": token})
        except httpx.RequestError as e:
            raise UpstreamUnavailableError(f"Token revocation request failed: {e}")

    if response.status_code != 200:
        raise AppError(f"Token revocation failed with status {response.status_code}")
