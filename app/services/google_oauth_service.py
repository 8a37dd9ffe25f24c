"""
Google OAuth token service for Gmail + Calendar API access.
Exchanges stored refresh tokens for short-lived access tokens.
"""

import asyncio
import hashlib
from datetime import UTC, datetime, timedelta

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

# Refresh slightly before Google's stated expiry
EXPIRY_MARGIN = timedelta(seconds=60)


class GoogleOAuthError(Exception):
    """Custom exception for Google OAuth-related errors."""

    def __init__(
        self, message: str, error_code: str | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}


class TokenResponse:
    """Structured representation of an OAuth token response."""

    def __init__(self, data: dict):
        self.access_token = data.get("access_token")
        self.token_type = data.get("token_type", "Bearer")
        self.expires_in = data.get("expires_in")
        self.scope = data.get("scope", "")

        if self.expires_in:
            self.expires_at = datetime.now(UTC) + timedelta(seconds=int(self.expires_in))
        else:
            self.expires_at = None

    def is_valid(self) -> bool:
        return bool(self.access_token and self.token_type)

    def is_fresh(self) -> bool:
        if self.expires_at is None:
            return False
        return datetime.now(UTC) < self.expires_at - EXPIRY_MARGIN


class GoogleTokenService:
    """
    Refreshes and caches Google access tokens.

    Access tokens are cached in-process per refresh token until shortly
    before they expire.
    """

    def __init__(self, client_id: str | None = None, client_secret: str | None = None):
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        self._cache: dict[str, TokenResponse] = {}

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @staticmethod
    def _cache_key(refresh_token: str) -> str:
        return hashlib.sha256(refresh_token.encode()).hexdigest()

    async def _post_with_retry(self, url: str, data: dict, operation: str) -> httpx.Response:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.post(url, data=data, headers=headers)
                except httpx.RequestError as e:
                    if attempt >= MAX_RETRIES:
                        raise
                    logger.warning(
                        "Google OAuth request error, retrying",
                        operation=operation,
                        attempt=attempt,
                        error=str(e),
                    )
                    await asyncio.sleep(BACKOFF_FACTOR**attempt)
                    continue

                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    logger.warning(
                        "Google OAuth transient status",
                        operation=operation,
                        status_code=response.status_code,
                        attempt=attempt,
                    )
                    await asyncio.sleep(BACKOFF_FACTOR**attempt)
                    continue
                return response

        raise GoogleOAuthError(f"{operation} retry loop exhausted")

    async def get_access_token(self, refresh_token: str) -> str:
        """
        Return a valid access token for the given refresh token.

        Raises:
            GoogleOAuthError: If OAuth is not configured or the refresh fails
        """
        key = self._cache_key(refresh_token)
        cached = self._cache.get(key)
        if cached and cached.is_fresh():
            return cached.access_token

        token = await self.refresh_access_token(refresh_token)
        self._cache[key] = token
        return token.access_token

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Refresh access token using refresh token.

        Args:
            refresh_token: Stored refresh token

        Returns:
            TokenResponse: New access token

        Raises:
            GoogleOAuthError: If token refresh fails
        """
        if not self.is_configured():
            raise GoogleOAuthError("Google OAuth client is not configured", error_code="not_configured")

        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._post_with_retry(GOOGLE_TOKEN_URL, data, operation="token_refresh")
        except httpx.RequestError as e:
            logger.error("Network error during token refresh", error=str(e), error_type=type(e).__name__)
            raise GoogleOAuthError(f"Network error during token refresh: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if not response.is_success:
            error_code = payload.get("error", "unknown_error")
            logger.error(
                "Token refresh failed",
                status_code=response.status_code,
                error_code=error_code,
            )
            raise GoogleOAuthError(
                payload.get("error_description", "Token refresh failed"),
                error_code=error_code,
                response_data=payload,
            )

        token = TokenResponse(payload)
        if not token.is_valid():
            raise GoogleOAuthError("Token response missing access token", response_data=payload)

        logger.debug("Access token refreshed", expires_in=token.expires_in)
        return token
