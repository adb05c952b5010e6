"""
Google OAuth2 client and the process-wide authorization store.

The gateway is single-tenant: one Google account authorizes through
/oauth2/start and every MCP session acts on its behalf. The store is an
explicit object handed to every component that needs credentials, so tests
can build their own instead of mutating shared state.
"""

import logging
import time
from collections.abc import Callable
from urllib.parse import urlencode

import anyio
import httpx
from pydantic import BaseModel, ConfigDict

from google_tasks_mcp._httpx_utils import GoogleHttpClientFactory, create_google_http_client
from google_tasks_mcp.exceptions import NotAuthorizedError, OAuthExchangeError, TokenRefreshError

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
TASKS_SCOPE = "https://www.googleapis.com/auth/tasks"

# Refresh this many seconds before the provider's expiry.
EXPIRY_MARGIN_SECONDS = 60.0


class GoogleTokenSet(BaseModel):
    """Token response from Google's token endpoint.

    See https://developers.google.com/identity/protocols/oauth2/web-server#exchange-authorization-code
    """

    model_config = ConfigDict(extra="allow")

    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    id_token: str | None = None

    expires_at: float | None = None
    """Absolute expiry (epoch seconds), computed when the response is received."""

    def is_expired(self, now: float, margin: float = EXPIRY_MARGIN_SECONDS) -> bool:
        if not self.access_token:
            return True
        if self.expires_at is None:
            return False
        return now >= self.expires_at - margin


class GoogleOAuthClient:
    """Authorization-code flow against Google's OAuth2 endpoints."""

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
        *,
        scopes: list[str] | None = None,
        auth_url: str = GOOGLE_AUTH_URL,
        token_url: str = GOOGLE_TOKEN_URL,
        http_client_factory: GoogleHttpClientFactory = create_google_http_client,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or [TASKS_SCOPE]
        self.auth_url = auth_url
        self.token_url = token_url
        self._http_client_factory = http_client_factory
        self._clock = clock

    def authorization_url(self, state: str | None = None) -> str:
        """Consent URL requesting offline access with a forced consent prompt."""
        params = {
            "client_id": self.client_id or "",
            "redirect_uri": self.redirect_uri or "",
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        if state:
            params["state"] = state
        return f"{self.auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> GoogleTokenSet:
        """Exchange an authorization code for a token set."""
        return await self._request_tokens(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri or "",
            }
        )

    async def refresh(self, refresh_token: str) -> GoogleTokenSet:
        """Obtain a fresh access token. Google usually does not reissue the refresh token."""
        return await self._request_tokens(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )

    async def _request_tokens(self, data: dict[str, str]) -> GoogleTokenSet:
        data = {**data, "client_id": self.client_id or ""}
        if self.client_secret:
            data["client_secret"] = self.client_secret

        async with self._http_client_factory() as client:
            response = await client.post(
                self.token_url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

        if response.status_code != 200:
            raise OAuthExchangeError(_provider_error(response), status_code=response.status_code)

        tokens = GoogleTokenSet.model_validate(response.json())
        if tokens.expires_in is not None:
            tokens.expires_at = self._clock() + tokens.expires_in
        return tokens


def _provider_error(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return f"HTTP {response.status_code}"


class AuthorizationStore:
    """Holds at most one Google token set for the whole process.

    `set_tokens` replaces the held set wholesale (last write wins) and takes
    effect for every subsequent request across all sessions.
    """

    def __init__(
        self,
        oauth_client: GoogleOAuthClient | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self.oauth_client = oauth_client
        self._clock = clock
        self._tokens: GoogleTokenSet | None = None
        self._refresh_lock = anyio.Lock()

    @property
    def tokens(self) -> GoogleTokenSet | None:
        return self._tokens

    @property
    def is_authorized(self) -> bool:
        return self._tokens is not None

    def set_tokens(self, tokens: GoogleTokenSet) -> None:
        self._tokens = tokens

    def clear(self) -> None:
        self._tokens = None

    async def get_access_token(self) -> str:
        """Return a current access token, refreshing it through the provider if needed.

        Raises:
            NotAuthorizedError: no token set is held.
            TokenRefreshError: tokens are held but no usable access token could be obtained.
        """
        if self._tokens is None:
            raise NotAuthorizedError()

        async with self._refresh_lock:
            tokens = self._tokens
            if tokens is None:
                raise NotAuthorizedError()
            if not tokens.is_expired(self._clock()):
                assert tokens.access_token is not None
                return tokens.access_token

            if not tokens.refresh_token or self.oauth_client is None:
                raise TokenRefreshError()

            try:
                refreshed = await self.oauth_client.refresh(tokens.refresh_token)
            except (OAuthExchangeError, httpx.HTTPError) as exc:
                logger.warning("Token refresh failed: %s", exc)
                raise TokenRefreshError() from exc

            if not refreshed.access_token:
                raise TokenRefreshError()

            if refreshed.refresh_token is None:
                refreshed.refresh_token = tokens.refresh_token
            # A re-authorization that landed while we were refreshing wins.
            if self._tokens is tokens:
                self._tokens = refreshed
            logger.debug("Access token refreshed")
            return refreshed.access_token

    async def get_auth_header(self) -> dict[str, str]:
        """Headers for an authorized Google API call."""
        token = await self.get_access_token()
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
