class AuthorizationError(Exception):
    """Raised when no usable Google access token is available.

    Tool handlers turn this into an error-flagged tool result so the MCP
    session stays alive.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotAuthorizedError(AuthorizationError):
    """The OAuth flow was never completed."""

    def __init__(self, message: str = "Not authorized. Visit /oauth2/start first."):
        super().__init__(message)


class TokenRefreshError(AuthorizationError):
    """Tokens are held but no access token could be obtained from them."""

    def __init__(self, message: str = "No access token (re-auth at /oauth2/start)"):
        super().__init__(message)


class OAuthExchangeError(Exception):
    """The identity provider rejected a token request.

    `error` carries the provider's `error` field when it sent one, otherwise
    a description of the failure.
    """

    def __init__(self, error: str, status_code: int | None = None):
        super().__init__(error)
        self.error = error
        self.status_code = status_code
