from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SERVER_NAME = "google-tasks-mcp"
SERVER_VERSION = "0.1.0"


class GatewaySettings(BaseSettings):
    """Gateway settings.

    Values are read from the environment (or a `.env` file) using the variable
    names the deployment already provides, e.g. `GOOGLE_CLIENT_ID` or
    `MCP_API_KEY`. `MCP_FORCE_JSON=1` switches the transport to plain JSON
    responses.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # HTTP settings
    host: str = "0.0.0.0"
    port: int = 8080
    environment: str = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Google OAuth client
    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_redirect_uri: str | None = None

    # MCP endpoint
    mcp_api_key: str | None = None
    """Key required on /mcp and /tasks. When unset the key check is disabled."""

    mcp_force_json: bool = False

    max_body_bytes: int = Field(default=1_000_000, gt=0)
