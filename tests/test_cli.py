from unittest.mock import patch

import pytest
from click.testing import CliRunner

from google_tasks_mcp.cli import main
from google_tasks_mcp.settings import GatewaySettings


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "id-from-env")
    monkeypatch.setenv("MCP_API_KEY", "key-from-env")
    monkeypatch.setenv("MCP_FORCE_JSON", "1")
    monkeypatch.setenv("PORT", "9090")

    settings = GatewaySettings(_env_file=None)  # type: ignore[call-arg]

    assert settings.google_client_id == "id-from-env"
    assert settings.mcp_api_key == "key-from-env"
    assert settings.mcp_force_json is True
    assert settings.port == 9090


def test_cli_runs_uvicorn_with_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("PORT", raising=False)

    with patch("google_tasks_mcp.cli.uvicorn.run") as run:
        result = CliRunner().invoke(main, ["--port", "9000", "--log-level", "debug"])

    assert result.exit_code == 0, result.output
    run.assert_called_once()
    _, kwargs = run.call_args
    assert kwargs["port"] == 9000
    assert kwargs["log_level"] == "debug"
