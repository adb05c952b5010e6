import logging

import click
import uvicorn

from google_tasks_mcp.app import create_app
from google_tasks_mcp.settings import GatewaySettings

logger = logging.getLogger(__name__)


@click.command()
@click.option("--host", default=None, help="Interface to bind (default: HOST or 0.0.0.0)")
@click.option("--port", default=None, type=int, help="Port to listen on (default: PORT or 8080)")
@click.option(
    "--log-level",
    default=None,
    help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
)
def main(host: str | None, port: int | None, log_level: str | None) -> int:
    overrides = {
        key: value for key, value in {"host": host, "port": port, "log_level": log_level}.items() if value is not None
    }
    if "log_level" in overrides:
        overrides["log_level"] = overrides["log_level"].upper()
    settings = GatewaySettings(**overrides)

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = create_app(settings)
    logger.info("Server is running on port %s", settings.port)
    logger.info("Environment: %s", settings.environment)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    return 0
