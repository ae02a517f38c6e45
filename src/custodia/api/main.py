"""ASGI entry point.

    uvicorn custodia.api.main:app

or the ``custodia-api`` console script.
"""

import logging

from custodia.api import create_app
from custodia.core.settings import configure_logging, get_settings

logger = logging.getLogger(__name__)

app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    logger.info(
        "Starting %s %s on %s:%d (environment=%s)",
        settings.app_name,
        settings.app_version,
        settings.api_host,
        settings.api_port,
        settings.environment.value,
    )

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
