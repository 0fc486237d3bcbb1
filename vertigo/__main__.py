"""Run the proxy with uvicorn: ``python -m vertigo``."""

import sys

import uvicorn

from .config_loader import load_config
from .core.exceptions import ConfigurationError
from .logging import setup_logging
from .main import create_app
from .settings import parse_settings


def main() -> int:
    logger = setup_logging()
    try:
        config = load_config()
        settings = parse_settings(config)
        app = create_app(config)
    except ConfigurationError as exc:
        logger.error(f"Startup failed: {exc.message}")
        return 1

    setup_logging(settings.log_level)
    uvicorn.run(app, host=settings.server.host, port=settings.server.port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
