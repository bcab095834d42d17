"""Command-line entry point: ``atxp-min-demo`` / ``python -m atxp_demo``."""

import uvicorn

from atxp_demo.config import Settings
from atxp_demo.transport.starlette import create_starlette_app
from atxp_demo.utilities.logging import configure_logging


def main() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    app = create_starlette_app(settings)
    config = uvicorn.Config(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    server = uvicorn.Server(config)
    server.run()


if __name__ == "__main__":
    main()
