"""Entry point for running the application with uvicorn."""

import logging

import uvicorn

from ussd_engine.config import settings


def main() -> None:
    """Run the application."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "ussd_engine.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
