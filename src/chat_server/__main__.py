"""Entry point for running the chat server."""

import logging

import uvicorn

from .config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


def main():
    """Run the chat server."""
    settings = get_settings()

    logger.info("Starting chat server on %s:%s", settings.app_host, settings.app_port)

    uvicorn.run(
        "chat_server.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
