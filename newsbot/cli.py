"""``newsbot`` console entry point: configure logging and serve the API."""

import logging

import uvicorn

from newsbot.api.main import create_app
from newsbot.config import Settings
from newsbot.utils.log_utils import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level, structured=settings.structured_logging)
    if not settings.admin_password:
        logger.warning("ADMIN_PASSWORD is not set: admin login is disabled")
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
