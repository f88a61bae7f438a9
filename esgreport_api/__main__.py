from __future__ import annotations

import os

import uvicorn

from esgreport_api.core.logging import configure_logging, get_logger
from esgreport_api.core.settings import get_settings

logger = get_logger("api.server")


def main() -> None:
    configure_logging()
    settings = get_settings()

    if not (settings.STRIPE_WEBHOOK_SECRET or "").strip():
        logger.warning("server.stripe_webhook_secret_missing", extra={"component": "server"})

    host = os.getenv("API_HOST", settings.API_HOST)
    port = int(os.getenv("PORT", str(settings.API_PORT)))
    uvicorn.run("esgreport_api.main:app", host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
