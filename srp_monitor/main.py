from __future__ import annotations

import logging

from . import config
from .client import VendorClient
from .history import ProductHistory
from .monitor import StockMonitor
from .notifier import DiscordNotifier
from .scheduler import Scheduler
from .server import ApiServer, AppContext


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_context() -> AppContext:
    """Wire the client, notifier, monitor and scheduler from configuration."""
    auth = config.AuthConfig.from_env()
    client = VendorClient(auth)
    notifier = DiscordNotifier(config.DISCORD_WEBHOOK_URL)
    monitor = StockMonitor(client, notifier)
    scheduler = Scheduler(monitor.tick, config.CHECK_INTERVAL_SECONDS)
    return AppContext(
        monitor=monitor,
        scheduler=scheduler,
        client=client,
        notifier=notifier,
        auth=auth,
        history=ProductHistory(),
    )


def main() -> None:
    """Initialise the service and serve the web API until interrupted."""
    config.validate()
    setup_logging()
    logger = logging.getLogger(__name__)

    ctx = build_context()
    if not config.DISCORD_WEBHOOK_URL:
        logger.warning("DISCORD_WEBHOOK is not set - alerts will only be logged")
    if not ctx.auth.configured:
        logger.warning("No auth configured - set SRP_HEADERS or SRP_TOKEN + SRP_CLIENT_NUM + SRP_CRM")

    server = ApiServer(ctx, host=config.HOST, port=config.PORT)
    logger.info(
        "Showroomprivé stock monitor starting on %s:%s (interval %ss)",
        config.HOST, config.PORT, config.CHECK_INTERVAL_SECONDS,
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        ctx.scheduler.stop(timeout=5)
        ctx.client.close()
        ctx.notifier.close()


if __name__ == "__main__":
    main()
