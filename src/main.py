"""Main entry point for the TimeCapsule release engine."""

import asyncio
import logging
import signal
import sys
from typing import Optional

import httpx

from timecapsule.config import AppConfig, load_config, setup_logging, validate_config
from timecapsule.database import DatabaseConnectionError
from timecapsule.notifier import HttpNotifier
from timecapsule.repository import (
    DatabaseConnectionManager,
    DeliverableRepository,
    MemorialRepository,
)
from timecapsule.scheduler import ReleaseScheduler


logger = logging.getLogger(__name__)


class ReleaseApplication:
    """Host process that owns the release scheduler."""

    def __init__(self, config: Optional[AppConfig] = None) -> None:
        """Initialize the application.

        Args:
            config: Optional pre-loaded configuration. If None, loads from environment.
        """
        self.config = config or load_config()
        self.db_manager: Optional[DatabaseConnectionManager] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.scheduler: Optional[ReleaseScheduler] = None
        self._running = False

    def initialize(self) -> None:
        """Initialize all application components.

        Raises:
            DatabaseConnectionError: If database connection fails.
            ValueError: If configuration is invalid.
        """
        setup_logging(self.config.logging)
        logger.info("Initializing TimeCapsule release engine...")

        if not validate_config(self.config):
            raise ValueError("Invalid configuration")

        try:
            self.db_manager = DatabaseConnectionManager(
                self.config.database.path, self.config.database.max_retries
            )
            self.db_manager.initialize()
            logger.info("Database initialized successfully")
        except DatabaseConnectionError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

        self.http_client = httpx.AsyncClient()
        notifier = HttpNotifier(self.config.notifier, client=self.http_client)

        self.scheduler = ReleaseScheduler.from_components(
            deliverables=DeliverableRepository(self.db_manager),
            memorials=MemorialRepository(self.db_manager),
            notifier=notifier,
            config=self.config,
        )
        logger.info("Release scheduler initialized")

    async def start(self) -> None:
        """Start the scheduler and wait until stopped."""
        if self.scheduler is None:
            self.initialize()

        self._running = True
        await self.scheduler.start()  # type: ignore[union-attr]
        logger.info("TimeCapsule release engine is running")

        while self._running:
            await asyncio.sleep(1.0)

    async def stop(self) -> None:
        """Stop the scheduler and release resources."""
        logger.info("Stopping TimeCapsule release engine...")
        self._running = False

        if self.scheduler:
            await self.scheduler.stop()

        if self.http_client:
            await self.http_client.aclose()
            self.http_client = None

        if self.db_manager:
            self.db_manager.close()
            logger.info("Database connection closed")

        logger.info("TimeCapsule release engine stopped")


async def run_application() -> None:
    """Run the release engine with signal-driven shutdown."""
    app = ReleaseApplication()

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        app._running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except Exception as e:
        logger.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        await app.stop()


def main() -> None:
    """Main entry point."""
    try:
        asyncio.run(run_application())
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")


if __name__ == "__main__":
    main()
