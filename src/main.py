"""
Main entry point for the Secret Sync Operator.

This module wires configuration, providers, the Kubernetes store, the event
recorder, the reconciler and the controller together and runs until
signalled.
"""

import asyncio
import logging
import signal
from typing import Optional

from config import get_config
from controller import Controller
from events import EventRecorder
from health import HealthServer
from metrics import start_metrics_server
from providers.registry import ProviderRegistry, register_builtin_providers
from reconciler import SecretSyncReconciler
from store import KubeStore

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Request-level chatter from the SDKs would drown the operator's own logs
    for noisy in ("botocore", "boto3", "urllib3", "kubernetes"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class Application:
    """Main application that orchestrates the operator components."""

    def __init__(self):
        self.config = get_config()
        self.registry: Optional[ProviderRegistry] = None
        self.store: Optional[KubeStore] = None
        self.controller: Optional[Controller] = None
        self.health_server: Optional[HealthServer] = None
        self.running = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing Secret Sync Operator")

        self.registry = register_builtin_providers(
            aws_config=self.config.aws,
            enabled=self.config.providers.enabled_providers,
        )
        if not self.registry.list():
            logger.warning("No secret providers registered; every sync will fail")

        self.store = KubeStore.from_config(self.config.kube)
        recorder = EventRecorder(self.store)

        reconciler = SecretSyncReconciler(
            store=self.store,
            registry=self.registry,
            recorder=recorder,
            fetch_timeout=self.config.controller.fetch_timeout,
        )

        self.controller = Controller(
            store=self.store,
            reconciler=reconciler,
            config=self.config.controller,
            watch_namespace=self.config.kube.watch_namespace,
        )

        if self.config.health.enabled:
            self.health_server = HealthServer(
                controller=self.controller,
                registry=self.registry,
                host=self.config.health.host,
                port=self.config.health.port,
            )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info("Starting Secret Sync Operator")

        if self.config.metrics.enabled:
            start_metrics_server(self.config.metrics.port, self.config.metrics.host)

        # Start controller and probe server concurrently
        tasks = [asyncio.create_task(self.controller.start())]
        if self.health_server:
            tasks.append(asyncio.create_task(self.health_server.start()))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return
        logger.info("Stopping Secret Sync Operator")
        self.running = False

        if self.controller:
            await self.controller.stop()

        if self.health_server:
            await self.health_server.stop()

        if self.registry:
            await self.registry.close()

        logger.info("Secret Sync Operator stopped")


async def main():
    """Main entry point."""
    setup_logging(get_config().logging.log_level)
    app = Application()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
