"""Unit tests for main.py - Application wiring."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config import Config
from main import Application, setup_logging


@pytest.fixture
def app():
    with patch("main.get_config", return_value=Config.default()):
        yield Application()


def test_setup_logging_quiets_sdks():
    setup_logging("DEBUG")
    assert logging.getLogger("botocore").level == logging.WARNING
    assert logging.getLogger("kubernetes").level == logging.WARNING


@pytest.mark.asyncio
class TestApplication:
    """Tests for the Application lifecycle."""

    async def test_initialize_wires_components(self, app):
        registry = MagicMock()
        registry.list.return_value = ["aws-secretsmanager"]
        store = MagicMock()

        with patch(
            "main.register_builtin_providers", return_value=registry
        ) as register, patch("main.KubeStore.from_config", return_value=store):
            await app.initialize()

        register.assert_called_once_with(aws_config=app.config.aws, enabled=[])
        assert app.registry is registry
        assert app.store is store
        assert app.controller.store is store
        assert app.controller.reconciler.registry is registry
        assert app.controller.reconciler.fetch_timeout == 30
        assert app.health_server.controller is app.controller
        assert app.health_server.port == 8081

    async def test_stop_when_not_running(self, app):
        app.controller = MagicMock()
        app.controller.stop = AsyncMock()

        await app.stop()

        app.controller.stop.assert_not_awaited()

    async def test_stop_closes_registry(self, app):
        app.running = True
        app.controller = MagicMock()
        app.controller.stop = AsyncMock()
        app.registry = MagicMock()
        app.registry.close = AsyncMock()

        await app.stop()

        app.controller.stop.assert_awaited_once()
        app.registry.close.assert_awaited_once()
        assert app.running is False

    async def test_start_serves_metrics(self, app):
        app.controller = MagicMock()
        app.controller.start = AsyncMock()

        with patch("main.start_metrics_server") as start_metrics:
            await app.start()

        start_metrics.assert_called_once_with(8080, "0.0.0.0")
        app.controller.start.assert_awaited_once()

    async def test_metrics_disabled(self, app):
        app.config.metrics.enabled = False
        app.controller = MagicMock()
        app.controller.start = AsyncMock()

        with patch("main.start_metrics_server") as start_metrics:
            await app.start()

        start_metrics.assert_not_called()
