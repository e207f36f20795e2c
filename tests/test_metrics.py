"""Unit tests for metrics.py - Prometheus instruments."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from prometheus_client import REGISTRY

import metrics
from conftest import make_pod
from controller import Controller
from events import EventReason, EventRecorder, EventSeverity, PodEvent
from reconciler import PodKey, ReconcileResult

KEY = PodKey(namespace="default", name="myapp-0")


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_start_metrics_server():
    with patch("metrics.start_http_server") as start:
        metrics.start_metrics_server(9102, "127.0.0.1")
    start.assert_called_once_with(9102, addr="127.0.0.1")


@pytest.mark.asyncio
class TestReconcileMetrics:
    """Reconciliation outcomes are counted and timed."""

    @pytest.fixture
    def reconciler(self):
        return MagicMock()

    async def run_once(self, store, reconciler):
        controller = Controller(store, reconciler)
        controller.enqueue(KEY)
        await controller.process_next()
        await controller.stop()

    async def test_success_counted(self, store, reconciler):
        reconciler.reconcile = AsyncMock(return_value=ReconcileResult(success=True))
        before = sample("secretsync_reconcile_total", result="success")
        timed = sample("secretsync_reconcile_duration_seconds_count")

        await self.run_once(store, reconciler)

        assert sample("secretsync_reconcile_total", result="success") == before + 1
        assert sample("secretsync_reconcile_duration_seconds_count") == timed + 1

    async def test_failure_counted(self, store, reconciler):
        reconciler.reconcile = AsyncMock(
            return_value=ReconcileResult(
                success=False, message="throttled", error=Exception("throttled")
            )
        )
        before = sample("secretsync_reconcile_total", result="failed")

        await self.run_once(store, reconciler)

        assert sample("secretsync_reconcile_total", result="failed") == before + 1

    async def test_exception_counted(self, store, reconciler):
        reconciler.reconcile = AsyncMock(side_effect=RuntimeError("boom"))
        before = sample("secretsync_reconcile_total", result="error")
        timed = sample("secretsync_reconcile_duration_seconds_count")

        await self.run_once(store, reconciler)

        assert sample("secretsync_reconcile_total", result="error") == before + 1
        assert sample("secretsync_reconcile_duration_seconds_count") == timed + 1


@pytest.mark.asyncio
class TestEventMetrics:
    """Recorded events are counted by reason."""

    async def test_event_counted(self, store):
        event = PodEvent.from_pod(
            make_pod(),
            EventSeverity.WARNING,
            EventReason.SECRET_FETCH_FAILED,
            "fetch failed",
        )
        labels = {"reason": "SecretFetchFailed", "type": "Warning"}
        before = sample("secretsync_events_total", **labels)

        await EventRecorder(store).record(event)

        assert sample("secretsync_events_total", **labels) == before + 1

    async def test_dropped_event_still_counted(self):
        store = MagicMock()
        store.create_event = AsyncMock(side_effect=RuntimeError("api down"))
        event = PodEvent.from_pod(
            make_pod(),
            EventSeverity.NORMAL,
            EventReason.SECRET_SYNC_SUCCESS,
            "ok",
        )
        labels = {"reason": "SecretSyncSuccess", "type": "Normal"}
        before = sample("secretsync_events_total", **labels)

        await EventRecorder(store).record(event)

        assert sample("secretsync_events_total", **labels) == before + 1
