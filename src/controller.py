"""
Secret Sync Controller - Watches pods and managed secrets and drives the
reconciler.

Similar to a Kubernetes controller manager: list-then-watch streams feed a
de-duplicating work queue keyed by pod, a fixed pool of workers reconciles
keys with at most one in-flight pass per key, and retryable failures are
requeued with exponential backoff.
"""

import asyncio
import logging
import random
from typing import Any, Dict, List, Optional, Set, Tuple

import metrics
from annotation import ANNOTATION_KEY
from config import ControllerConfig
from ownership import MANAGED_SECRET_SELECTOR, find_pods_for_secret
from reconciler import PodKey, ReconcileResult, SecretSyncReconciler
from store import KubeStore, StoreError, WatchExpiredError

logger = logging.getLogger(__name__)

# Attempts made to map a secret event back to its pods before giving up
OWNER_LOOKUP_ATTEMPTS = 3


class Controller:
    """
    Work queue and watch loops around a SecretSyncReconciler.

    Pod events enqueue the pod itself. Managed secret deletions and external
    modifications enqueue every pod whose annotation targets the secret.
    """

    def __init__(
        self,
        store: KubeStore,
        reconciler: SecretSyncReconciler,
        config: Optional[ControllerConfig] = None,
        watch_namespace: str = "",
    ):
        self.store = store
        self.reconciler = reconciler
        self.config = config or ControllerConfig()
        self.watch_namespace = watch_namespace or None
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.running = False
        # Set once the initial pod list has been enqueued
        self.synced = False

        self._queue: asyncio.Queue = asyncio.Queue()
        self._queued: Set[PodKey] = set()
        self._processing: Set[PodKey] = set()
        self._dirty: Set[PodKey] = set()
        self._failures: Dict[PodKey, int] = {}
        self._timers: Dict[PodKey, asyncio.TimerHandle] = {}

        # Last seen (uid, annotation) per pod, to skip status-only updates
        self._seen: Dict[PodKey, Tuple[str, str]] = {}
        # Last seen managed secrets, to catch changes missed between watches
        self._managed_secrets: Dict[Tuple[str, str], Any] = {}

        self._tasks: List[asyncio.Task] = []
        self._background: Set[asyncio.Task] = set()

    # ==================== Lifecycle ====================

    async def start(self):
        """Start the workers and watch loops."""
        logger.info(
            f"Starting Secret Sync Controller "
            f"(namespace: {self.watch_namespace or 'all'}, "
            f"workers: {self.max_concurrent_reconciles})"
        )
        self.running = True

        self._tasks = [
            asyncio.create_task(self._worker(i))
            for i in range(self.max_concurrent_reconciles)
        ]
        self._tasks.append(asyncio.create_task(self._watch_pods()))
        self._tasks.append(asyncio.create_task(self._watch_secrets()))

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("Controller tasks cancelled")

    async def stop(self):
        """Stop all workers, watches and pending retries."""
        logger.info("Stopping Secret Sync Controller")
        self.running = False

        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        for task in list(self._tasks) + list(self._background):
            if not task.done():
                task.cancel()
        self._tasks.clear()
        self._background.clear()

    # ==================== Work queue ====================

    def enqueue(self, key: PodKey) -> None:
        """Add a pod to the work queue unless it is already waiting."""
        if key in self._processing:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def enqueue_after(self, key: PodKey, delay: float) -> None:
        """Add a pod to the work queue after ``delay`` seconds."""
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()

        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire_timer, key)

    def _fire_timer(self, key: PodKey) -> None:
        self._timers.pop(key, None)
        self.enqueue(key)

    def trigger_reconciliation(self, key: PodKey) -> None:
        """Manually trigger reconciliation for a specific pod."""
        logger.info(f"Manually triggering reconciliation for pod {key}")
        self.enqueue(key)

    def compute_backoff(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (0-based).

        Doubles from the base delay up to the max delay, with ±jitter.
        """
        delay = min(
            self.config.backoff_base_delay * (2**attempt),
            self.config.backoff_max_delay,
        )
        jitter = delay * self.config.backoff_jitter_factor * random.uniform(-1, 1)
        return max(0.0, delay + jitter)

    async def process_next(self) -> ReconcileResult:
        """Take one key off the queue and reconcile it."""
        key = await self._queue.get()
        self._queued.discard(key)
        self._processing.add(key)

        try:
            result = await self._reconcile(key)
        finally:
            self._processing.discard(key)
            self._queue.task_done()

        self._handle_result(key, result)

        if key in self._dirty:
            self._dirty.discard(key)
            self.enqueue(key)

        return result

    async def _reconcile(self, key: PodKey) -> ReconcileResult:
        with metrics.reconcile_duration_seconds.time():
            try:
                result = await self.reconciler.reconcile(key)
            except Exception as e:
                logger.error(f"Error reconciling pod {key}: {e}", exc_info=True)
                metrics.reconcile_total.labels(result="error").inc()
                return ReconcileResult(
                    success=False, message=f"Reconciliation error: {e}", error=e
                )

        metrics.reconcile_total.labels(
            result="success" if result.success else "failed"
        ).inc()
        return result

    def _handle_result(self, key: PodKey, result: ReconcileResult) -> None:
        if result.success:
            self._failures.pop(key, None)
            if result.requeue_after:
                self.enqueue_after(key, result.requeue_after)
            return

        attempt = self._failures.get(key, 0)
        self._failures[key] = attempt + 1
        delay = self.compute_backoff(attempt)
        logger.warning(
            f"Reconciliation of pod {key} failed (attempt {attempt + 1}), "
            f"retrying in {delay:.1f}s: {result.message}"
        )
        self.enqueue_after(key, delay)

    async def _worker(self, worker_id: int):
        logger.debug(f"Worker {worker_id} started")
        while self.running:
            try:
                await self.process_next()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in worker {worker_id}: {e}", exc_info=True)

    # ==================== Pod events ====================

    def handle_pod_event(self, event_type: str, pod: Any) -> None:
        """Enqueue a pod whose sync annotation is new or changed."""
        key = PodKey(namespace=pod.metadata.namespace, name=pod.metadata.name)

        if event_type == "DELETED":
            self._seen.pop(key, None)
            self._failures.pop(key, None)
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
            return

        annotation = (pod.metadata.annotations or {}).get(ANNOTATION_KEY)
        if annotation is None:
            self._seen.pop(key, None)
            return

        fingerprint = (pod.metadata.uid, annotation)
        if event_type == "MODIFIED" and self._seen.get(key) == fingerprint:
            return

        self._seen[key] = fingerprint
        self.enqueue(key)

    async def _watch_pods(self):
        """List-then-watch pods, resuming from the last seen resourceVersion."""
        while self.running:
            try:
                pods, resource_version = await self.store.list_pods_with_version(
                    self.watch_namespace
                )
                logger.info(f"Listed {len(pods)} pods")
                for pod in pods:
                    self.handle_pod_event("ADDED", pod)
                self.synced = True

                while self.running:
                    async for event_type, pod in self.store.watch(
                        "pods",
                        resource_version,
                        namespace=self.watch_namespace,
                        timeout_seconds=self.config.watch_timeout,
                    ):
                        resource_version = pod.metadata.resource_version
                        self.handle_pod_event(event_type, pod)

            except WatchExpiredError:
                logger.info("Pod watch expired, relisting")
            except StoreError as e:
                logger.error(f"Pod watch failed: {e}")
                await asyncio.sleep(self.config.backoff_base_delay)
            except Exception as e:
                logger.error(f"Error in pod watch loop: {e}", exc_info=True)
                await asyncio.sleep(10)

    # ==================== Secret events ====================

    async def handle_secret_event(self, event_type: str, secret: Any) -> List[PodKey]:
        """
        Re-enqueue the pods behind a deleted or externally modified secret.

        Returns:
            The pod keys that were enqueued
        """
        if event_type not in ("DELETED", "MODIFIED"):
            return []
        if event_type == "MODIFIED" and self.reconciler.is_own_write(secret):
            return []

        name = f"{secret.metadata.namespace}/{secret.metadata.name}"
        for attempt in range(OWNER_LOOKUP_ATTEMPTS):
            try:
                keys = await find_pods_for_secret(self.store, secret)
                break
            except StoreError as e:
                if not e.transient or attempt == OWNER_LOOKUP_ATTEMPTS - 1:
                    logger.error(f"Could not find pods for secret {name}: {e}")
                    return []
                await asyncio.sleep(self.compute_backoff(attempt))

        if keys:
            logger.info(
                f"Managed secret {name} {event_type.lower()}, re-enqueueing "
                f"{', '.join(str(k) for k in keys)}"
            )
        for key in keys:
            self.enqueue(key)
        return keys

    def observe_secret_list(self, secrets: List[Any]) -> None:
        """
        Compare a fresh listing of managed secrets with the last one seen.

        Secrets that disappeared or changed while no watch was open are
        handled as DELETED or MODIFIED events.
        """
        current = {(s.metadata.namespace, s.metadata.name): s for s in secrets}
        for key, previous in self._managed_secrets.items():
            secret = current.get(key)
            if secret is None:
                logger.info(
                    f"Managed secret {key[0]}/{key[1]} was deleted while the "
                    f"watch was down"
                )
                self._spawn(self.handle_secret_event("DELETED", previous))
            elif secret.metadata.resource_version != previous.metadata.resource_version:
                self._spawn(self.handle_secret_event("MODIFIED", secret))
        self._managed_secrets = current

    def _track_secret(self, event_type: str, secret: Any) -> None:
        key = (secret.metadata.namespace, secret.metadata.name)
        if event_type == "DELETED":
            self._managed_secrets.pop(key, None)
        else:
            self._managed_secrets[key] = secret

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _watch_secrets(self):
        """Watch managed secrets for deletions and external changes."""
        while self.running:
            try:
                secrets, resource_version = await self.store.list_secrets_with_version(
                    MANAGED_SECRET_SELECTOR, self.watch_namespace
                )
                self.observe_secret_list(secrets)

                while self.running:
                    async for event_type, secret in self.store.watch(
                        "secrets",
                        resource_version,
                        namespace=self.watch_namespace,
                        label_selector=MANAGED_SECRET_SELECTOR,
                        timeout_seconds=self.config.watch_timeout,
                    ):
                        resource_version = secret.metadata.resource_version
                        self._track_secret(event_type, secret)
                        self._spawn(self.handle_secret_event(event_type, secret))

            except WatchExpiredError:
                logger.info("Secret watch expired, relisting")
            except StoreError as e:
                logger.error(f"Secret watch failed: {e}")
                await asyncio.sleep(self.config.backoff_base_delay)
            except Exception as e:
                logger.error(f"Error in secret watch loop: {e}", exc_info=True)
                await asyncio.sleep(10)
