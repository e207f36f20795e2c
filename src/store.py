"""
Resource Store - Async facade over the Kubernetes core/v1 API.

Wraps the blocking kubernetes client in worker threads and classifies API
failures into transient and permanent store errors.
"""

import asyncio
import logging
import threading
from typing import Any, AsyncIterator, Callable, List, Optional, Tuple

from kubernetes import client, config, watch
from kubernetes.client import ApiException, CoreV1Api
from urllib3.exceptions import HTTPError as Urllib3HTTPError

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for resource store failures."""

    transient = False

    def __init__(self, message: str, status: Optional[int] = None):
        self.message = message
        self.status = status
        super().__init__(message)


class ResourceNotFoundError(StoreError):
    """The requested object does not exist."""


class ConflictError(StoreError):
    """Optimistic concurrency failure; the whole reconciliation should re-run."""

    transient = True


class ForbiddenError(StoreError):
    """The operator's service account lacks permission."""


class StoreUnavailableError(StoreError):
    """The API server is unreachable, overloaded or failing."""

    transient = True


class StoreRequestError(StoreError):
    """The API server rejected the request (e.g., invalid object)."""


class WatchExpiredError(StoreError):
    """The watch resourceVersion is too old; the caller must relist."""

    transient = True


def classify_api_exception(error: ApiException) -> StoreError:
    """Map a kubernetes ApiException onto the store error taxonomy."""
    status = error.status or 0
    message = f"{status} {error.reason}"

    if status == 404:
        return ResourceNotFoundError(message, status)
    if status == 409:
        return ConflictError(message, status)
    if status in (401, 403):
        return ForbiddenError(message, status)
    if status == 410:
        return WatchExpiredError(message, status)
    if status == 429 or status >= 500 or status == 0:
        return StoreUnavailableError(message, status)
    return StoreRequestError(message, status)


class KubeStore:
    """Reads and writes pods, secrets and events through CoreV1Api."""

    def __init__(self, core_api: CoreV1Api, request_timeout: Optional[float] = 30):
        self.core_api = core_api
        self.request_timeout = request_timeout

    @classmethod
    def from_config(cls, kube_config=None) -> "KubeStore":
        """
        Build a store from a KubeConfig.

        Uses in-cluster credentials when running in a pod (or when forced),
        otherwise the kubeconfig file.
        """
        in_cluster = getattr(kube_config, "in_cluster", None)
        kubeconfig_path = getattr(kube_config, "kubeconfig", None)
        request_timeout = getattr(kube_config, "request_timeout", 30)

        if in_cluster is None:
            try:
                config.load_incluster_config()
                logger.info("Loaded in-cluster Kubernetes configuration")
            except config.ConfigException:
                config.load_kube_config(config_file=kubeconfig_path)
                logger.info("Loaded Kubernetes configuration from kubeconfig")
        elif in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        else:
            config.load_kube_config(config_file=kubeconfig_path)
            logger.info("Loaded Kubernetes configuration from kubeconfig")

        return cls(client.CoreV1Api(), request_timeout=request_timeout)

    async def _call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a blocking API call in a worker thread, classifying failures."""
        kwargs.setdefault("_request_timeout", self.request_timeout)
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ApiException as e:
            raise classify_api_exception(e) from e
        except (Urllib3HTTPError, OSError) as e:
            raise StoreUnavailableError(f"API server unreachable: {e}") from e

    # ==================== Pods ====================

    async def get_pod(self, namespace: str, name: str) -> Optional[client.V1Pod]:
        """Get a pod, or None if it no longer exists."""
        try:
            return await self._call(self.core_api.read_namespaced_pod, name, namespace)
        except ResourceNotFoundError:
            return None

    async def list_pods(self, namespace: str) -> List[client.V1Pod]:
        """List all pods in a namespace."""
        pod_list = await self._call(self.core_api.list_namespaced_pod, namespace)
        return list(pod_list.items or [])

    async def list_pods_with_version(
        self, namespace: Optional[str] = None
    ) -> Tuple[List[client.V1Pod], str]:
        """List pods in one or all namespaces with the list resourceVersion."""
        if namespace:
            pod_list = await self._call(self.core_api.list_namespaced_pod, namespace)
        else:
            pod_list = await self._call(self.core_api.list_pod_for_all_namespaces)
        return list(pod_list.items or []), pod_list.metadata.resource_version

    # ==================== Secrets ====================

    async def get_secret(self, namespace: str, name: str) -> Optional[client.V1Secret]:
        """Get a secret, or None if it does not exist."""
        try:
            return await self._call(
                self.core_api.read_namespaced_secret, name, namespace
            )
        except ResourceNotFoundError:
            return None

    async def list_secrets_with_version(
        self, label_selector: str, namespace: Optional[str] = None
    ) -> Tuple[List[client.V1Secret], str]:
        """List secrets matching a label selector with the list resourceVersion."""
        if namespace:
            secret_list = await self._call(
                self.core_api.list_namespaced_secret,
                namespace,
                label_selector=label_selector,
            )
        else:
            secret_list = await self._call(
                self.core_api.list_secret_for_all_namespaces,
                label_selector=label_selector,
            )
        return list(secret_list.items or []), secret_list.metadata.resource_version

    async def create_secret(
        self, namespace: str, secret: client.V1Secret
    ) -> client.V1Secret:
        """
        Create a secret.

        Raises:
            ConflictError: If the secret was created concurrently
        """
        return await self._call(
            self.core_api.create_namespaced_secret, namespace, secret
        )

    async def replace_secret(
        self, namespace: str, name: str, secret: client.V1Secret
    ) -> client.V1Secret:
        """
        Replace a secret. The body's resourceVersion is the write precondition.

        Raises:
            ConflictError: If the secret changed since it was read
        """
        return await self._call(
            self.core_api.replace_namespaced_secret, name, namespace, secret
        )

    # ==================== Events ====================

    async def create_event(
        self, namespace: str, event: client.CoreV1Event
    ) -> client.CoreV1Event:
        """Create a core/v1 Event."""
        return await self._call(self.core_api.create_namespaced_event, namespace, event)

    # ==================== Watches ====================

    async def watch(
        self,
        kind: str,
        resource_version: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        timeout_seconds: int = 300,
    ) -> AsyncIterator[Tuple[str, Any]]:
        """
        Stream watch events for pods or secrets.

        Yields:
            Tuples of (event_type, object) where event_type is ADDED,
            MODIFIED or DELETED

        Raises:
            WatchExpiredError: If resource_version is too old to resume from
        """
        if kind == "pods":
            list_fn = (
                self.core_api.list_namespaced_pod
                if namespace
                else self.core_api.list_pod_for_all_namespaces
            )
        elif kind == "secrets":
            list_fn = (
                self.core_api.list_namespaced_secret
                if namespace
                else self.core_api.list_secret_for_all_namespaces
            )
        else:
            raise ValueError(f"Unsupported watch kind: {kind}")

        args = (namespace,) if namespace else ()
        kwargs = {
            "resource_version": resource_version,
            "timeout_seconds": timeout_seconds,
        }
        if label_selector:
            kwargs["label_selector"] = label_selector

        loop = asyncio.get_running_loop()
        received: asyncio.Queue = asyncio.Queue()
        watcher = watch.Watch()

        def deliver(event, error=None) -> None:
            try:
                loop.call_soon_threadsafe(received.put_nowait, (event, error))
            except RuntimeError:
                # Event loop closed during shutdown
                watcher.stop()

        def read_stream() -> None:
            try:
                for event in watcher.stream(list_fn, *args, **kwargs):
                    deliver(event)
            except Exception as e:
                deliver(None, e)
            else:
                deliver(None)

        # Reads block until the next event or timeout_seconds, so the reader
        # is a daemon thread that shutdown does not wait for
        reader = threading.Thread(target=read_stream, name=f"watch-{kind}", daemon=True)
        reader.start()
        try:
            while True:
                event, error = await received.get()
                if isinstance(error, ApiException):
                    raise classify_api_exception(error) from error
                if isinstance(error, (Urllib3HTTPError, OSError)):
                    raise StoreUnavailableError(
                        f"watch stream failed: {error}"
                    ) from error
                if error is not None:
                    raise error

                if event is None:
                    return

                if event["type"] == "ERROR":
                    raw = event.get("raw_object") or {}
                    if raw.get("code") == 410:
                        raise WatchExpiredError("watch resourceVersion expired", 410)
                    raise StoreUnavailableError(
                        f"watch error: {raw.get('message', 'unknown')}"
                    )

                yield event["type"], event["object"]
        finally:
            watcher.stop()
