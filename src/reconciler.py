"""
Secret Sync Reconciler - Reconciles one pod's sync request into a secret.

A single pass runs these steps in order:

    Load -> Extract -> Validate -> Namespace check -> Provider resolve
         -> Fetch -> Merge -> Upsert -> Notify

Validation failures are permanent and reported on the pod without a retry.
Fetch and write failures are retried only when classified as transient.
The reconciler never deletes anything and performs a single atomic write per
pass, so an abandoned pass leaves no partial state behind.
"""

import base64
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Optional, Tuple

from kubernetes import client

import events
from annotation import (
    ANNOTATION_KEY,
    MANAGED_BY_LABEL,
    MANAGED_BY_VALUE,
    SOURCE_PATH_ANNOTATION,
    SYNCED_AT_ANNOTATION,
    AnnotationError,
    SyncRequest,
    parse_annotation,
)
from events import EventRecorder
from providers.base import FetchError, SecretData
from providers.registry import ProviderRegistry
from store import ConflictError, ForbiddenError, KubeStore, StoreError

logger = logging.getLogger(__name__)

SECRET_TYPE_OPAQUE = "Opaque"

# Recent own-write resourceVersions remembered per managed secret
WRITTEN_VERSIONS_KEPT = 16


@dataclass(frozen=True)
class PodKey:
    """Stable identity of a pod in the work queue."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class ReconcileResult:
    """
    Outcome of one reconciliation.

    ``success`` with no ``requeue_after`` is terminal. A failed result with
    ``error`` set asks the controller to retry with backoff.
    """

    success: bool = False
    message: str = ""
    requeue_after: Optional[int] = None
    error: Optional[Exception] = None


def utc_now_rfc3339() -> str:
    """Return the current UTC time as an RFC 3339 timestamp."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def merge_secret_data(data: SecretData, key_mapping: Dict[str, str]) -> SecretData:
    """
    Produce the target payload from fetched data.

    With an empty mapping all fetched keys are copied. Otherwise each
    ``target_key: source_key`` entry copies the source value when present;
    entries whose source key is missing are skipped, never defaulted.
    """
    if not key_mapping:
        return dict(data)

    merged = {}
    for target_key, source_key in key_mapping.items():
        if source_key in data:
            merged[target_key] = data[source_key]
            logger.debug(f"Mapped secret key {source_key} -> {target_key}")
        else:
            logger.info(f"Source key {source_key} not found in fetched secret")
    return merged


def encode_secret_data(data: SecretData) -> Dict[str, str]:
    """Base64-encode values for the Secret ``data`` field."""
    return {
        key: base64.b64encode(value.encode("utf-8")).decode("ascii")
        for key, value in data.items()
    }


def extract_sync_request(pod: client.V1Pod) -> Optional[SyncRequest]:
    """
    Parse and namespace-check the sync request carried by a pod.

    Returns:
        The SyncRequest, or None if the pod has no sync annotation

    Raises:
        AnnotationError: If the annotation is invalid or names another namespace
    """
    annotations = pod.metadata.annotations or {}
    if ANNOTATION_KEY not in annotations:
        return None

    request = parse_annotation(
        annotations[ANNOTATION_KEY],
        namespace=pod.metadata.namespace,
        pod_name=pod.metadata.name,
        pod_uid=pod.metadata.uid,
    )
    request.check_namespace(pod.metadata.namespace)
    return request


def build_managed_secret(
    request: SyncRequest,
    data: SecretData,
    synced_at: str,
    existing: Optional[client.V1Secret] = None,
) -> client.V1Secret:
    """
    Build the desired managed secret.

    When ``existing`` is given its labels, annotations, owner references and
    type are carried over, and its resourceVersion becomes the write
    precondition. The payload always replaces the existing one entirely.
    """
    labels: Dict[str, str] = {}
    annotations: Dict[str, str] = {}
    metadata = client.V1ObjectMeta(
        name=request.target_secret_name,
        namespace=request.namespace,
    )
    secret_type = SECRET_TYPE_OPAQUE

    if existing is not None:
        labels.update(existing.metadata.labels or {})
        annotations.update(existing.metadata.annotations or {})
        metadata.resource_version = existing.metadata.resource_version
        metadata.owner_references = existing.metadata.owner_references
        metadata.finalizers = existing.metadata.finalizers
        secret_type = existing.type or SECRET_TYPE_OPAQUE

    labels[MANAGED_BY_LABEL] = MANAGED_BY_VALUE
    annotations[SOURCE_PATH_ANNOTATION] = request.source_path
    annotations[SYNCED_AT_ANNOTATION] = synced_at
    metadata.labels = labels
    metadata.annotations = annotations

    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=metadata,
        type=secret_type,
        data=encode_secret_data(data),
    )


class SecretSyncReconciler:
    """
    Reconciles pods carrying a sync annotation into managed secrets.

    Safe to run concurrently for different pods; the controller guarantees
    at most one in-flight pass per pod.
    """

    def __init__(
        self,
        store: KubeStore,
        registry: ProviderRegistry,
        recorder: EventRecorder,
        fetch_timeout: Optional[float] = 30,
        now_fn: Callable[[], str] = utc_now_rfc3339,
    ):
        self.store = store
        self.registry = registry
        self.recorder = recorder
        self.fetch_timeout = fetch_timeout
        self.now_fn = now_fn

        # resourceVersions of recent writes to each managed secret, used by
        # the controller to ignore watch events caused by our own writes.
        # Watch events for earlier writes can arrive after later ones.
        self._written_versions: Dict[Tuple[str, str], Deque[str]] = {}

    def is_own_write(self, secret: client.V1Secret) -> bool:
        """Check if a secret is a version this reconciler recently wrote."""
        key = (secret.metadata.namespace, secret.metadata.name)
        versions = self._written_versions.get(key)
        return bool(versions) and secret.metadata.resource_version in versions

    def _remember_write(self, namespace: str, name: str, version: str) -> None:
        versions = self._written_versions.setdefault(
            (namespace, name), deque(maxlen=WRITTEN_VERSIONS_KEPT)
        )
        versions.append(version)

    async def reconcile(self, key: PodKey) -> ReconcileResult:
        """
        Run one reconciliation pass for a pod.

        Args:
            key: Namespace and name of the pod

        Returns:
            ReconcileResult; a failed result with ``error`` set is retryable
        """
        start_time = time.monotonic()

        try:
            pod = await self.store.get_pod(key.namespace, key.name)
        except StoreError as e:
            return self._load_failure(key, e)

        if pod is None:
            logger.debug(f"Pod {key} no longer exists, skipping")
            return ReconcileResult(success=True, message="Pod not found")

        try:
            request = extract_sync_request(pod)
        except AnnotationError as e:
            logger.warning(f"Invalid secret sync annotation on pod {key}: {e}")
            await events.emit_annotation_invalid(self.recorder, pod, e)
            return ReconcileResult(success=True, message=f"Invalid annotation: {e}")

        if request is None:
            logger.debug(f"Pod {key} has no secret sync annotation, skipping")
            return ReconcileResult(success=True, message="No sync annotation")

        logger.info(f"Reconciling pod {key}")

        provider = self.registry.get(request.provider)
        if provider is None:
            logger.warning(
                f"Provider '{request.provider}' requested by pod {key} is not "
                f"registered (available: {', '.join(self.registry.list()) or 'none'})"
            )
            await events.emit_provider_unsupported(self.recorder, pod, request.provider)
            return ReconcileResult(
                success=True, message=f"Unsupported provider: {request.provider}"
            )

        logger.info(
            f"Fetching secret from provider {request.provider} "
            f"(path: {request.source_path}) for pod {key}"
        )
        try:
            data = await provider.fetch_secret(
                request.source_path, timeout=self.fetch_timeout
            )
        except FetchError as e:
            logger.warning(
                f"Failed to fetch secret for pod {key} from {request.provider} "
                f"(path: {request.source_path}): {e.reason}: {e}"
            )
            await events.emit_secret_fetch_failed(
                self.recorder,
                pod,
                request.provider,
                request.source_path,
                e,
                retryable=e.transient,
            )
            if e.transient:
                return ReconcileResult(
                    success=False, message=f"Fetch failed: {e}", error=e
                )
            return ReconcileResult(success=True, message=f"Fetch failed: {e}")

        payload = merge_secret_data(data, request.key_mapping)

        try:
            created = await self._upsert_secret(request, payload)
        except StoreError as e:
            return await self._write_failure(pod, request, e)

        await events.emit_secret_sync_success(
            self.recorder,
            pod,
            request.target_secret_name,
            request.provider,
            request.source_path,
        )

        duration = time.monotonic() - start_time
        action = "created" if created else "updated"
        logger.info(
            f"Secret {request.namespace}/{request.target_secret_name} {action} "
            f"for pod {key} ({len(payload)} keys, {duration:.2f}s)"
        )
        return ReconcileResult(
            success=True, message=f"Secret {request.target_secret_name} {action}"
        )

    async def _upsert_secret(self, request: SyncRequest, payload: SecretData) -> bool:
        """
        Create or fully replace the managed secret.

        Returns:
            True if the secret was created, False if it was updated

        Raises:
            StoreError: On read or write failure; ConflictError when another
                writer got there first
        """
        namespace = request.namespace
        name = request.target_secret_name

        existing = await self.store.get_secret(namespace, name)
        secret = build_managed_secret(request, payload, self.now_fn(), existing)

        if existing is None:
            logger.info(f"Creating secret {namespace}/{name}")
            written = await self.store.create_secret(namespace, secret)
        else:
            logger.info(f"Updating secret {namespace}/{name}")
            written = await self.store.replace_secret(namespace, name, secret)

        version = getattr(getattr(written, "metadata", None), "resource_version", None)
        if version:
            self._remember_write(namespace, name, version)

        return existing is None

    def _load_failure(self, key: PodKey, error: StoreError) -> ReconcileResult:
        if error.transient:
            logger.warning(f"Failed to load pod {key}: {error}")
            return ReconcileResult(
                success=False, message=f"Failed to load pod: {error}", error=error
            )
        if isinstance(error, ForbiddenError):
            logger.error(f"Not permitted to read pod {key}, check RBAC: {error}")
        else:
            logger.warning(f"Failed to load pod {key}: {error}")
        return ReconcileResult(success=True, message=f"Failed to load pod: {error}")

    async def _write_failure(
        self, pod: client.V1Pod, request: SyncRequest, error: StoreError
    ) -> ReconcileResult:
        target = f"{request.namespace}/{request.target_secret_name}"

        if isinstance(error, ConflictError):
            logger.info(f"Conflict writing secret {target}, will retry: {error}")
            return ReconcileResult(
                success=False, message=f"Write conflict: {error}", error=error
            )

        if isinstance(error, ForbiddenError):
            logger.error(f"Not permitted to write secret {target}, check RBAC: {error}")
        else:
            logger.warning(f"Failed to write secret {target}: {error}")

        await events.emit_secret_sync_failed(
            self.recorder, pod, request.target_secret_name, error
        )

        if error.transient:
            return ReconcileResult(
                success=False, message=f"Write failed: {error}", error=error
            )
        return ReconcileResult(success=True, message=f"Write failed: {error}")
