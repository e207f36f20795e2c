"""
Event Recording - Kubernetes Events emitted on pods during secret sync.

Events are the user-visible channel of the operator: every outcome of a
reconciliation is reported on the originating pod. Messages never contain
secret values.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from kubernetes import client

import metrics

logger = logging.getLogger(__name__)

COMPONENT_NAME = "secret-sync-operator"


class EventSeverity(Enum):
    """Kubernetes event types."""

    NORMAL = "Normal"
    WARNING = "Warning"


class EventReason(Enum):
    """Reasons attached to events emitted by the operator."""

    SECRET_SYNC_SUCCESS = "SecretSyncSuccess"
    SECRET_SYNC_FAILED = "SecretSyncFailed"
    ANNOTATION_INVALID = "AnnotationInvalid"
    PROVIDER_UNSUPPORTED = "ProviderUnsupported"
    SECRET_FETCH_FAILED = "SecretFetchFailed"


@dataclass
class PodEvent:
    """An event about a pod."""

    severity: EventSeverity
    reason: EventReason
    message: str
    pod_name: str
    pod_namespace: str
    pod_uid: str
    timestamp: datetime

    def to_body(self) -> client.CoreV1Event:
        """
        Build the core/v1 Event object for this event.

        Returns:
            A CoreV1Event referencing the pod as its involved object.
        """
        return client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                generate_name=f"{self.pod_name}.",
                namespace=self.pod_namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version="v1",
                kind="Pod",
                name=self.pod_name,
                namespace=self.pod_namespace,
                uid=self.pod_uid,
            ),
            reason=self.reason.value,
            message=self.message,
            type=self.severity.value,
            source=client.V1EventSource(component=COMPONENT_NAME),
            reporting_component=COMPONENT_NAME,
            first_timestamp=self.timestamp,
            last_timestamp=self.timestamp,
            count=1,
        )

    @classmethod
    def from_pod(
        cls,
        pod: client.V1Pod,
        severity: EventSeverity,
        reason: EventReason,
        message: str,
    ) -> "PodEvent":
        """
        Create an event about a pod.

        Args:
            pod: The pod the event is about.
            severity: Normal or Warning.
            reason: The event reason.
            message: Human-readable message.

        Returns:
            A new PodEvent instance.
        """
        return cls(
            severity=severity,
            reason=reason,
            message=message,
            pod_name=pod.metadata.name,
            pod_namespace=pod.metadata.namespace,
            pod_uid=pod.metadata.uid,
            timestamp=datetime.now(timezone.utc),
        )


class EventRecorder:
    """
    Posts pod events to the API server.

    Recording is best-effort: a failed write is logged and dropped so that
    event delivery never changes the outcome of a reconciliation.
    """

    def __init__(self, store: Any):
        self._store = store

    async def record(self, event: PodEvent) -> None:
        metrics.events_total.labels(
            reason=event.reason.value, type=event.severity.value
        ).inc()
        log = logger.warning if event.severity is EventSeverity.WARNING else logger.info
        log(
            f"Event {event.reason.value} on pod "
            f"{event.pod_namespace}/{event.pod_name}: {event.message}"
        )
        try:
            await self._store.create_event(event.pod_namespace, event.to_body())
        except Exception as e:
            logger.error(
                f"Dropped event {event.reason.value} for pod "
                f"{event.pod_namespace}/{event.pod_name}: {e}"
            )


async def emit_secret_sync_success(
    recorder: EventRecorder,
    pod: client.V1Pod,
    secret_name: str,
    provider: str,
    path: str,
) -> None:
    await recorder.record(
        PodEvent.from_pod(
            pod,
            EventSeverity.NORMAL,
            EventReason.SECRET_SYNC_SUCCESS,
            f"Successfully synchronized secret '{secret_name}' from {provider} "
            f"(path: {path})",
        )
    )


async def emit_annotation_invalid(
    recorder: EventRecorder, pod: client.V1Pod, error: Exception
) -> None:
    await recorder.record(
        PodEvent.from_pod(
            pod,
            EventSeverity.WARNING,
            EventReason.ANNOTATION_INVALID,
            f"Invalid secret sync annotation: {error}",
        )
    )


async def emit_provider_unsupported(
    recorder: EventRecorder, pod: client.V1Pod, provider: str
) -> None:
    await recorder.record(
        PodEvent.from_pod(
            pod,
            EventSeverity.WARNING,
            EventReason.PROVIDER_UNSUPPORTED,
            f"Provider '{provider}' not found in registry",
        )
    )


async def emit_secret_fetch_failed(
    recorder: EventRecorder,
    pod: client.V1Pod,
    provider: str,
    path: str,
    error: Exception,
    retryable: bool = False,
) -> None:
    message = f"Failed to fetch secret from {provider} (path: {path}): {error}"
    if retryable:
        message += "; will retry"
    await recorder.record(
        PodEvent.from_pod(
            pod, EventSeverity.WARNING, EventReason.SECRET_FETCH_FAILED, message
        )
    )


async def emit_secret_sync_failed(
    recorder: EventRecorder, pod: client.V1Pod, secret_name: str, error: Exception
) -> None:
    await recorder.record(
        PodEvent.from_pod(
            pod,
            EventSeverity.WARNING,
            EventReason.SECRET_SYNC_FAILED,
            f"Failed to write secret '{secret_name}': {error}",
        )
    )
