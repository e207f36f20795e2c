"""
Ownership Lookup - Maps a managed secret back to the pods that requested it.

Kubernetes cannot record a pod as the owner of an arbitrarily named secret
that may be shared by several pods, so managed secrets carry only a
managed-by label. Ownership is rebuilt on demand by re-parsing the sync
annotation of every pod in the secret's namespace.

The scan is linear in the number of pods in the namespace per secret event.
"""

import logging
from typing import Any, List

from annotation import MANAGED_BY_LABEL, MANAGED_BY_VALUE, AnnotationError
from reconciler import PodKey, extract_sync_request

logger = logging.getLogger(__name__)

MANAGED_SECRET_SELECTOR = f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}"


def is_managed_secret(secret: Any) -> bool:
    """Check if a secret carries the managed-by label of this operator."""
    labels = secret.metadata.labels or {}
    return labels.get(MANAGED_BY_LABEL) == MANAGED_BY_VALUE


def pod_requests_secret(pod: Any, secret_name: str) -> bool:
    """
    Check if a pod's sync annotation targets ``secret_name``.

    Pods without an annotation, or with one that does not validate, never
    match.
    """
    try:
        request = extract_sync_request(pod)
    except AnnotationError:
        return False
    return request is not None and request.target_secret_name == secret_name


async def find_pods_for_secret(store: Any, secret: Any) -> List[PodKey]:
    """
    Find the pods whose sync request produced a managed secret.

    Args:
        store: KubeStore used to list pods
        secret: The changed or deleted secret

    Returns:
        Keys of the pods to re-reconcile; empty for unmanaged secrets

    Raises:
        StoreError: If the pod list cannot be read
    """
    if not is_managed_secret(secret):
        return []

    namespace = secret.metadata.namespace
    name = secret.metadata.name

    pods = await store.list_pods(namespace)
    keys = [
        PodKey(namespace=pod.metadata.namespace, name=pod.metadata.name)
        for pod in pods
        if pod_requests_secret(pod, name)
    ]

    logger.debug(
        f"Secret {namespace}/{name} maps to {len(keys)} pod(s): "
        f"{', '.join(str(k) for k in keys) or 'none'}"
    )
    return keys
