"""
Annotation Parser - Parsing and validation of secret sync annotations.

Pods request secret synchronization through a YAML document stored under a
well-known annotation key:

    secretsync.dev/secret-sync: |
      provider: aws-secretsmanager
      path: /prod/myapp/database
      secretName: db-credentials
      keys:
        database: DB_HOST
        password: DB_PASSWORD

Parsing is a pure function of its inputs and never touches the network or
the cluster.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from validation import validate_annotation_document, validate_resource_name

logger = logging.getLogger(__name__)

# Annotation key on pods carrying the sync request
ANNOTATION_KEY = "secretsync.dev/secret-sync"

# Label marking secrets written by this operator
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "secret-sync-operator"

# Provenance annotations on managed secrets
SOURCE_PATH_ANNOTATION = "secretsync.dev/source-path"
SYNCED_AT_ANNOTATION = "secretsync.dev/synced-at"

REQUIRED_FIELDS = ("provider", "path", "secretName")


class AnnotationError(Exception):
    """Base class for annotation validation errors. Always permanent."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class EmptyPayloadError(AnnotationError):
    """Raised when the annotation value is empty."""

    def __init__(self):
        super().__init__("annotation value is empty")


class MalformedPayloadError(AnnotationError):
    """Raised when the annotation value is not a YAML mapping."""


class MissingFieldError(AnnotationError):
    """Raised when a required field is absent or empty."""

    def __init__(self, field_name: str):
        self.field = field_name
        super().__init__(f"{field_name} field is required")


class InvalidFieldError(AnnotationError):
    """Raised when a field is present but has an unusable value."""

    def __init__(self, field_name: str, reason: str):
        self.field = field_name
        super().__init__(f"{field_name} is invalid: {reason}")


class NamespaceMismatchError(AnnotationError):
    """Raised when the annotation names a namespace other than the pod's."""

    def __init__(self, requested: str, actual: str):
        self.requested = requested
        self.actual = actual
        super().__init__(
            f"annotation namespace mismatch: annotation specifies {requested} "
            f"but pod is in {actual}"
        )


@dataclass(frozen=True)
class PodIdentity:
    """Name and UID of the pod that carried the request."""

    name: str
    uid: str


@dataclass(frozen=True)
class SyncRequest:
    """A validated secret synchronization request."""

    provider: str
    source_path: str
    target_secret_name: str
    namespace: str
    pod: PodIdentity
    key_mapping: Dict[str, str] = field(default_factory=dict)

    @property
    def copies_all_keys(self) -> bool:
        """True when no key mapping was given and all fetched keys are copied."""
        return not self.key_mapping

    def check_namespace(self, pod_namespace: str) -> None:
        """
        Ensure the request targets the namespace of the originating pod.

        Raises:
            NamespaceMismatchError: If the namespaces differ
        """
        if self.namespace != pod_namespace:
            raise NamespaceMismatchError(self.namespace, pod_namespace)


def _load_document(raw: str) -> Dict[str, Any]:
    try:
        document = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise MalformedPayloadError(f"failed to parse annotation YAML: {e}") from e

    if not isinstance(document, dict):
        raise MalformedPayloadError(
            "annotation must be a YAML mapping, got "
            f"{type(document).__name__}"
        )
    return document


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_annotation(
    raw: Optional[str],
    namespace: str,
    pod_name: str,
    pod_uid: str,
) -> SyncRequest:
    """
    Parse and validate a secret sync annotation value.

    Args:
        raw: The raw annotation text
        namespace: Namespace of the pod carrying the annotation
        pod_name: Name of the pod carrying the annotation
        pod_uid: UID of the pod carrying the annotation

    Returns:
        A validated SyncRequest. Its namespace is the pod's namespace unless
        the document names a different one, which callers must reject with
        SyncRequest.check_namespace().

    Raises:
        EmptyPayloadError: If raw is empty
        MalformedPayloadError: If raw is not a YAML mapping
        MissingFieldError: If provider, path or secretName is absent or empty
        InvalidFieldError: If a field has the wrong type or secretName is not
            a valid resource name
    """
    if raw is None or not raw.strip():
        raise EmptyPayloadError()

    document = _load_document(raw)

    for field_name in REQUIRED_FIELDS:
        if _is_blank(document.get(field_name)):
            raise MissingFieldError(field_name)

    is_valid, error = validate_annotation_document(document)
    if not is_valid:
        field_name = error.split(":", 1)[0].split(".", 1)[0]
        raise InvalidFieldError(field_name, error)

    key_mapping = document.get("keys") or {}
    for target_key in key_mapping:
        # YAML reads unquoted on/yes/1 as bool or int
        if not isinstance(target_key, str):
            raise InvalidFieldError(
                "keys",
                f"target key {target_key!r} must be a string, quote it",
            )

    secret_name = document["secretName"].strip()
    is_valid, error = validate_resource_name(secret_name)
    if not is_valid:
        raise InvalidFieldError("secretName", f"{secret_name!r} {error}")

    requested_namespace = document.get("namespace")
    if _is_blank(requested_namespace):
        requested_namespace = namespace

    logger.debug(
        f"Parsed sync request on pod {namespace}/{pod_name}: "
        f"{document['provider']} {document['path']} -> {secret_name}"
    )
    return SyncRequest(
        provider=document["provider"].strip(),
        source_path=document["path"].strip(),
        target_secret_name=secret_name,
        namespace=requested_namespace.strip(),
        pod=PodIdentity(name=pod_name, uid=pod_uid),
        key_mapping=dict(key_mapping),
    )
