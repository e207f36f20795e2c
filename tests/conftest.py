"""Pytest configuration and fixtures."""

import copy
from typing import Dict, List, Optional, Tuple

import pytest
from kubernetes import client

from annotation import ANNOTATION_KEY
from events import EventRecorder
from providers.base import SecretProvider
from providers.registry import ProviderRegistry
from store import ConflictError, ResourceNotFoundError


class FakeStore:
    """In-memory stand-in for KubeStore with resourceVersion checks."""

    def __init__(self):
        self.pods: Dict[Tuple[str, str], client.V1Pod] = {}
        self.secrets: Dict[Tuple[str, str], client.V1Secret] = {}
        self.events: List[client.CoreV1Event] = []
        self.calls: List[Tuple[str, str, str]] = []
        self.errors: Dict[str, Exception] = {}
        self._version = 100

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def _maybe_fail(self, method: str) -> None:
        error = self.errors.get(method)
        if error is not None:
            raise error

    def add_pod(self, pod: client.V1Pod) -> None:
        self.pods[(pod.metadata.namespace, pod.metadata.name)] = pod

    def delete_secret(self, namespace: str, name: str) -> client.V1Secret:
        return self.secrets.pop((namespace, name))

    def secret_calls(self) -> List[Tuple[str, str, str]]:
        return [c for c in self.calls if "secret" in c[0]]

    async def get_pod(self, namespace: str, name: str) -> Optional[client.V1Pod]:
        self.calls.append(("get_pod", namespace, name))
        self._maybe_fail("get_pod")
        return copy.deepcopy(self.pods.get((namespace, name)))

    async def list_pods(self, namespace: str) -> List[client.V1Pod]:
        self.calls.append(("list_pods", namespace, ""))
        self._maybe_fail("list_pods")
        return [
            copy.deepcopy(pod) for (ns, _), pod in self.pods.items() if ns == namespace
        ]

    async def get_secret(
        self, namespace: str, name: str
    ) -> Optional[client.V1Secret]:
        self.calls.append(("get_secret", namespace, name))
        self._maybe_fail("get_secret")
        return copy.deepcopy(self.secrets.get((namespace, name)))

    async def create_secret(
        self, namespace: str, secret: client.V1Secret
    ) -> client.V1Secret:
        name = secret.metadata.name
        self.calls.append(("create_secret", namespace, name))
        self._maybe_fail("create_secret")
        if (namespace, name) in self.secrets:
            raise ConflictError("409 AlreadyExists", 409)
        stored = copy.deepcopy(secret)
        stored.metadata.resource_version = self._next_version()
        self.secrets[(namespace, name)] = stored
        return copy.deepcopy(stored)

    async def replace_secret(
        self, namespace: str, name: str, secret: client.V1Secret
    ) -> client.V1Secret:
        self.calls.append(("replace_secret", namespace, name))
        self._maybe_fail("replace_secret")
        current = self.secrets.get((namespace, name))
        if current is None:
            raise ResourceNotFoundError("404 Not Found", 404)
        if secret.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError("409 Conflict", 409)
        stored = copy.deepcopy(secret)
        stored.metadata.resource_version = self._next_version()
        self.secrets[(namespace, name)] = stored
        return copy.deepcopy(stored)

    async def create_event(
        self, namespace: str, event: client.CoreV1Event
    ) -> client.CoreV1Event:
        self._maybe_fail("create_event")
        self.events.append(event)
        return event

    def event_reasons(self) -> List[str]:
        return [e.reason for e in self.events]


class FakeProvider(SecretProvider):
    """Provider returning canned data per path."""

    def __init__(self, name: str = "aws-secretsmanager", secrets=None, error=None):
        self._name = name
        self.secrets = secrets or {}
        self.error = error
        self.fetches: List[str] = []

    @property
    def name(self) -> str:
        return self._name

    async def fetch_secret(self, path, timeout=None):
        self.fetches.append(path)
        if self.error is not None:
            raise self.error
        return dict(self.secrets[path])


def make_pod(
    name: str = "myapp-0",
    namespace: str = "default",
    annotation: Optional[str] = None,
    uid: Optional[str] = None,
    resource_version: str = "1",
) -> client.V1Pod:
    """Build a pod, optionally carrying a sync annotation."""
    annotations = {"unrelated": "value"}
    if annotation is not None:
        annotations[ANNOTATION_KEY] = annotation
    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            uid=uid or f"uid-{namespace}-{name}",
            annotations=annotations,
            resource_version=resource_version,
        ),
    )


DB_ANNOTATION = """\
provider: aws-secretsmanager
path: /prod/myapp/database
secretName: db-credentials
"""

DB_ANNOTATION_WITH_KEYS = """\
provider: aws-secretsmanager
path: /prod/myapp/database
secretName: db-credentials
keys:
  database: DB_HOST
  password: DB_PASSWORD
"""


@pytest.fixture
def store():
    """An empty in-memory store."""
    return FakeStore()


@pytest.fixture
def provider():
    """A provider holding the database secret."""
    return FakeProvider(
        secrets={"/prod/myapp/database": {"DB_HOST": "h", "DB_PASSWORD": "p"}}
    )


@pytest.fixture
def registry(provider):
    """A registry with the fake provider registered."""
    registry = ProviderRegistry()
    registry.register(provider)
    return registry


@pytest.fixture
def recorder(store):
    """An event recorder writing to the fake store."""
    return EventRecorder(store)


@pytest.fixture
def sample_pod():
    """A pod requesting the database secret."""
    return make_pod(annotation=DB_ANNOTATION)
