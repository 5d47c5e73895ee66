"""Shared pytest fixtures for kube-installer tests."""

import copy
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from installer.client import AlreadyExistsError, NotFoundError, RemoteError  # noqa: E402


class FakeClient:
    """In-memory DynamicClient that records every call.

    Objects are keyed by (endpoint path, name). Failures can be injected per
    (operation, name) through the `failures` dict.
    """

    def __init__(self):
        self.objects: dict[tuple[str, str], dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], Exception] = {}

    def _maybe_fail(self, op: str, name: str) -> None:
        if (op, name) in self.failures:
            raise self.failures[(op, name)]

    def get(self, endpoint, name):
        self.calls.append(('get', name))
        self._maybe_fail('get', name)
        key = (endpoint.path, name)
        if key not in self.objects:
            raise NotFoundError(404, 'NotFound', f'{endpoint.resource} "{name}" not found')
        return copy.deepcopy(self.objects[key])

    def create(self, endpoint, body):
        name = body['metadata']['name']
        self.calls.append(('create', name))
        self._maybe_fail('create', name)
        key = (endpoint.path, name)
        if key in self.objects:
            raise AlreadyExistsError(409, 'AlreadyExists', f'{endpoint.resource} "{name}" already exists')
        stored = copy.deepcopy(body)
        stored['metadata'].setdefault('uid', f'uid-{len(self.objects) + 1}')
        self.objects[key] = stored
        return copy.deepcopy(stored)

    def delete(self, endpoint, name):
        self.calls.append(('delete', name))
        self._maybe_fail('delete', name)
        key = (endpoint.path, name)
        if key not in self.objects:
            raise NotFoundError(404, 'NotFound', f'{endpoint.resource} "{name}" not found')
        del self.objects[key]

    def list(self, endpoint):
        self.calls.append(('list', endpoint.resource))
        self._maybe_fail('list', endpoint.resource)
        return [copy.deepcopy(obj) for (path, _), obj in self.objects.items() if path == endpoint.path]

    def update_status(self, endpoint, body):
        name = body['metadata']['name']
        self.calls.append(('update_status', name))
        self._maybe_fail('update_status', name)
        key = (endpoint.path, name)
        if key not in self.objects:
            raise NotFoundError(404, 'NotFound', f'{endpoint.resource} "{name}" not found')
        self.objects[key]['status'] = copy.deepcopy(body.get('status'))
        return body

    def names(self, op: str):
        """Names passed to op, in call order."""
        return [name for call_op, name in self.calls if call_op == op]

    def stored(self, name: str) -> dict:
        """The stored object with the given name (any endpoint)."""
        for (_, obj_name), obj in self.objects.items():
            if obj_name == name:
                return obj
        raise KeyError(name)


@pytest.fixture
def fake_client():
    """In-memory dynamic client."""
    return FakeClient()


@pytest.fixture
def server_error():
    """Factory for a non-recoverable remote error."""
    def _make(message='internal error'):
        return RemoteError(500, 'InternalError', message)
    return _make


SERVING_MANIFEST = """\
apiVersion: v1
kind: Namespace
metadata:
  name: knative-serving
---
apiVersion: apiextensions.k8s.io/v1
kind: CustomResourceDefinition
metadata:
  name: services.serving.knative.dev
spec:
  group: serving.knative.dev
---
apiVersion: v1
kind: ServiceAccount
metadata:
  name: controller
  namespace: knative-serving
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: controller
  namespace: knative-serving
spec:
  replicas: 1
"""


@pytest.fixture
def serving_manifest(tmp_path):
    """Manifest with cluster-scoped and namespaced resources, in dependency order.

    Order: Namespace, CustomResourceDefinition, ServiceAccount, Deployment
    """
    path = tmp_path / 'serving.yaml'
    path.write_text(SERVING_MANIFEST)
    return path


@pytest.fixture
def write_manifest(tmp_path):
    """Factory writing manifest text to a temp file."""
    def _write(text, name='manifest.yaml'):
        path = tmp_path / name
        path.write_text(text)
        return path
    return _write


@pytest.fixture
def kubeconfig(tmp_path):
    """Kubeconfig with two contexts: 'dev' (token) and 'lab' (insecure)."""
    path = tmp_path / 'kubeconfig'
    path.write_text("""
apiVersion: v1
kind: Config
current-context: dev
clusters:
  - name: dev-cluster
    cluster:
      server: https://198.51.100.10:6443/
      certificate-authority: ca.crt
  - name: lab-cluster
    cluster:
      server: https://198.51.100.20:6443
      insecure-skip-tls-verify: true
users:
  - name: dev-user
    user:
      token: dev-token
  - name: lab-user
    user:
      client-certificate-data: Y2VydA==
      client-key-data: a2V5
contexts:
  - name: dev
    context:
      cluster: dev-cluster
      user: dev-user
      namespace: knative-serving
  - name: lab
    context:
      cluster: lab-cluster
      user: lab-user
""")
    return path
