import json
from pathlib import Path
from typing import Dict, List, Tuple

import httpx
import pytest
from httpx import AsyncClient, Response
from square.dtypes import K8sConfig

import localdb.logstreams
from localdb.models import AppDatabase, AppDescriptor, ServerConfig


def pytest_configure(*args, **kwargs):
    """Pytest calls this hook on startup."""
    # Set log level to DEBUG for all unit tests.
    localdb.logstreams.setup("DEBUG")


def get_server_config():
    return ServerConfig(
        kubeconfig=Path("/tmp/kind-kubeconf.yaml"),
        kubecontext="kind-kind",
        image="postgres:13",
        pull_secret="quay-cloudservices-pull",
        loglevel="info",
        host="0.0.0.0",
        port=5001,
    )


def make_descriptor(
    name: str = "orders",
    namespace: str = "prod",
    dbname: str = "orders_db",
    labels: Dict[str, str] | None = None,
) -> AppDescriptor:
    return AppDescriptor(
        name=name,
        namespace=namespace,
        labels={"app": name} if labels is None else labels,
        database=AppDatabase(name=dbname),
    )


def k8s_status(code: int, message: str) -> Response:
    """Return a K8s `Status` response."""
    body = {"kind": "Status", "status": "Failure", "message": message, "code": code}
    return Response(code, json=body)


class FakeCluster:
    """Minimal in-memory K8s API server for namespaced resources.

    It understands GET/PUT on resource URLs and POST on collection URLs. Use
    `fail` to make the server respond with an error to a particular request.

    """

    def __init__(self):
        # All resources, eg {"/api/v1/namespaces/prod/services/foo": {...}}.
        self.resources: Dict[str, dict] = {}

        # Every request the server received as (method, path) tuples.
        self.calls: List[Tuple[str, str]] = []

        # Canned error responses for (method, path).
        self.failures: Dict[Tuple[str, str], int] = {}

    def fail(self, method: str, path: str, code: int):
        self.failures[(method, path)] = code

    def handle(self, request: httpx.Request) -> Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))

        if (method, path) in self.failures:
            return k8s_status(self.failures[(method, path)], "injected failure")

        if method == "GET":
            if path not in self.resources:
                return k8s_status(404, "not found")
            return Response(200, json=self.resources[path])

        if method == "POST":
            manifest = json.loads(request.content)
            url = f"{path}/{manifest['metadata']['name']}"
            if url in self.resources:
                return k8s_status(409, "already exists")
            manifest["metadata"]["resourceVersion"] = "1"

            # K8s defaults the `targetPort` of Services to their `port`.
            if manifest.get("kind") == "Service":
                for port in manifest["spec"].get("ports", []):
                    port.setdefault("targetPort", port["port"])
            self.resources[url] = manifest
            return Response(201, json=manifest)

        if method == "PUT":
            if path not in self.resources:
                return k8s_status(404, "not found")
            manifest = json.loads(request.content)
            self.resources[path] = manifest
            return Response(200, json=manifest)

        return k8s_status(405, "method not allowed")


@pytest.fixture
async def k8scfg(respx_mock):
    """Return a K8s config whose requests are intercepted by `respx_mock`."""
    async with AsyncClient(base_url="https://k8s.localdb.test") as client:
        yield K8sConfig(client=client)


@pytest.fixture
def cluster(respx_mock) -> FakeCluster:
    """Route all K8s requests to a `FakeCluster`."""
    fake = FakeCluster()
    respx_mock.route().mock(side_effect=fake.handle)
    return fake
