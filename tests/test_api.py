from pathlib import Path
from unittest import mock

import httpx
import pytest
from fastapi.testclient import TestClient
from square.dtypes import K8sConfig

import localdb.api
import localdb.k8s
import localdb.provision
from localdb.models import DatabaseConfig, ErrorKind, ProvisionError, ServerConfig

# Convenience: minimum required environment variables.
MIN_ENV = {"LOCALDB_IMAGE": "postgres:13"}

APP_PAYLOAD = {
    "name": "orders",
    "namespace": "prod",
    "labels": {"app": "orders"},
    "database": {"name": "orders_db"},
}


@pytest.fixture
def client():
    with mock.patch.dict("os.environ", values=MIN_ENV, clear=True):
        app = localdb.api.make_app()
    app.extra["k8scfg"] = K8sConfig()  # type: ignore
    yield TestClient(app)


def make_db_config() -> DatabaseConfig:
    return DatabaseConfig(
        hostname="orders-db.prod.svc",
        port=5432,
        username="user",
        password="password",
        pgPass="pgpass",
        name="orders_db",
    )


class TestConfiguration:
    def test_compile_server_config_ok(self):
        # NOTE: it is valid to not specify a Kubeconfig file, most notably when
        # running inside a Pod.
        with mock.patch.dict("os.environ", values=MIN_ENV, clear=True):
            cfg, err = localdb.api.compile_server_config()
            assert not err
            assert cfg == ServerConfig(
                kubeconfig=Path(""),
                kubecontext="",
                image="postgres:13",
                pull_secret="quay-cloudservices-pull",
                loglevel="info",
                host="0.0.0.0",
                port=5001,
            )

        # Explicit values for everything.
        new_env = {
            "KUBECONFIG": "/tmp/kind-kubeconf.yaml",
            "KUBECONTEXT": "kind-kind",
            "LOCALDB_IMAGE": "postgres:16",
            "LOCALDB_PULL_SECRET": "my-secret",
            "LOCALDB_LOGLEVEL": "error",
            "LOCALDB_HOST": "1.2.3.4",
            "LOCALDB_PORT": "1234",
        }
        with mock.patch.dict("os.environ", values=new_env, clear=True):
            cfg, err = localdb.api.compile_server_config()
            assert not err
            assert cfg == ServerConfig(
                kubeconfig=Path("/tmp/kind-kubeconf.yaml"),
                kubecontext="kind-kind",
                image="postgres:16",
                pull_secret="my-secret",
                loglevel="error",
                host="1.2.3.4",
                port=1234,
            )

    def test_compile_server_config_err(self):
        # Missing image.
        with mock.patch.dict("os.environ", values={}, clear=True):
            _, err = localdb.api.compile_server_config()
            assert err

        # Invalid port.
        new_env = MIN_ENV | {"LOCALDB_PORT": "not-a-number"}
        with mock.patch.dict("os.environ", values=new_env, clear=True):
            _, err = localdb.api.compile_server_config()
            assert err

    def test_make_app_without_config(self):
        with mock.patch.dict("os.environ", values={}, clear=True):
            with pytest.raises(RuntimeError):
                localdb.api.make_app()


class TestLifespan:
    def test_lifespan_ok(self):
        k8scfg = K8sConfig(client=httpx.AsyncClient())
        with mock.patch.dict("os.environ", values=MIN_ENV, clear=True):
            app = localdb.api.make_app()

        with mock.patch.object(localdb.k8s, "create_cluster_config") as m_cc:
            m_cc.return_value = (k8scfg, False)
            with TestClient(app) as client:
                assert client.get("/healthz").status_code == 200
                assert client.app.extra["k8scfg"] is k8scfg  # type: ignore
        m_cc.assert_called_once_with(Path(""), "")

    def test_lifespan_no_credentials(self):
        with mock.patch.dict("os.environ", values=MIN_ENV, clear=True):
            app = localdb.api.make_app()

        with mock.patch.object(localdb.k8s, "create_cluster_config") as m_cc:
            m_cc.return_value = (K8sConfig(), True)
            with pytest.raises(RuntimeError):
                with TestClient(app):
                    pass


class TestRoutes:
    def test_healthz(self, client: TestClient):
        response = client.get("/healthz")
        assert response.status_code == 200

    def test_post_database(self, client: TestClient):
        db = make_db_config()
        with mock.patch.object(localdb.provision, "provision_database") as m_prov:
            m_prov.return_value = (db, None)
            response = client.post("/v1/databases", json=APP_PAYLOAD)
        assert response.status_code == 200
        assert DatabaseConfig.model_validate(response.json()) == db

        # Must have passed the parsed descriptor to the provisioner.
        _, _, app = m_prov.call_args.args
        assert app.name == "orders"
        assert app.database.name == "orders_db"

        # Must have published the config.
        response = client.get("/v1/databases/prod/orders")
        assert response.status_code == 200
        assert DatabaseConfig.model_validate(response.json()) == db

    @pytest.mark.parametrize(
        "kind, code",
        [
            (ErrorKind.ALREADY_PROVISIONED, 409),
            (ErrorKind.APPLY_CONFLICT, 409),
            (ErrorKind.STORE_UNAVAILABLE, 503),
        ],
    )
    def test_post_database_err(self, kind: ErrorKind, code: int, client: TestClient):
        err = ProvisionError(kind=kind, message="some problem")
        with mock.patch.object(localdb.provision, "provision_database") as m_prov:
            m_prov.return_value = (DatabaseConfig(), err)
            response = client.post("/v1/databases", json=APP_PAYLOAD)
        assert response.status_code == code
        assert response.json()["detail"] == {
            "kind": kind.value,
            "message": "some problem",
        }

        # Must not have published anything.
        assert client.get("/v1/databases/prod/orders").status_code == 404

    def test_post_database_invalid(self, client: TestClient):
        with mock.patch.object(localdb.provision, "provision_database") as m_prov:
            # Missing database name.
            payload = APP_PAYLOAD | {"database": {}}
            response = client.post("/v1/databases", json=payload)
            assert response.status_code == 422

            # Empty app name.
            payload = APP_PAYLOAD | {"name": ""}
            response = client.post("/v1/databases", json=payload)
            assert response.status_code == 422

            # Unknown field.
            payload = APP_PAYLOAD | {"foo": "bar"}
            response = client.post("/v1/databases", json=payload)
            assert response.status_code == 422

            # Names that are not valid K8s names or would escape the URL path.
            for field in ("name", "namespace"):
                for value in ("../x", "a/b", "Orders_X", "-orders", "orders-"):
                    payload = APP_PAYLOAD | {field: value}
                    response = client.post("/v1/databases", json=payload)
                    assert response.status_code == 422, (field, value)

            # `<name>-db` must not exceed the 63 character limit of K8s.
            payload = APP_PAYLOAD | {"name": "a" * 61}
            response = client.post("/v1/databases", json=payload)
            assert response.status_code == 422
        assert not m_prov.called

        # Longest admissible name.
        with mock.patch.object(localdb.provision, "provision_database") as m_prov:
            m_prov.return_value = (make_db_config(), None)
            payload = APP_PAYLOAD | {"name": "a" * 60}
            response = client.post("/v1/databases", json=payload)
            assert response.status_code == 200

    def test_get_database_unknown(self, client: TestClient):
        response = client.get("/v1/databases/prod/unknown")
        assert response.status_code == 404
