from pathlib import Path
from unittest import mock

import pytest
import respx
from httpx import AsyncClient
from square.dtypes import K8sConfig
from tenacity import wait_none

import kdeploy.k8s
import kdeploy.logstreams
import kdeploy.pipeline
import kdeploy.vault
from kdeploy.models import AppDescriptor, DeployContext, ServerConfig

from .fakes import K8S_URL, VAULT_ADDRESS, FakeCluster


def pytest_configure(*args, **kwargs):
    """Pytest calls this hook on startup."""
    # Set log level to DEBUG for all unit tests.
    kdeploy.logstreams.setup("DEBUG")

    # Disable Tenacity's sleep function.
    kdeploy.k8s._call.retry.wait = wait_none()  # type: ignore
    kdeploy.vault._call.retry.wait = wait_none()  # type: ignore


def get_server_config(workdir: Path) -> ServerConfig:
    return ServerConfig(
        vault_address=VAULT_ADDRESS,
        vault_token="root-token",
        kubeconf_secret="secret/data/kube-conf",
        version_secret="secret/data/nginx",
        workdir=workdir,
        host_alias="host.docker.internal",
        app_name="nginx",
        replicas="2",
        loglevel="debug",
        host="0.0.0.0",
        port=5001,
    )


def fake_cluster_config(*args, **kwargs):
    """Drop-in replacement for `kdeploy.k8s.create_cluster_config`."""
    return K8sConfig(client=AsyncClient(base_url=K8S_URL)), False


@pytest.fixture
def cfg(tmp_path: Path) -> ServerConfig:
    return get_server_config(tmp_path)


@pytest.fixture
def mock_http():
    """Intercept all HttpX requests. Unmatched requests raise an error."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture
def cluster(mock_http: respx.MockRouter) -> FakeCluster:
    fake = FakeCluster()
    mock_http.route(host="k8s.test").mock(side_effect=fake.handle)
    return fake


@pytest.fixture
async def k8scfg(mock_http: respx.MockRouter):
    """Return a `K8sConfig` whose client talks to the mocked K8s API."""
    async with AsyncClient(base_url=K8S_URL) as client:
        yield K8sConfig(client=client)


@pytest.fixture
def m_cluster_config():
    """Make the pipeline use the mocked K8s API instead of a real Kubeconfig."""
    with mock.patch.object(kdeploy.k8s, "create_cluster_config") as m_ccc:
        m_ccc.side_effect = fake_cluster_config
        yield m_ccc


@pytest.fixture
def app() -> AppDescriptor:
    return AppDescriptor(name="nginx", namespace="nginx", image="nginx:1.2.3", replicas=2)


@pytest.fixture
def ctx(cfg: ServerConfig, app: AppDescriptor, k8scfg: K8sConfig) -> DeployContext:
    """Return a context as it exists after the `Prepare deployment` step."""
    ret = kdeploy.pipeline.make_context(cfg)
    ret.app = app
    ret.k8scfg = k8scfg
    return ret


