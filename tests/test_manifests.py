from pathlib import Path

import yaml

import kdeploy.manifests as manifests
from kdeploy.models import AppDescriptor


class TestUrls:
    def test_urls(self, app: AppDescriptor):
        app = app.model_copy(update={"name": "web", "namespace": "team"})

        assert manifests.namespace_url(app) == "/api/v1/namespaces/web"
        assert manifests.namespace_url(app, named=False) == "/api/v1/namespaces"

        assert (
            manifests.deployment_url(app)
            == "/apis/apps/v1/namespaces/team/deployments/web"
        )
        assert (
            manifests.deployment_url(app, named=False)
            == "/apis/apps/v1/namespaces/team/deployments"
        )

        assert manifests.service_url(app) == "/api/v1/namespaces/team/services/web"
        assert (
            manifests.service_url(app, named=False)
            == "/api/v1/namespaces/team/services"
        )


class TestManifests:
    def test_namespace(self, app: AppDescriptor):
        assert manifests.namespace_manifest(app) == {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": "nginx"},
        }

    def test_deployment(self, app: AppDescriptor):
        labels = {"app": "nginx"}
        assert manifests.deployment_manifest(app) == {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": "nginx", "namespace": "nginx", "labels": labels},
            "spec": {
                "replicas": 2,
                "selector": {"matchLabels": labels},
                "template": {
                    "metadata": {"name": "nginx", "labels": labels},
                    "spec": {
                        "containers": [
                            {
                                "name": "nginx",
                                "image": "nginx:1.2.3",
                                "imagePullPolicy": "Always",
                                "ports": [{"containerPort": 80}],
                            }
                        ]
                    },
                },
            },
        }

    def test_deployment_zero_replicas(self, app: AppDescriptor):
        """Zero is a valid replica count and must not be dropped."""
        app = app.model_copy(update={"replicas": 0})
        assert manifests.deployment_manifest(app)["spec"]["replicas"] == 0

    def test_service(self, app: AppDescriptor):
        assert manifests.service_manifest(app) == {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "nginx", "namespace": "nginx"},
            "spec": {
                "type": "NodePort",
                "selector": {"app": "nginx"},
                "ports": [{"protocol": "TCP", "port": 8090, "targetPort": 80}],
            },
        }

    def test_carry_service_identity(self, app: AppDescriptor):
        desired = manifests.service_manifest(app)
        live = {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {
                "name": "nginx",
                "namespace": "nginx",
                "uid": "1234",
                "resourceVersion": "55",
                "labels": {"foo": "bar"},
            },
            "spec": {
                "type": "ClusterIP",
                "selector": {"app": "old"},
                "ports": [{"protocol": "TCP", "port": 80, "targetPort": 80}],
                "clusterIP": "10.96.0.12",
                "clusterIPs": ["10.96.0.12"],
            },
        }

        out = manifests.carry_service_identity(desired, live)

        # Identity comes from the live object.
        assert out["metadata"] == live["metadata"]
        assert out["spec"]["clusterIP"] == "10.96.0.12"
        assert out["spec"]["clusterIPs"] == ["10.96.0.12"]

        # Everything else comes from the desired object.
        assert out["spec"]["type"] == "NodePort"
        assert out["spec"]["selector"] == {"app": "nginx"}
        assert out["spec"]["ports"] == desired["spec"]["ports"]

        # Must not modify the inputs.
        assert "clusterIP" not in desired["spec"]
        out["metadata"]["labels"]["foo"] = "changed"
        assert live["metadata"]["labels"] == {"foo": "bar"}

    def test_carry_service_identity_no_ip(self, app: AppDescriptor):
        """Only copy the cluster IP fields the live object actually has."""
        desired = manifests.service_manifest(app)
        live = {"metadata": {"name": "nginx", "resourceVersion": "1"}, "spec": {}}

        out = manifests.carry_service_identity(desired, live)
        assert out["metadata"] == {"name": "nginx", "resourceVersion": "1"}
        assert "clusterIP" not in out["spec"]
        assert "clusterIPs" not in out["spec"]

    def test_carry_service_identity_specimen(self, app: AppDescriptor):
        """Use a Service as the API server returns it."""
        fname = Path(__file__).parent / "support" / "service-live.yaml"
        live = yaml.safe_load(fname.read_text())

        out = manifests.carry_service_identity(manifests.service_manifest(app), live)
        assert out["metadata"]["resourceVersion"] == "10733"
        assert out["metadata"]["uid"] == live["metadata"]["uid"]
        assert out["spec"]["clusterIP"] == "10.96.143.21"
        assert out["spec"]["clusterIPs"] == ["10.96.143.21"]

        # Server populated fields we do not manage are not carried over.
        assert "status" not in out
        assert "nodePort" not in out["spec"]["ports"][0]
        assert "ipFamilies" not in out["spec"]
