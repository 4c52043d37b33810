from typing import Dict, List

# Secrets backend.
VAULT_ADDRESS = "http://vault:8200"
VAULT_TOKEN = "root-token"
KUBECONF_SECRET = "secret/data/kube-conf"
VERSION_SECRET = "secret/data/nginx"

# Handoff files between the `Get secrets` and `Prepare deployment` steps.
KUBECONF_FILE = "kube-conf"
VERSION_FILE = "app-version"

# Loopback literal inside the Kubeconfig and its replacement. The alias
# resolves to the host from inside a Docker container.
LOOPBACK = "localhost"
HOST_ALIAS = "host.docker.internal"

# Application defaults.
APP_NAME = "nginx"
REPLICAS = "2"

# Network layout of the workload.
CONTAINER_PORT = 80
SERVICE_PORT = 8090
SERVICE_TYPE = "NodePort"
PULL_POLICY = "Always"


def app_labels(name: str) -> Dict[str, str]:
    """Return the labels that tie the Deployment, its Pods and the Service together."""
    return {"app": name}


def service_identity_fields() -> List[str]:
    """Return the `spec` fields K8s assigns to a Service and refuses to change."""
    return ["clusterIP", "clusterIPs"]
