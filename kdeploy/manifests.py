import copy

import kdeploy.defaults as defaults
from kdeploy.models import (
    AppDescriptor,
    K8sContainer,
    K8sContainerPort,
    K8sDeployment,
    K8sDeploymentSpec,
    K8sLabelSelector,
    K8sMetadata,
    K8sNamespace,
    K8sPodSpec,
    K8sPodTemplate,
    K8sService,
    K8sServicePort,
    K8sServiceSpec,
)


def namespace_url(app: AppDescriptor, named: bool = True) -> str:
    return f"/api/v1/namespaces/{app.name}" if named else "/api/v1/namespaces"


def deployment_url(app: AppDescriptor, named: bool = True) -> str:
    url = f"/apis/apps/v1/namespaces/{app.namespace}/deployments"
    return f"{url}/{app.name}" if named else url


def service_url(app: AppDescriptor, named: bool = True) -> str:
    url = f"/api/v1/namespaces/{app.namespace}/services"
    return f"{url}/{app.name}" if named else url


def namespace_manifest(app: AppDescriptor) -> dict:
    """Return a Namespace that only specifies its name."""
    ns = K8sNamespace(metadata=K8sMetadata(name=app.name))
    return ns.model_dump(exclude_none=True)


def deployment_manifest(app: AppDescriptor) -> dict:
    """Return the complete desired Deployment for `app`.

    The manifest is meant for a full replacement of any existing Deployment,
    ie it deliberately overwrites everything someone may have changed in the
    cluster.

    """
    labels = defaults.app_labels(app.name)

    container = K8sContainer(
        name=app.name,
        image=app.image,
        imagePullPolicy=defaults.PULL_POLICY,
        ports=[K8sContainerPort(containerPort=defaults.CONTAINER_PORT)],
    )
    manifest = K8sDeployment(
        metadata=K8sMetadata(name=app.name, namespace=app.namespace, labels=labels),
        spec=K8sDeploymentSpec(
            replicas=app.replicas,
            selector=K8sLabelSelector(matchLabels=labels),
            template=K8sPodTemplate(
                metadata=K8sMetadata(name=app.name, labels=labels),
                spec=K8sPodSpec(containers=[container]),
            ),
        ),
    )
    return manifest.model_dump(exclude_none=True)


def service_manifest(app: AppDescriptor) -> dict:
    """Return the desired NodePort Service that exposes the app container."""
    port = K8sServicePort(
        protocol="TCP",
        port=defaults.SERVICE_PORT,
        targetPort=defaults.CONTAINER_PORT,
    )
    svc = K8sService(
        metadata=K8sMetadata(name=app.name, namespace=app.namespace),
        spec=K8sServiceSpec(
            type=defaults.SERVICE_TYPE,
            selector=defaults.app_labels(app.name),
            ports=[port],
        ),
    )
    return svc.model_dump(exclude_none=True)


def carry_service_identity(desired: dict, live: dict) -> dict:
    """Return a copy of `desired` with the identity of the `live` Service.

    K8s rejects a Service update unless it carries the `resourceVersion` of
    the live object and the cluster IP it already assigned.

    """
    out = copy.deepcopy(desired)
    out["metadata"] = copy.deepcopy(live.get("metadata", {}))

    live_spec = live.get("spec", {})
    for field in defaults.service_identity_fields():
        if field in live_spec:
            out["spec"][field] = copy.deepcopy(live_spec[field])

    return out
