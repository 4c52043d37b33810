"""Pipeline steps that prepare the deployment and reconcile the K8s resources.

All reconcilers follow the same pattern: look up the resource, then create it
if K8s reports 404 or update it if it exists. Any other lookup failure aborts
the step because we cannot know whether a create would be correct.
"""

import logging
from typing import Tuple

from square.dtypes import K8sConfig

import kdeploy.k8s
import kdeploy.manifests as manifests
from kdeploy.errors import (
    ClientConstructionError,
    MutationError,
    ParseError,
    ResourceLookupError,
)
from kdeploy.models import AppDescriptor, DeployContext, PipelineParams

# Convenience.
logit = logging.getLogger("app")


def parse_replicas(value: str) -> Tuple[int, bool]:
    """Return the replica count encoded as a plain decimal string, eg "3"."""
    # `int` alone would also accept whitespace, underscores and non-ASCII digits.
    if not (value.isascii() and value.isdigit()):
        return -1, True
    return int(value, 10), False


async def prepare_deployment(ctx: DeployContext, params: PipelineParams) -> str:
    """Pipeline step: resolve the app and build the K8s client for all later steps."""
    name = params.app_name or ctx.cfg.app_name
    raw_replicas = params.replicas or ctx.cfg.replicas

    replicas, err = parse_replicas(raw_replicas)
    if err:
        logit.error("invalid replica count", {"replicas": raw_replicas})
        raise ParseError(f"invalid replica count <{raw_replicas}>")

    # Use the explicit image or compile it from the version in Vault.
    if params.image_name:
        image = params.image_name
    else:
        try:
            version = ctx.version_path.read_text().strip()
        except OSError as err:
            logit.error("cannot read app version", {"reason": str(err)})
            raise
        image = f"{name}:{version}"

    k8scfg, err = kdeploy.k8s.create_cluster_config(ctx.kubeconf_path, None)
    if err:
        logit.error("cannot create K8s client", {"kubeconfig": str(ctx.kubeconf_path)})
        raise ClientConstructionError(f"unusable Kubeconfig <{ctx.kubeconf_path}>")

    ctx.vault_address = params.vault_address or ctx.cfg.vault_address
    ctx.vault_token = params.vault_token or ctx.cfg.vault_token
    ctx.app = AppDescriptor(name=name, namespace=name, image=image, replicas=replicas)
    ctx.k8scfg = k8scfg

    logit.info("deployment prepared", ctx.app.model_dump())
    return "prepared"


def _require_app(ctx: DeployContext) -> Tuple[AppDescriptor, K8sConfig]:
    if ctx.app is None or ctx.k8scfg is None:
        logit.error("no app or K8s client - was the deployment prepared?")
        raise ClientConstructionError("deployment was not prepared")
    return ctx.app, ctx.k8scfg


async def _lookup(k8scfg: K8sConfig, kind: str, url: str) -> Tuple[dict, bool]:
    live, found, err = await kdeploy.k8s.lookup(k8scfg, url)
    if err:
        raise ResourceLookupError(f"cannot determine if {kind} <{url}> exists")
    return live, found


async def create_namespace(ctx: DeployContext, _: PipelineParams) -> str:
    """Pipeline step: create the namespace of the app unless it exists already.

    An existing namespace is never modified.

    """
    app, k8scfg = _require_app(ctx)
    meta_log = {"kind": "Namespace", "name": app.name}

    _, found = await _lookup(k8scfg, "Namespace", manifests.namespace_url(app))
    if found:
        logit.info("namespace already exists - skipping", meta_log)
        return "exists"

    url = manifests.namespace_url(app, named=False)
    _, err = await kdeploy.k8s.post(k8scfg, url, manifests.namespace_manifest(app))
    if err:
        raise MutationError(f"cannot create namespace <{app.name}>")

    logit.info("namespace created", meta_log)
    return "created"


async def create_deployment(ctx: DeployContext, _: PipelineParams) -> str:
    """Pipeline step: create the app Deployment or replace the existing one.

    The update is a full replacement (PUT) and not a patch. Any changes made
    to the Deployment outside this pipeline are lost.

    """
    app, k8scfg = _require_app(ctx)
    meta_log = {"kind": "Deployment", "name": app.name, "namespace": app.namespace}
    desired = manifests.deployment_manifest(app)

    _, found = await _lookup(k8scfg, "Deployment", manifests.deployment_url(app))
    if found:
        url = manifests.deployment_url(app)
        _, err = await kdeploy.k8s.put(k8scfg, url, desired)
        if err:
            raise MutationError(f"cannot update deployment <{app.name}>")
        logit.info("deployment updated", meta_log)
        return "updated"

    url = manifests.deployment_url(app, named=False)
    _, err = await kdeploy.k8s.post(k8scfg, url, desired)
    if err:
        raise MutationError(f"cannot create deployment <{app.name}>")
    logit.info("deployment created", meta_log)
    return "created"


async def create_service(ctx: DeployContext, _: PipelineParams) -> str:
    """Pipeline step: create the app Service or replace the existing one."""
    app, k8scfg = _require_app(ctx)
    meta_log = {"kind": "Service", "name": app.name, "namespace": app.namespace}
    desired = manifests.service_manifest(app)

    live, found = await _lookup(k8scfg, "Service", manifests.service_url(app))
    if found:
        desired = manifests.carry_service_identity(desired, live)
        url = manifests.service_url(app)
        _, err = await kdeploy.k8s.put(k8scfg, url, desired)
        if err:
            raise MutationError(f"cannot update service <{app.name}>")
        logit.info("service updated", meta_log)
        return "updated"

    url = manifests.service_url(app, named=False)
    _, err = await kdeploy.k8s.post(k8scfg, url, desired)
    if err:
        raise MutationError(f"cannot create service <{app.name}>")
    logit.info("service created", meta_log)
    return "created"
