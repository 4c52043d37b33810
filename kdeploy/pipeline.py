"""Register the pipeline steps and run them in dependency order.

Each step declares the titles of the steps it depends on. `resolve_order`
turns those declarations into a linear execution order once, and `run`
executes that order strictly one step at a time. The first failing step
aborts the run. Nothing that earlier steps changed is rolled back.
"""

import logging
from typing import Dict, List

import kdeploy.defaults
import kdeploy.reconcile
import kdeploy.vault
from kdeploy.errors import PipelineError
from kdeploy.models import (
    DeployContext,
    PipelineParams,
    RunReport,
    ServerConfig,
    Step,
    StepArgument,
    StepInfo,
)

# Convenience.
logit = logging.getLogger("app")


def vault_arguments(cfg: ServerConfig) -> List[StepArgument]:
    return [
        StepArgument(
            type="vault",
            key="vault-address",
            description="Address of the Vault server",
            default=cfg.vault_address,
        ),
        StepArgument(
            type="vault",
            key="vault-token",
            description="Vault access token",
            default=cfg.vault_token,
        ),
    ]


def default_steps(cfg: ServerConfig) -> List[Step]:
    """Return all steps required to deploy the app."""
    prepare_args = vault_arguments(cfg) + [
        StepArgument(
            type="textfield",
            key="image-name",
            description="Image to deploy. Leave empty to use the version from Vault",
        ),
        StepArgument(
            type="textfield",
            key="app-name",
            description="Name of the application",
            default=cfg.app_name,
        ),
        StepArgument(
            type="textfield",
            key="replicas",
            description="Number of replicas",
            default=cfg.replicas,
        ),
    ]

    return [
        Step(
            info=StepInfo(
                title="Get secrets",
                description="Get secrets from vault",
                priority=0,
                arguments=vault_arguments(cfg),
            ),
            handler=kdeploy.vault.get_secrets,
        ),
        Step(
            info=StepInfo(
                title="Prepare deployment",
                description="Resolve the app and connect to Kubernetes",
                dependsOn=["Get secrets"],
                priority=5,
                arguments=prepare_args,
            ),
            handler=kdeploy.reconcile.prepare_deployment,
        ),
        Step(
            info=StepInfo(
                title="Create namespace",
                description="Create kubernetes namespace",
                dependsOn=["Prepare deployment"],
                priority=10,
            ),
            handler=kdeploy.reconcile.create_namespace,
        ),
        Step(
            info=StepInfo(
                title="Create deployment",
                description="Create kubernetes app deployment",
                dependsOn=["Create namespace"],
                priority=20,
            ),
            handler=kdeploy.reconcile.create_deployment,
        ),
        Step(
            info=StepInfo(
                title="Create service",
                description="Create kubernetes service which exposes the app",
                dependsOn=["Create deployment"],
                priority=30,
            ),
            handler=kdeploy.reconcile.create_service,
        ),
    ]


def resolve_order(steps: List[Step]) -> List[Step]:
    """Return `steps` in an order that respects all their dependencies.

    Among the steps whose dependencies are satisfied, the one with the lowest
    priority runs first; ties keep the registration order.

    Raises `ValueError` for duplicate titles, unknown dependencies and cycles.

    """
    by_title: Dict[str, int] = {}
    for idx, step in enumerate(steps):
        if step.info.title in by_title:
            raise ValueError(f"Duplicate step title: {step.info.title}")
        by_title[step.info.title] = idx

    # Count the unmet dependencies of each step and track who waits for whom.
    pending: Dict[int, int] = {}
    dependents: Dict[int, List[int]] = {idx: [] for idx in range(len(steps))}
    for idx, step in enumerate(steps):
        pending[idx] = len(set(step.info.dependsOn))
        for dep in set(step.info.dependsOn):
            if dep not in by_title:
                raise ValueError(f"Unknown dependency <{dep}> of step <{step.info.title}>")
            dependents[by_title[dep]].append(idx)

    order: List[int] = []
    ready = [idx for idx, num in pending.items() if num == 0]
    while ready:
        ready.sort(key=lambda idx: (steps[idx].info.priority, idx))
        idx = ready.pop(0)
        order.append(idx)

        for child in dependents[idx]:
            pending[child] -= 1
            if pending[child] == 0:
                ready.append(child)

    if len(order) != len(steps):
        stuck = sorted(steps[idx].info.title for idx in pending if idx not in order)
        raise ValueError(f"Dependency cycle between steps: {', '.join(stuck)}")

    return [steps[idx] for idx in order]


def make_context(cfg: ServerConfig) -> DeployContext:
    """Return a fresh context for a single pipeline run."""
    return DeployContext(
        cfg=cfg,
        kubeconf_path=cfg.workdir / kdeploy.defaults.KUBECONF_FILE,
        version_path=cfg.workdir / kdeploy.defaults.VERSION_FILE,
    )


async def run(ctx: DeployContext, params: PipelineParams, steps: List[Step]) -> RunReport:
    """Execute the already ordered `steps` until the first one fails."""
    report = RunReport()
    try:
        for step in steps:
            title = step.info.title
            logit.info("step started", {"step": title})

            try:
                outcome = await step.handler(ctx, params)
            except (PipelineError, OSError) as err:
                logit.error(
                    "step failed - aborting pipeline",
                    {"step": title, "kind": type(err).__name__, "reason": str(err)},
                )
                report.failed_step = title
                report.error = err
                break

            report.outcomes[title] = outcome
            logit.info("step finished", {"step": title, "outcome": outcome})
    finally:
        # The K8s client only lives for the duration of this run.
        if ctx.k8scfg is not None:
            await ctx.k8scfg.client.aclose()

    return report
