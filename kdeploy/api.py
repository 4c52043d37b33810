import logging
import os
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Tuple

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

import kdeploy.defaults as defaults
import kdeploy.pipeline
from kdeploy.models import JobStatus, PipelineParams, RunReport, ServerConfig, StepInfo

# Convenience.
logit = logging.getLogger("app")


# ----------------------------------------------------------------------
# Setup Server.
# ----------------------------------------------------------------------
def compile_server_config() -> Tuple[ServerConfig, bool]:
    get = os.getenv
    try:
        cfg = ServerConfig(
            vault_address=get("KDEPLOY_VAULT_ADDRESS", defaults.VAULT_ADDRESS),
            vault_token=get("KDEPLOY_VAULT_TOKEN", defaults.VAULT_TOKEN),
            kubeconf_secret=get("KDEPLOY_KUBECONF_SECRET", defaults.KUBECONF_SECRET),
            version_secret=get("KDEPLOY_VERSION_SECRET", defaults.VERSION_SECRET),
            workdir=Path(get("KDEPLOY_WORKDIR", "/tmp")),
            host_alias=get("KDEPLOY_HOST_ALIAS", defaults.HOST_ALIAS),
            app_name=get("KDEPLOY_APP_NAME", defaults.APP_NAME),
            replicas=get("KDEPLOY_REPLICAS", defaults.REPLICAS),
            loglevel=get("KDEPLOY_LOGLEVEL", "info"),
            host=get("KDEPLOY_HOST", "0.0.0.0"),
            port=int(get("KDEPLOY_PORT", "5001")),
        )
        return cfg, False
    except ValueError as e:
        logit.error("invalid environment variables", {"reason": str(e)})
        return (
            ServerConfig(
                vault_address="",
                vault_token="",
                kubeconf_secret="",
                version_secret="",
                workdir=Path(""),
                host_alias="",
                app_name="",
                replicas="",
                loglevel="",
                host="",
                port=-1,
            ),
            True,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    titles = [step.info.title for step in app.extra["steps"]]
    logit.info("server startup complete", {"steps": titles})
    yield
    logit.info("server shutdown complete")


def job_status(job_id: str, report: RunReport) -> JobStatus:
    logs = [f"{title}: {outcome}" for title, outcome in report.outcomes.items()]
    if report.failed_step:
        logs.append(f"{report.failed_step}: failed")

    return JobStatus(
        jobId=job_id,
        logs=logs,
        done=not report.failed_step,
        failedStep=report.failed_step,
        errorKind=type(report.error).__name__ if report.error else "",
        error=str(report.error) if report.error else "",
    )


def make_app() -> FastAPI:
    """Return a fully configured FastAPI instance."""
    cfg, err = compile_server_config()
    if err:
        raise RuntimeError("could not meet preconditions to start server")

    app = FastAPI(
        title="KDeploy",
        summary="Deploy an app to Kubernetes with secrets from Vault",
        description="",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.extra["config"] = cfg

    # Resolve the step order once so that a broken dependency graph prevents
    # the server from starting.
    app.extra["steps"] = kdeploy.pipeline.resolve_order(
        kdeploy.pipeline.default_steps(cfg)
    )

    app.add_api_route("/healthz", get_healthz, methods=["GET"], tags=["Basic"])
    app.add_api_route("/v1/steps", get_steps, methods=["GET"], tags=["Pipeline"])
    app.add_api_route("/v1/jobs", post_jobs, methods=["POST"], tags=["Pipeline"])
    return app


# ----------------------------------------------------------------------
# Routes.
# ----------------------------------------------------------------------
def get_healthz() -> int:
    """Health check endpoint. Always returns 200."""
    return status.HTTP_200_OK


def get_steps(request: Request) -> List[StepInfo]:
    """Return the pipeline steps in execution order."""
    return [step.info for step in request.app.extra["steps"]]


async def post_jobs(params: PipelineParams, request: Request) -> JobStatus:
    """Run the entire pipeline with the operator supplied `params`."""
    cfg: ServerConfig = request.app.extra["config"]
    job_id = str(uuid.uuid4())
    logit.info("job started", {"jobId": job_id})

    ctx = kdeploy.pipeline.make_context(cfg)
    report = await kdeploy.pipeline.run(ctx, params, request.app.extra["steps"])
    ret = job_status(job_id, report)

    if not ret.done:
        return JSONResponse(  # type: ignore
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ret.model_dump(),
        )
    return ret
