from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field
from square.dtypes import K8sConfig

# ----------------------------------------------------------------------
# Kubernetes
# ----------------------------------------------------------------------


class K8sMetadata(BaseModel):
    name: str
    namespace: str | None = None
    labels: Dict[str, str] | None = None


class K8sNamespace(BaseModel):
    apiVersion: str = "v1"
    kind: str = "Namespace"
    metadata: K8sMetadata


class K8sContainerPort(BaseModel):
    containerPort: int


class K8sContainer(BaseModel):
    name: str
    image: str
    imagePullPolicy: str
    ports: List[K8sContainerPort] = []


class K8sPodSpec(BaseModel):
    containers: List[K8sContainer] = []


class K8sPodTemplate(BaseModel):
    metadata: K8sMetadata
    spec: K8sPodSpec


class K8sLabelSelector(BaseModel):
    matchLabels: Dict[str, str]


class K8sDeploymentSpec(BaseModel):
    replicas: int
    selector: K8sLabelSelector
    template: K8sPodTemplate


class K8sDeployment(BaseModel):
    apiVersion: str = "apps/v1"
    kind: str = "Deployment"
    metadata: K8sMetadata
    spec: K8sDeploymentSpec


class K8sServicePort(BaseModel):
    protocol: str = "TCP"
    port: int
    targetPort: int


class K8sServiceSpec(BaseModel):
    type: str
    selector: Dict[str, str]
    ports: List[K8sServicePort] = []

    # Assigned by K8s. Must be carried over verbatim when updating a Service.
    clusterIP: str | None = None
    clusterIPs: List[str] | None = None


class K8sService(BaseModel):
    apiVersion: str = "v1"
    kind: str = "Service"
    metadata: K8sMetadata
    spec: K8sServiceSpec


# ----------------------------------------------------------------------
# KDeploy Internal Models.
# ----------------------------------------------------------------------


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Secrets backend and the location of our two secrets.
    vault_address: str
    vault_token: str
    kubeconf_secret: str
    version_secret: str

    # Folder for the Kubeconfig and version handoff files.
    workdir: Path

    # Replaces `localhost` in the Kubeconfig.
    host_alias: str

    # Defaults for operator supplied parameters.
    app_name: str
    replicas: str

    loglevel: str
    host: str
    port: int


class PipelineParams(BaseModel):
    """Operator supplied parameters.

    The keys match what the job host sends. Empty strings mean "use the server
    default". All values are strings because that is how the host delivers
    them.

    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    vault_address: str = Field(default="", alias="vault-address")
    vault_token: str = Field(default="", alias="vault-token")
    app_name: str = Field(default="", alias="app-name")
    image_name: str = Field(default="", alias="image-name")
    replicas: str = ""


class AppDescriptor(BaseModel):
    """Resolved application. Immutable for the remainder of a run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    namespace: str
    image: str
    replicas: int


class DeployContext(BaseModel):
    """State that flows from one pipeline step to the next.

    The `Prepare deployment` step populates `app` and `k8scfg`. All later
    steps only read them.

    `vault_address` and `vault_token` record the Vault settings the run
    resolved from the operator parameters. No step reads them back; they are
    part of the run configuration only.

    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    cfg: ServerConfig
    kubeconf_path: Path
    version_path: Path

    vault_address: str = ""
    vault_token: str = ""

    app: AppDescriptor | None = None
    k8scfg: K8sConfig | None = None


# ----------------------------------------------------------------------
# Pipeline Steps.
# ----------------------------------------------------------------------


class StepArgument(BaseModel):
    """Parameter prompt the job host presents to the operator."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["textfield", "vault"]
    key: str
    description: str = ""
    default: str = ""


class StepInfo(BaseModel):
    """GET /v1/steps"""

    model_config = ConfigDict(extra="forbid")

    title: str
    description: str = ""
    dependsOn: List[str] = []
    priority: int = 0
    arguments: List[StepArgument] = []


StepHandler = Callable[[DeployContext, PipelineParams], Awaitable[str]]


class Step(BaseModel):
    model_config = ConfigDict(extra="forbid")

    info: StepInfo
    handler: StepHandler


class RunReport(BaseModel):
    """Outcome of one pipeline run."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    # Step title -> outcome, eg `{"Create service": "updated"}`.
    outcomes: Dict[str, str] = {}

    # The step that failed and its exception. Empty if the run succeeded.
    failed_step: str = ""
    error: Exception | None = None


# ----------------------------------------------------------------------
# API Interface Models.
# ----------------------------------------------------------------------


class JobStatus(BaseModel):
    """POST `/v1/jobs`"""

    model_config = ConfigDict(extra="forbid")

    jobId: str
    logs: List[str]
    done: bool
    failedStep: str = ""
    errorKind: str = ""
    error: str = ""
