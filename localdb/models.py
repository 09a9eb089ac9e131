from enum import Enum
from pathlib import Path
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

# ----------------------------------------------------------------------
# Kubernetes
# ----------------------------------------------------------------------


class K8sOwnerReference(BaseModel):
    apiVersion: str
    kind: str
    name: str
    uid: str
    controller: bool = True


class K8sMetadata(BaseModel):
    name: str = ""
    namespace: str = ""
    labels: Dict[str, str] = {}
    ownerReferences: List[K8sOwnerReference] | None = None


class K8sEnvVar(BaseModel):
    name: str
    value: str = ""


class K8sContainerPort(BaseModel):
    name: str
    containerPort: int


class K8sExecAction(BaseModel):
    command: List[str] = []


class K8sProbe(BaseModel):
    exec: K8sExecAction = K8sExecAction()
    initialDelaySeconds: int = 0
    timeoutSeconds: int = 0


class K8sVolumeMount(BaseModel):
    name: str
    mountPath: str


class K8sContainer(BaseModel):
    name: str = ""
    image: str = ""
    env: List[K8sEnvVar] = []
    ports: List[K8sContainerPort] = []
    livenessProbe: K8sProbe = K8sProbe()
    readinessProbe: K8sProbe = K8sProbe()
    volumeMounts: List[K8sVolumeMount] = []


class K8sVolume(BaseModel):
    class ClaimSource(BaseModel):
        claimName: str

    name: str
    persistentVolumeClaim: ClaimSource


class K8sLocalObjectReference(BaseModel):
    name: str


class K8sPodSpec(BaseModel):
    containers: List[K8sContainer] = []
    volumes: List[K8sVolume] = []
    imagePullSecrets: List[K8sLocalObjectReference] = []


class K8sPodTemplate(BaseModel):
    metadata: K8sMetadata = K8sMetadata()
    spec: K8sPodSpec = K8sPodSpec()


class K8sDeploymentSpec(BaseModel):
    replicas: int = 0
    selector: dict = {}
    template: K8sPodTemplate = K8sPodTemplate()


class K8sServicePort(BaseModel):
    name: str = ""
    port: int = 0
    protocol: str = ""


class K8sServiceSpec(BaseModel):
    ports: List[K8sServicePort] = []
    selector: Dict[str, str] = {}


class K8sPVCSpec(BaseModel):
    accessModes: List[str] = []
    resources: dict = {}


# ----------------------------------------------------------------------
# LocalDB Internal Models.
# ----------------------------------------------------------------------


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kubeconfig: Path
    kubecontext: str

    # Container image of the database server, eg `postgres:13`.
    image: str

    # Name of the Secret the database Pods use to pull `image`.
    pull_secret: str

    loglevel: str
    host: str
    port: int


class ResourceKind(BaseModel):
    """Describe one of the K8s resource kinds that make up a database."""

    model_config = ConfigDict(extra="forbid")

    apiVersion: str
    kind: str

    # Namespaced collection endpoint, eg `/api/v1/namespaces/{namespace}/services`.
    path: str


def factory_DatabaseResources() -> Dict[str, ResourceKind]:
    """Return the resource kinds of a database in the order we provision them."""
    data = dict(
        Deployment=ResourceKind(
            apiVersion="apps/v1",
            kind="Deployment",
            path="/apis/apps/v1/namespaces/{namespace}/deployments",
        ),
        Service=ResourceKind(
            apiVersion="v1",
            kind="Service",
            path="/api/v1/namespaces/{namespace}/services",
        ),
        PersistentVolumeClaim=ResourceKind(
            apiVersion="v1",
            kind="PersistentVolumeClaim",
            path="/api/v1/namespaces/{namespace}/persistentvolumeclaims",
        ),
    )
    return data


class ResourceIdentity(BaseModel):
    """Name and namespace shared by all K8s resources of one database."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class ApplyHandle(BaseModel):
    """Result of an existence check.

    The `manifest` is the one currently stored in K8s or `None` if the
    resource does not exist yet. Applying the handle will update the
    resource in the former case and create it in the latter.

    """

    model_config = ConfigDict(extra="forbid")

    kind: ResourceKind
    identity: ResourceIdentity
    manifest: dict | None = None

    @property
    def exists(self) -> bool:
        return self.manifest is not None


class ErrorKind(str, Enum):
    ALREADY_PROVISIONED = "already-provisioned"
    STORE_UNAVAILABLE = "store-unavailable"
    APPLY_CONFLICT = "apply-conflict"


class ProvisionError(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: ErrorKind
    message: str

    # HTTP status code from K8s or -1 if we never got a response.
    code: int = -1


# ----------------------------------------------------------------------
# API Interface Models.
# ----------------------------------------------------------------------


# Name of a K8s object, ie a DNS-1123 label.
DNS_LABEL = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class AppDatabase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)


class AppDescriptor(BaseModel):
    """POST /v1/databases

    The app that requests a database. The optional `apiVersion`, `kind` and
    `uid` identify the K8s object of the app. If all three are present then
    the database resources will be owned by it.

    """

    model_config = ConfigDict(extra="forbid")

    # The database resources are called `<name>-db` and must remain valid names.
    name: str = Field(min_length=1, max_length=60, pattern=DNS_LABEL)
    namespace: str = Field(min_length=1, max_length=63, pattern=DNS_LABEL)
    labels: Dict[str, str] = {}
    database: AppDatabase

    apiVersion: str = ""
    kind: str = ""
    uid: str = ""


class DatabaseConfig(BaseModel):
    """Connection details of a provisioned database."""

    model_config = ConfigDict(extra="forbid")

    hostname: str = ""
    port: int = 0
    username: str = ""
    password: str = ""

    # Password for client tools like `psql`.
    pgPass: str = ""

    name: str = ""


class ConfigRegistry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # configs["<namespace>/<app-name>"], eg configs['prod/orders']
    configs: Dict[str, DatabaseConfig] = {}
