"""Produce the K8s manifests of a database.

Every builder accepts the manifest that currently exists in K8s (or `None`)
and returns a new manifest with the desired state upserted into it. This
preserves all the fields K8s manages itself, eg `metadata.resourceVersion` or
`spec.clusterIP`. The builders never modify their arguments and perform no I/O.

"""

import copy
from typing import Callable, Dict

import localdb.defaults
from localdb.defaults import DB_DATA_DIR, DB_PORT, DB_PORT_NAME, DB_STORAGE
from localdb.models import (
    AppDescriptor,
    DatabaseConfig,
    K8sContainer,
    K8sContainerPort,
    K8sDeploymentSpec,
    K8sEnvVar,
    K8sLocalObjectReference,
    K8sMetadata,
    K8sOwnerReference,
    K8sPodSpec,
    K8sPodTemplate,
    K8sPVCSpec,
    K8sServicePort,
    K8sServiceSpec,
    K8sVolume,
    K8sVolumeMount,
    ResourceIdentity,
    ResourceKind,
    ServerConfig,
    factory_DatabaseResources,
)

ResourceBuilder = Callable[
    [dict | None, ResourceIdentity, AppDescriptor, DatabaseConfig, ServerConfig],
    dict,
]


def db_identity(app: AppDescriptor) -> ResourceIdentity:
    """Return the name and namespace of the database resources for `app`.

    The names are agnostic to the resource kind, ie the Deployment, Service
    and PersistentVolumeClaim of a database all share the same name.

    """
    return ResourceIdentity(name=f"{app.name}-db", namespace=app.namespace)


def db_labels(app: AppDescriptor) -> Dict[str, str]:
    # Work on a copy to never modify the labels of the caller.
    labels = dict(app.labels)
    labels["service"] = "db"
    return labels


def stamp_metadata(
    manifest: dict, nn: ResourceIdentity, app: AppDescriptor, labels: Dict[str, str]
) -> None:
    """Set name, namespace, labels and owner of `manifest` in-place.

    Labels that already exist on the `manifest` are retained unless `labels`
    overrides them.

    """
    old = manifest.get("metadata", {})

    meta = K8sMetadata(
        name=nn.name,
        namespace=nn.namespace,
        labels=old.get("labels", {}) | labels,
    )

    # Let K8s garbage collect the database together with the app.
    if app.apiVersion and app.kind and app.uid:
        owner = K8sOwnerReference(
            apiVersion=app.apiVersion, kind=app.kind, name=app.name, uid=app.uid
        )
        meta.ownerReferences = [owner]

    manifest["metadata"] = old | meta.model_dump(exclude_none=True)


def _upsert_base(base: dict | None, kind: ResourceKind) -> dict:
    manifest = copy.deepcopy(base) if base else {}
    manifest["apiVersion"] = kind.apiVersion
    manifest["kind"] = kind.kind
    return manifest


def deployment_manifest(
    base: dict | None,
    nn: ResourceIdentity,
    app: AppDescriptor,
    db: DatabaseConfig,
    cfg: ServerConfig,
) -> dict:
    """Produce the Deployment that runs the database server."""
    labels = db_labels(app)
    manifest = _upsert_base(base, factory_DatabaseResources()["Deployment"])
    stamp_metadata(manifest, nn, app, labels)

    env_vars = [
        K8sEnvVar(name="POSTGRESQL_USER", value=db.username),
        K8sEnvVar(name="POSTGRESQL_PASSWORD", value=db.password),
        K8sEnvVar(name="PGPASSWORD", value=db.pgPass),
        K8sEnvVar(name="POSTGRESQL_DATABASE", value=app.database.name),
    ]

    container = K8sContainer(
        name=nn.name,
        image=cfg.image,
        env=env_vars,
        ports=[K8sContainerPort(name=DB_PORT_NAME, containerPort=DB_PORT)],
        livenessProbe=localdb.defaults.liveness_probe(),
        readinessProbe=localdb.defaults.readiness_probe(),
        volumeMounts=[K8sVolumeMount(name=nn.name, mountPath=DB_DATA_DIR)],
    )

    # The data volume is backed by the claim of the same name.
    volume = K8sVolume(
        name=nn.name,
        persistentVolumeClaim=K8sVolume.ClaimSource(claimName=nn.name),
    )
    pull_secrets = [K8sLocalObjectReference(name=cfg.pull_secret)]

    spec = K8sDeploymentSpec(
        replicas=1,
        selector={"matchLabels": labels},
        template=K8sPodTemplate(
            metadata=K8sMetadata(labels=labels),
            spec=K8sPodSpec(
                containers=[container],
                volumes=[volume],
                imagePullSecrets=pull_secrets if cfg.pull_secret else [],
            ),
        ),
    )

    manifest["spec"] = manifest.get("spec", {}) | spec.model_dump(
        exclude_defaults=True
    )
    return manifest


def service_manifest(
    base: dict | None,
    nn: ResourceIdentity,
    app: AppDescriptor,
    db: DatabaseConfig,
    cfg: ServerConfig,
) -> dict:
    """Produce the Service in front of the database Pod."""
    labels = db_labels(app)
    manifest = _upsert_base(base, factory_DatabaseResources()["Service"])
    stamp_metadata(manifest, nn, app, labels)

    port = K8sServicePort(name=DB_PORT_NAME, port=DB_PORT, protocol="TCP")
    spec = K8sServiceSpec(ports=[port], selector=labels).model_dump()

    # K8s assigns a `targetPort` to stored Services. Keep it, otherwise every
    # re-apply would look like a change.
    old_spec = manifest.get("spec", {})
    old_ports = {_.get("name"): _ for _ in old_spec.get("ports", [])}
    for new in spec["ports"]:
        old = old_ports.get(new["name"], {})
        if old.get("port") == new["port"] and "targetPort" in old:
            new["targetPort"] = old["targetPort"]

    manifest["spec"] = old_spec | spec
    return manifest


def pvc_manifest(
    base: dict | None,
    nn: ResourceIdentity,
    app: AppDescriptor,
    db: DatabaseConfig,
    cfg: ServerConfig,
) -> dict:
    """Produce the PersistentVolumeClaim for the database files."""
    labels = db_labels(app)
    kind = factory_DatabaseResources()["PersistentVolumeClaim"]
    manifest = _upsert_base(base, kind)
    stamp_metadata(manifest, nn, app, labels)

    spec = K8sPVCSpec(
        accessModes=["ReadWriteOnce"],
        resources={"requests": {"storage": DB_STORAGE}},
    )

    manifest["spec"] = manifest.get("spec", {}) | spec.model_dump()
    return manifest


# The builder for each resource kind. The order defines the provisioning order.
BUILDERS: Dict[str, ResourceBuilder] = {
    "Deployment": deployment_manifest,
    "Service": service_manifest,
    "PersistentVolumeClaim": pvc_manifest,
}
