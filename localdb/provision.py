import logging
from typing import Tuple

from square.dtypes import K8sConfig

import localdb.generate
import localdb.resolver
from localdb.credentials import rand_string
from localdb.defaults import CREDENTIAL_LENGTH, DB_PORT
from localdb.models import (
    AppDescriptor,
    ConfigRegistry,
    DatabaseConfig,
    ErrorKind,
    ProvisionError,
    ResourceIdentity,
    ServerConfig,
    factory_DatabaseResources,
)

# Convenience.
logit = logging.getLogger("app")


def config_key(app: AppDescriptor) -> str:
    """Return the key of `app` in the `ConfigRegistry`, eg `prod/orders`."""
    return f"{app.namespace}/{app.name}"


def new_database_config(nn: ResourceIdentity, app: AppDescriptor) -> DatabaseConfig:
    """Return connection details with freshly generated credentials."""
    return DatabaseConfig(
        hostname=f"{nn.name}.{nn.namespace}.svc",
        port=DB_PORT,
        username=rand_string(CREDENTIAL_LENGTH),
        password=rand_string(CREDENTIAL_LENGTH),
        pgPass=rand_string(CREDENTIAL_LENGTH),
        name=app.database.name,
    )


async def provision_database(
    cfg: ServerConfig, k8scfg: K8sConfig, app: AppDescriptor
) -> Tuple[DatabaseConfig, ProvisionError | None]:
    """Create the Deployment, Service and PersistentVolumeClaim of a database.

    The Deployment decides whether the database exists. If it does then this
    function will not touch anything and return an `already-provisioned`
    error, because we cannot recover the credentials of an existing database.

    Otherwise, it generates new credentials and applies the resources in
    order. It aborts on the first error and leaves the resources it has
    already applied in place. Callers may retry, but a retry will report
    `already-provisioned` once the Deployment exists.

    Returns the connection details on success and an empty `DatabaseConfig`
    otherwise.

    """
    nn = localdb.generate.db_identity(app)
    kinds = factory_DatabaseResources()
    meta_log = {"id": str(nn)}

    # The Deployment is the source of truth for whether the database exists.
    handle, err = await localdb.resolver.resolve(k8scfg, nn, kinds["Deployment"])
    if err:
        return DatabaseConfig(), err

    if handle.exists:
        logit.info(f"database {nn} already provisioned", meta_log)
        msg = f"database {nn} has already been provisioned"
        return DatabaseConfig(), ProvisionError(
            kind=ErrorKind.ALREADY_PROVISIONED, message=msg, code=409
        )

    # Credentials are generated exactly once, ie only for new databases.
    db = new_database_config(nn, app)

    for name, builder in localdb.generate.BUILDERS.items():
        # Re-use the handle for the Deployment we already fetched.
        if name != "Deployment":
            handle, err = await localdb.resolver.resolve(k8scfg, nn, kinds[name])
            if err:
                return DatabaseConfig(), err

        manifest = builder(handle.manifest, nn, app, db, cfg)
        _, err = await localdb.resolver.apply(k8scfg, handle, manifest)
        if err:
            meta_log = meta_log | {"kind": name}
            logit.error(f"provisioning {nn} aborted at {name}", meta_log)
            return DatabaseConfig(), err

    logit.info(f"database {nn} provisioned", meta_log)
    return db, None


def configure(registry: ConfigRegistry, app: AppDescriptor, db: DatabaseConfig):
    """Publish the connection details `db` for `app`."""
    registry.configs[config_key(app)] = db
