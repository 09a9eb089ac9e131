from fastapi import APIRouter, Depends, HTTPException, status
from square.dtypes import K8sConfig

import localdb.provision
from localdb.models import (
    AppDescriptor,
    ConfigRegistry,
    DatabaseConfig,
    ErrorKind,
    ServerConfig,
)
from localdb.routers.shared import get_config, get_k8scfg, get_registry

router = APIRouter()

# Convenience: map provisioning errors to HTTP status codes.
HTTP_CODES = {
    ErrorKind.ALREADY_PROVISIONED: status.HTTP_409_CONFLICT,
    ErrorKind.APPLY_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@router.post("/databases")
async def post_database(
    app: AppDescriptor,
    cfg: ServerConfig = Depends(get_config),
    k8scfg: K8sConfig = Depends(get_k8scfg),
    registry: ConfigRegistry = Depends(get_registry),
) -> DatabaseConfig:
    db, err = await localdb.provision.provision_database(cfg, k8scfg, app)
    if err:
        raise HTTPException(
            status_code=HTTP_CODES[err.kind],
            detail={"kind": err.kind.value, "message": err.message},
        )

    localdb.provision.configure(registry, app, db)
    return db


@router.get("/databases/{namespace}/{name}")
def get_database(
    namespace: str, name: str, registry: ConfigRegistry = Depends(get_registry)
) -> DatabaseConfig:
    try:
        return registry.configs[f"{namespace}/{name}"]
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Database not found"
        )
