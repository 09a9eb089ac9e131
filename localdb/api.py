import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Tuple

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp

import localdb.k8s
import localdb.routers.basic as basic
import localdb.routers.databases as databases
from localdb.models import ConfigRegistry, ServerConfig

# Convenience.
logit = logging.getLogger("app")


# ----------------------------------------------------------------------
# Setup Server.
# ----------------------------------------------------------------------
def compile_server_config() -> Tuple[ServerConfig, bool]:
    try:
        cfg = ServerConfig(
            kubeconfig=Path(os.getenv("KUBECONFIG", "")),
            kubecontext=os.getenv("KUBECONTEXT", ""),
            image=os.environ["LOCALDB_IMAGE"],
            pull_secret=os.getenv("LOCALDB_PULL_SECRET", "quay-cloudservices-pull"),
            loglevel=os.getenv("LOCALDB_LOGLEVEL", "info"),
            host=os.getenv("LOCALDB_HOST", "0.0.0.0"),
            port=int(os.getenv("LOCALDB_PORT", "5001")),
        )
        return cfg, False
    except (KeyError, ValueError) as e:
        logit.error("missing environment variables", {"names": tuple(e.args)})
        return (
            ServerConfig(
                kubeconfig=Path(""),
                kubecontext="",
                image="",
                pull_secret="",
                loglevel="",
                host="",
                port=-1,
            ),
            True,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: ServerConfig = app.extra["config"]

    # A single K8s client for the entire app.
    k8scfg, err = localdb.k8s.create_cluster_config(cfg.kubeconfig, cfg.kubecontext)
    if err:
        raise RuntimeError("cannot load K8s credentials")
    app.extra["k8scfg"] = k8scfg

    async with k8scfg.client:
        logit.info("server startup complete")
        yield
    logit.info("server shutdown complete")


async def validation_error_handler(
    _: Request, exc: RequestValidationError
) -> JSONResponse:
    logit.info("invalid request", {"errors": jsonable_encoder(exc.errors())})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder({"detail": exc.errors(), "body": exc.body}),
    )


def make_app() -> ASGIApp:
    """Return a fully configured FastAPI instance."""
    cfg, err = compile_server_config()
    if err:
        raise RuntimeError("could not meet preconditions to start server")

    app = FastAPI(
        title="Local Databases",
        summary="Provision a PostgreSQL instance for an app.",
        description="",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.extra["config"] = cfg
    app.extra["registry"] = ConfigRegistry()

    # Install the web server routes.
    app.include_router(databases.router, prefix="/v1", tags=["Databases"])
    app.include_router(basic.router, prefix="", tags=["Basic"])

    # Install the exception handlers.
    app.add_exception_handler(RequestValidationError, handler=validation_error_handler)  # type: ignore

    return app
