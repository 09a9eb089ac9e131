from typing import cast

from fastapi import Request
from square.dtypes import K8sConfig

from localdb.models import ConfigRegistry, ServerConfig


def get_config(request: Request) -> ServerConfig:
    """FastAPI dependency to extract the server config."""
    return cast(ServerConfig, request.app.extra["config"])


def get_k8scfg(request: Request) -> K8sConfig:
    """FastAPI dependency to extract the K8s client."""
    return cast(K8sConfig, request.app.extra["k8scfg"])


def get_registry(request: Request) -> ConfigRegistry:
    """FastAPI dependency to extract the published database configs."""
    return cast(ConfigRegistry, request.app.extra["registry"])
