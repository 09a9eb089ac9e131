"""Check-then-act access to K8s resources.

`resolve` fetches a resource and returns an `ApplyHandle` that knows whether
`apply` must create or update it. The two calls are separate round trips to
K8s and therefore not atomic. If two clients create the same resource
concurrently then K8s accepts one and rejects the other with 409 (Conflict).
This module reports that as an `apply-conflict` error and makes no attempt to
serialise the calls itself.

"""

import logging
from typing import Tuple

from square.dtypes import K8sConfig

import localdb.k8s
from localdb.models import (
    ApplyHandle,
    ErrorKind,
    ProvisionError,
    ResourceIdentity,
    ResourceKind,
)

# Convenience.
logit = logging.getLogger("app")


def store_error(method: str, url: str, code: int, resp: dict) -> ProvisionError:
    # K8s explains the problem in the `message` field of its `Status` response.
    reason = resp.get("message", "") if isinstance(resp, dict) else ""
    msg = f"{method} {url} failed with code {code}"
    msg = f"{msg}: {reason}" if reason else msg
    return ProvisionError(kind=ErrorKind.STORE_UNAVAILABLE, message=msg, code=code)


async def resolve(
    k8scfg: K8sConfig, nn: ResourceIdentity, kind: ResourceKind
) -> Tuple[ApplyHandle, ProvisionError | None]:
    """Fetch the resource `nn` of `kind` from K8s.

    Returns a handle without manifest if the resource does not exist yet and
    an error if K8s did not give a definite answer.

    """
    handle = ApplyHandle(kind=kind, identity=nn)
    url = localdb.k8s.resource_url(kind, nn)

    resp, code, err = await localdb.k8s.request(k8scfg, "GET", url)
    if err or code not in (200, 404):
        meta_log = {"kind": kind.kind, "id": str(nn)}
        logit.error(f"cannot fetch {kind.kind} {nn}", meta_log)
        return handle, store_error("GET", url, code, resp)

    if code == 200:
        handle.manifest = resp
    return handle, None


async def apply(
    k8scfg: K8sConfig, handle: ApplyHandle, manifest: dict
) -> Tuple[dict, ProvisionError | None]:
    """Create or update the resource in `handle` with `manifest`.

    Updates are skipped if `manifest` matches what K8s already has.

    """
    kind, nn = handle.kind, handle.identity
    meta_log = {"kind": kind.kind, "id": str(nn)}

    if handle.exists:
        if manifest == handle.manifest:
            logit.info(f"{kind.kind} {nn} is up to date", meta_log)
            return manifest, None
        method, url, expected = "PUT", localdb.k8s.resource_url(kind, nn), 200
    else:
        method, url = "POST", localdb.k8s.collection_url(kind, nn.namespace)
        expected = 201

    resp, code, err = await localdb.k8s.request(k8scfg, method, url, manifest)

    # K8s rejects a create if the resource exists, and an update if the
    # resource has changed since we fetched it.
    if not err and code == 409:
        logit.warning(f"conflicting {method} of {kind.kind} {nn}", meta_log)
        msg = f"{method} {url} conflicts with a concurrent change"
        return {}, ProvisionError(kind=ErrorKind.APPLY_CONFLICT, message=msg, code=409)

    if err or code != expected:
        logit.error(f"cannot {method} {kind.kind} {nn}", meta_log)
        return {}, store_error(method, url, code, resp)

    verb = "created" if method == "POST" else "updated"
    logit.info(f"{verb} {kind.kind} {nn}", meta_log)
    return resp, None
