import asyncio
import json
import logging
import ssl
from pathlib import Path
from typing import Tuple
from urllib.parse import urlparse

import httpx
import square.k8s
import tenacity as tc
from square.dtypes import ConnectionParameters, K8sConfig

from localdb.models import ResourceIdentity, ResourceKind

# Define the exceptions we want to retry on.
WEB_EXCEPTIONS = (httpx.RequestError, ssl.SSLError, KeyError, asyncio.TimeoutError)


# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("app")


def _on_backoff(retry_state: tc.RetryCallState):
    """Log a warning on each retry."""
    attempt = retry_state.attempt_number
    k8sconfig, method, url = retry_state.args[:3]
    path = urlparse(url).path

    logit.warning(f"Back off {attempt} - {k8sconfig.name} - {method} {path}.")


async def _mysleep(delay: float):
    """This trivial function exists to mock out the `sleep` call during tests."""
    await asyncio.sleep(delay)


@tc.retry(
    stop=(tc.stop_after_delay(300) | tc.stop_after_attempt(8)),
    wait=tc.wait_exponential(multiplier=1, min=0, max=20) + tc.wait_random(-5, 5),
    retry=tc.retry_if_exception_type(WEB_EXCEPTIONS),
    before_sleep=_on_backoff,
    reraise=True,
    sleep=_mysleep,
)
async def _call(
    k8sconfig: K8sConfig,
    method: str,
    url: str,
    payload: dict | list | None,
    headers: dict | None,
) -> httpx.Response:
    return await k8sconfig.client.request(method, url, json=payload, headers=headers)


async def request(
    k8sconfig: K8sConfig,
    method: str,
    url: str,
    payload: dict | list | None = None,
    headers: dict | None = None,
) -> Tuple[dict, int, bool]:
    """Return response of web request made with `client`.

    Inputs:
        client: HttpX client with correct K8s certificates.
        url: str
            Eg `/api/v1/namespaces/default/services`
        payload: dict
            Anything that can be JSON encoded, usually a K8s manifest.
        headers: dict
            Request headers. These will *not* replace the existing request
            headers dictionary (eg the access tokens), but augment them.

    Returns:
        (dict, int, bool): the JSON response and the HTTP status code.

    """
    # Make the HTTP request via our backoff/retry handler.
    try:
        ret = await _call(k8sconfig, method, url, payload=payload, headers=headers)
    except WEB_EXCEPTIONS as err:
        logit.error(f"Giving up - {k8sconfig.name} - {err} - {method} {url}")
        return ({}, -1, True)

    # Decode the JSON response and abort if that is impossible.
    try:
        response = json.loads(ret.text)
    except json.decoder.JSONDecodeError as err:
        msg = (
            f"JSON error - {k8sconfig.name} - "
            f"{err.msg} in line {err.lineno} column {err.colno} - {method} {url}"
        )
        logit.error(msg)
        return ({}, ret.status_code, True)

    # Only log what the response is about. K8s echoes the manifests and
    # those contain the database credentials.
    summary = "-"
    if isinstance(response, dict):
        name = response.get("metadata", {}).get("name", "")
        summary = f"{response.get('kind', '')} {name}".strip() or "-"
    logit.debug(f"{method} {ret.status_code} {ret.url} - {summary}")
    return (response, ret.status_code, False)


def collection_url(kind: ResourceKind, namespace: str) -> str:
    """Return the K8s endpoint to create a resource of `kind` in `namespace`."""
    return kind.path.format(namespace=namespace)


def resource_url(kind: ResourceKind, nn: ResourceIdentity) -> str:
    """Return the K8s endpoint of an individual resource."""
    return f"{collection_url(kind, nn.namespace)}/{nn.name}"


def create_cluster_config(kubeconf: Path, context: str) -> Tuple[K8sConfig, bool]:
    # Parse Kubeconfig file.
    cfg, err = square.k8s.load_auto_config(kubeconf, context)
    if err:
        return K8sConfig(), True

    # Create HTTPX client.
    params = ConnectionParameters(read=600, write=600, pool=600)
    cfg, err = square.k8s.create_httpx_client(cfg, params)
    if err:
        return K8sConfig(), True

    # Set the base URL to the K8s API server for convenience.
    cfg.client.base_url = cfg.url

    return cfg, False
