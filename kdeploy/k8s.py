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

# Define the exceptions we want to retry on.
WEB_EXCEPTIONS = (httpx.RequestError, ssl.SSLError, KeyError, asyncio.TimeoutError)


# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("app")


def _on_backoff(retry_state: tc.RetryCallState):
    """Log a warning on each retry."""
    attempt = retry_state.attempt_number
    k8sconfig, method, url = retry_state.args[:3]
    path = urlparse(url).path

    logit.warning(
        "back off",
        {"attempt": attempt, "cluster": k8sconfig.name, "method": method, "path": path},
    )


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
    payload: dict | None,
    headers: dict | None,
) -> httpx.Response:
    return await k8sconfig.client.request(method, url, json=payload, headers=headers)


async def request(
    k8sconfig: K8sConfig,
    method: str,
    url: str,
    payload: dict | None = None,
    headers: dict | None = None,
) -> Tuple[dict, int, bool]:
    """Return response of web request made with `client`.

    Inputs:
        k8sconfig: K8sConfig
            Its HttpX client must have the correct K8s certificates.
        url: str
            Eg `/api/v1/namespaces`.
        payload: dict
            Anything that can be JSON encoded, usually a K8s manifest.
        headers: dict
            Request headers. These will *not* replace the existing request
            headers dictionary (eg the access tokens), but augment them.

    Returns:
        (dict, int, bool): the JSON response, the HTTP status code and an
        error flag. The error flag only indicates transport or decoding
        problems, not HTTP error codes.

    """
    # Make the HTTP request via our backoff/retry handler.
    try:
        ret = await _call(k8sconfig, method, url, payload=payload, headers=headers)
    except WEB_EXCEPTIONS as err:
        logit.error(
            "giving up",
            {"cluster": k8sconfig.name, "reason": str(err), "method": method, "url": url},
        )
        return ({}, -1, True)

    # Decode the JSON response and abort if that is impossible.
    try:
        response = json.loads(ret.text)
    except json.decoder.JSONDecodeError as err:
        logit.error(
            "JSON error",
            {
                "cluster": k8sconfig.name,
                "reason": err.msg,
                "line": err.lineno,
                "column": err.colno,
                "document": err.doc,
            },
        )
        return ({}, ret.status_code, True)

    # Log the entire request in debug mode.
    logit.debug(
        "K8s request",
        {
            "method": method,
            "code": ret.status_code,
            "url": str(ret.url),
            "payload": payload,
            "response": response,
        },
    )
    return (response, ret.status_code, False)


async def get(k8sconfig: K8sConfig, url: str) -> Tuple[dict, bool]:
    """Make GET requests to K8s (see `request`)."""
    resp, code, err = await request(k8sconfig, "GET", url, payload=None, headers=None)
    if err or code != 200:
        logit.error("GET failed", {"code": code, "url": url, "response": resp})
        return (resp, True)
    return (resp, False)


async def post(k8sconfig: K8sConfig, url: str, payload: dict) -> Tuple[dict, bool]:
    """Make POST requests to K8s (see `request`)."""
    resp, code, err = await request(k8sconfig, "POST", url, payload, headers=None)
    err = (code != 201) or err
    if err:
        logit.error("POST failed", {"code": code, "url": url, "response": resp})
        return (resp, True)
    return (resp, False)


async def put(k8sconfig: K8sConfig, url: str, payload: dict) -> Tuple[dict, bool]:
    """Make PUT requests to K8s (see `request`).

    K8s replaces the entire resource with `payload`.

    """
    resp, code, err = await request(k8sconfig, "PUT", url, payload, headers=None)
    if err or code != 200:
        logit.error("PUT failed", {"code": code, "url": url, "response": resp})
        return (resp, True)
    return (resp, False)


async def lookup(k8sconfig: K8sConfig, url: str) -> Tuple[dict, bool, bool]:
    """Return the resource at `url` and whether it exists.

    Unlike `get`, this function treats a 404 as a valid answer, ie the
    resource does not exist. Every other failure, eg 403 or a network
    problem, sets the error flag because we cannot tell whether the resource
    exists or not.

    Returns:
        (dict, bool, bool): manifest, found, error.

    """
    resp, code, err = await request(k8sconfig, "GET", url, payload=None, headers=None)
    if not err and code == 200:
        return (resp, True, False)
    if not err and code == 404:
        return ({}, False, False)

    logit.error("lookup failed", {"code": code, "url": url, "response": resp})
    return (resp, False, True)


def create_cluster_config(kubeconf: Path, context: str | None) -> Tuple[K8sConfig, bool]:
    """Return a `K8sConfig` with a ready-to-use HttpX client for `kubeconf`."""
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
