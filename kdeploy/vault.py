"""Fetch the Kubeconfig and the app version from Vault.

Both secrets live in a KV v2 engine, ie a read of `secret/data/kube-conf`
returns `{"data": {"data": {"conf": <base64>}, "metadata": {...}}}`. The step
decodes the Kubeconfig, makes its API server address reachable from inside a
container and writes both secrets to the handoff files for the next step.
"""

import asyncio
import base64
import json
import logging
import ssl
from typing import Tuple

import httpx
import tenacity as tc

import kdeploy.defaults
from kdeploy.errors import BackendReadError, DecodeError
from kdeploy.models import DeployContext, PipelineParams

# Define the exceptions we want to retry on.
WEB_EXCEPTIONS = (httpx.RequestError, ssl.SSLError, asyncio.TimeoutError)

# Convenience.
logit = logging.getLogger("app")


def _on_backoff(retry_state: tc.RetryCallState):
    """Log a warning on each retry."""
    client, path = retry_state.args[:2]
    logit.warning(
        "back off",
        {
            "attempt": retry_state.attempt_number,
            "vault": str(client.base_url),
            "path": path,
        },
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
async def _call(client: httpx.AsyncClient, path: str) -> httpx.Response:
    return await client.get(f"/v1/{path}")


async def read(client: httpx.AsyncClient, path: str) -> Tuple[dict, bool]:
    """Return the logical Vault read of `path`, eg `secret/data/nginx`."""
    try:
        ret = await _call(client, path)
    except WEB_EXCEPTIONS as err:
        logit.error("giving up", {"vault": str(client.base_url), "reason": str(err)})
        return ({}, True)

    if ret.status_code != 200:
        logit.error("cannot read secret", {"path": path, "code": ret.status_code})
        return ({}, True)

    try:
        return (json.loads(ret.text), False)
    except json.decoder.JSONDecodeError as err:
        logit.error("Vault sent corrupt JSON payload", {"path": path, "reason": err.msg})
        return ({}, True)


def secret_value(response: dict, key: str) -> Tuple[str, bool]:
    """Return the string `key` from the KV v2 `response`."""
    try:
        value = response["data"]["data"][key]
    except (KeyError, TypeError):
        return "", True
    if not isinstance(value, str):
        return "", True
    return value, False


def decode_kubeconf(encoded: str) -> Tuple[str, bool]:
    """Return the base64 decoded Kubeconfig."""
    try:
        return base64.b64decode(encoded, validate=True).decode("utf8"), False
    except ValueError:
        return "", True


def rewrite_loopback(kubeconf: str, alias: str) -> str:
    """Replace the first `localhost` in `kubeconf` with `alias`.

    A Kubeconfig for a local cluster points to `localhost`, which refers to
    the container itself once we run inside one.

    """
    return kubeconf.replace(kdeploy.defaults.LOOPBACK, alias, 1)


async def fetch(
    address: str, token: str, kubeconf_secret: str, version_secret: str
) -> Tuple[str, str]:
    """Return the decoded Kubeconfig and the app version from Vault."""
    headers = {"X-Vault-Token": token}
    async with httpx.AsyncClient(base_url=address, headers=headers) as client:
        resp, err = await read(client, kubeconf_secret)
        if err:
            raise BackendReadError(f"cannot read <{kubeconf_secret}>")

        encoded, err = secret_value(resp, "conf")
        if err:
            logit.error("secret has no <conf> string", {"path": kubeconf_secret})
            raise DecodeError(f"<{kubeconf_secret}> has no <conf> string")

        kubeconf, err = decode_kubeconf(encoded)
        if err:
            logit.error("Kubeconfig is not valid base64", {"path": kubeconf_secret})
            raise DecodeError(f"<{kubeconf_secret}> is not valid base64")

        resp, err = await read(client, version_secret)
        if err:
            raise BackendReadError(f"cannot read <{version_secret}>")

        version, err = secret_value(resp, "version")
        if err:
            logit.error("secret has no <version> string", {"path": version_secret})
            raise DecodeError(f"<{version_secret}> has no <version> string")

    return kubeconf, version


async def get_secrets(ctx: DeployContext, params: PipelineParams) -> str:
    """Pipeline step: fetch the secrets and write them to the handoff files."""
    address = params.vault_address or ctx.cfg.vault_address
    token = params.vault_token or ctx.cfg.vault_token

    kubeconf, version = await fetch(
        address, token, ctx.cfg.kubeconf_secret, ctx.cfg.version_secret
    )
    kubeconf = rewrite_loopback(kubeconf, ctx.cfg.host_alias)

    # Write the handoff files. A failure here leaves the files as they are.
    # The Kubeconfig holds cluster credentials and must only be readable by us.
    try:
        ctx.kubeconf_path.touch(mode=0o600)
        ctx.kubeconf_path.chmod(0o600)
        ctx.kubeconf_path.write_text(kubeconf)
        ctx.version_path.write_text(version)
    except OSError as err:
        logit.error("cannot write handoff file", {"reason": str(err)})
        raise

    logit.info("all data has been retrieved from vault", {"vault": address})
    return "retrieved"
