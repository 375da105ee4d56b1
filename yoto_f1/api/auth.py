"""OAuth 2.0 flows for Yoto.

Two flows are supported:

* The **device authorization** flow (``device_code`` grant), used by the CLI
  ``login`` command which cannot receive a browser redirect:

  1. :func:`request_device_code` obtains a user code and verification URL.
  2. The URL/code is shown to the user, who authorises in a browser.
  3. :func:`poll_for_token` blocks until authorisation completes or the
     code expires.

* The **authorization code** flow, used by the HTTP ``/api/auth/login`` and
  ``/api/auth/callback`` routes: :func:`build_authorize_url` and
  :func:`exchange_code`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlencode

import httpx
from loguru import logger

from ..errors import AuthenticationError
from ..models.user import TokenData

AUTHORIZE_URL = "https://login.yotoplay.com/authorize"
DEVICE_AUTH_URL = "https://login.yotoplay.com/oauth/device/code"
TOKEN_URL = "https://login.yotoplay.com/oauth/token"
AUDIENCE = "https://api.yotoplay.com"
SCOPE = "profile offline_access"


class DeviceAuthError(AuthenticationError):
    """Raised when the device authorisation flow encounters an unrecoverable error."""


@dataclass
class DeviceAuthInfo:
    """Data returned by the device authorisation endpoint."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: str
    expires_in: int
    interval: int


def _token_from_response(data: dict) -> TokenData:
    return TokenData(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token", ""),
        id_token=data.get("id_token"),
    )


# ------------------------------------------------------------------
# Device authorization flow
# ------------------------------------------------------------------


def request_device_code(client_id: str) -> DeviceAuthInfo:
    """Request a device code to start the OAuth device flow.

    Raises :class:`httpx.HTTPStatusError` on non-2xx responses.
    """
    resp = httpx.post(
        DEVICE_AUTH_URL,
        data={"client_id": client_id, "scope": SCOPE, "audience": AUDIENCE},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    resp.raise_for_status()
    info = resp.json()
    return DeviceAuthInfo(
        device_code=info["device_code"],
        user_code=info["user_code"],
        verification_uri=info.get("verification_uri", ""),
        verification_uri_complete=info.get("verification_uri_complete", ""),
        expires_in=info.get("expires_in", 300),
        interval=info.get("interval", 5),
    )


def poll_for_token(
    client_id: str,
    auth_info: DeviceAuthInfo,
    on_status: Callable[[str], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> TokenData | None:
    """Poll the token endpoint until the user authorises or the code expires.

    Returns the :class:`TokenData` on success, or ``None`` if the device
    code expired before the user completed authorisation.
    """
    start = time.time()
    interval = auth_info.interval

    while time.time() - start < auth_info.expires_in:
        sleep(interval)
        try:
            resp = httpx.post(
                TOKEN_URL,
                data={
                    "grant_type": "urn:ietf:params:oauth:grant-type:device_code",
                    "device_code": auth_info.device_code,
                    "client_id": client_id,
                    "audience": AUDIENCE,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except (httpx.HTTPError, OSError) as exc:
            logger.error(f"HTTP error during token poll: {exc}")
            if on_status:
                on_status(f"Network error: {exc}")
            continue

        if resp.status_code == 200:
            if on_status:
                on_status("Authentication successful")
            return _token_from_response(resp.json())

        # Guard against non-JSON error responses
        try:
            body = resp.json()
        except ValueError:
            logger.error(f"Non-JSON error response: {resp.status_code}")
            if on_status:
                on_status(f"Server error (HTTP {resp.status_code})")
            continue

        error = body.get("error", "") if isinstance(body, dict) else ""

        if error == "authorization_pending":
            if on_status:
                on_status("Waiting for authorization...")
            continue
        if error == "slow_down":
            interval += 5
            if on_status:
                on_status("Slowing down polling interval...")
            continue
        if error == "expired_token":
            if on_status:
                on_status("Device code expired")
            return None
        desc = body.get("error_description", error)
        raise DeviceAuthError(f"Auth error: {desc}")

    if on_status:
        on_status("Device code expired")
    return None


# ------------------------------------------------------------------
# Authorization code flow
# ------------------------------------------------------------------


def build_authorize_url(client_id: str, redirect_uri: str, state: str | None = None) -> str:
    """Return the Yoto login URL the browser should be redirected to."""
    params = {
        "audience": AUDIENCE,
        "scope": SCOPE,
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
    }
    if state:
        params["state"] = state
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code(
    http: httpx.AsyncClient,
    client_id: str,
    client_secret: str | None,
    code: str,
    redirect_uri: str,
) -> TokenData:
    """Exchange an authorization *code* for tokens.

    Raises :class:`AuthenticationError` when the provider refuses the code.
    """
    form = {
        "grant_type": "authorization_code",
        "client_id": client_id,
        "code": code,
        "redirect_uri": redirect_uri,
    }
    if client_secret:
        form["client_secret"] = client_secret
    resp = await http.post(
        TOKEN_URL,
        data=form,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    if not resp.is_success:
        logger.error(f"Code exchange failed: {resp.status_code} {resp.text[:200]}")
        raise AuthenticationError(f"Code exchange failed ({resp.status_code})")
    return _token_from_response(resp.json())
