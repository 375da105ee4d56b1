"""Base async HTTP client for the Yoto API with token management."""

from __future__ import annotations

import base64
import json
import time

import httpx
from loguru import logger

from ..errors import AuthenticationError, ContentBackendError, RateLimitedError
from ..models.user import TokenData
from ..storage.identity import IdentityStore


def check_response(resp: httpx.Response, action: str) -> httpx.Response:
    """Translate an error response from the Yoto API into a typed exception.

    401/403 become :class:`AuthenticationError`, 429 becomes
    :class:`RateLimitedError` and every other non-2xx status becomes
    :class:`ContentBackendError`.  Successful responses are returned as-is.
    """
    if resp.is_success:
        return resp
    detail = resp.text[:300]
    if resp.status_code in (401, 403):
        raise AuthenticationError(f"{action} was refused ({resp.status_code}): {detail}")
    if resp.status_code == 429:
        raise RateLimitedError(f"{action} was rate limited: {detail}", status_code=429)
    raise ContentBackendError(
        f"{action} failed ({resp.status_code}): {detail}", status_code=resp.status_code
    )


class YotoClient:
    """Low-level async HTTP client with automatic token refresh.

    The client wraps :class:`httpx.AsyncClient` and transparently manages
    OAuth tokens: reading them from the :class:`IdentityStore` on
    construction, refreshing them when they are about to expire (or when
    the server answers 401), and persisting any rotation back to the store.
    A request is retried at most once after a refresh.

    Example::

        async with YotoClient(identity, client_id) as client:
            resp = await client.get("/content/mine")
    """

    SERVER_URL = "https://api.yotoplay.com"
    LABS_URL = "https://labs.api.yotoplay.com"
    TOKEN_URL = "https://login.yotoplay.com/oauth/token"

    def __init__(
        self,
        identity: IdentityStore,
        client_id: str,
        client_secret: str | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.identity = identity
        self.client_id = client_id
        self.client_secret = client_secret
        self._tokens: TokenData | None = identity.load_tokens()
        self._http = http or httpx.AsyncClient(timeout=30.0)

    # ------------------------------------------------------------------
    # Token helpers
    # ------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        """Return ``True`` if an access token is available."""
        return self._tokens is not None and self._tokens.access_token != ""

    @property
    def access_token(self) -> str | None:
        if self._tokens:
            return self._tokens.access_token
        return None

    def _auth_headers(self) -> dict[str, str]:
        token = self.access_token
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    def set_tokens(self, token_data: TokenData) -> None:
        """Store *token_data* in memory and persist it."""
        self._tokens = token_data
        self.identity.save_tokens(token_data)

    def clear_tokens(self) -> None:
        self._tokens = None
        self.identity.clear_tokens()

    # ------------------------------------------------------------------
    # JWT utilities
    # ------------------------------------------------------------------

    @staticmethod
    def decode_jwt(token: str) -> dict | None:
        """Decode the payload of a JWT **without** verifying the signature.

        Returns ``None`` if the token cannot be decoded.
        """
        try:
            payload = token.split(".")[1]
            # Pad to a multiple of 4 for base64 decoding.
            payload += "=" * (-len(payload) % 4)
            return json.loads(base64.urlsafe_b64decode(payload))
        except (IndexError, ValueError):
            return None

    def is_token_expired(self) -> bool:
        """Return ``True`` if the access token is missing or known to be expired.

        A 30-second safety margin is applied.  Opaque (non-JWT) tokens carry
        no expiry and are left for the server to reject.
        """
        if not self._tokens or not self._tokens.access_token:
            return True
        decoded = self.decode_jwt(self._tokens.access_token)
        if not decoded or "exp" not in decoded:
            return False
        return time.time() >= decoded["exp"] - 30

    # ------------------------------------------------------------------
    # Token refresh
    # ------------------------------------------------------------------

    async def refresh_tokens(self) -> bool:
        """Attempt to refresh the access token using the stored refresh token.

        Returns ``True`` on success and ``False`` otherwise.  When the
        provider does not rotate the refresh token the old one is kept.
        """
        if not self._tokens or not self._tokens.refresh_token:
            logger.info("No refresh token available")
            return False
        form = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "refresh_token": self._tokens.refresh_token,
        }
        if self.client_secret:
            form["client_secret"] = self.client_secret
        try:
            resp = await self._http.post(
                self.TOKEN_URL,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error(f"Token refresh failed: {exc}")
            return False
        if not data.get("refresh_token"):
            logger.debug("No new refresh token returned, retaining existing refresh token")
        self.set_tokens(
            TokenData(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token") or self._tokens.refresh_token,
                id_token=data.get("id_token"),
            )
        )
        logger.debug("Access token refreshed successfully")
        return True

    async def ensure_authenticated(self) -> bool:
        """Refresh the access token if it has expired.

        Returns ``True`` when a refresh happened.  Raises
        :class:`AuthenticationError` when there is no token at all or the
        refresh fails.
        """
        if not self.is_authenticated:
            raise AuthenticationError("Not authenticated. Please connect with Yoto first.")
        if self.is_token_expired():
            if not await self.refresh_tokens():
                raise AuthenticationError(
                    "Token expired and refresh failed. Please re-authenticate."
                )
            return True
        return False

    # ------------------------------------------------------------------
    # Authenticated HTTP verbs
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        base_url: str | None = None,
        **kwargs,
    ) -> httpx.Response:
        """Send an authenticated request to ``(base_url or SERVER_URL) + path``.

        At most one token refresh happens per request: either up front for an
        expired token, or after a 401 answer followed by one retry.  A second
        refusal is returned for the caller to translate.
        """
        refreshed = await self.ensure_authenticated()
        url = f"{base_url or self.SERVER_URL}{path}"
        extra_headers = kwargs.pop("headers", None) or {}
        logger.debug(f"{method} {url}")
        resp = await self._http.request(
            method, url, headers={**extra_headers, **self._auth_headers()}, **kwargs
        )
        if resp.status_code == 401 and not refreshed and await self.refresh_tokens():
            logger.debug(f"Retrying {method} {url} with refreshed token")
            resp = await self._http.request(
                method, url, headers={**extra_headers, **self._auth_headers()}, **kwargs
            )
        return resp

    async def get(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> httpx.Response:
        return await self.request("POST", path, **kwargs)

    # ------------------------------------------------------------------
    # Raw (un-prefixed, unauthenticated) helpers for external URLs
    # ------------------------------------------------------------------

    async def raw_get(self, url: str, **kwargs) -> httpx.Response:
        """GET an arbitrary URL (e.g. a country flag image)."""
        return await self._http.get(url, **kwargs)

    async def raw_put(self, url: str, **kwargs) -> httpx.Response:
        """PUT to an arbitrary URL (e.g. a pre-signed S3 upload URL)."""
        return await self._http.put(url, **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> YotoClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
