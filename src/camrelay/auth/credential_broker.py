"""Exchange the durable refresh token for short-lived bearer tokens."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from ..config import SDM_SCOPE, OAuthClientSettings
from ..exceptions import AuthError, NotAuthenticatedError
from .credential_store import CredentialSet, CredentialStore, utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CredentialBroker:
    """Hand out valid access tokens, refreshing them shortly before expiry.

    Refreshes are single-flight: while one exchange with the token endpoint
    is running, every other caller awaits that same exchange and receives
    its result (or its error) instead of starting another request.
    """

    store: CredentialStore
    settings: OAuthClientSettings
    timeout_seconds: float = 15.0
    clock: Callable[[], datetime] = utcnow
    log: logging.Logger = field(default_factory=lambda: logger)
    _inflight: asyncio.Task[str] | None = field(default=None, init=False)

    @property
    def margin(self) -> timedelta:
        return timedelta(seconds=self.settings.refresh_margin_seconds)

    async def get_valid_access_token(self) -> str:
        credentials = self.store.current()
        if not credentials.refresh_token:
            raise NotAuthenticatedError("Not authenticated: no refresh token configured")
        if credentials.is_fresh(self.clock(), self.margin):
            assert credentials.access_token is not None
            return credentials.access_token
        return await self.refresh()

    async def refresh(self) -> str:
        """Exchange the refresh token, joining an in-flight exchange if any."""
        task = self._inflight
        if task is None:
            task = asyncio.ensure_future(self._refresh_once())
            task.add_done_callback(self._clear_inflight)
            self._inflight = task
        else:
            self.log.debug("credentials.refresh.joined")
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task[str]) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Marks the exception as retrieved when every waiter was cancelled.
            task.exception()

    async def _refresh_once(self) -> str:
        credentials = self.store.current()
        if not credentials.refresh_token:
            raise NotAuthenticatedError("Not authenticated: no refresh token configured")

        form = {
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "refresh_token": credentials.refresh_token,
            "grant_type": "refresh_token",
        }
        body = await self._post_token_endpoint(form, operation="refresh")
        updated = await self._adopt(body, fallback_refresh_token=credentials.refresh_token)
        self.log.info(
            "credentials.refreshed",
            extra={
                "expires_at": updated.expiry.isoformat(),
                "rotated": updated.refresh_token != credentials.refresh_token,
            },
        )
        assert updated.access_token is not None
        return updated.access_token

    def build_consent_url(self) -> str:
        """Return the partner connections consent URL for the one-time bootstrap."""
        query = urlencode(
            {
                "redirect_uri": self.settings.redirect_uri,
                "access_type": "offline",
                "prompt": "consent",
                "client_id": self.settings.client_id,
                "response_type": "code",
                "scope": SDM_SCOPE,
            }
        )
        base = self.settings.consent_endpoint.format(project_id=self.settings.project_id)
        return f"{base}?{query}"

    async def exchange_code(self, code: str) -> CredentialSet:
        """Trade an authorization code for the initial credential set."""
        if not code:
            raise AuthError("Authorization code is missing")
        form = {
            "code": code,
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            "redirect_uri": self.settings.redirect_uri,
            "grant_type": "authorization_code",
        }
        body = await self._post_token_endpoint(form, operation="exchange")
        refresh_token = body.get("refresh_token") or self.store.current().refresh_token
        if not refresh_token:
            raise AuthError("Token endpoint did not return a refresh token")
        updated = await self._adopt(body, fallback_refresh_token=refresh_token)
        self.log.info("credentials.exchanged", extra={"expires_at": updated.expiry.isoformat()})
        return updated

    async def _post_token_endpoint(self, form: dict[str, str], *, operation: str) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            try:
                response = await client.post(
                    self.settings.token_endpoint,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    data=form,
                )
            except httpx.HTTPError as exc:
                raise AuthError(f"Token {operation} request failed: {exc}") from exc
        if response.status_code != 200:
            self.log.warning(
                "credentials.token_endpoint.rejected",
                extra={"operation": operation, "status_code": response.status_code},
            )
            raise AuthError(f"Token {operation} failed with status {response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise AuthError(f"Token {operation} returned a non-JSON body") from exc
        if not isinstance(body, dict) or not body.get("access_token"):
            raise AuthError(f"Token {operation} response is missing access_token")
        return body

    async def _adopt(
        self, body: dict[str, Any], *, fallback_refresh_token: str | None
    ) -> CredentialSet:
        try:
            expires_in = int(body.get("expires_in") or 0)
        except (TypeError, ValueError) as exc:
            raise AuthError(
                f"Token response has a non-numeric expires_in: {body.get('expires_in')!r}"
            ) from exc
        expiry = self.clock() + timedelta(seconds=expires_in)
        return await self.store.update_access_token(
            str(body["access_token"]),
            expiry,
            refresh_token=body.get("refresh_token") or fallback_refresh_token,
        )
