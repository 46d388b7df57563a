"""OAuth consent bootstrap and authentication status endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from ..exceptions import AuthError
from .credential_broker import CredentialBroker
from .credential_store import CredentialStore

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["auth"])


class StatusResponse(BaseModel):
    authenticated: bool


def get_credential_broker(request: Request) -> CredentialBroker:
    try:
        return request.app.state.credential_broker  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("CredentialBroker is not configured") from exc


def get_credential_store(request: Request) -> CredentialStore:
    try:
        return request.app.state.credential_store  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - defensive path
        raise RuntimeError("CredentialStore is not configured") from exc


@router.get("/api/status", response_model=StatusResponse)
def auth_status(store: CredentialStore = Depends(get_credential_store)) -> StatusResponse:
    return StatusResponse(authenticated=store.authenticated)


@router.get("/auth")
def start_consent(broker: CredentialBroker = Depends(get_credential_broker)) -> RedirectResponse:
    return RedirectResponse(broker.build_consent_url(), status_code=302)


@router.get("/oauth/callback")
async def oauth_callback(
    code: str = "",
    broker: CredentialBroker = Depends(get_credential_broker),
) -> RedirectResponse:
    try:
        await broker.exchange_code(code)
    except AuthError as exc:
        logger.error("oauth.callback.failed", error=str(exc))
        return RedirectResponse("/?auth=error", status_code=302)
    return RedirectResponse("/?auth=success", status_code=302)
