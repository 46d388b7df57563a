"""Credential set ownership and durable refresh token persistence."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from dataclasses import replace as _replace_fields
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from ..db.db_models import CredentialModel

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True, slots=True)
class CredentialSet:
    """Snapshot of the OAuth credentials held by the service."""

    access_token: str | None = None
    refresh_token: str | None = None
    expiry: datetime = _EPOCH

    def is_fresh(self, now: datetime, margin: timedelta) -> bool:
        """Return True while the access token may still be used."""
        return self.access_token is not None and now < self.expiry - margin


class CredentialRepository:
    """Persist the long-lived refresh token so it survives restarts."""

    def __init__(
        self, session_factory: Callable[[], Session], *, provider: str = "sdm"
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider

    def load_refresh_token(self) -> str | None:
        with self._session_factory() as session:
            model = session.get(CredentialModel, self._provider)
            return model.refresh_token if model is not None else None

    def save_refresh_token(self, refresh_token: str) -> None:
        with self._session_factory() as session:
            model = session.get(CredentialModel, self._provider)
            if model is None:
                model = CredentialModel(provider=self._provider)
            model.refresh_token = refresh_token
            model.updated_at = datetime.utcnow()
            session.add(model)
            session.commit()


@dataclass(slots=True)
class CredentialStore:
    """Owns the current :class:`CredentialSet`.

    Replacement is a single attribute swap so readers always observe a
    consistent ``access_token``/``expiry`` pair. When a repository is
    attached, every new refresh token is written through to it.
    """

    repository: CredentialRepository | None = None
    _current: CredentialSet = field(default_factory=CredentialSet)

    @classmethod
    def bootstrap(
        cls,
        *,
        refresh_token: str | None,
        repository: CredentialRepository | None = None,
    ) -> "CredentialStore":
        """Build the store from configuration, falling back to the persisted token."""
        store = cls(repository=repository)
        token = refresh_token
        source = "environment"
        if not token and repository is not None:
            token = repository.load_refresh_token()
            source = "database"
        if token:
            store._current = CredentialSet(refresh_token=token)
            logger.info("credentials.bootstrap", extra={"source": source})
        else:
            logger.info("credentials.bootstrap.missing")
        return store

    def current(self) -> CredentialSet:
        return self._current

    @property
    def authenticated(self) -> bool:
        return self._current.refresh_token is not None

    async def replace(self, credentials: CredentialSet) -> CredentialSet:
        """Swap in a new credential set, persisting a changed refresh token."""
        previous = self._current
        self._current = credentials
        if (
            self.repository is not None
            and credentials.refresh_token
            and credentials.refresh_token != previous.refresh_token
        ):
            await asyncio.to_thread(self.repository.save_refresh_token, credentials.refresh_token)
            logger.info("credentials.refresh_token.persisted")
        return credentials

    async def update_access_token(
        self,
        access_token: str,
        expiry: datetime,
        *,
        refresh_token: str | None = None,
    ) -> CredentialSet:
        rotated = refresh_token or self._current.refresh_token
        return await self.replace(
            _replace_fields(
                self._current,
                access_token=access_token,
                expiry=expiry,
                refresh_token=rotated,
            )
        )
