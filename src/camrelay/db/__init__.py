"""Persistence layer for the durable OAuth credential."""

from .db_init import init_db
from .db_models import Base, CredentialModel

__all__ = ["Base", "CredentialModel", "init_db"]
