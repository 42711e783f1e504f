"""
Tenant resolution and data scoping.

Free-plan tenants live in the shared platform database and every row they own
carries ``tenant_id``. Paid tenants get an isolated database where isolation is
physical, so their rows leave ``tenant_id`` NULL and queries skip the filter.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Query, Session, sessionmaker

from .database import build_engine
from .models import Tenant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantScope:
    tenant_id: int
    is_shared: bool

    @classmethod
    def for_tenant(cls, tenant: Tenant) -> "TenantScope":
        return cls(tenant_id=tenant.id, is_shared=tenant.is_shared_database)

    @property
    def row_tenant_id(self) -> Optional[int]:
        """Value to stamp on new rows."""
        return self.tenant_id if self.is_shared else None

    def apply(self, query: Query, model) -> Query:
        if self.is_shared:
            return query.filter(model.tenant_id == self.tenant_id)
        return query


def get_tenant(db: Session, tenant_id) -> Optional[Tenant]:
    return db.query(Tenant).filter(Tenant.id == tenant_id).first()


def get_tenant_or_404(db: Session, tenant_id) -> Tenant:
    try:
        tenant_id = int(tenant_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Valid tenant_id is required")
    if tenant_id <= 0:
        raise HTTPException(status_code=400, detail="Valid tenant_id is required")

    tenant = get_tenant(db, tenant_id)
    if not tenant:
        raise HTTPException(status_code=404, detail="Tenant not found")
    return tenant


@lru_cache(maxsize=64)
def _session_factory_for(database_url: str) -> sessionmaker:
    logger.info("🔌 Creating session factory for isolated tenant database")
    return sessionmaker(autocommit=False, autoflush=False, bind=build_engine(database_url))


class TenantSessions:
    """Hands out the session holding a tenant's business data."""

    @contextmanager
    def open(self, tenant: Tenant, platform_db: Session) -> Iterator[Session]:
        if tenant.is_shared_database or not tenant.database_url:
            yield platform_db
            return

        db = _session_factory_for(tenant.database_url)()
        try:
            yield db
        finally:
            db.close()


def get_tenant_sessions() -> TenantSessions:
    return TenantSessions()
