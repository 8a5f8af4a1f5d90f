import hashlib
import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Security
from fastapi.security import APIKeyHeader
from sqlalchemy import select

from safetysecretary.api.deps import DbSession, ServiceFactoryDep
from safetysecretary.db.models import Organization
from safetysecretary.domain.errors import TenantUnavailableError
from safetysecretary.tenancy.factory import TenantServices

logger = logging.getLogger(__name__)

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass(frozen=True)
class TenantContext:
    org_id: str
    connection_string: str


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


async def get_tenant_context(
    session: DbSession,
    api_key: str = Security(API_KEY_HEADER)
) -> TenantContext:
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing API Key")

    stmt = select(Organization).where(Organization.api_key_digest == hash_api_key(api_key))
    org = await session.scalar(stmt)

    if not org:
        raise HTTPException(status_code=403, detail="Invalid API Key")

    if not org.is_active or not org.db_connection_string:
        logger.warning("Organization %s is %s without a usable database", org.id, org.status)
        raise TenantUnavailableError(org.id)

    return TenantContext(org_id=org.id, connection_string=org.db_connection_string)


TenantCtx = Annotated[TenantContext, Depends(get_tenant_context)]


def get_tenant_services(tenant: TenantCtx, factory: ServiceFactoryDep) -> TenantServices:
    return factory.get_services(tenant.connection_string)


TenantServicesDep = Annotated[TenantServices, Depends(get_tenant_services)]
