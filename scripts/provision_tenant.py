#!/usr/bin/env python3
"""
Registers an organization and creates its tenant schema.

    python scripts/provision_tenant.py acme "Acme Ltd" \
        postgresql+asyncpg://user:pass@db/acme --api-key secret-e2e
"""
import argparse
import asyncio
import logging
import secrets

from sqlalchemy import select

from safetysecretary.auth.security import hash_api_key
from safetysecretary.db.models import Organization
from safetysecretary.db.session import AsyncSessionLocal, Base, engine
from safetysecretary.tenancy.registry import TenantHandle, redact

logger = logging.getLogger("provision_tenant")


async def provision(slug: str, name: str, connection_string: str, api_key: str):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    handle = TenantHandle(connection_string)
    try:
        await handle.create_schema()
    finally:
        await handle.dispose()
    logger.info(f"Tenant schema ready at {redact(connection_string)}")

    async with AsyncSessionLocal() as session:
        org = await session.scalar(select(Organization).where(Organization.slug == slug))
        if org is None:
            org = Organization(slug=slug, name=name)
            session.add(org)
        org.name = name
        org.db_connection_string = connection_string
        org.api_key_digest = hash_api_key(api_key)
        org.status = "active"
        await session.commit()
        logger.info(f"Organization {slug} registered with id {org.id}")

    await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("slug")
    parser.add_argument("name")
    parser.add_argument("connection_string", help="SQLAlchemy async URL of the tenant database")
    parser.add_argument("--api-key", help="defaults to a freshly generated key")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    api_key = args.api_key or secrets.token_urlsafe(24)
    asyncio.run(provision(args.slug, args.name, args.connection_string, api_key))
    if not args.api_key:
        print(f"API KEY: {api_key}")


if __name__ == "__main__":
    main()
