from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from safetysecretary.domain.inputs import JobInput
from safetysecretary.services.extraction import ExtractionClient
from safetysecretary.tenancy.factory import TenantServiceFactory, TenantServices


@dataclass
class HandlerContext:
    """What a job handler may touch: tenant services and the extraction collaborator."""
    services: TenantServiceFactory
    extraction: ExtractionClient

    def tenant(self, payload: JobInput) -> TenantServices:
        return self.services.get_services(payload.tenant_connection_ref)


Handler = Callable[[HandlerContext, Any], Awaitable[dict[str, Any]]]
