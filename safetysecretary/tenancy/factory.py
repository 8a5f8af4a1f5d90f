from dataclasses import dataclass

from safetysecretary.domain.errors import TenantUnavailableError
from safetysecretary.services.incident_service import IncidentService
from safetysecretary.services.jha_service import JhaService
from safetysecretary.services.ra_service import RiskAssessmentService
from safetysecretary.tenancy.registry import TenantConnectionRegistry


@dataclass
class TenantServices:
    ra_service: RiskAssessmentService
    jha_service: JhaService
    incident_service: IncidentService


class TenantServiceFactory:
    """Builds a fresh service bundle around the cached handle of a tenant."""

    def __init__(self, registry: TenantConnectionRegistry):
        self.registry = registry

    def get_services(self, connection_string: str) -> TenantServices:
        if not connection_string:
            raise TenantUnavailableError()

        handle = self.registry.get_handle(connection_string)
        return TenantServices(
            ra_service=RiskAssessmentService(handle),
            jha_service=JhaService(handle),
            incident_service=IncidentService(handle),
        )
