from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from safetysecretary.domain.errors import InvalidJobStateError
from safetysecretary.domain.states import ALLOWED_TRANSITIONS, JobStatus, JobType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Wire models speak camelCase JSON; Python code uses snake_case names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobView(CamelModel):
    id: str
    type: JobType
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class Job:
    id: str
    type: JobType
    # Typed input model, or the raw mapping when the caller passed one
    input: Union[BaseModel, dict[str, Any]]
    status: JobStatus = JobStatus.QUEUED
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def tenant_connection_ref(self) -> Optional[str]:
        if isinstance(self.input, dict):
            return self.input.get("tenant_connection_ref") or self.input.get("tenantConnectionRef")
        return getattr(self.input, "tenant_connection_ref", None)

    def transition(self, target: JobStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobStateError(self.status, target)
        self.status = target
        self.updated_at = utcnow()

    def complete(self, result: dict[str, Any]) -> None:
        self.transition(JobStatus.COMPLETED)
        self.result = result

    def fail(self, error: str) -> None:
        self.transition(JobStatus.FAILED)
        self.error = error

    def view(self) -> JobView:
        """Public projection; result and error only appear once the job is terminal."""
        terminal = self.status.is_terminal
        return JobView(
            id=self.id,
            type=self.type,
            status=self.status,
            created_at=self.created_at,
            updated_at=self.updated_at,
            result=self.result if terminal and self.status == JobStatus.COMPLETED else None,
            error=self.error if terminal and self.status == JobStatus.FAILED else None,
        )
