from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from safetysecretary.db.session import JsonType, TenantBase


def _uuid() -> str:
    return str(uuid4())


# --- Risk assessment (HIRA) ---

class RiskAssessmentCase(TenantBase):
    __tablename__ = "ra_cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    activity_name: Mapped[str] = mapped_column(String, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    team: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    phase: Mapped[str] = mapped_column(String, default="PROCESS_STEPS")
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    steps: Mapped[list["ProcessStep"]] = relationship(
        back_populates="case", lazy="selectin", order_by="ProcessStep.order_index", cascade="all, delete-orphan"
    )
    hazards: Mapped[list["Hazard"]] = relationship(
        back_populates="case", lazy="selectin", order_by="Hazard.order_index", cascade="all, delete-orphan"
    )
    actions: Mapped[list["CorrectiveAction"]] = relationship(
        back_populates="case", lazy="selectin", order_by="CorrectiveAction.order_index", cascade="all, delete-orphan"
    )


class ProcessStep(TenantBase):
    __tablename__ = "ra_steps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_id: Mapped[str] = mapped_column(ForeignKey("ra_cases.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    activity: Mapped[str] = mapped_column(String, nullable=False)
    equipment: Mapped[list[str]] = mapped_column(JsonType, default=list)
    substances: Mapped[list[str]] = mapped_column(JsonType, default=list)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    case: Mapped["RiskAssessmentCase"] = relationship(back_populates="steps")


class Hazard(TenantBase):
    __tablename__ = "ra_hazards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_id: Mapped[str] = mapped_column(ForeignKey("ra_cases.id", ondelete="CASCADE"), index=True)
    step_id: Mapped[str] = mapped_column(ForeignKey("ra_steps.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    label: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    existing_controls: Mapped[list[str]] = mapped_column(JsonType, default=list)

    baseline_severity: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    baseline_likelihood: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    residual_severity: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)
    residual_likelihood: Mapped[Optional[str]] = mapped_column(String(1), nullable=True)

    case: Mapped["RiskAssessmentCase"] = relationship(back_populates="hazards")
    controls: Mapped[list["ProposedControl"]] = relationship(
        back_populates="hazard", lazy="selectin", order_by="ProposedControl.order_index", cascade="all, delete-orphan"
    )


class ProposedControl(TenantBase):
    __tablename__ = "ra_proposed_controls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    hazard_id: Mapped[str] = mapped_column(ForeignKey("ra_hazards.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # SUBSTITUTION | TECHNICAL | ORGANIZATIONAL | PPE
    hierarchy: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    hazard: Mapped["Hazard"] = relationship(back_populates="controls")


class CorrectiveAction(TenantBase):
    __tablename__ = "ra_actions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_id: Mapped[str] = mapped_column(ForeignKey("ra_cases.id", ondelete="CASCADE"), index=True)
    hazard_id: Mapped[Optional[str]] = mapped_column(ForeignKey("ra_hazards.id", ondelete="CASCADE"), nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    owner: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, default="OPEN")

    case: Mapped["RiskAssessmentCase"] = relationship(back_populates="actions")


# --- Job hazard analysis ---

class JhaCase(TenantBase):
    __tablename__ = "jha_cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String, nullable=False)
    site: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    supervisor: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    steps: Mapped[list["JhaStep"]] = relationship(
        back_populates="case", lazy="selectin", order_by="JhaStep.order_index", cascade="all, delete-orphan"
    )
    hazards: Mapped[list["JhaHazard"]] = relationship(
        back_populates="case", lazy="selectin", order_by="JhaHazard.order_index", cascade="all, delete-orphan"
    )


class JhaStep(TenantBase):
    __tablename__ = "jha_steps"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_id: Mapped[str] = mapped_column(ForeignKey("jha_cases.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    label: Mapped[str] = mapped_column(String, nullable=False)

    case: Mapped["JhaCase"] = relationship(back_populates="steps")


class JhaHazard(TenantBase):
    __tablename__ = "jha_hazards"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_id: Mapped[str] = mapped_column(ForeignKey("jha_cases.id", ondelete="CASCADE"), index=True)
    step_id: Mapped[str] = mapped_column(ForeignKey("jha_steps.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    hazard: Mapped[str] = mapped_column(Text, nullable=False, default="")
    consequence: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    controls: Mapped[list[str]] = mapped_column(JsonType, default=list)

    case: Mapped["JhaCase"] = relationship(back_populates="hazards")


# --- Incident investigation ---

class IncidentCase(TenantBase):
    __tablename__ = "incident_cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String, nullable=False)
    # NEAR_MISS | FIRST_AID | LOST_TIME | PROPERTY_DAMAGE
    incident_type: Mapped[str] = mapped_column(String, default="NEAR_MISS")
    location: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    coordinator_role: Mapped[str] = mapped_column(String, default="Coordinator")
    coordinator_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    assistant_narrative: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    assistant_draft: Mapped[Optional[dict[str, Any]]] = mapped_column(JsonType, nullable=True)
    assistant_draft_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    persons: Mapped[list["IncidentPerson"]] = relationship(
        back_populates="case", lazy="selectin", cascade="all, delete-orphan"
    )
    accounts: Mapped[list["IncidentAccount"]] = relationship(
        back_populates="case", lazy="selectin", cascade="all, delete-orphan"
    )
    timeline_events: Mapped[list["IncidentTimelineEvent"]] = relationship(
        back_populates="case", lazy="selectin", order_by="IncidentTimelineEvent.order_index", cascade="all, delete-orphan"
    )
    cause_nodes: Mapped[list["IncidentCauseNode"]] = relationship(
        back_populates="case", lazy="selectin", order_by="IncidentCauseNode.order_index", cascade="all, delete-orphan"
    )


class IncidentPerson(TenantBase):
    __tablename__ = "incident_persons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_id: Mapped[str] = mapped_column(ForeignKey("incident_cases.id", ondelete="CASCADE"), index=True)
    role: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    case: Mapped["IncidentCase"] = relationship(back_populates="persons")


class IncidentAccount(TenantBase):
    """One witness statement, and what was extracted from it."""
    __tablename__ = "incident_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_id: Mapped[str] = mapped_column(ForeignKey("incident_cases.id", ondelete="CASCADE"), index=True)
    person_id: Mapped[str] = mapped_column(ForeignKey("incident_persons.id", ondelete="CASCADE"))
    raw_statement: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    case: Mapped["IncidentCase"] = relationship(back_populates="accounts")
    person: Mapped["IncidentPerson"] = relationship(lazy="selectin")
    facts: Mapped[list["IncidentFact"]] = relationship(
        back_populates="account", lazy="selectin", order_by="IncidentFact.order_index", cascade="all, delete-orphan"
    )
    personal_events: Mapped[list["IncidentPersonalEvent"]] = relationship(
        back_populates="account", lazy="selectin", order_by="IncidentPersonalEvent.order_index", cascade="all, delete-orphan"
    )


class IncidentFact(TenantBase):
    __tablename__ = "incident_facts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    account_id: Mapped[str] = mapped_column(ForeignKey("incident_accounts.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    text: Mapped[str] = mapped_column(Text, nullable=False)

    account: Mapped["IncidentAccount"] = relationship(back_populates="facts")


class IncidentPersonalEvent(TenantBase):
    __tablename__ = "incident_personal_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    account_id: Mapped[str] = mapped_column(ForeignKey("incident_accounts.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    time_label: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)

    account: Mapped["IncidentAccount"] = relationship(back_populates="personal_events")


class IncidentTimelineEvent(TenantBase):
    __tablename__ = "incident_timeline_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_id: Mapped[str] = mapped_column(ForeignKey("incident_cases.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    time_label: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    # CONFIRMED | LIKELY | UNCLEAR
    confidence: Mapped[str] = mapped_column(String, default="LIKELY")

    case: Mapped["IncidentCase"] = relationship(back_populates="timeline_events")
    sources: Mapped[list["IncidentTimelineSource"]] = relationship(
        back_populates="timeline_event", lazy="selectin", cascade="all, delete-orphan"
    )


class IncidentTimelineSource(TenantBase):
    __tablename__ = "incident_timeline_sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    timeline_event_id: Mapped[str] = mapped_column(
        ForeignKey("incident_timeline_events.id", ondelete="CASCADE"), index=True
    )
    account_id: Mapped[str] = mapped_column(ForeignKey("incident_accounts.id", ondelete="CASCADE"))
    fact_id: Mapped[Optional[str]] = mapped_column(ForeignKey("incident_facts.id", ondelete="SET NULL"), nullable=True)
    personal_event_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("incident_personal_events.id", ondelete="SET NULL"), nullable=True
    )

    timeline_event: Mapped["IncidentTimelineEvent"] = relationship(back_populates="sources")


class IncidentCauseNode(TenantBase):
    """Node of the "why" tree; children answer the parent's question."""
    __tablename__ = "incident_cause_nodes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    case_id: Mapped[str] = mapped_column(ForeignKey("incident_cases.id", ondelete="CASCADE"), index=True)
    parent_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("incident_cause_nodes.id", ondelete="CASCADE"), nullable=True
    )
    timeline_event_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("incident_timeline_events.id", ondelete="SET NULL"), nullable=True
    )
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    statement: Mapped[str] = mapped_column(Text, nullable=False)
    question: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_root_cause: Mapped[bool] = mapped_column(Boolean, default=False)

    case: Mapped["IncidentCase"] = relationship(back_populates="cause_nodes")
    actions: Mapped[list["IncidentCauseAction"]] = relationship(
        back_populates="cause_node", lazy="selectin", order_by="IncidentCauseAction.order_index", cascade="all, delete-orphan"
    )


class IncidentCauseAction(TenantBase):
    __tablename__ = "incident_cause_actions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    cause_node_id: Mapped[str] = mapped_column(ForeignKey("incident_cause_nodes.id", ondelete="CASCADE"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    owner_role: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # ENGINEERING | ORGANIZATIONAL | PPE | TRAINING
    action_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    cause_node: Mapped["IncidentCauseNode"] = relationship(back_populates="actions")
