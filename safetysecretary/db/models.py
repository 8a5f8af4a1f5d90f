from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import String, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from safetysecretary.db.session import Base

class Organization(Base):
    """A tenant as seen by the control plane."""
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    slug: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)

    # sha256 hex digest of the organization's API key; the key itself is never stored
    api_key_digest: Mapped[Optional[str]] = mapped_column(String(64), unique=True, index=True, nullable=True)

    # Null while provisioning; requests for such a tenant get 503
    db_connection_string: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    storage_root: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="active", nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def is_active(self) -> bool:
        return self.status == "active"
