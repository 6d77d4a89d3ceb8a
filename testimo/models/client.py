"""Client entity model."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class WorkStatus(str, Enum):
    """Where the engagement with a client stands."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Client(SQLModel, table=True):
    """Client database model: someone who may leave a testimonial."""

    __tablename__ = "clients"
    __table_args__ = (
        UniqueConstraint("project_id", "email", name="unique_project_client_email"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    project_id: UUID = Field(foreign_key="projects.id", index=True)
    name: str = Field(max_length=200)
    email: str = Field(max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    company: str | None = Field(default=None, max_length=200)
    work_status: WorkStatus = Field(default=WorkStatus.NOT_STARTED)
    is_contacted: bool = Field(default=False)
    last_contacted_at: datetime | None = Field(default=None)
    reminder_opt_out: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ClientStatusUpdate(BaseModel):
    """Schema for a work status change."""

    work_status: WorkStatus
