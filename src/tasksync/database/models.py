"""Database models for tasks and the mutation queue."""

from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum

from sqlalchemy import Column, Integer, String, DateTime, JSON, Boolean, Text
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils.timestamps import ensure_utc, utcnow


Base = declarative_base()


class SyncState(str, Enum):
    """Sync state of a local task."""
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class Operation(str, Enum):
    """Mutation kinds carried by the queue."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# SQLAlchemy Models (Database Tables)

class TaskModel(Base):
    """Database model for tasks."""

    __tablename__ = "tasks"

    id = Column(String(64), primary_key=True, index=True)  # Client-assigned UUID
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)

    # Timestamps (naive UTC)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    # Sync tracking
    sync_status = Column(String(20), default=SyncState.PENDING.value, nullable=False, index=True)
    server_id = Column(String(64), nullable=True)
    last_synced_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<TaskModel(id='{self.id}', title='{self.title}', sync_status='{self.sync_status}')>"


class SyncQueueModel(Base):
    """Database model for pending mutations."""

    __tablename__ = "sync_queue"

    # Insertion sequence breaks enqueue-time ties
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False, index=True)  # Correlation id
    task_id = Column(String(64), nullable=False, index=True)
    operation = Column(String(20), nullable=False)
    data = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)
    error_message = Column(Text, nullable=True)

    def __repr__(self):
        return f"<SyncQueueModel(id='{self.id}', task_id='{self.task_id}', operation='{self.operation}')>"


# Pydantic Models (Domain/Transfer Objects)

class Task(BaseModel):
    """A synchronized task record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    completed: bool = False
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime
    sync_status: SyncState = SyncState.PENDING
    server_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    @field_validator('created_at', 'updated_at', 'last_synced_at')
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v) if v is not None else None

    @model_validator(mode='after')
    def check_invariants(self):
        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not be earlier than created_at")
        if self.sync_status == SyncState.SYNCED and self.last_synced_at is None:
            raise ValueError("a synced task must have last_synced_at")
        return self


class QueueItem(BaseModel):
    """Snapshot of one queued mutation; the payload never changes after enqueue."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    task_id: str
    operation: Operation
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    retry_count: int = 0
    error_message: Optional[str] = None

    @field_validator('created_at')
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)


class TaskCreate(BaseModel):
    """Pydantic model for creating a task."""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    id: Optional[str] = None


class TaskUpdate(BaseModel):
    """Pydantic model for updating a task."""
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    completed: Optional[bool] = None


def new_task(data: TaskCreate, task_id: str, now: Optional[datetime] = None) -> Task:
    """Build a fresh pending task from create input."""
    now = now or utcnow()
    return Task(
        id=task_id,
        title=data.title,
        description=data.description,
        created_at=now,
        updated_at=now,
        sync_status=SyncState.PENDING,
    )
