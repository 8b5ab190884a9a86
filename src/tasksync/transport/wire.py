"""Wire models for the batch sync exchange.

Every queued mutation travels as a tagged union keyed by ``operation``; each
variant carries a fixed payload shape. Payloads are validated here, before
anything reaches the network or the remote application logic.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ..utils.timestamps import ensure_utc


class PayloadValidationError(Exception):
    """Raised when a mutation payload does not match its operation."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class DispositionStatus(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


class _WireModel(BaseModel):

    @field_validator('created_at', 'updated_at', check_fields=False)
    @classmethod
    def normalize_timestamp(cls, v):
        if isinstance(v, datetime):
            return ensure_utc(v)
        return v


# Payloads

class TaskFieldsPayload(_WireModel):
    """Full field set of a task, enough for the remote to create it."""

    model_config = ConfigDict(extra='forbid')

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    completed: bool = False
    created_at: datetime
    updated_at: datetime


class CreatePayload(TaskFieldsPayload):
    pass


class UpdatePayload(TaskFieldsPayload):
    pass


class DeletePayload(_WireModel):
    model_config = ConfigDict(extra='forbid')

    updated_at: datetime


# Request items

class _BatchItemBase(_WireModel):
    id: str = Field(..., min_length=1)
    task_id: str = Field(..., min_length=1)
    created_at: datetime


class CreateItem(_BatchItemBase):
    operation: Literal["create"] = "create"
    data: CreatePayload


class UpdateItem(_BatchItemBase):
    operation: Literal["update"] = "update"
    data: UpdatePayload


class DeleteItem(_BatchItemBase):
    operation: Literal["delete"] = "delete"
    data: DeletePayload


BatchItem = Annotated[Union[CreateItem, UpdateItem, DeleteItem], Field(discriminator="operation")]

_batch_item_adapter = TypeAdapter(BatchItem)

_PAYLOAD_MODELS = {
    "create": CreatePayload,
    "update": UpdatePayload,
    "delete": DeletePayload,
}


class BatchSyncRequest(BaseModel):
    items: List[BatchItem]
    client_timestamp: datetime


class RawBatchSyncRequest(BaseModel):
    """Request envelope as received by the server; items are validated one by one."""

    items: List[Dict[str, Any]]
    client_timestamp: Optional[datetime] = None


# Response

class TaskSnapshot(BaseModel):
    """A task as the remote reports it.

    ``updated_at`` is kept as the raw string when it does not parse, so the
    conflict resolver can tell an unusable timestamp from a missing one.
    """

    model_config = ConfigDict(extra='ignore')

    id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    completed: Optional[bool] = None
    is_deleted: Optional[bool] = None
    created_at: Optional[Union[datetime, str]] = None
    updated_at: Optional[Union[datetime, str]] = None


class Disposition(BaseModel):
    client_id: str
    server_id: Optional[str] = None
    status: DispositionStatus
    resolved_data: Optional[TaskSnapshot] = None
    error: Optional[str] = None


class BatchSyncResponse(BaseModel):
    processed_items: List[Disposition] = Field(default_factory=list)


def _operation_value(operation: Any) -> str:
    return operation.value if isinstance(operation, Enum) else str(operation)


def validate_payload(operation: Any, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a payload for an operation and return its JSON-ready form."""
    op = _operation_value(operation)
    model = _PAYLOAD_MODELS.get(op)
    if model is None:
        raise PayloadValidationError(f"unknown operation: {op}")

    try:
        return model.model_validate(payload).model_dump(mode='json')
    except ValidationError as e:
        raise PayloadValidationError(
            f"invalid {op} payload: {e.error_count()} error(s)",
            errors=e.errors(include_url=False)
        ) from e


def parse_batch_item(raw: Dict[str, Any]) -> BatchItem:
    """Validate one request item against the operation-tagged union."""
    try:
        return _batch_item_adapter.validate_python(raw)
    except ValidationError as e:
        raise PayloadValidationError(
            f"invalid batch item: {e.error_count()} error(s)",
            errors=e.errors(include_url=False)
        ) from e


def build_batch_item(item: Any) -> BatchItem:
    """Build a wire item from a queued mutation."""
    return parse_batch_item({
        "id": item.id,
        "task_id": item.task_id,
        "operation": _operation_value(item.operation),
        "data": item.data,
        "created_at": item.created_at,
    })


def task_snapshot(task: Any) -> Dict[str, Any]:
    """JSON form of a task, used as ``resolved_data``."""
    return TaskSnapshot(
        id=task.id,
        title=task.title,
        description=task.description,
        completed=task.completed,
        is_deleted=task.is_deleted,
        created_at=ensure_utc(task.created_at),
        updated_at=ensure_utc(task.updated_at),
    ).model_dump(mode='json')
