"""Pydantic models and enums shared across the pipeline."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class OperationKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityType(StrEnum):
    SHIPMENT = "shipment"
    CUSTOMER = "customer"
    PAYMENT = "payment"
    DELIVERY = "delivery"
    PICKUP = "pickup"


class OperationStatus(StrEnum):
    PENDING = "pending"
    FAILED = "failed"


class CredentialState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    RENEWAL_IN_FLIGHT = "renewal_in_flight"


METHOD_KINDS: dict[str, OperationKind] = {
    "POST": OperationKind.CREATE,
    "PUT": OperationKind.UPDATE,
    "PATCH": OperationKind.UPDATE,
    "DELETE": OperationKind.DELETE,
}


class TokenPair(BaseModel):
    """Access credential plus the optional renewal credential."""

    access_token: str
    refresh_token: str | None = None


class MutationIntent(BaseModel):
    """Caller-supplied tag describing what a mutating call does.

    ``kind`` may be left out, in which case it is derived from the
    HTTP method of the request.
    """

    entity_type: EntityType
    entity_id: str | None = None
    kind: OperationKind | None = None

    @model_validator(mode="after")
    def _existing_entity_needs_id(self) -> MutationIntent:
        if (
            self.kind is not None
            and self.kind is not OperationKind.CREATE
            and self.entity_id is None
        ):
            raise ValueError(f"{self.kind} intent requires an entity_id")
        return self


class QueuedOperation(BaseModel):
    """A mutating call persisted for replay once connectivity returns."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: OperationKind
    entity_type: EntityType
    entity_id: str | None = None
    payload: Any = None
    method: str
    url: str
    params: dict[str, Any] = Field(default_factory=dict)
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    attempts: int = 0
    status: OperationStatus = OperationStatus.PENDING
    last_error: str | None = None
    next_attempt_at: datetime | None = None

    @property
    def entity_key(self) -> tuple[EntityType, str | None]:
        return (self.entity_type, self.entity_id)


class QueuedAck(BaseModel):
    """Provisional success handed back when a call was queued."""

    operation_id: str
    kind: OperationKind
    entity_type: EntityType
    entity_id: str | None = None
    temp_id: str | None = None
    queued: bool = True
    message: str = "Operation queued for processing when online"

    @classmethod
    def from_operation(cls, operation: QueuedOperation) -> QueuedAck:
        temp_id = None
        if operation.kind is OperationKind.CREATE:
            temp_id = f"temp_{uuid.uuid4().hex[:12]}"
        return cls(
            operation_id=operation.id,
            kind=operation.kind,
            entity_type=operation.entity_type,
            entity_id=operation.entity_id,
            temp_id=temp_id,
        )


class ReconciliationEvent(BaseModel):
    """Fired when a queued operation is confirmed, failed or conflicted."""

    type: Literal["confirmed", "failed", "conflict"]
    operation: QueuedOperation
    status_code: int | None = None
    detail: str = ""


class DrainReport(BaseModel):
    confirmed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    deferred: list[str] = Field(default_factory=list)


class PurgeRequest(BaseModel):
    operation_ids: list[str] | None = None
    resubmit: bool = False


class PurgeResponse(BaseModel):
    purged: int
    resubmitted: bool


class ConnectivityPayload(BaseModel):
    online: bool
