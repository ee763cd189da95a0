"""Operation parameters, status records and data update events."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .entities import ValveState


class OperationType(str, Enum):
    SET_VALVE_STATE = "setValveState"
    TRANSFER_PRODUCT = "transferProduct"


class OperationState(str, Enum):
    """Operation lifecycle states. Everything but RUNNING is terminal."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not OperationState.RUNNING


class OperationParams(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        allow_inf_nan=False,
    )

    operation_id: Optional[str] = None


class SetValveStateParams(OperationParams):
    valve_id: str = Field(..., min_length=1)
    new_state: ValveState


class TransferProductParams(OperationParams):
    """Parameters for a tank-to-tank transfer.

    Exactly which termination criterion applies is the caller's choice:
    ``duration`` (seconds) or ``target_volume`` (volume units). When both are
    given the transfer completes as soon as either is met.
    """

    source_tank_id: str = Field(..., min_length=1)
    destination_tank_id: str = Field(..., min_length=1)
    pipe_id: str = Field(..., min_length=1)
    valve_ids: List[str] = Field(default_factory=list)
    transfer_rate: float
    duration: Optional[float] = Field(default=None, gt=0)
    target_volume: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def require_termination(self) -> "TransferProductParams":
        if self.duration is None and self.target_volume is None:
            raise ValueError("Either duration or target_volume must be specified")
        return self


@dataclass
class OperationStatus:
    """Status record of one operation, as broadcast to subscribers."""
    operation_id: str
    type: OperationType
    status: OperationState
    start_time: datetime
    related_equipment: List[str] = field(default_factory=list)
    progress: Optional[float] = None
    message: Optional[str] = None
    end_time: Optional[datetime] = None


@dataclass(frozen=True)
class DataUpdateEvent:
    """A single property write performed by an operation."""
    equipment_id: str
    property: str
    new_value: Any
    timestamp: datetime
