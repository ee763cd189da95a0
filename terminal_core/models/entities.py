"""Equipment and annotation records for the terminal data layer.

Raw terminal data arrives as camelCase JSON-like records (``parentId``,
``flowRate``, ``valveType``...). The models below accept both the raw
camelCase keys and snake_case Python names, and keep any extra keys so the
free-form NoSQL payload of the raw data files survives a round trip.

Equipment variants are discriminated by their ``type`` tag:

    tank         -> Tank
    pipe         -> Pipe
    valve        -> Valve
    loadingArea  -> LoadingArea

Position-like fields accept a ``Vector3``, a ``{"x", "y", "z"}`` mapping
(missing axes default to 0) or a 3-element sequence.
"""

import logging
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class Vector3(BaseModel):
    """Point in 3D world space."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def coerce(cls, value: Any) -> Optional["Vector3"]:
        """Convert a coordinate-like value into a Vector3.

        Args:
            value: Vector3, mapping with optional x/y/z keys, 3-sequence or None

        Returns:
            Vector3 instance, or None when value is None

        Raises:
            ValueError: If value cannot be interpreted as a coordinate
        """
        if value is None or isinstance(value, Vector3):
            return value
        if isinstance(value, dict):
            return cls(
                x=value.get("x") or 0.0,
                y=value.get("y") or 0.0,
                z=value.get("z") or 0.0,
            )
        if isinstance(value, (list, tuple)):
            if len(value) != 3:
                raise ValueError(f"Position must be [x, y, z], got {len(value)} elements")
            return cls(x=value[0], y=value[1], z=value[2])
        raise ValueError(f"Cannot interpret {type(value).__name__} as a 3D position")

    def distance_to(self, other: "Vector3") -> float:
        """Euclidean distance to another point."""
        return math.dist((self.x, self.y, self.z), (other.x, other.y, other.z))

    def to_list(self) -> List[float]:
        return [self.x, self.y, self.z]


class ValveState(str, Enum):
    """Valve positions. Any state may be commanded; there is no transition table."""
    OPEN = "open"
    CLOSED = "closed"
    PARTIAL = "partial"
    MAINTENANCE = "maintenance"
    FAULT = "fault"


class ValveType(str, Enum):
    GATE = "gate"
    BALL = "ball"
    CHECK = "check"
    BUTTERFLY = "butterfly"
    CONTROL = "control"


class AnnotationType(str, Enum):
    NOTE = "note"
    WARNING = "warning"
    ISSUE = "issue"
    DOC_LINK = "docLink"
    MEASUREMENT = "measurement"


class TerminalRecord(BaseModel):
    """Shared configuration for every stored record."""

    model_config = ConfigDict(
        extra="allow",
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_dict(self, exclude_none: bool = True) -> Dict[str, Any]:
        """Export as a camelCase dict, the shape the raw data files use."""
        return self.model_dump(by_alias=True, exclude_none=exclude_none, mode="json")


class EquipmentBase(TerminalRecord):
    """Attributes common to every equipment kind.

    Ownership is an id reference (``parent_id``); the children of an
    equipment are derived from the store's parent index, never stored here.
    """

    id: str
    type: str
    name: Optional[str] = None
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    parent_id: Optional[str] = None
    position: Optional[Vector3] = None
    rotation: Optional[Vector3] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    documentation_url: Optional[str] = None
    category_id: Optional[str] = None
    version_id: Optional[str] = None

    @field_validator("position", "rotation", mode="before")
    @classmethod
    def coerce_vector(cls, v: Any) -> Optional[Vector3]:
        return Vector3.coerce(v)


class Tank(EquipmentBase):
    type: Literal["tank"] = "tank"
    equipment_type: Optional[str] = None
    product: Optional[str] = None
    level: float = Field(default=0.0, ge=0.0, le=1.0)
    capacity: Optional[float] = Field(default=None, ge=0.0)
    status: Optional[str] = None
    temperature: Optional[float] = None


class PipeEndpoints(TerminalRecord):
    start: Optional[str] = None
    end: Optional[str] = None


class Pipe(EquipmentBase):
    type: Literal["pipe"] = "pipe"
    size: Optional[str] = None
    material_type: Optional[str] = None
    product: Optional[str] = None
    points: List[Vector3] = Field(default_factory=list)
    connected_to: Optional[PipeEndpoints] = None
    status: Optional[str] = None
    flow_rate: float = 0.0
    pressure: Optional[float] = None

    @field_validator("points", mode="before")
    @classmethod
    def coerce_points(cls, v: Any) -> List[Vector3]:
        if v is None:
            return []
        return [Vector3.coerce(p) for p in v]


class Valve(EquipmentBase):
    type: Literal["valve"] = "valve"
    valve_type: ValveType = ValveType.GATE
    state: ValveState = ValveState.CLOSED
    connected_pipe: Optional[str] = None
    status: Optional[str] = None
    product: Optional[str] = None


class LoadingArea(EquipmentBase):
    type: Literal["loadingArea"] = "loadingArea"
    area_type: Optional[str] = None
    status: Optional[str] = None


Equipment = Annotated[
    Union[Tank, Pipe, Valve, LoadingArea],
    Field(discriminator="type"),
]

EQUIPMENT_CLASSES = (Tank, Pipe, Valve, LoadingArea)

_equipment_adapter: TypeAdapter = TypeAdapter(Equipment)


def parse_equipment(data: Dict[str, Any]) -> EquipmentBase:
    """Validate a raw record into the equipment model matching its ``type``.

    Raises:
        pydantic.ValidationError: If the record is malformed or the type unknown
    """
    return _equipment_adapter.validate_python(data)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Annotation(TerminalRecord):
    """User note attached to a point in the scene, optionally to an equipment.

    ``visual_marker_id`` references a marker owned by the rendering layer;
    the store never interprets it.
    """

    id: str
    type: AnnotationType = AnnotationType.NOTE
    target_id: Optional[str] = None
    target_position: Optional[Vector3] = None
    position: Vector3 = Field(default_factory=Vector3)
    text: str = ""
    author: Optional[str] = None
    date_created: Optional[datetime] = None
    date_modified: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    visual_marker_id: Optional[str] = None
    version_id: Optional[str] = None

    @field_validator("position", "target_position", mode="before")
    @classmethod
    def coerce_vector(cls, v: Any) -> Optional[Vector3]:
        return Vector3.coerce(v)

    @field_validator("type", mode="before")
    @classmethod
    def default_type(cls, v: Any) -> Any:
        # Raw annotation buckets carry type "annotation" as their discriminator
        if v in (None, "", "annotation"):
            return AnnotationType.NOTE
        return v

    def touch(self) -> None:
        """Stamp creation (first time) and modification dates."""
        now = _utcnow()
        if self.date_created is None:
            self.date_created = now
        self.date_modified = now
