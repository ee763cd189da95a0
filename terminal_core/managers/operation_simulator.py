"""
OperationSimulator - interruptible, time-extended equipment operations.

Simulates physical operations on terminal equipment that take time to
complete and can fail or be cancelled half way:

- SetValveState: actuate a valve; the new state becomes visible after a
  randomized settle delay (actuator travel time)
- TransferProduct: move product from one tank to another through a pipe,
  in fixed-length ticks, while every listed valve stays open

Lifecycle (all operation types):
    (unallocated) -> running -> completed | failed | cancelled

An operation id is allocated only after synchronous validation passes.
Every status or progress change is broadcast on ``status_changes``; a
terminal status is broadcast once and the operation is then evicted from
the ledger, so ``get_operation_status`` returns None for finished work.
Property writes to equipment are additionally broadcast as
``DataUpdateEvent`` on ``data_updates``.

Errors never cross the public API: start calls return None on rejection and
failures after acceptance surface only as a ``failed`` status.
"""

import logging
import random
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import ValidationError as PydanticValidationError

from ..config.settings import SimulationSettings
from ..core.entity_store import EntityStore
from ..core.events import EventChannel, Subscription
from ..core.scheduler import ScheduledTask, Scheduler
from ..models.entities import EquipmentBase, Pipe, Tank, Valve, ValveState, ValveType
from ..models.operations import (
    DataUpdateEvent,
    OperationParams,
    OperationState,
    OperationStatus,
    OperationType,
    SetValveStateParams,
    TransferProductParams,
)

logger = logging.getLogger(__name__)

P = TypeVar('P', bound=OperationParams)
E = TypeVar('E', bound=EquipmentBase)

# Volumes below this are treated as zero
VOLUME_EPSILON = 1e-9

LEVEL_DECIMALS = 4


# ============================================================================
# Exceptions
# ============================================================================

class OperationError(Exception):
    """Base exception for operation errors."""
    pass


class OperationValidationError(OperationError):
    """Operation parameters are malformed or missing."""
    pass


class EquipmentNotFoundError(OperationError):
    """Referenced equipment does not exist or is of the wrong kind."""
    pass


class PreconditionFailedError(OperationError):
    """Equipment exists but is not in a state that allows the operation."""
    pass


class RuntimeFailureError(OperationError):
    """A running operation lost an entity or a precondition mid-flight."""
    pass


# ============================================================================
# Ledger entries
# ============================================================================

@dataclass
class _Operation:
    """Ledger entry of one in-flight operation."""
    status: OperationStatus
    params: OperationParams
    task: Optional[ScheduledTask] = None
    elapsed: float = 0.0
    transferred: float = 0.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# OperationSimulator
# ============================================================================

class OperationSimulator:
    """
    Schedules and drives simulated operations against an EntityStore.

    Usage:
        simulator = OperationSimulator(store, ManualScheduler())
        simulator.subscribe(lambda status: print(status.status, status.progress))

        op_id = simulator.start_transfer_product({
            "sourceTankId": "T1", "destinationTankId": "T2", "pipeId": "P1",
            "valveIds": ["V1"], "transferRate": 100, "duration": 5,
        })
        simulator.cancel_operation(op_id)
    """

    def __init__(
        self,
        store: EntityStore,
        scheduler: Scheduler,
        settings: Optional[SimulationSettings] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize operation simulator.

        Args:
            store: Entity store the operations read and write
            scheduler: Timer source driving settle delays and transfer ticks
            settings: Timing parameters (defaults to SimulationSettings.from_env())
            rng: Random source for settle delays (defaults to one seeded from settings)
        """
        self.store = store
        self.scheduler = scheduler
        self.settings = settings or SimulationSettings.from_env()
        self._rng = rng or random.Random(self.settings.random_seed)
        self._operations: Dict[str, _Operation] = {}

        self.status_changes: EventChannel[OperationStatus] = EventChannel("operation-status")
        self.data_updates: EventChannel[DataUpdateEvent] = EventChannel("data-updates")

        logger.info(
            f"OperationSimulator initialized (tick {self.settings.tick_interval}s, "
            f"settle {self.settings.settle_delay_min}-{self.settings.settle_delay_max}s)"
        )

    # ========================================================================
    # Public API
    # ========================================================================

    def subscribe(self, callback: Callable[[OperationStatus], None]) -> Subscription:
        """Receive a snapshot of every status change."""
        return self.status_changes.subscribe(callback)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.status_changes.unsubscribe(subscription)

    def start_set_valve_state(
        self,
        params: Union[SetValveStateParams, Mapping[str, Any]]
    ) -> Optional[str]:
        """
        Start actuating a valve.

        Args:
            params: SetValveStateParams or an equivalent dict

        Returns:
            Operation id, or None if the request was rejected
        """
        try:
            p = self._parse(SetValveStateParams, params)
            valve = self._require(p.valve_id, Valve, "Valve")
            if valve.valve_type == ValveType.CHECK:
                raise PreconditionFailedError(
                    f"Check valve {p.valve_id} cannot be actuated manually"
                )
            operation_id = self._allocate_id(p.operation_id, "op_valve")
        except OperationError as e:
            self._log_rejection(params, e)
            return None

        entry = _Operation(
            status=OperationStatus(
                operation_id=operation_id,
                type=OperationType.SET_VALVE_STATE,
                status=OperationState.RUNNING,
                start_time=_utcnow(),
                related_equipment=[p.valve_id],
            ),
            params=p,
        )
        self._operations[operation_id] = entry

        delay = self._rng.uniform(self.settings.settle_delay_min, self.settings.settle_delay_max)
        entry.task = self.scheduler.call_later(delay, lambda: self._settle_valve(operation_id))
        self._broadcast(entry.status)

        logger.info(
            f"Operation {operation_id} (SetValveState {p.valve_id} -> {ValveState(p.new_state).value}) "
            f"started, settles in {delay:.2f}s"
        )
        return operation_id

    def start_transfer_product(
        self,
        params: Union[TransferProductParams, Mapping[str, Any]]
    ) -> Optional[str]:
        """
        Start a tank-to-tank transfer.

        Validation requires both tanks and the pipe to exist with the right
        kind, a positive transfer rate, a duration or target volume, and
        every listed valve to be open.

        Args:
            params: TransferProductParams or an equivalent dict

        Returns:
            Operation id, or None if the request was rejected
        """
        try:
            p = self._parse(TransferProductParams, params)
            if p.source_tank_id == p.destination_tank_id:
                raise OperationValidationError(
                    f"Source and destination are the same tank ({p.source_tank_id})"
                )
            self._require(p.source_tank_id, Tank, "Source tank")
            self._require(p.destination_tank_id, Tank, "Destination tank")
            self._require(p.pipe_id, Pipe, "Pipe")
            if not p.transfer_rate > 0:
                raise PreconditionFailedError(
                    f"Transfer rate must be positive, got {p.transfer_rate}"
                )
            for valve_id in p.valve_ids:
                valve = self._require(valve_id, Valve, "Valve")
                if valve.state != ValveState.OPEN:
                    raise PreconditionFailedError(f"Valve {valve_id} is not open")
            operation_id = self._allocate_id(p.operation_id, "op_transfer")
        except OperationError as e:
            self._log_rejection(params, e)
            return None

        entry = _Operation(
            status=OperationStatus(
                operation_id=operation_id,
                type=OperationType.TRANSFER_PRODUCT,
                status=OperationState.RUNNING,
                start_time=_utcnow(),
                progress=0.0,
                related_equipment=[
                    p.source_tank_id, p.destination_tank_id, p.pipe_id, *p.valve_ids
                ],
            ),
            params=p,
        )
        self._operations[operation_id] = entry

        entry.task = self.scheduler.call_every(
            self.settings.tick_interval, lambda: self._transfer_tick(operation_id)
        )
        self._broadcast(entry.status)

        logger.info(
            f"Operation {operation_id} (TransferProduct {p.source_tank_id} -> "
            f"{p.destination_tank_id} via {p.pipe_id} at {p.transfer_rate}/s) started"
        )
        return operation_id

    def cancel_operation(self, operation_id: str) -> bool:
        """
        Cancel a running operation.

        Future ticks are prevented; writes of a tick that already ran stay.
        Transfers have their pipe flow reset to zero.

        Returns:
            True if the operation was running and is now cancelled
        """
        entry = self._operations.get(operation_id)
        if entry is None or entry.status.status is not OperationState.RUNNING:
            logger.warning(f"Operation {operation_id} is not running or was not found")
            return False

        self._finish(operation_id, OperationState.CANCELLED, "Operation cancelled by user")
        return True

    def get_operation_status(self, operation_id: str) -> Optional[OperationStatus]:
        """Status of an in-flight operation; None once it has finished."""
        entry = self._operations.get(operation_id)
        return self._snapshot(entry.status) if entry else None

    def get_active_operations(self) -> List[OperationStatus]:
        return [self._snapshot(entry.status) for entry in self._operations.values()]

    def shutdown(self) -> int:
        """Cancel every in-flight operation. Returns how many were cancelled."""
        cancelled = sum(1 for op_id in list(self._operations) if self.cancel_operation(op_id))
        if cancelled:
            logger.info(f"Shutdown cancelled {cancelled} operations")
        return cancelled

    # ========================================================================
    # Timer callbacks
    # ========================================================================

    def _settle_valve(self, operation_id: str) -> None:
        entry = self._operations.get(operation_id)
        if entry is None or entry.status.status is not OperationState.RUNNING:
            return
        p: SetValveStateParams = entry.params

        valve = self.store.get_by_id(p.valve_id)
        if not isinstance(valve, Valve):
            self._finish(operation_id, OperationState.FAILED, "Valve not found during execution")
            return

        new_state = ValveState(p.new_state).value
        valve.state = new_state
        self.store.upsert(valve)
        self._publish_update(p.valve_id, "state", new_state)

        self._finish(
            operation_id, OperationState.COMPLETED, f"Valve {p.valve_id} set to {new_state}", progress=1.0
        )

    def _transfer_tick(self, operation_id: str) -> None:
        entry = self._operations.get(operation_id)
        if entry is None or entry.status.status is not OperationState.RUNNING:
            return
        p: TransferProductParams = entry.params
        tick = self.settings.tick_interval

        try:
            source = self._require_live(p.source_tank_id, Tank)
            destination = self._require_live(p.destination_tank_id, Tank)
            pipe = self._require_live(p.pipe_id, Pipe)
            for valve_id in p.valve_ids:
                valve = self.store.get_by_id(valve_id)
                if not isinstance(valve, Valve) or valve.state != ValveState.OPEN:
                    raise RuntimeFailureError(f"Valve {valve_id} was closed during the transfer")
        except RuntimeFailureError as e:
            self._finish(operation_id, OperationState.FAILED, str(e))
            return

        source_capacity = source.capacity or self.settings.default_capacity
        destination_capacity = destination.capacity or self.settings.default_capacity
        available = source.level * source_capacity
        headroom = (1.0 - destination.level) * destination_capacity

        amount = min(p.transfer_rate * tick, available, headroom)
        if p.target_volume is not None:
            amount = min(amount, p.target_volume - entry.transferred)

        if amount <= VOLUME_EPSILON:
            self._finish(
                operation_id, OperationState.COMPLETED,
                "Transfer stopped (source empty or destination full)", progress=1.0
            )
            return

        source.level = round(max(0.0, source.level - amount / source_capacity), LEVEL_DECIMALS)
        destination.level = round(min(1.0, destination.level + amount / destination_capacity), LEVEL_DECIMALS)
        self.store.upsert(source)
        self.store.upsert(destination)
        self._publish_update(source.id, "level", source.level)
        self._publish_update(destination.id, "level", destination.level)

        flow_rate = amount / tick
        if pipe.flow_rate != flow_rate:
            pipe.flow_rate = flow_rate
            self.store.upsert(pipe)
            self._publish_update(pipe.id, "flowRate", flow_rate)

        entry.transferred += amount
        entry.elapsed += tick

        ratios = []
        if p.duration is not None:
            ratios.append(entry.elapsed / p.duration)
        if p.target_volume is not None:
            ratios.append(entry.transferred / p.target_volume)
        entry.status.progress = min(1.0, max(ratios))
        self._broadcast(entry.status)
        logger.debug(
            f"Operation {operation_id} tick: moved {amount:.3f}, "
            f"progress {entry.status.progress:.0%}"
        )

        # A subscriber may have cancelled the operation during the broadcast
        if operation_id not in self._operations:
            return

        criterion_met = (
            (p.duration is not None and entry.elapsed >= p.duration - VOLUME_EPSILON)
            or (p.target_volume is not None and entry.transferred >= p.target_volume - VOLUME_EPSILON)
        )
        if criterion_met:
            self._finish(operation_id, OperationState.COMPLETED, "Transfer complete", progress=1.0)
        elif source.level <= 0.0 or destination.level >= 1.0:
            self._finish(
                operation_id, OperationState.COMPLETED,
                "Transfer stopped early (source empty or destination full)", progress=1.0
            )

    # ========================================================================
    # Helpers
    # ========================================================================

    def _finish(
        self,
        operation_id: str,
        state: OperationState,
        message: Optional[str] = None,
        progress: Optional[float] = None
    ) -> None:
        """Move an operation to a terminal state, broadcast it, and evict it."""
        entry = self._operations.get(operation_id)
        if entry is None:
            logger.warning(f"Attempted to finish unknown operation {operation_id}")
            return

        if entry.task is not None:
            entry.task.cancel()

        status = entry.status
        status.status = state
        status.message = message or status.message
        if progress is not None:
            status.progress = progress
        status.end_time = _utcnow()

        if status.type is OperationType.TRANSFER_PRODUCT:
            self._reset_pipe_flow(entry.params.pipe_id)

        self._broadcast(status)
        self._operations.pop(operation_id, None)

        log = logger.warning if state is OperationState.FAILED else logger.info
        log(f"Operation {operation_id} status: {state.value}{f' - {message}' if message else ''}")

    def _reset_pipe_flow(self, pipe_id: str) -> None:
        pipe = self.store.get_by_id(pipe_id)
        if isinstance(pipe, Pipe) and pipe.flow_rate != 0:
            pipe.flow_rate = 0.0
            self.store.upsert(pipe)
            self._publish_update(pipe_id, "flowRate", 0.0)

    def _broadcast(self, status: OperationStatus) -> None:
        self.status_changes.publish(self._snapshot(status))

    def _publish_update(self, equipment_id: str, prop: str, value: Any) -> None:
        self.data_updates.publish(DataUpdateEvent(
            equipment_id=equipment_id,
            property=prop,
            new_value=value,
            timestamp=_utcnow(),
        ))

    @staticmethod
    def _snapshot(status: OperationStatus) -> OperationStatus:
        return replace(status, related_equipment=list(status.related_equipment))

    @staticmethod
    def _parse(model: Type[P], params: Any) -> P:
        if isinstance(params, model):
            return params
        if not isinstance(params, Mapping):
            raise OperationValidationError(
                f"Expected {model.__name__} or a mapping, got {type(params).__name__}"
            )
        try:
            return model.model_validate(dict(params))
        except PydanticValidationError as e:
            raise OperationValidationError(f"Invalid {model.__name__}: {e}") from e

    def _require(self, entity_id: str, kind: Type[E], label: str) -> E:
        entity = self.store.get_by_id(entity_id)
        if entity is None:
            raise EquipmentNotFoundError(f"{label} {entity_id} not found")
        if not isinstance(entity, kind):
            raise EquipmentNotFoundError(f"{label} {entity_id} is a {entity.type}, not a {kind.__name__.lower()}")
        return entity

    def _require_live(self, entity_id: str, kind: Type[E]) -> E:
        entity = self.store.get_by_id(entity_id)
        if not isinstance(entity, kind):
            raise RuntimeFailureError(f"Equipment {entity_id} disappeared during the transfer")
        return entity

    def _allocate_id(self, requested: Optional[str], prefix: str) -> str:
        if requested:
            if requested in self._operations:
                raise OperationValidationError(f"Operation {requested} is already running")
            return requested
        operation_id = f"{prefix}_{uuid.uuid4().hex[:12]}"
        while operation_id in self._operations:
            operation_id = f"{prefix}_{uuid.uuid4().hex[:12]}"
        return operation_id

    @staticmethod
    def _log_rejection(params: Any, error: OperationError) -> None:
        requested = None
        if isinstance(params, OperationParams):
            requested = params.operation_id
        elif isinstance(params, Mapping):
            requested = params.get("operation_id") or params.get("operationId")
        logger.warning(
            f"Failed to start operation ({requested or 'no id'}): "
            f"{type(error).__name__}: {error}"
        )
