"""
casauth State Machine Base

Base class for the per-request CAS flow state machine with:
- Invariant checking before each transition is committed
- Transition history for audit logging and debugging
- JSON trace export

Design Principles:
1. Context updates are pure functions of (event, context)
2. All state changes go through explicit transitions
3. Invariants are checked before state is committed
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Tuple, TypeVar
import json

import attrs
import structlog
from returns.result import Failure, Result, Success

from casauth.core.exceptions import InvariantViolation

logger = structlog.get_logger()


S = TypeVar("S", bound=Enum)  # State type
E = TypeVar("E")  # Event type
C = TypeVar("C")  # Context type


@attrs.define(frozen=True, slots=True)
class Transition(Generic[S, E]):
    """Immutable record of one committed state transition."""

    from_state: S
    event_type: str
    to_state: S
    timestamp: datetime
    context_snapshot: Dict[str, Any] = attrs.Factory(dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "from_state": self.from_state.name,
            "event_type": self.event_type,
            "to_state": self.to_state.name,
            "timestamp": self.timestamp.isoformat(),
            "context_snapshot": self.context_snapshot,
        }


InvariantFn = Callable[[Any, Any], bool]

# (next_state, context_updater)
TransitionEntry = Tuple[Any, Callable[[Any, Any], Any]]


@attrs.define
class StateMachineBase(ABC, Generic[S, E, C]):
    """
    Table-driven state machine.

    Usage:
        class FlowMachine(StateMachineBase[FlowState, Any, FlowContext]):
            def initial_state(self) -> FlowState:
                return FlowState.UNAUTHENTICATED

            def transition_table(self):
                return {
                    (FlowState.UNAUTHENTICATED, TicketReceived): (
                        FlowState.AWAITING_VALIDATION,
                        self._handle_ticket,
                    ),
                }
    """

    _state: S = attrs.field(alias="_state")
    _context: C = attrs.field(alias="_context")
    _history: List[Transition[S, E]] = attrs.field(factory=list, alias="_history")
    _invariants: List[Tuple[str, InvariantFn]] = attrs.field(factory=list, alias="_invariants")
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), alias="_logger")

    @abstractmethod
    def initial_state(self) -> S:
        """Return the initial state for this state machine."""
        ...

    @abstractmethod
    def transition_table(self) -> Dict[Tuple[S, type], TransitionEntry]:
        """Map (current_state, event_type) to (next_state, context_updater)."""
        ...

    @property
    def state(self) -> S:
        """Current state (read-only)."""
        return self._state

    @property
    def context(self) -> C:
        """Current context (read-only)."""
        return self._context

    def process_event(self, event: E) -> Result[S, str]:
        """
        Process an event and transition to the next state.

        Returns:
            Success(new_state) if the transition was committed
            Failure(error_message) if no transition applies

        Raises:
            InvariantViolation: If an invariant fails for the new state
        """
        event_type = type(event)
        table = self.transition_table()
        key = (self._state, event_type)

        if key not in table:
            self._logger.warning(
                "invalid_transition",
                current_state=self._state.name,
                event_type=event_type.__name__,
            )
            return Failure(
                f"No transition for state {self._state.name} with event {event_type.__name__}"
            )

        next_state, context_updater = table[key]
        new_context = context_updater(event, self._context)

        for name, invariant in self._invariants:
            if not invariant(next_state, new_context):
                self._logger.error(
                    "invariant_violated",
                    invariant=name,
                    from_state=self._state.name,
                    to_state=next_state.name,
                )
                raise InvariantViolation(f"Invariant '{name}' violated")

        self._history.append(
            Transition(
                from_state=self._state,
                event_type=event_type.__name__,
                to_state=next_state,
                timestamp=datetime.now(timezone.utc),
                context_snapshot=self._snapshot_context(new_context),
            )
        )
        self._logger.debug(
            "state_transition",
            from_state=self._state.name,
            to_state=next_state.name,
            event_type=event_type.__name__,
        )

        self._state = next_state
        self._context = new_context
        return Success(next_state)

    def add_invariant(self, name: str, invariant: InvariantFn) -> None:
        """Register an invariant (state, context) -> bool checked at each transition."""
        self._invariants.append((name, invariant))

    def get_trace(self) -> List[Transition[S, E]]:
        """Return a copy of the transition history."""
        return list(self._history)

    def export_trace_json(self) -> str:
        """Export the transition history as a JSON string."""
        return json.dumps(
            {
                "initial_state": self.initial_state().name,
                "final_state": self._state.name,
                "transitions": [t.to_dict() for t in self._history],
            },
            indent=2,
        )

    def _snapshot_context(self, context: C) -> Dict[str, Any]:
        if attrs.has(type(context)):
            return attrs.asdict(
                context,
                recurse=False,
                filter=lambda attr, value: not attr.name.startswith("_"),
                value_serializer=self._serialize_value,
            )
        return {}

    @staticmethod
    def _serialize_value(
        inst: type, field: attrs.Attribute, value: Any  # noqa: ARG004
    ) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, Enum):
            return value.name
        if attrs.has(type(value)):
            return str(value)
        return value

    def reset(self) -> None:
        """Return to the initial state and clear history."""
        self._state = self.initial_state()
        self._history = []
