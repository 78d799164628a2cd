"""Versioned pool state store with atomic commits."""

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

from synthpool.core.errors import InvariantViolation, ReentrancyError
from synthpool.core.models import (
    CycleRecord,
    CycleState,
    LPPosition,
    PoolAccount,
    RequestType,
    UserPosition,
    UserRequest,
)

logger = logging.getLogger(__name__)


@dataclass
class PoolState:
    """Every entity of one pool, committed as a unit."""

    cycle: CycleState = field(default_factory=CycleState)
    account: PoolAccount = field(default_factory=PoolAccount)
    requests: Dict[str, UserRequest] = field(default_factory=dict)
    positions: Dict[str, UserPosition] = field(default_factory=dict)
    lps: Dict[str, LPPosition] = field(default_factory=dict)
    history: List[CycleRecord] = field(default_factory=list)

    # Record being built between onchain settlement and cycle close
    current_record: Optional[CycleRecord] = None

    def request_for(self, user: str) -> UserRequest:
        """Request slot for user, empty if none was ever submitted."""
        return self.requests.get(user, UserRequest())

    def pending_requests(self, request_type: Optional[RequestType] = None) -> List[UserRequest]:
        """Submitted, unsettled requests, optionally of one type."""
        return [
            r for r in self.requests.values()
            if r.is_pending and (request_type is None or r.request_type == request_type)
        ]

    def to_dict(self) -> dict:
        return {
            "cycle": self.cycle.to_dict(),
            "account": self.account.to_dict(),
            "requests": {k: v.to_dict() for k, v in self.requests.items()},
            "positions": {k: v.to_dict() for k, v in self.positions.items()},
            "lps": {k: v.to_dict() for k, v in self.lps.items()},
            "history": [r.to_dict() for r in self.history],
            "current_record": self.current_record.to_dict() if self.current_record else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PoolState":
        return cls(
            cycle=CycleState.from_dict(data.get("cycle", {})),
            account=PoolAccount.from_dict(data.get("account", {})),
            requests={k: UserRequest.from_dict(v) for k, v in data.get("requests", {}).items()},
            positions={k: UserPosition.from_dict(v) for k, v in data.get("positions", {}).items()},
            lps={k: LPPosition.from_dict(v) for k, v in data.get("lps", {}).items()},
            history=[CycleRecord.from_dict(r) for r in data.get("history", [])],
            current_record=CycleRecord.from_dict(data["current_record"]) if data.get("current_record") else None,
        )


Validator = Callable[[PoolState, PoolState], List[str]]


class Checkpointable(Protocol):
    """External resource whose changes are undone with the pool state."""

    def checkpoint(self) -> Any:
        ...

    def restore(self, checkpoint: Any) -> None:
        ...


class StateStore:
    """
    Holder of the single PoolState instance.

    Every state-changing operation runs inside transaction(): the state is
    snapshotted on entry, the validator runs on exit, and any exception
    restores the snapshot. Enlisted resources (tokens, the oracle) are
    checkpointed alongside it, so a rolled-back operation leaves no token
    movement or oracle request behind. Only one transaction can be open at
    a time, so a token callback that re-enters the pool fails instead of
    observing an intermediate state.
    """

    def __init__(self, state: Optional[PoolState] = None, validator: Optional[Validator] = None, version: int = 0):
        self._state = state or PoolState()
        self._validator = validator
        self._version = version
        self._in_flight: Optional[str] = None
        self._resources: List[Checkpointable] = []

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def version(self) -> int:
        """Number of committed transactions."""
        return self._version

    @property
    def in_transaction(self) -> bool:
        return self._in_flight is not None

    def set_validator(self, validator: Optional[Validator]) -> None:
        self._validator = validator

    def enlist(self, resource: Checkpointable) -> None:
        """Restore `resource` whenever a transaction rolls back."""
        if not any(r is resource for r in self._resources):
            self._resources.append(resource)

    @contextmanager
    def transaction(self, operation: str) -> Iterator[PoolState]:
        """
        Run one operation atomically.

        Args:
            operation: Name used in logs and reentrancy errors

        Yields:
            The live state to mutate
        """
        if self._in_flight is not None:
            raise ReentrancyError(f"{operation} called while {self._in_flight} is in progress")

        self._in_flight = operation
        snapshot = copy.deepcopy(self._state)
        checkpoints = [(resource, resource.checkpoint()) for resource in self._resources]
        try:
            yield self._state
            if self._validator is not None:
                violations = self._validator(snapshot, self._state)
                if violations:
                    raise InvariantViolation(violations)
        except BaseException:
            self._state = snapshot
            for resource, checkpoint in reversed(checkpoints):
                resource.restore(checkpoint)
            logger.debug(f"Rolled back {operation}")
            raise
        else:
            self._version += 1
        finally:
            self._in_flight = None

    def snapshot(self) -> PoolState:
        """Deep copy of the committed state."""
        return copy.deepcopy(self._state)
