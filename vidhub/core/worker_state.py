"""Worker State Machine — pure transition function for a serving worker.

Invariants:
    - WAITING_FOR_READINESS → SERVING only on DATABASE_CONNECTED (listener never opens earlier)
    - SHUTDOWN while WAITING_FOR_READINESS short-circuits to STOPPED with exit 0, no listener
    - Local faults drain with exit 1; a fault before readiness stops immediately with exit 1
    - DRAINING keeps the exit code of the first stop request; later stop requests are no-ops
    - STOPPED is terminal — every event is ignored

Design Decisions:
    - handle(state, event) -> Transition: every transition testable without processes or sockets
    - Effects returned as data, executed by cluster/worker.py (impureim sandwich)
    - WorkerState is frozen: the shell swaps whole states, never mutates in place
"""

from dataclasses import dataclass, field
from enum import Enum

from vidhub.core.domain_types import WorkerPhase
from vidhub.core.shutdown_protocol import EXIT_FAILURE, EXIT_OK


class WorkerEventKind(str, Enum):
    DATABASE_CONNECTED = "database_connected"
    SHUTDOWN = "shutdown"
    LOCAL_FAULT = "local_fault"
    LISTENER_FAILED = "listener_failed"
    DRAIN_COMPLETE = "drain_complete"


class EffectKind(str, Enum):
    START_LISTENER = "start_listener"
    BEGIN_DRAIN = "begin_drain"
    EXIT = "exit"


@dataclass(frozen=True)
class WorkerEvent:
    kind: WorkerEventKind
    exit_code: int = EXIT_OK

    @classmethod
    def database_connected(cls) -> "WorkerEvent":
        return cls(WorkerEventKind.DATABASE_CONNECTED)

    @classmethod
    def shutdown(cls, exit_code: int = EXIT_OK) -> "WorkerEvent":
        return cls(WorkerEventKind.SHUTDOWN, exit_code)

    @classmethod
    def local_fault(cls) -> "WorkerEvent":
        return cls(WorkerEventKind.LOCAL_FAULT, EXIT_FAILURE)

    @classmethod
    def listener_failed(cls) -> "WorkerEvent":
        return cls(WorkerEventKind.LISTENER_FAILED, EXIT_FAILURE)

    @classmethod
    def drain_complete(cls) -> "WorkerEvent":
        return cls(WorkerEventKind.DRAIN_COMPLETE)


@dataclass(frozen=True)
class Effect:
    kind: EffectKind
    exit_code: int = EXIT_OK


@dataclass(frozen=True)
class WorkerState:
    phase: WorkerPhase = WorkerPhase.WAITING_FOR_READINESS
    exit_code: int | None = None

    @property
    def is_stopped(self) -> bool:
        return self.phase is WorkerPhase.STOPPED


@dataclass(frozen=True)
class Transition:
    state: WorkerState
    effects: tuple[Effect, ...] = field(default_factory=tuple)


def _stop(exit_code: int) -> Transition:
    return Transition(
        WorkerState(WorkerPhase.STOPPED, exit_code),
        (Effect(EffectKind.EXIT, exit_code),),
    )


def _drain(exit_code: int) -> Transition:
    return Transition(
        WorkerState(WorkerPhase.DRAINING, exit_code),
        (Effect(EffectKind.BEGIN_DRAIN, exit_code),),
    )


def _stay(state: WorkerState) -> Transition:
    return Transition(state)


def handle(state: WorkerState, event: WorkerEvent) -> Transition:
    """Compute the next state and the side effects the shell must run."""
    phase = state.phase
    kind = event.kind

    if phase is WorkerPhase.WAITING_FOR_READINESS:
        if kind is WorkerEventKind.DATABASE_CONNECTED:
            return Transition(
                WorkerState(WorkerPhase.SERVING),
                (Effect(EffectKind.START_LISTENER),),
            )
        if kind is WorkerEventKind.SHUTDOWN:
            # Nothing to drain yet: shutdown raced startup
            return _stop(EXIT_OK)
        if kind in (WorkerEventKind.LOCAL_FAULT, WorkerEventKind.LISTENER_FAILED):
            return _stop(EXIT_FAILURE)
        return _stay(state)

    if phase is WorkerPhase.SERVING:
        if kind is WorkerEventKind.SHUTDOWN:
            return _drain(event.exit_code)
        if kind is WorkerEventKind.LOCAL_FAULT:
            return _drain(EXIT_FAILURE)
        if kind is WorkerEventKind.LISTENER_FAILED:
            return _stop(EXIT_FAILURE)
        # duplicate DATABASE_CONNECTED, stray DRAIN_COMPLETE
        return _stay(state)

    if phase is WorkerPhase.DRAINING:
        if kind in (WorkerEventKind.DRAIN_COMPLETE, WorkerEventKind.LISTENER_FAILED):
            code = state.exit_code if state.exit_code is not None else EXIT_OK
            return _stop(code)
        return _stay(state)

    return _stay(state)
