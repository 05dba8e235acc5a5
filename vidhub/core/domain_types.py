"""Domain Types — rich types that replace bare primitives across the codebase.

Invariants:
    - WorkerPid wraps the OS process id — never pass a bare int between cluster modules
    - All lifecycle states and IPC message kinds encoded as Enums — no raw string matching
    - ControlMessage values are the literal strings that travel over the worker pipe

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON log records without custom encoders
"""

from enum import Enum
from typing import NewType


# ─── Identity Types ──────────────────────────────────────────────

WorkerPid = NewType("WorkerPid", int)
WorkerIndex = NewType("WorkerIndex", int)


# ─── Cluster Enums ───────────────────────────────────────────────

class ProcessRole(str, Enum):
    """Which side of the cluster a process plays."""
    PRIMARY = "primary"
    WORKER = "worker"


class WorkerLifecycle(str, Enum):
    """Primary-side view of a worker, driven by OS/process events."""
    FORKED = "forked"
    ONLINE = "online"
    LISTENING = "listening"
    DISCONNECTED = "disconnected"
    EXITED = "exited"


class WorkerPhase(str, Enum):
    """Worker-side serving phase. Transitions only move forward."""
    WAITING_FOR_READINESS = "waiting_for_readiness"
    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"


class ControlMessage(str, Enum):
    """Primary → Worker instructions."""
    DATABASE_CONNECTED = "DATABASE_CONNECTED"
    SHUTDOWN = "SHUTDOWN"


class WorkerNotice(str, Enum):
    """Worker → Primary notifications. MESSAGE is observability only."""
    ONLINE = "online"
    LISTENING = "listening"
    MESSAGE = "message"


class ShutdownTrigger(str, Enum):
    """Everything that can start a graceful shutdown."""
    SIGTERM = "SIGTERM"
    SIGINT = "SIGINT"
    UNCAUGHT_EXCEPTION = "uncaughtException"
    UNHANDLED_REJECTION = "unhandledRejection"
