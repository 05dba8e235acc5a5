"""Fleet State — Primary-side bookkeeping for every forked worker.

Invariants:
    - A pid enters pending_readiness on fork and leaves it when readiness is relayed or it exits
    - Readiness is relayed at most once per fork event (a replacement is a new fork event)
    - An exited worker leaves the active set immediately
    - Lifecycle events for unknown pids are ignored (late events after exit)

Design Decisions:
    - In-memory dataclass owned by one PrimaryCoordinator instance: no module-level state
    - Listening may arrive before Online bookkeeping: mark_listening never requires ONLINE first
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from vidhub.core.domain_types import WorkerIndex, WorkerLifecycle, WorkerPid


@dataclass
class WorkerRecord:
    """One forked worker as the Primary sees it."""
    pid: WorkerPid
    index: WorkerIndex
    forked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: WorkerLifecycle = WorkerLifecycle.FORKED
    address: tuple[str, int] | None = None


@dataclass
class FleetState:
    """Active worker records plus the pending-readiness set. Pure state mutation."""

    records: dict[WorkerPid, WorkerRecord] = field(default_factory=dict)
    pending_readiness: set[WorkerPid] = field(default_factory=set)
    total_forks: int = 0

    @property
    def active_count(self) -> int:
        return len(self.records)

    @property
    def listening_count(self) -> int:
        return sum(
            1 for r in self.records.values()
            if r.state is WorkerLifecycle.LISTENING
        )

    def record_fork(self, pid: WorkerPid, index: WorkerIndex) -> WorkerRecord:
        record = WorkerRecord(pid=pid, index=index)
        self.records[pid] = record
        self.pending_readiness.add(pid)
        self.total_forks += 1
        return record

    def mark_online(self, pid: WorkerPid) -> bool:
        """Returns True when this worker must be told the database is ready."""
        record = self.records.get(pid)
        if record is None:
            return False
        if record.state is WorkerLifecycle.FORKED:
            record.state = WorkerLifecycle.ONLINE
        if pid in self.pending_readiness:
            self.pending_readiness.discard(pid)
            return True
        return False

    def mark_listening(
        self, pid: WorkerPid, address: tuple[str, int] | None,
    ) -> WorkerRecord | None:
        record = self.records.get(pid)
        if record is None:
            return None
        record.state = WorkerLifecycle.LISTENING
        record.address = address
        return record

    def mark_disconnected(self, pid: WorkerPid) -> WorkerRecord | None:
        record = self.records.get(pid)
        if record is None:
            return None
        record.state = WorkerLifecycle.DISCONNECTED
        return record

    def mark_exited(self, pid: WorkerPid) -> WorkerRecord | None:
        """Remove the worker from the active set. Returns its final record."""
        self.pending_readiness.discard(pid)
        record = self.records.pop(pid, None)
        if record is not None:
            record.state = WorkerLifecycle.EXITED
        return record

    def snapshot(self) -> list[dict]:
        """JSON-friendly view of live workers, logged when a shutdown times out."""
        return [
            {
                "pid": r.pid,
                "index": r.index,
                "state": r.state.value,
                "forked_at": r.forked_at.isoformat(),
            }
            for r in sorted(self.records.values(), key=lambda r: r.index)
        ]
