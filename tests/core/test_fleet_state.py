"""Fleet State — Primary bookkeeping of forked workers."""

from vidhub.core.domain_types import WorkerLifecycle, WorkerPid, WorkerIndex
from vidhub.core.fleet_state import FleetState


def _fleet(*pids: int) -> FleetState:
    fleet = FleetState()
    for i, pid in enumerate(pids):
        fleet.record_fork(WorkerPid(pid), WorkerIndex(i))
    return fleet


def test_fork_adds_record_and_pending_readiness():
    fleet = _fleet(101)
    assert fleet.records[101].state is WorkerLifecycle.FORKED
    assert fleet.pending_readiness == {101}
    assert fleet.total_forks == 1


def test_online_relays_readiness_once():
    fleet = _fleet(101)
    assert fleet.mark_online(WorkerPid(101)) is True
    assert fleet.mark_online(WorkerPid(101)) is False
    assert fleet.records[101].state is WorkerLifecycle.ONLINE


def test_online_for_unknown_pid_is_ignored():
    fleet = _fleet(101)
    assert fleet.mark_online(WorkerPid(999)) is False


def test_listening_before_online_is_tolerated():
    fleet = _fleet(101)
    record = fleet.mark_listening(WorkerPid(101), ("0.0.0.0", 7000))
    assert record.state is WorkerLifecycle.LISTENING
    assert record.address == ("0.0.0.0", 7000)
    assert fleet.mark_online(WorkerPid(101)) is True
    assert fleet.records[101].state is WorkerLifecycle.LISTENING
    assert fleet.listening_count == 1


def test_exit_removes_from_active_set_and_pending():
    fleet = _fleet(101, 102)
    record = fleet.mark_exited(WorkerPid(101))
    assert record.state is WorkerLifecycle.EXITED
    assert fleet.active_count == 1
    assert 101 not in fleet.pending_readiness


def test_late_events_after_exit_are_ignored():
    fleet = _fleet(101)
    fleet.mark_exited(WorkerPid(101))
    assert fleet.mark_exited(WorkerPid(101)) is None
    assert fleet.mark_disconnected(WorkerPid(101)) is None
    assert fleet.mark_listening(WorkerPid(101), None) is None


def test_replacement_is_a_new_fork_event():
    fleet = _fleet(101)
    fleet.mark_online(WorkerPid(101))
    fleet.mark_exited(WorkerPid(101))
    fleet.record_fork(WorkerPid(202), WorkerIndex(0))
    assert fleet.total_forks == 2
    assert fleet.mark_online(WorkerPid(202)) is True


def test_snapshot_sorted_by_index():
    fleet = _fleet(300, 100)
    assert [s["pid"] for s in fleet.snapshot()] == [300, 100]
    assert fleet.snapshot()[0]["state"] == "forked"
