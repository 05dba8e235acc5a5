"""Shutdown Protocol — exit-code policy, replacement rule and envelopes."""

import pytest

from vidhub.core.domain_types import ControlMessage, ShutdownTrigger, WorkerNotice
from vidhub.core.shutdown_protocol import (
    DRAIN_TIMEOUT_SECONDS, SHUTDOWN_TIMEOUT_SECONDS,
    ExitEvent, ShutdownRequest,
    decode_control, decode_notice, encode_control, encode_notice,
    exit_code_for, should_replace,
)


@pytest.mark.parametrize("trigger,code", [
    (ShutdownTrigger.SIGTERM, 0),
    (ShutdownTrigger.SIGINT, 0),
    (ShutdownTrigger.UNCAUGHT_EXCEPTION, 1),
    (ShutdownTrigger.UNHANDLED_REJECTION, 1),
])
def test_trigger_exit_codes(trigger, code):
    assert exit_code_for(trigger) == code
    assert ShutdownRequest.from_trigger(trigger).exit_code == code


def test_drain_deadline_inside_shutdown_deadline():
    assert DRAIN_TIMEOUT_SECONDS < SHUTDOWN_TIMEOUT_SECONDS == 10.0


@pytest.mark.parametrize("event", [
    ExitEvent(pid=1, exit_code=0),
    ExitEvent(pid=1, exit_code=1),
    ExitEvent(pid=1, exit_code=None, signal="SIGKILL"),
])
def test_every_exit_replaced_without_shutdown(event):
    assert should_replace(event, in_flight_shutdown=False) is True
    assert should_replace(event, in_flight_shutdown=True) is False


def test_clean_exit():
    assert ExitEvent(pid=1, exit_code=0).clean
    assert not ExitEvent(pid=1, exit_code=None, signal="SIGKILL").clean


def test_shutdown_envelope_carries_exit_code():
    assert encode_control(ControlMessage.SHUTDOWN, 1) == {"type": "SHUTDOWN", "exit_code": 1}
    assert encode_control(ControlMessage.DATABASE_CONNECTED) == {"type": "DATABASE_CONNECTED"}


def test_decode_control_accepts_bare_strings_and_envelopes():
    assert decode_control("DATABASE_CONNECTED") == (ControlMessage.DATABASE_CONNECTED, 0)
    assert decode_control("SHUTDOWN") == (ControlMessage.SHUTDOWN, 0)
    assert decode_control({"type": "SHUTDOWN", "exit_code": 1}) == (ControlMessage.SHUTDOWN, 1)


@pytest.mark.parametrize("raw", ["RESTART", {"kind": "SHUTDOWN"}, 42])
def test_decode_control_rejects_unknown(raw):
    with pytest.raises(ValueError):
        decode_control(raw)


def test_notice_round_trip_and_fallback():
    assert decode_notice(encode_notice(WorkerNotice.LISTENING, address=["0.0.0.0", 7000])) == (
        WorkerNotice.LISTENING, {"address": ["0.0.0.0", 7000]},
    )
    assert decode_notice("hello") == (WorkerNotice.MESSAGE, {"text": "hello"})
    assert decode_notice({"type": "bogus"})[0] is WorkerNotice.MESSAGE
