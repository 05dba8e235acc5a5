"""Shutdown Protocol — message vocabulary, exit-code policy and replacement rule.

Invariants:
    - Primary → Worker vocabulary is exactly {DATABASE_CONNECTED, SHUTDOWN}
    - SHUTDOWN always carries the exit code the worker must end with (0 if absent)
    - SIGTERM/SIGINT map to exit 0; uncaught and unhandled async faults map to exit 1
    - A worker exit is replaced iff no Primary-issued ShutdownRequest is in flight
    - Drain deadline < broadcast deadline: a draining worker is cut before the Primary gives up

Design Decisions:
    - Pure module: no IO, no asyncio — shared verbatim by Primary and Worker
    - Envelopes are plain dicts: multiprocessing pickles them, logs serialize them
    - should_replace takes the exit event even though only the shutdown flag decides today:
      the call site stays stable if crash-loop policy is added later
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from vidhub.core.domain_types import ControlMessage, ShutdownTrigger, WorkerNotice

SHUTDOWN_TIMEOUT_SECONDS = 10.0
DRAIN_TIMEOUT_SECONDS = 8.0

EXIT_OK = 0
EXIT_FAILURE = 1

_TRIGGER_EXIT_CODES: dict[ShutdownTrigger, int] = {
    ShutdownTrigger.SIGTERM: EXIT_OK,
    ShutdownTrigger.SIGINT: EXIT_OK,
    ShutdownTrigger.UNCAUGHT_EXCEPTION: EXIT_FAILURE,
    ShutdownTrigger.UNHANDLED_REJECTION: EXIT_FAILURE,
}


def exit_code_for(trigger: ShutdownTrigger) -> int:
    """Exit code a shutdown started by `trigger` ends with."""
    return _TRIGGER_EXIT_CODES[trigger]


@dataclass(frozen=True)
class ShutdownRequest:
    """De-duplicated intent to stop all workers and then the Primary."""
    trigger: ShutdownTrigger
    exit_code: int
    requested_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @classmethod
    def from_trigger(cls, trigger: ShutdownTrigger) -> "ShutdownRequest":
        return cls(trigger=trigger, exit_code=exit_code_for(trigger))


@dataclass(frozen=True)
class ExitEvent:
    """A worker process has ended. `signal` is set when the OS killed it."""
    pid: int
    exit_code: int | None
    signal: str | None = None

    @property
    def clean(self) -> bool:
        return self.exit_code == EXIT_OK and self.signal is None


def should_replace(exit_event: ExitEvent, in_flight_shutdown: bool) -> bool:
    """Self-healing rule: every exit, clean or crashed, is replaced unless the Primary asked for it."""
    del exit_event
    return not in_flight_shutdown


# ─── Wire Envelopes ──────────────────────────────────────────────

def encode_control(message: ControlMessage, exit_code: int = EXIT_OK) -> dict[str, Any]:
    """Build the Primary → Worker envelope."""
    payload: dict[str, Any] = {"type": message.value}
    if message is ControlMessage.SHUTDOWN:
        payload["exit_code"] = exit_code
    return payload


def decode_control(raw: Any) -> tuple[ControlMessage, int]:
    """Parse a Primary → Worker envelope. Bare vocabulary strings are accepted.

    Raises ValueError on anything outside the vocabulary.
    """
    if isinstance(raw, str):
        return ControlMessage(raw), EXIT_OK
    if isinstance(raw, dict) and "type" in raw:
        message = ControlMessage(raw["type"])
        return message, int(raw.get("exit_code", EXIT_OK))
    raise ValueError(f"Unrecognized control message: {raw!r}")


def encode_notice(notice: WorkerNotice, **data: Any) -> dict[str, Any]:
    """Build the Worker → Primary envelope."""
    return {"type": notice.value, "data": data}


def decode_notice(raw: Any) -> tuple[WorkerNotice, dict[str, Any]]:
    """Parse a Worker → Primary envelope. Anything unrecognized is a plain MESSAGE."""
    if isinstance(raw, dict):
        try:
            return WorkerNotice(raw.get("type")), dict(raw.get("data") or {})
        except ValueError:
            pass
    return WorkerNotice.MESSAGE, {"text": str(raw)}
