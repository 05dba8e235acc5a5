"""Rate Window — pure fixed-window request counting.

Invariants:
    - A window opens on the first hit and lasts window_seconds
    - Hits beyond max_requests inside a window are refused with the time left (ms)
    - No IO, no clock: callers pass `now`
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Window:
    started_at: float
    hits: int


@dataclass(frozen=True)
class Verdict:
    window: Window
    allowed: bool
    remaining: int
    retry_after_ms: int


def register_hit(
    window: Window | None, now: float, max_requests: int, window_seconds: float,
) -> Verdict:
    if window is None or now - window.started_at >= window_seconds:
        window = Window(started_at=now, hits=0)
    window = Window(started_at=window.started_at, hits=window.hits + 1)
    allowed = window.hits <= max_requests
    retry_after_ms = 0
    if not allowed:
        retry_after_ms = max(0, int((window.started_at + window_seconds - now) * 1000))
    return Verdict(
        window=window,
        allowed=allowed,
        remaining=max(0, max_requests - window.hits),
        retry_after_ms=retry_after_ms,
    )
