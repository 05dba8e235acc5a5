"""Cluster — Primary/Worker process supervision over per-worker duplex pipes.

Invariants:
    - One Primary owns the database bootstrap and every worker handle
    - No shared memory: all coordination flows through cluster/channel.py

Design Decisions:
    - multiprocessing "spawn" context: workers start from a clean interpreter and
      receive everything they need in WorkerConfig (ADR: explicit role, no env sniffing)
    - Transition logic lives in core/ (pure), this package only performs the effects
"""
