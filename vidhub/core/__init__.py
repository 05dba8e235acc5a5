"""Core Layer — pure domain logic, no IO, no async, no DB.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, cluster/ or db/
    - All functions are pure and deterministic (clocks and ids passed in or defaulted)

Design Decisions:
    - Functional core separated from imperative shell (ADR: impureim sandwich)
"""
