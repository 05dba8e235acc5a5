"""Services — request-scoped business rules between routes and persistence.

Invariants:
    - Services raise VidhubError subclasses, never HTTP exceptions

Design Decisions:
    - Routes stay thin; services own validation beyond schema shape (ADR: impureim sandwich)
"""
