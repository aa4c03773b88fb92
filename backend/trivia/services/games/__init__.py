"""Game domain services: clock, state machine, ledger, scoring and controllers.

This package contains pure(ish) domain logic that should be imported by
HTTP routes and socket handlers, keeping transport concerns separated
from core game mechanics.
"""
