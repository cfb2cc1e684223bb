"""
Circulation components.

- ledger: copy counts (InventoryLedger)
- reservations: waitlists and the hold shelf (ReservationQueue)
- fines: late fees and payments (FineEngine)
- state_machine: borrow, return, renew, overdue (CirculationStateMachine)
- locks: per-entity critical sections (LockManager)
- engine: the facade that runs each operation as one unit of work
"""

from .engine import CirculationEngine, get_engine, reset_engine, set_engine
from .fines import FineEngine, late_fee
from .ledger import InventoryLedger
from .locks import LockManager, LockTimeout
from .reservations import ReservationQueue
from .state_machine import CirculationStateMachine

__all__ = [
    "CirculationEngine",
    "CirculationStateMachine",
    "FineEngine",
    "InventoryLedger",
    "LockManager",
    "LockTimeout",
    "ReservationQueue",
    "get_engine",
    "late_fee",
    "reset_engine",
    "set_engine",
]
