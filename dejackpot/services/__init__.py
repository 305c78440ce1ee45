"""Background services of a helper worker.

- ClaimCoordinator: periodic claim of pending sessions
- SessionFinalizer: exactly-once terminal writes
- RollListener: inbound transport pump
- StaleSessionSweeper: closes runs orphaned by a crashed helper
"""

from dejackpot.services.coordinator import ClaimCoordinator
from dejackpot.services.finalizer import SessionFinalizer
from dejackpot.services.roll_listener import RollListener
from dejackpot.services.stale_sweeper import StaleSessionSweeper

__all__ = [
    "ClaimCoordinator",
    "RollListener",
    "SessionFinalizer",
    "StaleSessionSweeper",
]
