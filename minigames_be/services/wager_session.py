"""
Wager session state machine.

    idle -> staked -> resolving -> settled
    staked -> idle                 cancel, refunded as cancel-refund
    idle -> queued -> staked       crash bet placed while a round is flying
    queued -> idle                 queued bet withdrawn or not fundable at take-off
    resolving -> unconfirmed       payout credit did not confirm
    unconfirmed -> settled         reconciliation

The phase lives on the persisted Wager row so a session survives the request
that opened it. Phase changes are only staged on the SQLAlchemy session; the
caller commits them together with the ledger entry they belong to.
"""

from datetime import datetime, timezone
from decimal import Decimal

from minigames_be.exceptions import InvalidStateException, StaleActionException
from minigames_be.models import (
    WAGER_PENDING, WAGER_WON, WAGER_LOST, WAGER_CANCELLED, WAGER_UNCONFIRMED
)

IDLE = 'idle'
STAKED = 'staked'
RESOLVING = 'resolving'
SETTLED = 'settled'
QUEUED = 'queued'
UNCONFIRMED = 'unconfirmed'

TRANSITIONS = {
    IDLE: (STAKED, QUEUED),
    QUEUED: (STAKED, IDLE),
    STAKED: (RESOLVING, IDLE),
    RESOLVING: (SETTLED, UNCONFIRMED),
    UNCONFIRMED: (SETTLED,),
    SETTLED: (),
}


class WagerSession:
    def __init__(self, wager):
        self.wager = wager
        if self.wager.phase is None:
            self.wager.phase = IDLE

    @property
    def phase(self):
        return self.wager.phase

    def can(self, target) -> bool:
        return not self.wager.is_resolved and target in TRANSITIONS.get(self.phase, ())

    def require(self, *phases):
        if self.wager.is_resolved:
            raise StaleActionException(
                status_message="This wager has already been resolved.",
                details={'wager_id': self.wager.id, 'status': self.wager.status}
            )
        if self.phase not in phases:
            raise InvalidStateException(
                status_message=f"Action not allowed while the wager is {self.phase}.",
                details={'wager_id': self.wager.id, 'phase': self.phase, 'allowed': list(phases)}
            )

    def transition(self, target):
        if self.wager.is_resolved:
            raise StaleActionException(
                status_message="This wager has already been resolved.",
                details={'wager_id': self.wager.id, 'status': self.wager.status}
            )
        if target not in TRANSITIONS.get(self.phase, ()):
            raise InvalidStateException(
                status_message=f"Cannot move wager from {self.phase} to {target}.",
                details={'wager_id': self.wager.id, 'phase': self.phase, 'target': target}
            )
        self.wager.phase = target
        return self

    def stake(self):
        self.transition(STAKED)
        self.wager.status = WAGER_PENDING
        return self

    def queue(self):
        self.transition(QUEUED)
        self.wager.status = WAGER_PENDING
        return self

    def begin_resolving(self, outcome=None, payout=None, multiplier=None):
        self.transition(RESOLVING)
        if outcome is not None:
            self.wager.outcome = outcome
        if payout is not None:
            self.wager.payout = payout
        if multiplier is not None:
            self.wager.multiplier = multiplier
        return self

    def settle(self):
        """Terminal. Won when the recorded payout is positive."""
        self.transition(SETTLED)
        payout = Decimal(self.wager.payout or 0)
        self.wager.status = WAGER_WON if payout > 0 else WAGER_LOST
        self.wager.payout = payout
        self.wager.failure_reason = None
        self.wager.settled_at = datetime.now(timezone.utc)
        return self

    def cancel(self, reason=None):
        self.transition(IDLE)
        self.wager.status = WAGER_CANCELLED
        self.wager.payout = Decimal('0.00')
        self.wager.failure_reason = reason
        self.wager.settled_at = datetime.now(timezone.utc)
        return self

    def mark_unconfirmed(self, reason):
        self.transition(UNCONFIRMED)
        self.wager.status = WAGER_UNCONFIRMED
        self.wager.failure_reason = reason
        return self
