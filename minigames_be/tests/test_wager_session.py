import unittest
from decimal import Decimal

from minigames_be.exceptions import InvalidStateException, StaleActionException
from minigames_be.models import Wager, WAGER_CANCELLED, WAGER_LOST, WAGER_PENDING, WAGER_UNCONFIRMED, WAGER_WON
from minigames_be.services.wager_session import (
    WagerSession, IDLE, QUEUED, RESOLVING, SETTLED, STAKED, UNCONFIRMED
)


def _wager(**kwargs):
    return Wager(player_id=1, game='dice', stake=Decimal('10.00'), idempotency_key='k', **kwargs)


class TestWagerSession(unittest.TestCase):

    def test_new_session_starts_idle(self):
        self.assertEqual(WagerSession(_wager()).phase, IDLE)

    def test_full_lifecycle_to_won(self):
        session = WagerSession(_wager())
        session.stake()
        self.assertEqual(session.wager.status, WAGER_PENDING)
        session.begin_resolving(outcome={'total': 7}, payout=Decimal('20.00'), multiplier=2.0)
        self.assertEqual(session.phase, RESOLVING)
        session.settle()
        self.assertEqual(session.phase, SETTLED)
        self.assertEqual(session.wager.status, WAGER_WON)
        self.assertEqual(session.wager.payout, Decimal('20.00'))
        self.assertIsNotNone(session.wager.settled_at)

    def test_zero_payout_settles_as_lost(self):
        session = WagerSession(_wager())
        session.stake().begin_resolving(outcome={'total': 15}, payout=Decimal('0.00'))
        session.settle()
        self.assertEqual(session.wager.status, WAGER_LOST)

    def test_cancel_from_staked(self):
        session = WagerSession(_wager())
        session.stake().cancel('player cancelled')
        self.assertEqual(session.phase, IDLE)
        self.assertEqual(session.wager.status, WAGER_CANCELLED)
        self.assertEqual(session.wager.payout, Decimal('0.00'))
        self.assertEqual(session.wager.failure_reason, 'player cancelled')

    def test_queued_bet_is_staked_later(self):
        session = WagerSession(_wager())
        session.queue()
        self.assertEqual(session.phase, QUEUED)
        session.stake()
        self.assertEqual(session.phase, STAKED)

    def test_unconfirmed_then_reconciled(self):
        session = WagerSession(_wager())
        session.stake().begin_resolving(payout=Decimal('5.00'))
        session.mark_unconfirmed('credit timed out')
        self.assertEqual(session.phase, UNCONFIRMED)
        self.assertEqual(session.wager.status, WAGER_UNCONFIRMED)
        self.assertTrue(session.can(SETTLED))
        session.settle()
        self.assertEqual(session.wager.status, WAGER_WON)
        self.assertIsNone(session.wager.failure_reason)

    def test_illegal_transition_raises_invalid_state(self):
        session = WagerSession(_wager())
        with self.assertRaises(InvalidStateException):
            session.begin_resolving()
        with self.assertRaises(InvalidStateException):
            session.settle()
        self.assertEqual(session.phase, IDLE)

    def test_actions_on_resolved_wager_are_stale(self):
        session = WagerSession(_wager())
        session.stake().begin_resolving(payout=Decimal('0')).settle()
        with self.assertRaises(StaleActionException):
            session.cancel()
        with self.assertRaises(StaleActionException):
            session.require(STAKED)
        self.assertFalse(session.can(IDLE))

    def test_require(self):
        session = WagerSession(_wager())
        session.stake()
        session.require(STAKED, QUEUED)
        with self.assertRaises(InvalidStateException) as ctx:
            session.require(QUEUED)
        self.assertEqual(ctx.exception.details['phase'], STAKED)


if __name__ == '__main__':
    unittest.main()
