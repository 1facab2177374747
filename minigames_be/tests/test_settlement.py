from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import func, select

from minigames_be.app import db
from minigames_be.exceptions import (
    GameNotFoundException, InsufficientFundsException, InvalidStakeException,
    InvalidStateException, LedgerUnavailableException, StaleActionException, ValidationException,
)
from minigames_be.models import (
    LedgerEntry, MinesBoard, Wager,
    BOARD_ACTIVE, BOARD_BUSTED, BOARD_CASHED_OUT, BOARD_CANCELLED,
    LEDGER_BET, LEDGER_CANCEL_REFUND, LEDGER_WIN,
    WAGER_CANCELLED, WAGER_LOST, WAGER_UNCONFIRMED, WAGER_WON,
)
from minigames_be.services.event_bus import WAGER_SETTLED
from minigames_be.services.wager_session import SETTLED, STAKED, UNCONFIRMED
from minigames_be.tests.test_api import BaseTestCase
from minigames_be.tests.test_rng import SequenceSource

# dice 1, 2, 4
SMALL_SEVEN = [0.0, 0.2, 0.55]


class TestInstantSettlement(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.settlement = self.app.settlement
        self.settlement.rng = SequenceSource(SMALL_SEVEN)

    def _entries(self, wager):
        return db.session.scalars(
            select(LedgerEntry).where(LedgerEntry.wager_id == wager.id).order_by(LedgerEntry.id)
        ).all()

    def test_small_dice_win(self):
        player = self._create_player(balance='100')
        wager = self.settlement.play_instant(player.id, 'dice', '10', prediction='small')

        self.assertEqual(wager.status, WAGER_WON)
        self.assertEqual(wager.phase, SETTLED)
        self.assertEqual(wager.outcome['total'], 7)
        self.assertEqual(wager.payout, Decimal('20.00'))
        self.assertEqual(wager.multiplier, 2.0)
        self.assertEqual(self._balance(player), Decimal('110.00'))
        entries = self._entries(wager)
        self.assertEqual([(e.category, e.amount) for e in entries],
                         [(LEDGER_BET, Decimal('-10.00')), (LEDGER_WIN, Decimal('20.00'))])

    def test_losing_wager_has_no_credit(self):
        player = self._create_player(balance='100')
        wager = self.settlement.play_instant(player.id, 'dice', '10', prediction='big')
        self.assertEqual(wager.status, WAGER_LOST)
        self.assertEqual(wager.payout, Decimal('0.00'))
        self.assertEqual([e.category for e in self._entries(wager)], [LEDGER_BET])
        self.assertEqual(self._balance(player), Decimal('90.00'))

    def test_insufficient_funds(self):
        player = self._create_player(balance='5')
        with self.assertRaises(InsufficientFundsException):
            self.settlement.play_instant(player.id, 'dice', '10', prediction='small')
        self.assertEqual(self._balance(player), Decimal('5.00'))
        self.assertEqual(db.session.scalar(select(func.count(Wager.id))), 0)
        self.assertEqual(db.session.scalar(select(func.count(LedgerEntry.id)).where(LedgerEntry.category == LEDGER_BET)), 0)

    def test_stake_and_prediction_validated_before_debit(self):
        player = self._create_player(balance='100')
        with self.assertRaises(InvalidStakeException):
            self.settlement.play_instant(player.id, 'coinflip', '5000', prediction='heads')
        with self.assertRaises(ValidationException):
            self.settlement.play_instant(player.id, 'coinflip', '5', prediction='edge')
        self.assertEqual(self._balance(player), Decimal('100.00'))

    def test_unknown_and_non_instant_games(self):
        player = self._create_player()
        with self.assertRaises(GameNotFoundException):
            self.settlement.play_instant(player.id, 'roulette', '5')
        with self.assertRaises(InvalidStateException):
            self.settlement.play_instant(player.id, 'crash', '5')

    def test_replay_returns_same_wager(self):
        player = self._create_player(balance='100')
        first = self.settlement.play_instant(player.id, 'dice', '10', 'small', idempotency_key='abc')
        second = self.settlement.play_instant(player.id, 'dice', '10', 'small', idempotency_key='abc')
        self.assertEqual(first.id, second.id)
        self.assertEqual(self._balance(player), Decimal('110.00'))

    def test_key_owned_by_another_player(self):
        alice = self._create_player('alice')
        bob = self._create_player('bob')
        self.settlement.play_instant(alice.id, 'dice', '10', 'small', idempotency_key='shared')
        with self.assertRaises(ValidationException):
            self.settlement.play_instant(bob.id, 'dice', '10', 'small', idempotency_key='shared')
        self.assertEqual(self._balance(bob), Decimal('100.00'))

    def test_settlement_published(self):
        received = []
        self.app.event_bus.subscribe(WAGER_SETTLED, received.append)
        player = self._create_player()
        wager = self.settlement.play_instant(player.id, 'dice', '10', 'small')
        self.assertEqual(received[-1]['wager_id'], wager.id)
        self.assertEqual(received[-1]['status'], WAGER_WON)
        self.assertEqual(received[-1]['payout'], '20.00')

    def test_slot_spin_settles(self):
        player = self._create_player(balance='100')
        # K K K, x5
        self.settlement.rng = SequenceSource([0.45, 0.45, 0.15, 0.1])
        wager = self.settlement.play_instant(player.id, 'card_coming', '10')
        self.assertEqual(wager.payout, Decimal('120.00'))
        self.assertEqual(wager.multiplier, 12.0)
        self.assertEqual(self._balance(player), Decimal('210.00'))


class TestUnconfirmedPayouts(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.settlement = self.app.settlement
        self.settlement.rng = SequenceSource(SMALL_SEVEN)

    def _play_with_failed_credit(self, player, key='unconfirmed-1'):
        with patch.object(self.app.ledger, 'credit', side_effect=LedgerUnavailableException()):
            with self.assertRaises(LedgerUnavailableException) as ctx:
                self.settlement.play_instant(player.id, 'dice', '10', 'small', idempotency_key=key)
        self.assertEqual(ctx.exception.details['wager_status'], WAGER_UNCONFIRMED)
        return db.session.scalar(select(Wager).where(Wager.idempotency_key == key))

    def test_failed_credit_leaves_outcome_recorded(self):
        player = self._create_player(balance='100')
        wager = self._play_with_failed_credit(player)
        self.assertEqual(wager.status, WAGER_UNCONFIRMED)
        self.assertEqual(wager.phase, UNCONFIRMED)
        self.assertEqual(wager.outcome['total'], 7)
        self.assertEqual(wager.payout, Decimal('20.00'))
        self.assertIsNotNone(wager.failure_reason)
        self.assertEqual(self._balance(player), Decimal('90.00'))

    def test_reconcile_credits_once(self):
        player = self._create_player(balance='100')
        wager = self._play_with_failed_credit(player)
        self.settlement.reconcile_wager(wager)
        self.assertEqual(wager.status, WAGER_WON)
        self.assertEqual(self._balance(player), Decimal('110.00'))

        self.settlement.reconcile_wager(wager)
        self.assertEqual(self._balance(player), Decimal('110.00'))

    def test_replaying_the_request_reconciles(self):
        player = self._create_player(balance='100')
        self._play_with_failed_credit(player, key='retry-me')
        wager = self.settlement.play_instant(player.id, 'dice', '10', 'small', idempotency_key='retry-me')
        self.assertEqual(wager.status, WAGER_WON)
        self.assertEqual(self._balance(player), Decimal('110.00'))

    def test_second_failure_stays_unconfirmed(self):
        player = self._create_player(balance='100')
        wager = self._play_with_failed_credit(player)
        with patch.object(self.app.ledger, 'credit', side_effect=LedgerUnavailableException()):
            with self.assertRaises(LedgerUnavailableException):
                self.settlement.reconcile_wager(wager)
        wager = db.session.get(Wager, wager.id, populate_existing=True)
        self.assertEqual(wager.status, WAGER_UNCONFIRMED)
        self.assertEqual(self._balance(player), Decimal('90.00'))

    def test_reconcile_pending_summary(self):
        player = self._create_player(balance='100')
        self._play_with_failed_credit(player, key='one')
        self._play_with_failed_credit(player, key='two')
        summary = self.settlement.reconcile_pending()
        self.assertEqual(summary, {'checked': 2, 'settled': 2, 'voided': 0, 'failed': 0})
        self.assertEqual(self._balance(player), Decimal('120.00'))

    def test_stuck_staked_wager_is_voided(self):
        player = self._create_player(balance='100')
        game = self.settlement.game('dice')
        with self.app.ledger.player_lock(player.id):
            wager = self.settlement.open_wager(player.id, game, Decimal('10.00'), 'small', 'stuck')
        self.assertEqual(wager.phase, STAKED)
        self.assertEqual(self._balance(player), Decimal('90.00'))

        summary = self.settlement.reconcile_pending(older_than_seconds=0)
        self.assertEqual(summary['voided'], 1)
        wager = db.session.get(Wager, wager.id, populate_existing=True)
        self.assertEqual(wager.status, WAGER_CANCELLED)
        self.assertEqual(self._balance(player), Decimal('100.00'))
        categories = db.session.scalars(select(LedgerEntry.category).where(LedgerEntry.wager_id == wager.id)).all()
        self.assertIn(LEDGER_CANCEL_REFUND, categories)


class TestMinesSettlement(BaseTestCase):

    def setUp(self):
        super().setUp()
        self.settlement = self.app.settlement

    def _start(self, player, stake='50', mine_count=3, mines=(22, 23, 24)):
        board = self.settlement.start_mines(player.id, stake, mine_count)
        board.mine_positions = list(mines)
        db.session.commit()
        return board

    def test_cash_out_after_four_safe_reveals(self):
        player = self._create_player(balance='50')
        board = self._start(player)
        self.assertEqual(self._balance(player), Decimal('0.00'))
        for cell in range(4):
            self.settlement.reveal_cell(player.id, board.id, cell)
        self.assertEqual(self.settlement.board_multipliers(board), (1.68, 1.96))

        board = self.settlement.cash_out_mines(player.id, board.id)
        self.assertEqual(board.status, BOARD_CASHED_OUT)
        self.assertEqual(board.wager.payout, Decimal('84.00'))
        self.assertEqual(board.wager.multiplier, 1.68)
        self.assertEqual(self._balance(player), Decimal('84.00'))

    def test_mine_ends_the_board(self):
        player = self._create_player(balance='50')
        board = self._start(player)
        self.settlement.reveal_cell(player.id, board.id, 0)
        board = self.settlement.reveal_cell(player.id, board.id, 24)
        self.assertEqual(board.status, BOARD_BUSTED)
        self.assertEqual(board.wager.status, WAGER_LOST)
        self.assertEqual(board.wager.outcome['safe_reveals'], 1)
        with self.assertRaises(StaleActionException):
            self.settlement.cash_out_mines(player.id, board.id)

    def test_clearing_every_safe_cell_cashes_out(self):
        player = self._create_player(balance='10')
        board = self._start(player, stake='10', mine_count=24, mines=range(1, 25))
        board = self.settlement.reveal_cell(player.id, board.id, 0)
        self.assertEqual(board.status, BOARD_CASHED_OUT)
        self.assertEqual(board.wager.payout, Decimal('242.50'))

    def test_repeat_reveal_rejected(self):
        player = self._create_player()
        board = self._start(player)
        self.settlement.reveal_cell(player.id, board.id, 3)
        with self.assertRaises(ValidationException):
            self.settlement.reveal_cell(player.id, board.id, 3)

    def test_one_active_board_per_player(self):
        player = self._create_player()
        self._start(player)
        with self.assertRaises(InvalidStateException):
            self.settlement.start_mines(player.id, '10', 3)

    def test_start_replay_returns_same_board(self):
        player = self._create_player()
        first = self.settlement.start_mines(player.id, '10', 3, idempotency_key='board-1')
        second = self.settlement.start_mines(player.id, '10', 3, idempotency_key='board-1')
        self.assertEqual(first.id, second.id)
        self.assertEqual(self._balance(player), Decimal('90.00'))

    def test_cancel_before_first_reveal(self):
        player = self._create_player()
        board = self._start(player)
        board = self.settlement.cancel_mines(player.id, board.id)
        self.assertEqual(board.status, BOARD_CANCELLED)
        self.assertEqual(board.wager.status, WAGER_CANCELLED)
        self.assertEqual(self._balance(player), Decimal('100.00'))

    def test_cancel_after_reveal_is_stale(self):
        player = self._create_player()
        board = self._start(player)
        self.settlement.reveal_cell(player.id, board.id, 0)
        with self.assertRaises(StaleActionException):
            self.settlement.cancel_mines(player.id, board.id)
        self.assertEqual(board.status, BOARD_ACTIVE)

    def test_unconfirmed_cash_out_reconciled(self):
        player = self._create_player(balance='50')
        board = self._start(player)
        self.settlement.reveal_cell(player.id, board.id, 0)
        with patch.object(self.app.ledger, 'credit', side_effect=LedgerUnavailableException()):
            with self.assertRaises(LedgerUnavailableException):
                self.settlement.cash_out_mines(player.id, board.id)
        board = db.session.get(MinesBoard, board.id, populate_existing=True)
        self.assertEqual(board.wager.status, WAGER_UNCONFIRMED)

        self.settlement.reconcile_wager(board.wager)
        self.assertEqual(board.status, BOARD_CASHED_OUT)
        self.assertEqual(self._balance(player), Decimal('55.00'))
