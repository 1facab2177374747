"""
Settlement orchestrator.

Sequences every game action the same way:

    validate stake -> check funds -> debit (wager staked in the same
    transaction) -> draw -> compute payout -> record outcome -> credit
    (wager settled in the same transaction) -> publish

Nothing is applied optimistically. A failed debit leaves no wager behind; a
failed credit leaves the wager `unconfirmed` with its outcome recorded, and
reconcile_wager() retries it under the same idempotency key.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError

from minigames_be.exceptions import (
    GameNotFoundException, InsufficientFundsException, InvalidStateException,
    LedgerUnavailableException, NotFoundException, StaleActionException, ValidationException,
)
from minigames_be.models import (
    db, Wager, MinesBoard, LEDGER_BET, LEDGER_CANCEL_REFUND, LEDGER_WIN,
    WAGER_UNCONFIRMED, BOARD_ACTIVE, BOARD_BUSTED, BOARD_CASHED_OUT, BOARD_CANCELLED,
)
from minigames_be.services.event_bus import WAGER_SETTLED
from minigames_be.services.wager_session import (
    WagerSession, STAKED, QUEUED, RESOLVING, UNCONFIRMED
)
from minigames_be.utils import mines_helper
from minigames_be.utils.rng import SecureRandomSource

logger = logging.getLogger(__name__)


class SettlementOrchestrator:
    def __init__(self, ledger, games, event_bus=None, rng=None):
        self.ledger = ledger
        self.games = games
        self.event_bus = event_bus
        self.rng = rng or SecureRandomSource()

    def game(self, key):
        game = self.games.get(key)
        if game is None:
            raise GameNotFoundException(status_message=f"Game '{key}' not found.", details={'game': key})
        return game

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def find_wager(self, idempotency_key):
        return db.session.scalar(select(Wager).where(Wager.idempotency_key == idempotency_key))

    def replay_wager(self, player_id, idempotency_key):
        existing = self.find_wager(idempotency_key)
        if existing is None:
            return None
        if existing.player_id != player_id:
            raise ValidationException(
                status_message="Idempotency key already used.",
                details={'idempotency_key': idempotency_key}
            )
        logger.info(f"Replaying wager {existing.id} for idempotency key {idempotency_key}")
        return existing

    def _commit(self):
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Settlement commit failed: {e}", exc_info=True)
            raise LedgerUnavailableException() from e

    def open_wager(self, player_id, game, stake, prediction, idempotency_key,
                   queue=False, round_number=None, auto_cashout=None, attach=None):
        """
        Creates a wager and, unless it is queued, debits the stake in the same
        transaction. If the debit fails nothing is persisted. Caller holds the player lock.
        """
        if not queue:
            balance = self.ledger.get_balance(player_id)
            if balance < stake:
                raise InsufficientFundsException(details={'balance': str(balance), 'required': str(stake)})

        wager = Wager(
            player_id=player_id,
            game=game.key,
            stake=stake,
            prediction=prediction,
            idempotency_key=idempotency_key,
            round_number=round_number,
            auto_cashout=auto_cashout,
        )
        session = WagerSession(wager)
        db.session.add(wager)

        if queue:
            session.queue()
            self._commit()
            logger.info(f"Player {player_id} queued {game.key} bet of {stake} for round {round_number}")
            return wager

        # the phase change commits together with the debit
        session.stake()
        if attach is not None:
            attach(wager)
        self.ledger.debit(
            player_id, stake, f"{game.name} bet",
            category=LEDGER_BET, wager=wager, idempotency_key=f"{idempotency_key}:bet"
        )
        return wager

    def stake_queued(self, wager):
        """Debits a queued wager. Returns None and cancels it if the debit is refused."""
        game = self.game(wager.game)
        with self.ledger.player_lock(wager.player_id):
            WagerSession(wager).stake()
            try:
                self.ledger.debit(
                    wager.player_id, wager.stake, f"{game.name} bet",
                    category=LEDGER_BET, wager=wager, idempotency_key=f"{wager.idempotency_key}:bet"
                )
            except (InsufficientFundsException, LedgerUnavailableException) as e:
                WagerSession(wager).cancel(reason=e.status_message)
                self._commit()
                logger.warning(f"Queued wager {wager.id} dropped at take-off: {e.status_message}")
                self._publish_settled(wager)
                return None
            return wager

    def cancel_wager(self, wager, finalize=None, reason=None):
        """staked -> idle with a cancel-refund, or drops a queued bet (never debited)."""
        game = self.game(wager.game)
        with self.ledger.player_lock(wager.player_id):
            session = WagerSession(wager)
            session.require(STAKED, QUEUED)
            refund = session.phase == STAKED
            session.cancel(reason=reason)
            if finalize is not None:
                finalize()
            if refund:
                self.ledger.credit(
                    wager.player_id, wager.stake, f"{game.name} bet cancelled",
                    category=LEDGER_CANCEL_REFUND, wager=wager,
                    idempotency_key=f"{wager.idempotency_key}:refund"
                )
            self._commit()
            logger.info(f"Wager {wager.id} cancelled (refund={refund})")
        self._publish_settled(wager)
        return wager

    def resolve(self, wager, game, outcome, payout, multiplier=None, finalize=None):
        """staked -> resolving -> settled. The outcome is recorded before any credit is attempted."""
        WagerSession(wager).begin_resolving(outcome=outcome, payout=payout, multiplier=multiplier)
        self._commit()
        return self._settle(wager, game, finalize)

    def _settle(self, wager, game, finalize=None):
        WagerSession(wager).settle()
        if finalize is not None:
            finalize()
        payout = Decimal(wager.payout)
        if payout > 0:
            try:
                self.ledger.credit(
                    wager.player_id, payout, f"{game.name} win",
                    category=LEDGER_WIN, wager=wager,
                    idempotency_key=f"{wager.idempotency_key}:win"
                )
                self._commit()
            except LedgerUnavailableException as e:
                # drop the staged settle; the committed phase is still resolving or unconfirmed
                db.session.rollback()
                self._mark_unconfirmed(wager, finalize, e.status_message)
                raise LedgerUnavailableException(
                    status_message="Your result is recorded; the payout will be credited once the balance service confirms it.",
                    details={'wager_id': wager.id, 'wager_status': WAGER_UNCONFIRMED}
                ) from e
        else:
            self._commit()
        logger.info(f"Wager {wager.id} settled {wager.status}, payout {payout}")
        self._publish_settled(wager)
        return wager

    def _mark_unconfirmed(self, wager, finalize, reason):
        try:
            if wager.phase == UNCONFIRMED:
                # a retry that failed again
                wager.failure_reason = reason
            else:
                WagerSession(wager).mark_unconfirmed(reason)
            if finalize is not None:
                finalize()
            db.session.commit()
            logger.error(f"Wager {wager.id} left unconfirmed: {reason}")
        except SQLAlchemyError as e:
            # still `resolving` in the database; reconciliation treats both alike
            db.session.rollback()
            logger.error(f"Could not mark wager {wager.id} unconfirmed: {e}", exc_info=True)

    def _publish_settled(self, wager):
        if not self.event_bus:
            return
        self.event_bus.publish(WAGER_SETTLED, {
            'player_id': wager.player_id,
            'wager_id': wager.id,
            'game': wager.game,
            'status': wager.status,
            'stake': str(wager.stake),
            'payout': str(wager.payout) if wager.payout is not None else None,
            'multiplier': wager.multiplier,
            'round_number': wager.round_number,
        })

    # ------------------------------------------------------------------
    # Instant games: dice, coin flip, slots
    # ------------------------------------------------------------------

    def play_instant(self, player_id, game_key, stake, prediction=None, idempotency_key=None):
        game = self.game(game_key)
        if not game.resolves_on_commit:
            raise InvalidStateException(status_message=f"{game.name} is not played in a single step.")
        amount = game.validate_stake(stake)
        prediction = game.validate_prediction(prediction)
        key = idempotency_key or uuid.uuid4().hex

        with self.ledger.player_lock(player_id):
            existing = self.replay_wager(player_id, key)
            if existing is not None:
                if existing.phase in (RESOLVING, UNCONFIRMED):
                    return self.reconcile_wager(existing)
                return existing

            wager = self.open_wager(player_id, game, amount, prediction, key)
            outcome = game.draw(self.rng, amount, prediction)
            payout = game.compute_payout(amount, outcome, prediction)
            return self.resolve(wager, game, outcome, payout, game.multiplier_for(amount, payout))

    # ------------------------------------------------------------------
    # Mines
    # ------------------------------------------------------------------

    def _load_board(self, player_id, board_id):
        board = db.session.get(MinesBoard, board_id)
        if board is None or board.player_id != player_id:
            raise NotFoundException(status_message="Mines board not found.", details={'board_id': board_id})
        return board

    @staticmethod
    def _require_active(board):
        if board.status != BOARD_ACTIVE:
            raise StaleActionException(
                status_message="This mines board is already finished.",
                details={'board_id': board.id, 'status': board.status}
            )

    @staticmethod
    def _finish_board(board, status):
        board.status = status
        board.finished_at = datetime.now(timezone.utc)

    def active_board(self, player_id):
        return db.session.scalar(
            select(MinesBoard).where(MinesBoard.player_id == player_id, MinesBoard.status == BOARD_ACTIVE)
        )

    def start_mines(self, player_id, stake, mine_count, idempotency_key=None):
        game = self.game('mines')
        amount = game.validate_stake(stake)
        mine_count = game.validate_prediction(mine_count)
        key = idempotency_key or uuid.uuid4().hex

        with self.ledger.player_lock(player_id):
            existing = self.replay_wager(player_id, key)
            if existing is not None:
                return existing.mines_board

            active = self.active_board(player_id)
            if active is not None:
                raise InvalidStateException(
                    status_message="Finish the current mines board first.",
                    details={'board_id': active.id}
                )

            positions = game.draw(self.rng, amount, mine_count)['mine_positions']

            def attach(wager):
                db.session.add(MinesBoard(
                    player_id=player_id,
                    wager=wager,
                    grid_size=game.grid_size,
                    mine_count=mine_count,
                    mine_positions=positions,
                    revealed_cells=[],
                    status=BOARD_ACTIVE,
                ))

            wager = self.open_wager(player_id, game, amount, mine_count, key, attach=attach)
            logger.info(f"Player {player_id} started mines board for wager {wager.id} with {mine_count} mines")
            return wager.mines_board

    def reveal_cell(self, player_id, board_id, cell):
        game = self.game('mines')
        with self.ledger.player_lock(player_id):
            board = self._load_board(player_id, board_id)
            self._require_active(board)
            if isinstance(cell, bool) or not isinstance(cell, int) or not (0 <= cell < board.grid_size):
                raise ValidationException(
                    status_message=f"Cell must be an integer between 0 and {board.grid_size - 1}.",
                    details={'cell': cell}
                )
            if cell in board.revealed_cells:
                raise ValidationException(status_message="Cell already revealed.", details={'cell': cell})

            # reassign so the JSON column is flagged dirty
            board.revealed_cells = list(board.revealed_cells) + [cell]

            if cell in board.mine_positions:
                outcome = {
                    'hit_mine': True,
                    'safe_reveals': board.safe_reveals,
                    'mine_positions': list(board.mine_positions),
                    'revealed_cells': list(board.revealed_cells),
                }
                self.resolve(board.wager, game, outcome, Decimal('0.00'), 0.0,
                             finalize=lambda: self._finish_board(board, BOARD_BUSTED))
                return board

            if board.safe_reveals >= game.max_safe_steps(board.mine_count):
                return self._cash_out_board(board, game)

            self._commit()
            return board

    def cash_out_mines(self, player_id, board_id):
        game = self.game('mines')
        with self.ledger.player_lock(player_id):
            board = self._load_board(player_id, board_id)
            self._require_active(board)
            if board.safe_reveals < 1:
                raise InvalidStateException(status_message="Reveal at least one cell before cashing out.")
            return self._cash_out_board(board, game)

    def _cash_out_board(self, board, game):
        safe = board.safe_reveals
        outcome = {
            'hit_mine': False,
            'safe_reveals': safe,
            'mine_positions': list(board.mine_positions),
            'revealed_cells': list(board.revealed_cells),
        }
        payout = game.compute_payout(board.wager.stake, outcome, board.mine_count)
        multiplier = mines_helper.multiplier_at(safe, game.multiplier_table(board.mine_count))
        self.resolve(board.wager, game, outcome, payout, multiplier,
                     finalize=lambda: self._finish_board(board, BOARD_CASHED_OUT))
        return board

    def cancel_mines(self, player_id, board_id):
        with self.ledger.player_lock(player_id):
            board = self._load_board(player_id, board_id)
            self._require_active(board)
            if board.revealed_cells:
                raise StaleActionException(
                    status_message="The board is already in play and can no longer be cancelled.",
                    details={'board_id': board.id}
                )
            self.cancel_wager(board.wager, finalize=lambda: self._finish_board(board, BOARD_CANCELLED))
            return board

    def board_multipliers(self, board):
        """(current multiplier or None, next multiplier or None) for an active board."""
        table = self.game('mines').multiplier_table(board.mine_count)
        safe = board.safe_reveals
        current = table[safe - 1] if safe >= 1 else None
        upcoming = table[safe] if safe < len(table) else None
        return current, upcoming

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_wager(self, wager):
        """
        resolving / unconfirmed -> retry the credit under the original key.
        staked instant wager without a recorded outcome -> void and refund.
        Anything else is returned unchanged.
        """
        game = self.game(wager.game)
        with self.ledger.player_lock(wager.player_id):
            if wager.phase in (RESOLVING, UNCONFIRMED):
                finalize = None
                board = wager.mines_board
                if board is not None and board.status == BOARD_ACTIVE:
                    status = BOARD_BUSTED if (wager.outcome or {}).get('hit_mine') else BOARD_CASHED_OUT
                    finalize = lambda: self._finish_board(board, status)
                logger.info(f"Reconciling wager {wager.id} ({wager.phase})")
                return self._settle(wager, game, finalize)
            if wager.phase == STAKED and game.resolves_on_commit and wager.outcome is None:
                logger.warning(f"Voiding wager {wager.id}: staked without a recorded outcome")
                return self.cancel_wager(wager, reason='voided during reconciliation')
        return wager

    def reconcile_pending(self, older_than_seconds: int = 60):
        """Retries every unconfirmed wager. Returns counts for the operator."""
        instant_games = [key for key, game in self.games.items() if game.resolves_on_commit]
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        wagers = db.session.scalars(
            select(Wager).where(or_(
                Wager.status == WAGER_UNCONFIRMED,
                Wager.phase == RESOLVING,
                and_(Wager.phase == STAKED, Wager.game.in_(instant_games), Wager.created_at <= cutoff),
            )).order_by(Wager.id)
        ).all()

        summary = {'checked': len(wagers), 'settled': 0, 'voided': 0, 'failed': 0}
        for wager in wagers:
            try:
                was_staked = wager.phase == STAKED
                self.reconcile_wager(wager)
                summary['voided' if was_staked else 'settled'] += 1
            except LedgerUnavailableException as e:
                summary['failed'] += 1
                logger.error(f"Reconciliation of wager {wager.id} failed: {e.status_message}")
        return summary
