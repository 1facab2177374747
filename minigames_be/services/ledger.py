"""
Ledger / balance store.

The only code path that changes Player.balance. Every change is one database
transaction holding both the balance update and its append-only LedgerEntry,
so the sum of a player's entries always equals the balance.

Debits use a conditional UPDATE (balance >= amount) which rejects an
overdraft inside the database even if two processes race; within this
process writes for one player are additionally serialized by a per-player
re-entrant lock.
"""

import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from minigames_be.models import (
    db, Player, LedgerEntry,
    LEDGER_BET, LEDGER_WIN, LEDGER_BONUS, LEDGER_DEPOSIT, LEDGER_WITHDRAW,
    CREDIT_CATEGORIES, DEBIT_CATEGORIES,
)
from minigames_be.exceptions import (
    InsufficientFundsException, LedgerUnavailableException, NotFoundException
)
from minigames_be.services.event_bus import BALANCE_CHANGED
from minigames_be.utils.money import to_amount

logger = logging.getLogger(__name__)


class Ledger:
    def __init__(self, event_bus=None, write_timeout: float = 5.0, clock=time.monotonic):
        self.event_bus = event_bus
        self.write_timeout = write_timeout
        self._clock = clock
        self._locks = defaultdict(threading.RLock)
        self._locks_guard = threading.Lock()

    @contextmanager
    def player_lock(self, player_id):
        """Serializes every balance-affecting operation for one player."""
        with self._locks_guard:
            lock = self._locks[player_id]
        if not lock.acquire(timeout=self.write_timeout):
            logger.error(f"Timed out waiting for ledger lock of player {player_id}")
            raise LedgerUnavailableException(details={'player_id': player_id, 'reason': 'lock_timeout'})
        try:
            yield
        finally:
            lock.release()

    def get_balance(self, player_id) -> Decimal:
        balance = db.session.scalar(select(Player.balance).where(Player.id == player_id))
        if balance is None:
            raise NotFoundException(status_message=f"Player {player_id} not found.")
        return to_amount(balance)

    def debit(self, player_id, amount, memo, category=LEDGER_BET, wager=None, idempotency_key=None) -> LedgerEntry:
        """Conditional debit. Raises InsufficientFundsException without writing anything if the balance is short."""
        if category not in DEBIT_CATEGORIES:
            raise ValueError(f"'{category}' is not a debit category")
        return self._write(player_id, -self._positive(amount), category, memo, wager, idempotency_key)

    def credit(self, player_id, amount, memo, category=LEDGER_WIN, wager=None, idempotency_key=None) -> LedgerEntry:
        if category not in CREDIT_CATEGORIES:
            raise ValueError(f"'{category}' is not a credit category")
        return self._write(player_id, self._positive(amount), category, memo, wager, idempotency_key)

    def deposit(self, player_id, amount, memo='Deposit', idempotency_key=None) -> LedgerEntry:
        return self.credit(player_id, amount, memo, category=LEDGER_DEPOSIT, idempotency_key=idempotency_key)

    def withdraw(self, player_id, amount, memo='Withdrawal', idempotency_key=None) -> LedgerEntry:
        return self.debit(player_id, amount, memo, category=LEDGER_WITHDRAW, idempotency_key=idempotency_key)

    def bonus(self, player_id, amount, memo='Bonus', idempotency_key=None) -> LedgerEntry:
        return self.credit(player_id, amount, memo, category=LEDGER_BONUS, idempotency_key=idempotency_key)

    def entries_for(self, player_id, limit: int = 50, offset: int = 0):
        return db.session.scalars(
            select(LedgerEntry)
            .where(LedgerEntry.player_id == player_id)
            .order_by(LedgerEntry.id.desc())
            .limit(limit)
            .offset(offset)
        ).all()

    def sum_of_entries(self, player_id) -> Decimal:
        total = db.session.scalar(select(func.sum(LedgerEntry.amount)).where(LedgerEntry.player_id == player_id))
        return to_amount(total or 0)

    def find_entry(self, idempotency_key):
        return db.session.scalar(select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key))

    def anonymize_player(self, player_id) -> Player:
        """Drops the player's identity but keeps every ledger entry and wager."""
        with self.player_lock(player_id):
            player = db.session.get(Player, player_id)
            if player is None:
                raise NotFoundException(status_message=f"Player {player_id} not found.")
            player.username = f"anonymized-{player.id}"
            player.is_active = False
            player.anonymized_at = datetime.now(timezone.utc)
            self._commit()
            logger.info(f"Player {player_id} anonymized; ledger entries preserved")
            return player

    @staticmethod
    def _positive(amount) -> Decimal:
        amount = to_amount(amount)
        if amount <= 0:
            raise ValueError(f"Ledger amount must be positive, got {amount}")
        return amount

    def _commit(self):
        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Ledger commit failed: {e}", exc_info=True)
            raise LedgerUnavailableException() from e

    def _write(self, player_id, delta: Decimal, category, memo, wager, idempotency_key) -> LedgerEntry:
        with self.player_lock(player_id):
            if idempotency_key:
                existing = self.find_entry(idempotency_key)
                if existing is not None:
                    logger.info(f"Ledger replay for key {idempotency_key}: returning entry {existing.id}")
                    return existing

            started = self._clock()
            try:
                statement = update(Player).where(Player.id == player_id)
                if delta < 0:
                    statement = statement.where(Player.balance >= -delta)
                result = db.session.execute(
                    statement.values(balance=Player.balance + delta)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    db.session.rollback()
                    if db.session.get(Player, player_id) is None:
                        raise NotFoundException(status_message=f"Player {player_id} not found.")
                    balance = self.get_balance(player_id)
                    logger.info(f"Debit of {-delta} rejected for player {player_id}: balance {balance}")
                    raise InsufficientFundsException(details={'balance': str(balance), 'required': str(-delta)})

                balance_after = to_amount(db.session.scalar(select(Player.balance).where(Player.id == player_id)))
                entry = LedgerEntry(
                    player_id=player_id,
                    amount=delta,
                    category=category,
                    description=memo,
                    balance_after=balance_after,
                    idempotency_key=idempotency_key,
                )
                if wager is not None:
                    entry.wager = wager
                db.session.add(entry)
                db.session.flush()
                entry_id = entry.id

                elapsed = self._clock() - started
                if elapsed > self.write_timeout:
                    db.session.rollback()
                    logger.error(f"Ledger write for player {player_id} took {elapsed:.2f}s, rolled back")
                    raise LedgerUnavailableException(details={'player_id': player_id, 'reason': 'write_timeout'})

                db.session.commit()
            except IntegrityError as e:
                db.session.rollback()
                if idempotency_key:
                    existing = self.find_entry(idempotency_key)
                    if existing is not None:
                        return existing
                logger.error(f"Ledger integrity error for player {player_id}: {e}", exc_info=True)
                raise LedgerUnavailableException() from e
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"Ledger write failed for player {player_id}: {e}", exc_info=True)
                raise LedgerUnavailableException() from e

            logger.info(f"Ledger {category} {delta} for player {player_id}, balance {balance_after}")

        if self.event_bus:
            self.event_bus.publish(BALANCE_CHANGED, {
                'player_id': player_id,
                'balance': str(balance_after),
                'amount': str(delta),
                'category': category,
                'entry_id': entry_id,
            })
        return entry
