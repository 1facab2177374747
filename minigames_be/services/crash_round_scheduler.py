"""
Crash Round Scheduler
One authoritative round loop per process, shared by every player.

    waiting (countdown) -> flying (multiplier grows with wall-clock time)
        -> crashed (pause) -> waiting ...

The crash point is drawn from a provably-fair seed at take-off; its hash is
published while waiting and the seed revealed once the round has crashed.
The multiplier is always derived from elapsed clock time, never from the
number of ticks, so a slow or irregular tick only delays broadcasts.

The loop takes the round lock and then, per wager, the player ledger lock.
Bet intents never hold the round lock across a ledger write: they check the
phase and clock under the round lock, release it, and settle under the player
lock, re-checking the wager phase there. A cash-out accepted before the crash
leaves the round's open set, so the crash settlement leaves that wager to it.
"""

import logging
import threading
import time
import uuid
from collections import deque
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update, func

from minigames_be.exceptions import (
    InvalidStateException, LedgerUnavailableException, StaleActionException
)
from minigames_be.models import db, CrashRound, Wager
from minigames_be.services.event_bus import ROUND_PHASE_CHANGED
from minigames_be.services.wager_session import STAKED, QUEUED
from minigames_be.utils.crash_helper import floor_multiplier
from minigames_be.utils.rng import ProvablyFairSource

logger = logging.getLogger(__name__)

WAITING = 'waiting'
FLYING = 'flying'
CRASHED = 'crashed'


class RoundState:
    """In-memory state of the current round. Written only under the scheduler's round lock."""

    def __init__(self, round_number, source, now):
        self.round_number = round_number
        self.phase = WAITING
        self.multiplier = 1.0
        self.crash_point = None
        self.source = source
        self.phase_started_at = now
        self.flying_started_at = None
        self.crash_at = None
        self.round_id = None
        self.wager_ids = set()


class CrashRoundScheduler:
    def __init__(self, orchestrator, event_bus=None, app=None, clock=time.monotonic,
                 source_factory=ProvablyFairSource):
        self.orchestrator = orchestrator
        self.game = orchestrator.game('crash')
        settings = self.game.settings
        self.waiting_duration = settings.get('waiting_duration_seconds', 5)
        self.crash_pause = settings.get('crash_pause_seconds', 3)
        self.tick_rate_hz = settings.get('tick_rate_hz', 60)
        self.history = deque(maxlen=settings.get('history_size', 15))
        self.event_bus = event_bus
        self.app = app
        self._clock = clock
        self._source_factory = source_factory
        self._lock = threading.RLock()
        self.state = None
        self.queued_ids = set()
        self.running = False
        self.loop_thread = None

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self):
        """Start the round loop in a background thread"""
        if self.running:
            logger.warning("Crash round loop is already running")
            return
        self.running = True
        self.loop_thread = threading.Thread(target=self._run_loop, daemon=True)
        self.loop_thread.start()
        logger.info("Crash round loop started")

    def stop(self):
        self.running = False
        if self.loop_thread:
            self.loop_thread.join(timeout=5)
        logger.info("Crash round loop stopped")

    def _run_loop(self):
        interval = 1.0 / self.tick_rate_hz
        with self.app.app_context():
            try:
                self.begin()
            except Exception as e:
                db.session.rollback()
                logger.error(f"Crash round loop could not start: {e}", exc_info=True)
                self.running = False
                return
            while self.running:
                try:
                    self.tick()
                except Exception as e:
                    db.session.rollback()
                    logger.error(f"Error in crash round loop: {e}", exc_info=True)
                time.sleep(interval)
            db.session.remove()

    # ------------------------------------------------------------------
    # Phase machine
    # ------------------------------------------------------------------

    def begin(self, now=None):
        """Seeds history and round numbering from the database and opens the first waiting phase."""
        now = self._clock() if now is None else now
        with self._lock:
            recent = db.session.scalars(
                select(CrashRound.crash_point)
                .where(CrashRound.crashed_at.isnot(None))
                .order_by(CrashRound.round_number.desc())
                .limit(self.history.maxlen)
            ).all()
            self.history.clear()
            self.history.extend(reversed(recent))
            last_round = db.session.scalar(select(func.max(CrashRound.round_number))) or 0
            self._recover_open_wagers()
            self._begin_waiting(now, last_round + 1)

    def _recover_open_wagers(self):
        """
        Bets left open by a previous process: queued ones are kept, staked ones
        in a round that had already crashed are lost, the rest are refunded.
        """
        open_wagers = db.session.scalars(
            select(Wager).where(Wager.game == self.game.key, Wager.phase.in_([STAKED, QUEUED]))
        ).all()
        self.queued_ids.clear()
        for wager in open_wagers:
            if wager.phase == QUEUED:
                self.queued_ids.add(wager.id)
                continue
            crash_round = db.session.get(CrashRound, wager.round_id) if wager.round_id else None
            if crash_round is not None and crash_round.crashed_at is not None:
                outcome = {'round_number': crash_round.round_number, 'cashout_multiplier': None}
                self.orchestrator.resolve(wager, self.game, outcome, Decimal('0.00'), 0.0)
            else:
                self.orchestrator.cancel_wager(wager, reason='round interrupted by restart')

    def tick(self, now=None):
        now = self._clock() if now is None else now
        with self._lock:
            state = self.state
            if state is None:
                return
            if state.phase == WAITING:
                if now - state.phase_started_at >= self.waiting_duration:
                    self._take_off(now)
            elif state.phase == FLYING:
                elapsed = now - state.flying_started_at
                state.multiplier = min(floor_multiplier(self.game.multiplier_at(elapsed)), state.crash_point)
                self._process_auto_cashouts()
                if now >= state.crash_at:
                    self._crash(now)
                else:
                    self._publish(now)
            elif state.phase == CRASHED:
                if now - state.phase_started_at >= self.crash_pause:
                    self._begin_waiting(now, state.round_number + 1)

    def _begin_waiting(self, now, round_number):
        self.state = RoundState(round_number, self._source_factory(nonce=round_number), now)
        logger.info(f"Crash round {round_number} waiting, seed hash {self.state.source.server_seed_hash}")
        self._publish(now)

    def _take_off(self, now):
        state = self.state
        for wager_id in sorted(self.queued_ids):
            wager = db.session.get(Wager, wager_id, populate_existing=True)
            if wager is None or wager.phase != QUEUED:
                continue
            wager.round_number = state.round_number
            if self.orchestrator.stake_queued(wager) is not None:
                state.wager_ids.add(wager.id)
        self.queued_ids.clear()

        state.crash_point = self.game.draw(state.source)['crash_point']
        crash_round = CrashRound(
            round_number=state.round_number,
            crash_point=state.crash_point,
            server_seed=state.source.server_seed,
            server_seed_hash=state.source.server_seed_hash,
            client_seed=state.source.client_seed,
            nonce=state.source.nonce,
            started_at=datetime.now(timezone.utc),
        )
        db.session.add(crash_round)
        db.session.flush()
        state.round_id = crash_round.id
        if state.wager_ids:
            db.session.execute(
                update(Wager).where(Wager.id.in_(state.wager_ids))
                .values(round_id=crash_round.id)
                .execution_options(synchronize_session=False)
            )
        db.session.commit()

        state.phase = FLYING
        state.multiplier = 1.0
        state.flying_started_at = now
        state.phase_started_at = now
        state.crash_at = now + self.game.seconds_to_reach(state.crash_point)
        logger.info(f"Crash round {state.round_number} flying with {len(state.wager_ids)} bets")
        self._publish(now)

    def _process_auto_cashouts(self):
        state = self.state
        for wager_id in sorted(state.wager_ids):
            wager = db.session.get(Wager, wager_id)
            if wager is None or wager.phase != STAKED:
                state.wager_ids.discard(wager_id)
                continue
            target = wager.auto_cashout
            if target is None or target >= state.crash_point or target > state.multiplier:
                continue
            state.wager_ids.discard(wager_id)
            try:
                self._settle_cash_out(state, wager_id, floor_multiplier(target))
            except LedgerUnavailableException as e:
                # left unconfirmed for reconciliation
                logger.error(f"Auto cash-out of wager {wager_id} not confirmed: {e.status_message}")

    def _settle_cash_out(self, state, wager_id, multiplier):
        """Pays out one staked wager at `multiplier`. Returns None if it was already settled."""
        wager = db.session.get(Wager, wager_id)
        with self.orchestrator.ledger.player_lock(wager.player_id):
            wager = db.session.get(Wager, wager_id, populate_existing=True)
            if wager.phase != STAKED:
                return None
            outcome = {'round_number': state.round_number, 'cashout_multiplier': multiplier}
            payout = self.game.compute_payout(
                wager.stake, {'crash_point': state.crash_point, 'cashout_multiplier': multiplier}
            )
            logger.info(f"Wager {wager.id} cashed out at {multiplier}x in round {state.round_number}")
            return self.orchestrator.resolve(wager, self.game, outcome, payout, multiplier)

    def _settle_loss(self, state, wager_id):
        wager = db.session.get(Wager, wager_id)
        if wager is None:
            return
        with self.orchestrator.ledger.player_lock(wager.player_id):
            wager = db.session.get(Wager, wager_id, populate_existing=True)
            if wager.phase != STAKED:
                return
            outcome = {'round_number': state.round_number, 'cashout_multiplier': None}
            try:
                self.orchestrator.resolve(wager, self.game, outcome, Decimal('0.00'), 0.0)
            except LedgerUnavailableException as e:
                logger.error(f"Loss of wager {wager_id} not recorded: {e.status_message}")

    def _crash(self, now):
        state = self.state
        state.phase = CRASHED
        state.multiplier = state.crash_point
        state.phase_started_at = now

        crash_round = db.session.get(CrashRound, state.round_id)
        crash_round.crashed_at = datetime.now(timezone.utc)
        db.session.commit()

        for wager_id in sorted(state.wager_ids):
            self._settle_loss(state, wager_id)
        state.wager_ids.clear()

        self.history.append(state.crash_point)
        logger.info(f"Crash round {state.round_number} crashed at {state.crash_point}x")
        self._publish(now)

    # ------------------------------------------------------------------
    # Player intents
    # ------------------------------------------------------------------

    def _player_wager(self, player_id, round_number, phase):
        return db.session.scalar(
            select(Wager).where(
                Wager.player_id == player_id,
                Wager.game == self.game.key,
                Wager.round_number == round_number,
                Wager.phase == phase,
            )
        )

    def _queued_wager(self, player_id):
        """A player has at most one queued bet, whichever round it was queued for."""
        return db.session.scalar(
            select(Wager).where(
                Wager.player_id == player_id,
                Wager.game == self.game.key,
                Wager.phase == QUEUED,
            ).order_by(Wager.id.desc()).limit(1)
        )

    def open_bet(self, player_id):
        """The player's staked or queued bet, if any."""
        return db.session.scalar(
            select(Wager).where(
                Wager.player_id == player_id,
                Wager.game == self.game.key,
                Wager.phase.in_([STAKED, QUEUED]),
            ).order_by(Wager.id.desc()).limit(1)
        )

    def _require_running(self):
        if self.state is None:
            raise InvalidStateException(status_message="Crash rounds are not running.")
        return self.state

    def place_bet(self, player_id, stake, auto_cashout=None, idempotency_key=None):
        """Debits immediately while waiting; while flying or crashed the bet is queued for the next round."""
        amount = self.game.validate_stake(stake)
        auto_cashout = self.game.validate_prediction(auto_cashout)
        key = idempotency_key or uuid.uuid4().hex

        with self._lock:
            state = self._require_running()
            queue = state.phase != WAITING
            round_number = state.round_number + 1 if queue else state.round_number

        with self.orchestrator.ledger.player_lock(player_id):
            existing = self.orchestrator.replay_wager(player_id, key)
            if existing is not None:
                return existing

            already = db.session.scalar(
                select(Wager).where(
                    Wager.player_id == player_id,
                    Wager.game == self.game.key,
                    Wager.round_number == round_number,
                    Wager.phase.in_([STAKED, QUEUED]),
                )
            )
            if already is not None:
                raise InvalidStateException(
                    status_message="You already have a bet on this round.",
                    details={'wager_id': already.id, 'round_number': round_number}
                )

            wager = self.orchestrator.open_wager(
                player_id, self.game, amount, {'auto_cashout': auto_cashout}, key,
                queue=queue, round_number=round_number, auto_cashout=auto_cashout
            )

        with self._lock:
            if queue:
                # picked up by the next take-off, even if its round left meanwhile
                self.queued_ids.add(wager.id)
                return wager
            state = self.state
            if state is not None and state.round_number == round_number and state.phase == WAITING:
                state.wager_ids.add(wager.id)
                return wager

        self.orchestrator.cancel_wager(wager, reason="round took off before the bet was placed")
        raise StaleActionException(
            status_message="The round has already taken off; your stake was refunded.",
            details={'wager_id': wager.id, 'round_number': round_number}
        )

    def cancel_bet(self, player_id):
        """Withdraws a queued bet, or refunds a staked one while the round is still waiting."""
        with self._lock:
            state = self._require_running()
            wager = self._queued_wager(player_id)
            if wager is None:
                wager = self._player_wager(player_id, state.round_number, STAKED)
                if wager is None:
                    raise InvalidStateException(status_message="You have no bet to cancel.")
                if state.phase != WAITING:
                    raise StaleActionException(
                        status_message="The round is already in flight; the bet can no longer be cancelled.",
                        details={'wager_id': wager.id, 'round_number': state.round_number}
                    )
            wager_id, phase = wager.id, wager.phase

        with self.orchestrator.ledger.player_lock(player_id):
            wager = db.session.get(Wager, wager_id, populate_existing=True)
            if wager.phase != phase:
                raise StaleActionException(
                    status_message="The bet can no longer be cancelled.",
                    details={'wager_id': wager_id, 'phase': wager.phase}
                )
            self.orchestrator.cancel_wager(wager)

        with self._lock:
            self.queued_ids.discard(wager_id)
            state.wager_ids.discard(wager_id)
        return wager

    def cash_out(self, player_id, now=None):
        """Settles at the multiplier implied by the clock when the request arrived."""
        now = self._clock() if now is None else now
        with self._lock:
            state = self._require_running()
            if state.phase == WAITING:
                raise InvalidStateException(status_message="The round has not started yet.")

            wager = self._player_wager(player_id, state.round_number, STAKED)
            if wager is None:
                if state.phase == CRASHED:
                    raise StaleActionException(status_message="The round has already crashed.")
                raise InvalidStateException(status_message="You have no active bet in this round.")

            multiplier = floor_multiplier(self.game.multiplier_at(now - state.flying_started_at))
            if state.phase == CRASHED or now >= state.crash_at or multiplier >= state.crash_point:
                raise StaleActionException(
                    status_message="The round has already crashed.",
                    details={'wager_id': wager.id, 'round_number': state.round_number}
                )
            wager_id = wager.id
            # neither auto cash-out nor the crash touches it from here on
            state.wager_ids.discard(wager_id)

        settled = None
        try:
            settled = self._settle_cash_out(state, wager_id, multiplier)
        finally:
            if settled is None:
                self._return_to_round(state, wager_id)
        if settled is None:
            raise StaleActionException(status_message="This bet has already been settled.")
        return settled

    def _return_to_round(self, state, wager_id):
        """Hands a wager whose cash-out did not complete back to the round it belongs to."""
        with self._lock:
            if state.phase == CRASHED:
                self._settle_loss(state, wager_id)
            else:
                state.wager_ids.add(wager_id)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def recent_history(self):
        """Crash points of the last rounds, newest first."""
        return list(reversed(self.history))

    def snapshot(self, now=None):
        now = self._clock() if now is None else now
        with self._lock:
            state = self.state
            if state is None:
                return {'phase': None, 'history': self.recent_history()}
            data = {
                'round_number': state.round_number,
                'phase': state.phase,
                'multiplier': state.multiplier,
                'server_seed_hash': state.source.server_seed_hash,
                'bets': len(state.wager_ids),
                'queued_bets': len(self.queued_ids),
                'history': self.recent_history(),
            }
            if state.phase == WAITING:
                data['time_remaining'] = round(max(0.0, self.waiting_duration - (now - state.phase_started_at)), 3)
            elif state.phase == FLYING:
                data['elapsed'] = round(max(0.0, now - state.flying_started_at), 3)
            else:
                data['crash_point'] = state.crash_point
                data['server_seed'] = state.source.server_seed
                data['client_seed'] = state.source.client_seed
                data['nonce'] = state.source.nonce
                data['time_remaining'] = round(max(0.0, self.crash_pause - (now - state.phase_started_at)), 3)
            return data

    def _publish(self, now):
        if self.event_bus:
            self.event_bus.publish(ROUND_PHASE_CHANGED, self.snapshot(now))
