from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import Index, JSON, Numeric

db = SQLAlchemy()

Money = Numeric(18, 2, asdecimal=True)

# Wager.status
WAGER_PENDING = 'pending'
WAGER_WON = 'won'
WAGER_LOST = 'lost'
WAGER_CANCELLED = 'cancelled'
WAGER_UNCONFIRMED = 'unconfirmed'
RESOLVED_WAGER_STATUSES = (WAGER_WON, WAGER_LOST, WAGER_CANCELLED)

# LedgerEntry.category
LEDGER_BET = 'bet'
LEDGER_WIN = 'win'
LEDGER_BONUS = 'bonus'
LEDGER_DEPOSIT = 'deposit'
LEDGER_WITHDRAW = 'withdraw'
LEDGER_CANCEL_REFUND = 'cancel-refund'
LEDGER_CATEGORIES = (LEDGER_BET, LEDGER_WIN, LEDGER_BONUS, LEDGER_DEPOSIT, LEDGER_WITHDRAW, LEDGER_CANCEL_REFUND)
CREDIT_CATEGORIES = (LEDGER_WIN, LEDGER_BONUS, LEDGER_DEPOSIT, LEDGER_CANCEL_REFUND)
DEBIT_CATEGORIES = (LEDGER_BET, LEDGER_WITHDRAW)

# MinesBoard.status
BOARD_ACTIVE = 'active'
BOARD_BUSTED = 'busted'
BOARD_CASHED_OUT = 'cashed_out'
BOARD_CANCELLED = 'cancelled'


def utcnow():
    return datetime.now(timezone.utc)


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False, index=True)
    balance = db.Column(Money, default=Decimal('0.00'), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    anonymized_at = db.Column(db.DateTime(timezone=True), nullable=True)

    wagers = db.relationship('Wager', back_populates='player', lazy='dynamic')
    ledger_entries = db.relationship('LedgerEntry', back_populates='player', lazy='dynamic')

    def __repr__(self):
        return f"<Player {self.username}>"


class Wager(db.Model):
    __tablename__ = 'wager'
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    game = db.Column(db.String(50), nullable=False, index=True)
    stake = db.Column(Money, nullable=False)
    prediction = db.Column(JSON, nullable=True)
    outcome = db.Column(JSON, nullable=True)
    multiplier = db.Column(db.Float, nullable=True)
    payout = db.Column(Money, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=WAGER_PENDING, index=True)
    phase = db.Column(db.String(20), nullable=False, default='idle')
    idempotency_key = db.Column(db.String(100), unique=True, nullable=False)
    round_id = db.Column(db.Integer, db.ForeignKey('crash_round.id'), nullable=True, index=True)
    round_number = db.Column(db.Integer, nullable=True, index=True)
    auto_cashout = db.Column(db.Float, nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    player = db.relationship('Player', back_populates='wagers')
    ledger_entries = db.relationship('LedgerEntry', back_populates='wager', lazy='select')

    __table_args__ = (Index('ix_wager_player_game_status', 'player_id', 'game', 'status'),)

    @property
    def is_resolved(self):
        return self.status in RESOLVED_WAGER_STATUSES

    def __repr__(self):
        return f"<Wager {self.id} (Player: {self.player_id}, Game: {self.game}, Stake: {self.stake}, Status: {self.status})>"


class LedgerEntry(db.Model):
    """Append-only. Rows are never updated or deleted once written."""
    __tablename__ = 'ledger_entry'
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    amount = db.Column(Money, nullable=False)  # signed
    category = db.Column(db.String(20), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)
    balance_after = db.Column(Money, nullable=False)
    wager_id = db.Column(db.Integer, db.ForeignKey('wager.id'), nullable=True, index=True)
    idempotency_key = db.Column(db.String(120), unique=True, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    player = db.relationship('Player', back_populates='ledger_entries')
    wager = db.relationship('Wager', back_populates='ledger_entries')

    def __repr__(self):
        return f"<LedgerEntry {self.id} (Player: {self.player_id}, {self.category} {self.amount})>"


class CrashRound(db.Model):
    __tablename__ = 'crash_round'
    id = db.Column(db.Integer, primary_key=True)
    round_number = db.Column(db.Integer, unique=True, nullable=False, index=True)
    crash_point = db.Column(db.Float, nullable=False)
    server_seed = db.Column(db.String(255), nullable=False)
    server_seed_hash = db.Column(db.String(255), nullable=False)
    client_seed = db.Column(db.String(255), nullable=False)
    nonce = db.Column(db.Integer, nullable=False)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    crashed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)  # null while the round is in flight

    def __repr__(self):
        return f"<CrashRound {self.round_number} (Crash: {self.crash_point})>"


class MinesBoard(db.Model):
    __tablename__ = 'mines_board'
    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=False, index=True)
    wager_id = db.Column(db.Integer, db.ForeignKey('wager.id'), nullable=False, unique=True)
    grid_size = db.Column(db.Integer, nullable=False, default=25)
    mine_count = db.Column(db.Integer, nullable=False)
    mine_positions = db.Column(JSON, nullable=False)
    revealed_cells = db.Column(JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default=BOARD_ACTIVE, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)

    wager = db.relationship('Wager', backref=db.backref('mines_board', uselist=False))

    @property
    def safe_reveals(self):
        return len([c for c in (self.revealed_cells or []) if c not in (self.mine_positions or [])])

    def __repr__(self):
        return f"<MinesBoard {self.id} (Player: {self.player_id}, Mines: {self.mine_count}, Status: {self.status})>"
