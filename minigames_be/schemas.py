from marshmallow import Schema, fields, EXCLUDE
from marshmallow.validate import Length, OneOf, Range
from marshmallow_sqlalchemy import SQLAlchemyAutoSchema

from .models import db, Wager, LedgerEntry, CrashRound, MinesBoard, BOARD_ACTIVE
from .utils.coinflip_helper import SIDES
from .utils.crash_helper import MIN_AUTO_CASHOUT, MAX_CRASH_POINT
from .utils.dice_helper import SELECTIONS

# Wager keys get ':bet', ':win' or ':refund' appended for their ledger entries
IDEMPOTENCY_KEY_MAX_LENGTH = 80


# --- Base Schemas ---
class StakeRequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    # Range and precision are enforced per game, so INVALID_STAKE can report the limits
    stake = fields.Decimal(required=True, allow_nan=False)
    idempotency_key = fields.Str(
        load_default=None,
        validate=Length(min=1, max=IDEMPOTENCY_KEY_MAX_LENGTH)
    )


class PaginationSchema(Schema):
    limit = fields.Int(load_default=50, validate=Range(min=1, max=200))
    offset = fields.Int(load_default=0, validate=Range(min=0))


# --- Game Request Schemas ---
class DicePlaySchema(StakeRequestSchema):
    prediction = fields.Str(
        required=True,
        validate=OneOf(SELECTIONS, error="Prediction must be one of: {choices}.")
    )


class CoinFlipPlaySchema(StakeRequestSchema):
    prediction = fields.Str(
        required=True,
        validate=OneOf(SIDES, error="Prediction must be one of: {choices}.")
    )


class SlotSpinSchema(StakeRequestSchema):
    pass


class MinesStartSchema(StakeRequestSchema):
    mine_count = fields.Int(required=True, strict=True)


class MinesRevealSchema(Schema):
    cell = fields.Int(required=True, strict=True, validate=Range(min=0))


class CrashBetSchema(StakeRequestSchema):
    auto_cashout = fields.Float(
        load_default=None,
        allow_none=True,
        validate=Range(min=MIN_AUTO_CASHOUT, max=MAX_CRASH_POINT)
    )


# --- Model Schemas ---
class WagerSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = Wager
        load_instance = True
        sqla_session = db.session
        include_fk = True

    stake = fields.Decimal(as_string=True, dump_only=True)
    payout = fields.Decimal(as_string=True, dump_only=True, allow_none=True)


class LedgerEntrySchema(SQLAlchemyAutoSchema):
    class Meta:
        model = LedgerEntry
        load_instance = True
        sqla_session = db.session
        include_fk = True
        exclude = ('idempotency_key',)

    amount = fields.Decimal(as_string=True, dump_only=True)
    balance_after = fields.Decimal(as_string=True, dump_only=True)


class LedgerPageSchema(PaginationSchema):
    balance = fields.Decimal(as_string=True, dump_only=True)
    items = fields.Nested(LedgerEntrySchema, many=True, dump_only=True)


class CrashRoundSchema(SQLAlchemyAutoSchema):
    """Full round record including the revealed seed; only dumped once the round has crashed."""
    class Meta:
        model = CrashRound
        load_instance = True
        sqla_session = db.session


class MinesBoardSchema(SQLAlchemyAutoSchema):
    class Meta:
        model = MinesBoard
        load_instance = True
        sqla_session = db.session
        include_fk = True

    safe_reveals = fields.Int(dump_only=True)
    mine_positions = fields.Method("get_mine_positions", dump_only=True)
    wager = fields.Nested(WagerSchema, dump_only=True)

    def get_mine_positions(self, obj):
        # never leak the layout of a board still in play
        if obj.status == BOARD_ACTIVE:
            return None
        return list(obj.mine_positions)
