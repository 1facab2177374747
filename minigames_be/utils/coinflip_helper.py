# minigames_be/utils/coinflip_helper.py
# HeadAndTail: binary draw, even money.

from decimal import Decimal

from .money import scale

HEADS = 'heads'
TAILS = 'tails'
SIDES = (HEADS, TAILS)

PAYOUT_MULTIPLIERS = {
    HEADS: 2,
    TAILS: 2,
}

STAKE_CONFIG = {'min_bet': Decimal('1'), 'max_bet': Decimal('1000')}


def flip_coin(rng):
    return HEADS if rng.draw() < 0.5 else TAILS


def validate_side(side):
    if side not in SIDES:
        return {'success': False, 'error': f"Invalid side '{side}'. Valid sides are: {list(SIDES)}"}
    return {'success': True}


def compute_payout(stake, outcome, side, payout_multipliers=None) -> Decimal:
    multipliers = payout_multipliers or PAYOUT_MULTIPLIERS
    if outcome['side'] == side and side in multipliers:
        return scale(stake, multipliers[side])
    return Decimal('0.00')
