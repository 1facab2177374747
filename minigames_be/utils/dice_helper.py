# minigames_be/utils/dice_helper.py
# BigSmall: three dice, bet on the total being small (4-10) or big (11-17).

from decimal import Decimal

from .money import scale

DICE_COUNT = 3
DICE_FACES = 6

SMALL = 'small'
BIG = 'big'
TRIPLE = 'triple'  # totals 3 and 18, lose for both sides

SELECTIONS = (SMALL, BIG)

PAYOUT_MULTIPLIERS = {
    SMALL: 2,
    BIG: 2,
}

STAKE_CONFIG = {'min_bet': Decimal('1'), 'max_bet': Decimal('10000')}


def roll_dice(rng):
    """Returns the three dice faces drawn from the given outcome generator."""
    return [rng.draw_int(1, DICE_FACES) for _ in range(DICE_COUNT)]


def classify_total(total: int) -> str:
    if not (DICE_COUNT <= total <= DICE_COUNT * DICE_FACES):
        raise ValueError(f"Dice total {total} out of range")
    if 4 <= total <= 10:
        return SMALL
    if 11 <= total <= 17:
        return BIG
    return TRIPLE


def validate_selection(selection):
    if selection not in SELECTIONS:
        return {'success': False, 'error': f"Invalid selection '{selection}'. Valid selections are: {list(SELECTIONS)}"}
    return {'success': True}


def compute_payout(stake, outcome, selection, payout_multipliers=None) -> Decimal:
    """
    Pure payout for a resolved roll.
    outcome: dict with 'dice' (list of faces) or 'total'.
    Returns the amount credited (stake included), 0 on a loss.
    """
    multipliers = payout_multipliers or PAYOUT_MULTIPLIERS
    total = outcome['total'] if 'total' in outcome else sum(outcome['dice'])
    result_class = classify_total(total)
    if result_class == selection and selection in multipliers:
        return scale(stake, multipliers[selection])
    return Decimal('0.00')
