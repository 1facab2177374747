# minigames_be/utils/slots_helper.py
"""
Reel games: three symbol reels plus one multiplier reel, each stop drawn
independently and uniformly from its own strip.

card_coming  three-of-a-kind with wild substitution, paid as a fraction of
             the stake per symbol, times three, times the multiplier reel.
taka_coming  the three symbol reels are digits read left to right as a
             number (blank strips contribute nothing), times the multiplier
             reel; high-stake spins use a richer strip set.

Both apply a hard win cap looked up from the stake tier.
"""

from decimal import Decimal

from .money import scale, to_amount

BLANK = '—'
WILD = 'W'

CARD_COMING_REELS = [
    ['W', 'A+', 'A', 'K', 'Q', 'J', '10'],
    ['A+', 'W', 'A', 'K', 'Q', 'J', '10'],
    ['A', 'K', 'W', 'A+', 'Q', 'J', '10'],
]
CARD_COMING_MULTIPLIER_REEL = ['x2', 'x5', 'x2', 'x10', 'x2', 'x2', 'x2', 'x2', 'x2', 'x5', 'x10']

# Fraction of the stake paid per matched symbol
CARD_COMING_SYMBOL_VALUES = {
    'W': 2.0,
    'A+': 2.0,
    'A': 1.0,
    'K': 0.8,
    'Q': 0.7,
    'J': 0.6,
    '10': 0.5,
}

TAKA_COMING_REELS = [
    ['—', '1', '—', '5', '—', '10', '—', '0', '—', '2', '—'],
    ['—', '0', '—', '5', '—', '1', '—', '0', '—', '0', '—'],
    ['—', '0', '—', '0', '—', '0', '—', '5', '—', '0', '—'],
]
TAKA_COMING_MULTIPLIER_REEL = ['—', 'x2', '—', 'x5', '—', 'x10', '—', 'x2', '—']

TAKA_COMING_HIGH_REELS = [
    ['—', '10', '—', '50', '—', '100', '—', '10', '—', '50', '—'],
    ['—', '0', '—', '5', '—', '0', '—', '10', '—', '5', '—'],
    ['—', '00', '—', '0', '—', '00', '—', '5', '—', '0', '—'],
]
TAKA_COMING_HIGH_MULTIPLIER_REEL = ['—', 'x2', '—', 'x5', '—', 'x10', '—', 'x5', '—']
TAKA_COMING_HIGH_STAKE = Decimal('100')

# (highest stake in tier, absolute cap); stakes above the last tier fall back to a multiple of the stake
TAKA_COMING_CAP_TIERS = [
    (Decimal('10'), Decimal('400')),
    (Decimal('50'), Decimal('2500')),
    (Decimal('100'), Decimal('10000')),
    (Decimal('500'), Decimal('50000')),
    (Decimal('1000'), Decimal('100000')),
    (Decimal('3000'), Decimal('250000')),
    (Decimal('5000'), Decimal('600000')),
    (Decimal('10000'), Decimal('1000000')),
]
TAKA_COMING_DEFAULT_CAP_MULTIPLE = 100
CARD_COMING_DEFAULT_CAP_MULTIPLE = 1000

STAKE_CONFIG = {'min_bet': Decimal('1'), 'max_bet': Decimal('10000')}


def parse_multiplier(symbol) -> int:
    """'x5' -> 5; blanks and anything unrecognised -> 1."""
    if isinstance(symbol, str) and symbol.startswith('x') and symbol[1:].isdigit():
        return int(symbol[1:])
    return 1


def win_cap(stake, cap_tiers, default_cap_multiple) -> Decimal:
    stake = Decimal(stake)
    for upper_stake, cap in cap_tiers:
        if stake <= Decimal(upper_stake):
            return to_amount(cap)
    return scale(stake, default_cap_multiple)


def spin_reels(rng, reels, multiplier_reel):
    """Draws one stop per reel. Returns {'stops', 'symbols', 'multiplier'}."""
    stops = [rng.draw_int(0, len(strip) - 1) for strip in reels]
    multiplier_stop = rng.draw_int(0, len(multiplier_reel) - 1)
    return {
        'stops': stops + [multiplier_stop],
        'symbols': [strip[stop] for strip, stop in zip(reels, stops)],
        'multiplier': multiplier_reel[multiplier_stop],
    }


def match_symbol(symbols, wild=WILD):
    """The symbol all three reels agree on (wilds substitute), or None."""
    non_wilds = [s for s in symbols if s != wild and s != BLANK]
    if not non_wilds:
        return wild if symbols and all(s == wild for s in symbols) else None
    first = non_wilds[0]
    if all(s == first or s == wild for s in symbols):
        return first
    return None


def card_coming_payout(stake, outcome, symbol_values=None, cap_tiers=(), default_cap_multiple=CARD_COMING_DEFAULT_CAP_MULTIPLE, wild=WILD) -> Decimal:
    values = symbol_values or CARD_COMING_SYMBOL_VALUES
    matched = match_symbol(outcome['symbols'], wild)
    if matched is None or matched not in values:
        return Decimal('0.00')
    base_win = scale(stake, values[matched]) * 3
    final_win = base_win * parse_multiplier(outcome.get('multiplier'))
    return min(final_win, win_cap(stake, cap_tiers, default_cap_multiple))


def taka_coming_base_value(symbols) -> int:
    combined = ''.join('' if s == BLANK else s for s in symbols)
    return int(combined) if combined else 0


def taka_coming_payout(stake, outcome, cap_tiers=None, default_cap_multiple=TAKA_COMING_DEFAULT_CAP_MULTIPLE) -> Decimal:
    base_value = taka_coming_base_value(outcome['symbols'])
    final_win = to_amount(base_value * parse_multiplier(outcome.get('multiplier')))
    tiers = TAKA_COMING_CAP_TIERS if cap_tiers is None else cap_tiers
    return min(final_win, win_cap(stake, tiers, default_cap_multiple))


def taka_coming_strips(stake, high_stake=TAKA_COMING_HIGH_STAKE, low=None, high=None):
    """Symbol strips in play for a stake: (reels, multiplier_reel)."""
    low = low or (TAKA_COMING_REELS, TAKA_COMING_MULTIPLIER_REEL)
    high = high or (TAKA_COMING_HIGH_REELS, TAKA_COMING_HIGH_MULTIPLIER_REEL)
    return high if Decimal(stake) >= Decimal(high_stake) else low
