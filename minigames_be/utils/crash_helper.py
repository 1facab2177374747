import math
from decimal import Decimal

from .money import scale

HOUSE_EDGE_FACTOR = 0.99
MAX_CRASH_POINT = 1000.00
BASE_RATE = 0.1
ACCELERATION = 0.015

MIN_AUTO_CASHOUT = 1.01

STAKE_CONFIG = {'min_bet': Decimal('1'), 'max_bet': Decimal('1000')}


def floor_multiplier(value: float) -> float:
    # round first so 1.15 * 100 == 114.99999999999999 still floors to 115
    return math.floor(round(value * 100, 6)) / 100


def crash_point_from_draw(p: float, house_edge_factor: float = HOUSE_EDGE_FACTOR, max_crash_point: float = MAX_CRASH_POINT) -> float:
    """
    Inverse-CDF crash point for a uniform draw p in [0, 1):
    P(crash >= x) = house_edge_factor / x, floored at 1.00x and clamped to max_crash_point.
    """
    if not (0 <= p < 1):
        raise ValueError(f"Draw {p} outside [0, 1)")
    crash_point = max(1.00, house_edge_factor / (1 - p))
    return min(floor_multiplier(crash_point), max_crash_point)


def generate_crash_point(rng, house_edge_factor: float = HOUSE_EDGE_FACTOR, max_crash_point: float = MAX_CRASH_POINT) -> float:
    return crash_point_from_draw(rng.draw(), house_edge_factor, max_crash_point)


def multiplier_at(elapsed_seconds: float, base_rate: float = BASE_RATE, acceleration: float = ACCELERATION) -> float:
    """Growth curve driven by wall-clock time since take-off, never by tick count."""
    if elapsed_seconds < 0:
        elapsed_seconds = 0
    return 1.00 + base_rate * elapsed_seconds + acceleration * elapsed_seconds ** 2


def seconds_to_reach(multiplier: float, base_rate: float = BASE_RATE, acceleration: float = ACCELERATION) -> float:
    """Inverse of multiplier_at: elapsed time at which the curve reaches `multiplier`."""
    if multiplier <= 1.0:
        return 0.0
    if acceleration == 0:
        return (multiplier - 1.0) / base_rate
    return (-base_rate + math.sqrt(base_rate ** 2 + 4 * acceleration * (multiplier - 1.0))) / (2 * acceleration)


def validate_auto_cashout(value, max_crash_point: float = MAX_CRASH_POINT):
    if value is None:
        return {'success': True}
    try:
        value = float(value)
    except (TypeError, ValueError):
        return {'success': False, 'error': f"Invalid auto cash-out '{value}'. Must be a number."}
    if not (MIN_AUTO_CASHOUT <= value <= max_crash_point):
        return {'success': False, 'error': f"Auto cash-out {value} out of range ({MIN_AUTO_CASHOUT}-{max_crash_point})."}
    return {'success': True}


def compute_payout(stake, outcome) -> Decimal:
    """
    outcome: {'crash_point': float, 'cashout_multiplier': float | None}
    Pays stake x cash-out multiplier only when the cash-out happened strictly below the crash point.
    """
    cashout = outcome.get('cashout_multiplier')
    if cashout is None or cashout >= outcome['crash_point']:
        return Decimal('0.00')
    return scale(stake, floor_multiplier(cashout))
