import pytest
from decimal import Decimal

from minigames_be.utils.crash_helper import (
    compute_payout, crash_point_from_draw, floor_multiplier, generate_crash_point,
    multiplier_at, seconds_to_reach, validate_auto_cashout, MAX_CRASH_POINT
)
from minigames_be.utils.rng import SecureRandomSource


def test_zero_draw_crashes_at_one():
    assert crash_point_from_draw(0.0) == 1.00

def test_draw_maps_through_inverse_cdf():
    # 0.99 / (1 - 0.604) = 2.5
    assert crash_point_from_draw(0.604) == 2.50

def test_crash_point_is_clamped():
    assert crash_point_from_draw(0.9999999) == MAX_CRASH_POINT
    assert crash_point_from_draw(0.9999999, max_crash_point=50.0) == 50.0

@pytest.mark.parametrize('draw', [1.0, 1.5, -0.01])
def test_draw_outside_unit_interval_rejected(draw):
    with pytest.raises(ValueError):
        crash_point_from_draw(draw)

def test_floor_multiplier_truncates_to_hundredths():
    assert floor_multiplier(1.15) == 1.15
    assert floor_multiplier(2.499) == 2.49
    assert floor_multiplier(3.0) == 3.0

def test_generated_points_stay_in_range():
    source = SecureRandomSource()
    for _ in range(1000):
        point = generate_crash_point(source)
        assert 1.00 <= point <= MAX_CRASH_POINT
        assert point == floor_multiplier(point)

def test_curve_grows_with_elapsed_time():
    assert multiplier_at(0) == 1.0
    assert multiplier_at(-5) == 1.0
    assert multiplier_at(10) == pytest.approx(3.5)
    assert multiplier_at(2) < multiplier_at(4) < multiplier_at(8)

def test_seconds_to_reach_inverts_curve():
    assert seconds_to_reach(1.0) == 0.0
    for target in (1.5, 2.0, 2.5, 10.0):
        assert multiplier_at(seconds_to_reach(target)) == pytest.approx(target)
    assert seconds_to_reach(3.5) == pytest.approx(10.0)

def test_validate_auto_cashout():
    assert validate_auto_cashout(None)['success']
    assert validate_auto_cashout(1.01)['success']
    assert validate_auto_cashout('2.5')['success']
    assert not validate_auto_cashout(1.0)['success']
    assert not validate_auto_cashout(1001)['success']
    assert not validate_auto_cashout('soon')['success']

def test_cash_out_below_crash_point_pays():
    payout = compute_payout(Decimal('20'), {'crash_point': 2.5, 'cashout_multiplier': 2.0})
    assert payout == Decimal('40.00')

def test_cash_out_at_or_after_crash_point_loses():
    assert compute_payout(Decimal('20'), {'crash_point': 2.5, 'cashout_multiplier': 2.5}) == Decimal('0.00')
    assert compute_payout(Decimal('20'), {'crash_point': 2.5, 'cashout_multiplier': None}) == Decimal('0.00')

def test_cash_out_multiplier_floored_before_paying():
    payout = compute_payout(Decimal('10'), {'crash_point': 3.0, 'cashout_multiplier': 1.999})
    assert payout == Decimal('19.90')
