from decimal import Decimal

from minigames_be.utils.coinflip_helper import (
    flip_coin, validate_side, compute_payout, HEADS, TAILS
)
from minigames_be.tests.test_rng import SequenceSource


def test_flip_coin_splits_unit_interval():
    assert flip_coin(SequenceSource([0.0])) == HEADS
    assert flip_coin(SequenceSource([0.4999])) == HEADS
    assert flip_coin(SequenceSource([0.5])) == TAILS
    assert flip_coin(SequenceSource([0.99])) == TAILS

def test_validate_side():
    assert validate_side(HEADS)['success']
    assert validate_side(TAILS)['success']
    result = validate_side('edge')
    assert not result['success']
    assert 'edge' in result['error']

def test_matching_side_pays_double():
    assert compute_payout(Decimal('7.50'), {'side': TAILS}, TAILS) == Decimal('15.00')

def test_other_side_pays_nothing():
    assert compute_payout(Decimal('7.50'), {'side': HEADS}, TAILS) == Decimal('0.00')

def test_custom_paytable_truncates_to_cent():
    # 3.33 x 1.98 = 6.5934 -> 6.59
    assert compute_payout(Decimal('3.33'), {'side': HEADS}, HEADS, {HEADS: 1.98, TAILS: 1.98}) == Decimal('6.59')
