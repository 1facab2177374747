# minigames_be/utils/mines_helper.py
"""
Mines odds table.

A 25 cell grid hides K mines. Each safe reveal advances the step counter and
the cash-out multiplier follows the fair odds of drawing without
replacement, scaled down by the house edge factor:

    p(i) = (N - K - (i - 1)) / (N - (i - 1))
    m(i) = m(i - 1) * house_edge_factor / p(i),  m(0) = 1

For the mine counts in CURATED_MULTIPLIERS the first steps use the curated
(rounded) values and the formula continues from the last curated entry.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from .money import scale

GRID_SIZE = 25
MIN_MINES = 1
MAX_MINES = GRID_SIZE - 1
HOUSE_EDGE_FACTOR = 0.97

CURATED_MULTIPLIERS = {
    1: [1.01, 1.05, 1.10, 1.15, 1.21, 1.28, 1.35, 1.43, 1.52],
    3: [1.10, 1.26, 1.45, 1.68, 1.96, 2.30, 2.73, 3.28, 3.98, 4.70, 5.88, 7.48, 9.72],
    5: [1.21, 1.53, 1.96, 2.53, 3.32, 4.25, 5.77, 7.98, 11.31, 16.45, 24.68, 38.39, 62.39, 106.95],
    10: [1.62, 2.77, 4.70, 8.62, 16.45, 32.91, 69.47, 156.31, 379.61, 1012.3],
    20: [4.65, 27.90, 213.90, 2352.90, 49410.9],
}

STAKE_CONFIG = {'min_bet': Decimal('1'), 'max_bet': Decimal('10000')}


def max_safe_steps(mine_count: int, grid_size: int = GRID_SIZE) -> int:
    return grid_size - mine_count


def validate_mine_count(mine_count, grid_size: int = GRID_SIZE):
    if not isinstance(mine_count, int) or isinstance(mine_count, bool):
        return {'success': False, 'error': f"Invalid mine count '{mine_count}'. Must be an integer."}
    if not (MIN_MINES <= mine_count <= grid_size - 1):
        return {'success': False, 'error': f"Mine count {mine_count} out of range ({MIN_MINES}-{grid_size - 1})."}
    return {'success': True}


def safe_probability(step: int, mine_count: int, grid_size: int = GRID_SIZE) -> float:
    """Probability that the step-th reveal (1-based) is safe given all previous ones were."""
    remaining = grid_size - (step - 1)
    return (grid_size - mine_count - (step - 1)) / remaining


def build_multiplier_table(mine_count: int,
                           grid_size: int = GRID_SIZE,
                           house_edge_factor: float = HOUSE_EDGE_FACTOR,
                           curated: Optional[Dict[int, List[float]]] = None) -> List[float]:
    """Cumulative multipliers for steps 1..max_safe_steps, index 0 is the first safe reveal."""
    result = validate_mine_count(mine_count, grid_size)
    if not result['success']:
        raise ValueError(result['error'])
    curated_list = (CURATED_MULTIPLIERS if curated is None else curated).get(mine_count, [])

    table = []
    current = 1.0
    for step in range(1, max_safe_steps(mine_count, grid_size) + 1):
        if step <= len(curated_list):
            current = float(curated_list[step - 1])
        else:
            current *= house_edge_factor / safe_probability(step, mine_count, grid_size)
        table.append(round(current, 4))
    return table


def multiplier_at(step: int, table: List[float]) -> float:
    if step < 1 or step > len(table):
        raise ValueError(f"Step {step} out of range (1-{len(table)})")
    return table[step - 1]


def place_mines(rng, mine_count: int, grid_size: int = GRID_SIZE) -> List[int]:
    """Chooses mine cells uniformly without replacement."""
    return sorted(rng.sample(range(grid_size), mine_count))


def compute_payout(stake, outcome, table: List[float]) -> Decimal:
    """
    outcome: {'hit_mine': bool, 'safe_reveals': int}
    A mine hit or a board with no safe reveal pays nothing.
    """
    if outcome.get('hit_mine') or outcome.get('safe_reveals', 0) < 1:
        return Decimal('0.00')
    return scale(stake, multiplier_at(outcome['safe_reveals'], table))
