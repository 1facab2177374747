import unittest
from decimal import Decimal

from minigames_be.utils.mines_helper import (
    build_multiplier_table, compute_payout, max_safe_steps, multiplier_at,
    place_mines, safe_probability, validate_mine_count,
    CURATED_MULTIPLIERS, GRID_SIZE
)
from minigames_be.utils.rng import SecureRandomSource


class TestMinesHelper(unittest.TestCase):

    def test_validate_mine_count(self):
        self.assertTrue(validate_mine_count(1)['success'])
        self.assertTrue(validate_mine_count(24)['success'])
        for bad in (0, 25, -3, True, '3', 2.5, None):
            self.assertFalse(validate_mine_count(bad)['success'], bad)

    def test_max_safe_steps(self):
        self.assertEqual(max_safe_steps(3), 22)
        self.assertEqual(max_safe_steps(24), 1)

    def test_safe_probability(self):
        self.assertAlmostEqual(safe_probability(1, 3), 22 / 25)
        self.assertAlmostEqual(safe_probability(2, 3), 21 / 24)

    def test_table_uses_curated_values_first(self):
        table = build_multiplier_table(3)
        self.assertEqual(table[:5], [1.10, 1.26, 1.45, 1.68, 1.96])
        self.assertEqual(len(table), max_safe_steps(3))

    def test_table_strictly_increasing_for_every_mine_count(self):
        for mine_count in range(1, GRID_SIZE):
            table = build_multiplier_table(mine_count)
            self.assertEqual(len(table), GRID_SIZE - mine_count)
            for previous, current in zip(table, table[1:]):
                self.assertGreater(current, previous, f"{mine_count} mines: {table}")

    def test_formula_continues_after_curated_values(self):
        table = build_multiplier_table(1)
        curated = CURATED_MULTIPLIERS[1]
        # step 10 with 1 mine: p = 15/16
        expected = round(curated[-1] * 0.97 / (15 / 16), 4)
        self.assertAlmostEqual(table[len(curated)], expected, places=4)

    def test_uncurated_mine_count_follows_formula(self):
        table = build_multiplier_table(24)
        self.assertEqual(table, [round(0.97 * 25, 4)])

    def test_invalid_mine_count_rejected(self):
        with self.assertRaises(ValueError):
            build_multiplier_table(25)

    def test_multiplier_at_is_one_based(self):
        table = build_multiplier_table(3)
        self.assertEqual(multiplier_at(1, table), 1.10)
        self.assertEqual(multiplier_at(4, table), 1.68)
        with self.assertRaises(ValueError):
            multiplier_at(0, table)
        with self.assertRaises(ValueError):
            multiplier_at(23, table)

    def test_cash_out_after_four_safe_reveals(self):
        table = build_multiplier_table(3)
        payout = compute_payout(Decimal('50'), {'hit_mine': False, 'safe_reveals': 4}, table)
        self.assertEqual(payout, Decimal('84.00'))

    def test_mine_hit_pays_nothing(self):
        table = build_multiplier_table(3)
        self.assertEqual(compute_payout(Decimal('50'), {'hit_mine': True, 'safe_reveals': 4}, table), Decimal('0.00'))
        self.assertEqual(compute_payout(Decimal('50'), {'hit_mine': False, 'safe_reveals': 0}, table), Decimal('0.00'))

    def test_full_board_win_pays_last_step(self):
        for mine_count in (1, 3, 10, 24):
            table = build_multiplier_table(mine_count)
            steps = max_safe_steps(mine_count)
            payout = compute_payout(Decimal('1'), {'hit_mine': False, 'safe_reveals': steps}, table)
            self.assertGreater(payout, Decimal('1'))

    def test_place_mines(self):
        source = SecureRandomSource()
        for mine_count in (1, 5, 24):
            positions = place_mines(source, mine_count)
            self.assertEqual(len(positions), mine_count)
            self.assertEqual(len(set(positions)), mine_count)
            self.assertEqual(positions, sorted(positions))
            self.assertTrue(all(0 <= cell < GRID_SIZE for cell in positions))


if __name__ == '__main__':
    unittest.main()
