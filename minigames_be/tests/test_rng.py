import unittest

from minigames_be.utils.rng import (
    OutcomeGenerator, SecureRandomSource, ProvablyFairSource,
    first_draw, generate_server_seed, hash_server_seed
)


class SequenceSource(OutcomeGenerator):
    """Replays a fixed list of draws, cycling when exhausted."""

    def __init__(self, values):
        self.values = list(values)
        self.index = 0

    def draw(self):
        value = self.values[self.index % len(self.values)]
        self.index += 1
        return value


class TestOutcomeGenerator(unittest.TestCase):

    def test_draw_int_bounds(self):
        self.assertEqual(SequenceSource([0.0]).draw_int(1, 6), 1)
        self.assertEqual(SequenceSource([0.999999]).draw_int(1, 6), 6)
        self.assertEqual(SequenceSource([0.5]).draw_int(1, 6), 4)

    def test_draw_int_inverted_range(self):
        with self.assertRaises(ValueError):
            SequenceSource([0.1]).draw_int(6, 1)

    def test_draw_weighted(self):
        weights = [1, 0, 3]
        self.assertEqual(SequenceSource([0.1]).draw_weighted(weights), 0)
        self.assertEqual(SequenceSource([0.3]).draw_weighted(weights), 2)
        self.assertEqual(SequenceSource([0.99]).draw_weighted(weights), 2)

    def test_draw_weighted_rejects_bad_weights(self):
        source = SequenceSource([0.5])
        with self.assertRaises(ValueError):
            source.draw_weighted([])
        with self.assertRaises(ValueError):
            source.draw_weighted([0, 0])
        with self.assertRaises(ValueError):
            source.draw_weighted([1, -1])

    def test_choice(self):
        self.assertEqual(SequenceSource([0.0]).choice(['a', 'b', 'c']), 'a')
        self.assertEqual(SequenceSource([0.7]).choice(['a', 'b', 'c']), 'c')
        with self.assertRaises(ValueError):
            SequenceSource([0.0]).choice([])

    def test_sample_is_distinct(self):
        source = SecureRandomSource()
        for _ in range(200):
            picked = source.sample(range(25), 5)
            self.assertEqual(len(picked), 5)
            self.assertEqual(len(set(picked)), 5)
            self.assertTrue(all(0 <= cell < 25 for cell in picked))

    def test_sample_size_out_of_range(self):
        with self.assertRaises(ValueError):
            SecureRandomSource().sample(range(3), 4)

    def test_secure_source_range(self):
        source = SecureRandomSource()
        for _ in range(1000):
            value = source.draw()
            self.assertTrue(0.0 <= value < 1.0)


class TestProvablyFairSource(unittest.TestCase):

    def test_same_seeds_same_draws(self):
        seed = generate_server_seed()
        first = ProvablyFairSource(seed, 'client', 7)
        second = ProvablyFairSource(seed, 'client', 7)
        self.assertEqual([first.draw() for _ in range(5)], [second.draw() for _ in range(5)])

    def test_nonce_changes_stream(self):
        seed = generate_server_seed()
        self.assertNotEqual(
            ProvablyFairSource(seed, 'client', 1).draw(),
            ProvablyFairSource(seed, 'client', 2).draw()
        )

    def test_draws_in_unit_interval(self):
        source = ProvablyFairSource()
        for _ in range(500):
            value = source.draw()
            self.assertTrue(0.0 <= value < 1.0)

    def test_hash_is_published_and_verifiable(self):
        source = ProvablyFairSource(nonce=3)
        self.assertEqual(source.server_seed_hash, hash_server_seed(source.server_seed))
        self.assertTrue(source.verify(source.server_seed_hash))
        self.assertFalse(source.verify(hash_server_seed(generate_server_seed())))

    def test_first_draw_recomputes_round(self):
        source = ProvablyFairSource(nonce=42)
        expected = first_draw(source.server_seed, source.client_seed, source.nonce)
        self.assertEqual(source.draw(), expected)


if __name__ == '__main__':
    unittest.main()
