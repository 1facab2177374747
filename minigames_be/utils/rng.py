"""
Random outcome sources shared by every game.

All game code draws through an OutcomeGenerator so the source can be swapped
(system CSPRNG for instant games, HMAC seed chain for crash rounds) without
touching any paytable.
"""

import hashlib
import hmac
import os
import secrets
from typing import Sequence


def generate_server_seed() -> str:
    return os.urandom(32).hex()


def hash_server_seed(server_seed: str) -> str:
    return hashlib.sha256(server_seed.encode('utf-8')).hexdigest()


class OutcomeGenerator:
    """Uniform draws in [0, 1) plus the convenience wrappers games need."""

    def draw(self) -> float:
        raise NotImplementedError

    def draw_int(self, min_value: int, max_value: int) -> int:
        """Uniform integer in [min_value, max_value], both inclusive."""
        if min_value > max_value:
            raise ValueError(f"draw_int range is inverted: min {min_value} > max {max_value}")
        span = max_value - min_value + 1
        return min_value + min(int(self.draw() * span), span - 1)

    def draw_weighted(self, weights: Sequence[float]) -> int:
        """Index drawn with probability proportional to its weight."""
        if not weights or any(w < 0 for w in weights):
            raise ValueError("weights must be a non-empty sequence of non-negative numbers")
        total = float(sum(weights))
        if total <= 0:
            raise ValueError("weights must not all be zero")
        target = self.draw() * total
        running = 0.0
        for index, weight in enumerate(weights):
            running += weight
            if target < running:
                return index
        # float accumulation can leave target == total; fall back to the last non-zero weight
        return max(i for i, w in enumerate(weights) if w > 0)

    def choice(self, population: Sequence):
        if not population:
            raise ValueError("cannot choose from an empty sequence")
        return population[self.draw_int(0, len(population) - 1)]

    def sample(self, population: Sequence, k: int) -> list:
        """k distinct elements, drawn without replacement (partial Fisher-Yates)."""
        if k < 0 or k > len(population):
            raise ValueError(f"sample size {k} out of range for population of {len(population)}")
        pool = list(population)
        for i in range(k):
            j = self.draw_int(i, len(pool) - 1)
            pool[i], pool[j] = pool[j], pool[i]
        return pool[:k]


class SecureRandomSource(OutcomeGenerator):
    """Operating-system CSPRNG. Default source for instant games and mines."""

    def __init__(self):
        self._random = secrets.SystemRandom()

    def draw(self) -> float:
        return self._random.random()


class ProvablyFairSource(OutcomeGenerator):
    """
    Deterministic HMAC-SHA256 stream keyed by a secret server seed.

    The SHA-256 of the server seed is published before the round; once the
    round is over the seed itself is revealed so anyone can recompute every
    draw from (server_seed, client_seed, nonce).
    """

    def __init__(self, server_seed: str = None, client_seed: str = None, nonce: int = 0):
        self.server_seed = server_seed or generate_server_seed()
        self.client_seed = client_seed or os.urandom(16).hex()
        self.nonce = nonce
        self.server_seed_hash = hash_server_seed(self.server_seed)
        self._cursor = 0

    def _digest(self, cursor: int) -> str:
        message = f"{self.client_seed}:{self.nonce}:{cursor}"
        return hmac.new(
            bytes.fromhex(self.server_seed),
            msg=message.encode('utf-8'),
            digestmod=hashlib.sha256
        ).hexdigest()

    def draw(self) -> float:
        game_hash_hex = self._digest(self._cursor)
        self._cursor += 1
        # 52 bits fit exactly in a double's mantissa
        return int(game_hash_hex[:13], 16) / (2 ** 52)

    def verify(self, expected_hash: str) -> bool:
        return hmac.compare_digest(hash_server_seed(self.server_seed), expected_hash)


def first_draw(server_seed: str, client_seed: str, nonce: int) -> float:
    """Recompute the first draw of a revealed round, for verification."""
    return ProvablyFairSource(server_seed, client_seed, nonce).draw()
