from __future__ import annotations

import random


class RandomDraw:
    """Uniform draws used by every resolver.

    Wraps a ``random.Random`` so callers can inject a seeded source; no
    determinism is promised beyond that.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def uniform_int(self, low: int, high: int) -> int:
        """Integer in [low, high], both ends inclusive."""
        if low > high:
            raise ValueError(f"empty range [{low}, {high}]")
        return self._rng.randint(low, high)

    def uniform_float(self, low: float, high: float) -> float:
        """Float in [low, high)."""
        if low > high:
            raise ValueError(f"empty range [{low}, {high})")
        return low + (high - low) * self._rng.random()

    def choice_index(self, length: int) -> int:
        return self.uniform_int(0, length - 1)

    def growth_amount(self, total_growths: int | None, shrink_ratio: float) -> int:
        """Whole-centimetre growth in [-15, -1] or [1, 15].

        Players with fewer than three growths shrink far less often.
        """
        if total_growths is None or total_growths < 3:
            shrink_ratio = min(0.2, shrink_ratio / 3)
        is_positive = self.uniform_float(0.0, 1.0) >= shrink_ratio
        amount = self.uniform_int(1, 15)
        return amount if is_positive else -amount

    def bonus_amount(self) -> int:
        return self.uniform_int(1, 15)
