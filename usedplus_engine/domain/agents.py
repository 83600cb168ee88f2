"""Generic probabilistic, time-delayed agent resolution"""

import random
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class TierSpec:
    """One row of an agent tier table"""

    fee_or_commission: float
    min_delay: int
    max_delay: int
    base_success_rate: float
    outcome_range: Tuple[float, float]
    early_success_chance: float = 0.0


def draw_delay(spec: TierSpec, rng: random.Random) -> int:
    """Months until resolution, uniform over [min_delay, max_delay]"""
    return rng.randint(spec.min_delay, spec.max_delay)


def roll(probability: float, rng: random.Random) -> bool:
    return rng.random() < probability


def draw_outcome(low: float, high: float, rng: random.Random) -> float:
    return rng.uniform(low, high)


def clamp_probability(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
