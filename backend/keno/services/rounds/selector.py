"""Winning-set selection under a return-to-player band.

This is a best-effort heuristic, not an exact solver: it samples a bounded
number of random candidate draws, scores each against the round's ticket
pool and keeps the first one inside the band (or the closest seen). RTP
control is therefore probabilistic and is not guaranteed for any single
round.
"""
import random
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence

from .ledger import RtpBand
from .paytable import Paytable


@dataclass(frozen=True)
class TicketSnapshot:
    ticket_id: int
    numbers: FrozenSet[int]
    stake: int


@dataclass(frozen=True)
class DrawDecision:
    numbers: List[int]
    projected_payout: int
    total_stake: int
    trials: int
    in_band: bool

    @property
    def ratio(self) -> Optional[float]:
        if not self.total_stake:
            return None
        return self.projected_payout / self.total_stake


class UniformCandidates:
    """Every K-subset of 1..N equally likely."""
    name = 'uniform'

    def prepare(self, pool_size, tickets):
        return None

    def draw(self, rng, pool_size, draw_size, prepared):
        return rng.sample(range(1, pool_size + 1), draw_size)


class NearMissCandidates:
    """Weights numbers next to players' picks, but not picked themselves.

    Kept separate from the uniform strategy and only used when
    DRAW_STRATEGY=near_miss.
    """
    name = 'near_miss'

    def __init__(self, bias=3.0):
        self.bias = float(bias)

    def prepare(self, pool_size, tickets):
        picked = set()
        for t in tickets:
            picked |= t.numbers
        adjacent = set()
        for n in picked:
            adjacent.update(m for m in (n - 1, n + 1) if 1 <= m <= pool_size)
        adjacent -= picked
        return [self.bias if n in adjacent else 1.0 for n in range(1, pool_size + 1)]

    def draw(self, rng, pool_size, draw_size, prepared):
        if prepared is None:
            return rng.sample(range(1, pool_size + 1), draw_size)
        population = list(range(1, pool_size + 1))
        weights = list(prepared)
        chosen = []
        for _ in range(draw_size):
            idx = rng.choices(range(len(population)), weights=weights)[0]
            chosen.append(population.pop(idx))
            weights.pop(idx)
        return chosen


class DrawSelector:
    def __init__(self, paytable: Paytable, pool_size=80, draw_size=20, max_trials=100,
                 strategy=None, rng=None):
        if draw_size > pool_size:
            raise ValueError('draw size cannot exceed pool size')
        self.paytable = paytable
        self.pool_size = pool_size
        self.draw_size = draw_size
        self.max_trials = max(1, int(max_trials))
        self.strategy = strategy or UniformCandidates()
        self.rng = rng or random.SystemRandom()

    def projected_payout(self, tickets: Sequence[TicketSnapshot], candidate) -> int:
        drawn = set(candidate)
        return sum(
            self.paytable.payout(t.stake, len(t.numbers), len(t.numbers & drawn))
            for t in tickets
        )

    def select(self, tickets: Sequence[TicketSnapshot], band: RtpBand) -> DrawDecision:
        total_stake = sum(t.stake for t in tickets)
        prepared = self.strategy.prepare(self.pool_size, tickets)
        if not tickets or total_stake <= 0:
            numbers = self.strategy.draw(self.rng, self.pool_size, self.draw_size, prepared)
            return DrawDecision(numbers, 0, 0, 1, True)

        best = None
        best_payout = 0
        best_distance = None
        for trial in range(1, self.max_trials + 1):
            candidate = self.strategy.draw(self.rng, self.pool_size, self.draw_size, prepared)
            payout = self.projected_payout(tickets, candidate)
            ratio = payout / total_stake
            if band.contains(ratio):
                return DrawDecision(candidate, payout, total_stake, trial, True)
            distance = band.distance(ratio)
            if best_distance is None or distance < best_distance:
                best, best_payout, best_distance = candidate, payout, distance
        return DrawDecision(best, best_payout, total_stake, self.max_trials, False)


def build_selector(config, paytable: Paytable, rng=None) -> DrawSelector:
    strategy_name = config.get('DRAW_STRATEGY', 'uniform')
    if strategy_name == 'uniform':
        strategy = UniformCandidates()
    elif strategy_name == 'near_miss':
        strategy = NearMissCandidates(config.get('NEAR_MISS_BIAS', 3.0))
    else:
        raise ValueError(f'unknown DRAW_STRATEGY {strategy_name!r}')
    return DrawSelector(
        paytable,
        pool_size=int(config.get('KENO_POOL_SIZE', 80)),
        draw_size=int(config.get('KENO_DRAW_SIZE', 20)),
        max_trials=int(config.get('DRAW_MAX_TRIALS', 100)),
        strategy=strategy,
        rng=rng,
    )
