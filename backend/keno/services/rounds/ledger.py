"""Statistics ledger: running stake/payout totals and what is derived from them.

The totals themselves live in the ``aggregate_stats`` row and are only ever
changed by relative increments inside the settlement transaction (see
``RoundStore.settle_ticket``). This module turns a snapshot of them into
the RTP band for the next draw and decides jackpot eligibility.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Optional


@dataclass(frozen=True)
class StatsSnapshot:
    total_staked: int = 0
    total_paid_out: int = 0
    jackpot_pool: int = 0

    @property
    def implied_rtp(self) -> Optional[float]:
        if not self.total_staked:
            return None
        return self.total_paid_out / self.total_staked


@dataclass(frozen=True)
class RtpBand:
    """Accepted range for a round's payout / stake ratio."""
    floor: float
    ceiling: float

    def contains(self, ratio: float) -> bool:
        return self.floor <= ratio <= self.ceiling

    def distance(self, ratio: float) -> float:
        if ratio < self.floor:
            return self.floor - ratio
        if ratio > self.ceiling:
            return ratio - self.ceiling
        return 0.0


class StatisticsLedger:
    def __init__(self, config):
        self.mode = config.get('RTP_MODE', 'round')
        self.floor = float(config.get('RTP_FLOOR', 0.0))
        self.ceiling = float(config.get('RTP_CEILING', 0.70))
        self.global_floor = float(config.get('RTP_GLOBAL_FLOOR', 0.70))
        self.global_ceiling = float(config.get('RTP_GLOBAL_CEILING', 0.85))
        self.contribution_rate = Decimal(str(config.get('JACKPOT_CONTRIBUTION_RATE', 0)))
        self.jackpot_min_picks = int(config.get('JACKPOT_MIN_PICKS', 8))
        if self.mode not in ('round', 'global'):
            raise ValueError(f'unknown RTP_MODE {self.mode!r}')

    def band_for_round(self, stats: StatsSnapshot, round_stake: int) -> RtpBand:
        """Band of round ratios to aim for.

        In ``global`` mode the band is chosen so that the projected lifetime
        RTP, (paid + payout) / (staked + round_stake), lands between the
        global floor and ceiling.
        """
        if self.mode == 'round' or round_stake <= 0:
            return RtpBand(self.floor, self.ceiling)
        projected_stake = stats.total_staked + round_stake
        low = (self.global_floor * projected_stake - stats.total_paid_out) / round_stake
        high = (self.global_ceiling * projected_stake - stats.total_paid_out) / round_stake
        return RtpBand(max(0.0, low), max(0.0, high))

    def jackpot_contribution(self, stake: int) -> int:
        if not self.contribution_rate:
            return 0
        return int((Decimal(stake) * self.contribution_rate).to_integral_value(rounding=ROUND_FLOOR))

    def qualifies_for_jackpot(self, picks: int, hits: int) -> bool:
        return bool(self.contribution_rate) and picks >= self.jackpot_min_picks and hits == picks
