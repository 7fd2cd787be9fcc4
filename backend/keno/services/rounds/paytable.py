import json
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Iterable, Mapping, Optional

# picks -> {hits -> multiplier}
DEFAULT_PAYTABLE: Dict[int, Dict[int, float]] = {
    1: {1: 3.4},
    2: {2: 12.5},
    3: {2: 2, 3: 40},
    4: {2: 1, 3: 8, 4: 180},
    5: {3: 3, 4: 15, 5: 450},
    6: {3: 2, 4: 10, 5: 45, 6: 1800},
    7: {4: 4, 5: 15, 6: 120, 7: 4000},
    8: {4: 2, 5: 10, 6: 40, 7: 400, 8: 8000},
    9: {5: 5, 6: 20, 7: 120, 8: 1200, 9: 20000},
    10: {4: 2, 5: 5, 6: 10, 7: 40, 8: 400, 9: 4000, 10: 100000},
}


def count_hits(picks: Iterable[int], drawn: Iterable[int]) -> int:
    return len(set(picks) & set(drawn))


class Paytable:
    """Lookup of payout multipliers by (numbers picked, numbers hit).

    Undefined pairs pay nothing. Multipliers are kept as Decimals so that
    floor(stake * multiplier) is exact for values such as 3.4 or 12.5.
    """

    def __init__(self, table: Optional[Mapping] = None):
        source = DEFAULT_PAYTABLE if table is None else table
        self._table: Dict[int, Dict[int, Decimal]] = {
            int(picks): {int(hits): Decimal(str(mult)) for hits, mult in row.items()}
            for picks, row in source.items()
        }

    @classmethod
    def from_config(cls, config) -> 'Paytable':
        raw = config.get('PAYTABLE')
        if not raw:
            return cls()
        if isinstance(raw, str):
            raw = json.loads(raw)
        return cls(raw)

    @property
    def max_picks(self) -> int:
        return max(self._table) if self._table else 0

    def multiplier(self, picks: int, hits: int) -> Decimal:
        return self._table.get(picks, {}).get(hits, Decimal(0))

    def payout(self, stake: int, picks: int, hits: int) -> int:
        mult = self.multiplier(picks, hits)
        if not mult:
            return 0
        return int((Decimal(stake) * mult).to_integral_value(rounding=ROUND_FLOOR))

    def to_dict(self):
        return {
            str(picks): {str(hits): float(mult) for hits, mult in sorted(row.items())}
            for picks, row in sorted(self._table.items())
        }
