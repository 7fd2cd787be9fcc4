import pytest

from keno.services.rounds.paytable import Paytable, DEFAULT_PAYTABLE, count_hits


def test_default_table_covers_one_to_ten_picks():
    table = Paytable()
    assert table.max_picks == 10
    assert set(DEFAULT_PAYTABLE) == set(range(1, 11))


def test_undefined_pairs_pay_nothing():
    table = Paytable({3: {2: 2, 3: 10}})
    assert table.payout(100, 3, 1) == 0
    assert table.payout(100, 3, 0) == 0
    assert table.payout(100, 7, 7) == 0


@pytest.mark.parametrize('stake,picks,hits,expected', [
    (100, 3, 3, 4000),
    (7, 1, 1, 23),       # 7 * 3.4 = 23.8
    (3, 2, 2, 37),       # 3 * 12.5 = 37.5
    (100, 1, 1, 340),    # exact despite 3.4 not being a binary fraction
    (10, 10, 10, 1000000),
])
def test_payout_is_floor_of_stake_times_multiplier(stake, picks, hits, expected):
    assert Paytable().payout(stake, picks, hits) == expected


def test_from_config_accepts_json_override():
    table = Paytable.from_config({'PAYTABLE': '{"2": {"1": 1, "2": 5}}'})
    assert table.payout(50, 2, 2) == 250
    assert table.payout(50, 2, 1) == 50
    assert table.max_picks == 2


def test_count_hits_is_set_intersection():
    assert count_hits([1, 2, 3], [1, 2, 3, 6, 7]) == 3
    assert count_hits([4, 5], [1, 2, 3, 6, 7]) == 0
