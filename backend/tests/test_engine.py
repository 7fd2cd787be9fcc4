import json

import pytest
from sqlalchemy.exc import InternalError

from keno import db
from keno.models import (
    Account, Round, RoundHistory, Ticket,
    WAITING, RUNNING, CALCULATING, FINISHED, WON, LOST, PENDING,
)
from keno.services.rounds.betting import place_bet
from keno.services.rounds.engine import RoundSupervisor
from keno.services.rounds.errors import BetRejected, PhaseError, StoreUnavailable

from conftest import fresh

DRAW = [5, 17, 33, 2, 71, 48, 9, 60, 12, 27, 80, 41, 66, 19, 3, 54, 38, 75, 22, 14]


def run_until(engine, predicate, max_steps=100):
    for _ in range(max_steps):
        state = engine.step()
        if predicate(state):
            return state
    raise AssertionError('engine did not reach the expected state')


def test_first_step_creates_round_one(engine, clock, broadcaster):
    state = engine.step()
    assert state.id == 1
    assert state.status == WAITING
    assert state.cutoff_time == clock.now + 90
    assert broadcaster.named('round_phase')[0] == {'round_id': 1, 'status': WAITING}


def test_waiting_round_counts_down_until_cutoff(engine, clock):
    engine.step()
    start = clock.now
    state = engine.step()
    assert state.status == WAITING
    assert clock.now == start + 1
    assert fresh(Round, 1).winning_numbers is None


def test_full_round_lifecycle(flask_app, engine, clock, broadcaster, make_account):
    make_account('alice', 1000)
    engine.step()
    placed = place_bet(flask_app, 'alice', [1, 2, 3, 4, 5], 100, now=clock.now)

    clock.advance(90)
    state = engine.step()
    assert state.status == RUNNING
    assert len(state.winning_numbers) == 20
    assert len(set(state.winning_numbers)) == 20
    decided = state.winning_numbers

    state = engine.step()
    assert state.status == CALCULATING
    balls = broadcaster.named('ball_revealed')
    assert [b['value'] for b in balls] == list(decided)
    assert [b['index'] for b in balls] == list(range(20))
    assert balls[-1]['drawn'] == list(decided)

    state = engine.step()
    assert state.status == FINISHED
    assert state.settled
    ticket = fresh(Ticket, placed.ticket_id)
    assert ticket.status in (WON, LOST)
    assert ticket.hits == len({1, 2, 3, 4, 5} & set(decided))
    assert fresh(RoundHistory, 1) is not None
    assert broadcaster.named('round_finished') == [{'round_id': 1, 'winning_numbers': list(decided)}]

    # Cooldown, then the next round opens with the next id
    state = engine.step()
    assert state.status == FINISHED
    clock.advance(15)
    state = engine.step()
    assert (state.id, state.status) == (2, WAITING)


def test_bets_rejected_once_draw_is_decided(flask_app, engine, clock, make_account):
    make_account('alice', 1000)
    engine.step()
    clock.advance(90)
    engine.step()
    with pytest.raises(BetRejected) as info:
        place_bet(flask_app, 'alice', [1, 2, 3], 100, now=clock.now - 1)
    assert info.value.reason == BetRejected.ROUND_CLOSED
    assert fresh(Account, 'alice').balance == 1000


def test_bets_rejected_at_cutoff_before_engine_moves(flask_app, engine, clock, make_account):
    make_account('alice', 1000)
    state = engine.step()
    with pytest.raises(BetRejected) as info:
        place_bet(flask_app, 'alice', [1, 2, 3], 100, now=state.cutoff_time)
    assert info.value.reason == BetRejected.ROUND_CLOSED


def test_bet_binds_to_highest_round(flask_app, clock, make_account, make_round):
    make_account('alice', 1000)
    make_round(1, now=clock.now, cutoff_time=clock.now + 10)
    make_round(2, now=clock.now, cutoff_time=clock.now + 100)
    placed = place_bet(flask_app, 'alice', [1, 2], 100, now=clock.now)
    assert placed.round_id == 2
    assert fresh(Round, 2).ticket_count == 1
    assert fresh(Round, 1).ticket_count == 0


def test_decision_snapshot_excludes_other_rounds(flask_app, engine, clock, make_account, make_round):
    make_account('alice', 1000)
    make_round(1, now=clock.now, cutoff_time=clock.now + 5)
    place_bet(flask_app, 'alice', [1, 2, 3, 4, 5], 100, now=clock.now)
    stray = Ticket(user_id='alice', round_id=7, numbers=json.dumps([6, 7]), stake=50,
                   status=PENDING, created_at=clock.now)
    db.session.add(stray)
    db.session.commit()
    stray_id = stray.id

    clock.advance(5)
    run_until(engine, lambda s: s.status == FINISHED)
    assert fresh(Ticket, stray_id).status == PENDING
    assert fresh(Round, 1).projected_payout is not None


def test_resume_reveals_exactly_the_unpublished_suffix(engine, clock, broadcaster, make_round):
    make_round(1, status=RUNNING, winning_numbers=DRAW, revealed_count=7, now=clock.now)

    state = engine.step()

    balls = broadcaster.named('ball_revealed')
    assert [b['value'] for b in balls] == DRAW[7:]
    assert [b['index'] for b in balls] == list(range(7, 20))
    assert state.status == CALCULATING
    assert list(state.winning_numbers) == DRAW
    assert json.loads(fresh(Round, 1).winning_numbers) == DRAW


def test_fully_revealed_running_round_goes_to_settlement(engine, clock, broadcaster, make_round):
    make_round(1, status=RUNNING, winning_numbers=DRAW, revealed_count=20, now=clock.now)
    state = engine.step()
    assert state.status == CALCULATING
    assert broadcaster.named('ball_revealed') == []


def test_decided_draw_is_never_replaced(engine, clock, make_round):
    make_round(1, status=RUNNING, winning_numbers=DRAW, revealed_count=3, now=clock.now)
    assert engine.store.commit_draw(1, list(range(1, 21)), clock.now) is False
    assert json.loads(fresh(Round, 1).winning_numbers) == DRAW


def test_reveal_cursor_only_moves_forward(engine, clock, make_round):
    make_round(1, status=RUNNING, winning_numbers=DRAW, revealed_count=5, now=clock.now)
    assert engine.store.advance_reveal(1, 4, clock.now) is False
    assert engine.store.advance_reveal(1, 5, clock.now) is True
    assert fresh(Round, 1).revealed_count == 6


def test_stalled_round_is_force_advanced(engine, clock, broadcaster, make_round):
    make_round(1, status=RUNNING, winning_numbers=DRAW, revealed_count=4,
               now=clock.now, last_activity_time=clock.now - 60)

    state = engine.step()

    assert state.status == CALCULATING
    assert state.revealed_count == 20
    assert list(state.winning_numbers) == DRAW
    assert broadcaster.named('ball_revealed') == []


def test_running_round_without_draw_is_redecided(engine, clock, make_round):
    make_round(1, status=RUNNING, winning_numbers=None, now=clock.now)
    state = engine.step()
    assert state.status == WAITING
    assert state.bets_closed
    state = engine.step()
    assert state.status == RUNNING
    assert len(state.winning_numbers) == 20


def test_settlement_failure_does_not_block_the_round(flask_app, engine, clock, make_account, make_round):
    make_account('alice', 1000)
    make_round(1, now=clock.now, cutoff_time=clock.now + 5)
    placed = place_bet(flask_app, 'alice', [1, 2, 3], 100, now=clock.now)
    clock.advance(5)
    run_until(engine, lambda s: s.status == CALCULATING)

    def unavailable(round_id):
        raise StoreUnavailable('database unreachable')

    original = engine.store.pending_tickets
    engine.store.pending_tickets = unavailable
    state = engine.step()
    assert state.status == FINISHED
    assert not state.settled
    assert fresh(Ticket, placed.ticket_id).status == PENDING

    # Out-of-band retry once storage is back
    engine.store.pending_tickets = original
    report = engine.resettle(1)
    assert report.settled == 1
    assert fresh(Round, 1).settled
    assert fresh(Ticket, placed.ticket_id).status in (WON, LOST)


def test_step_failures_are_wrapped_with_phase(engine, make_round, clock):
    make_round(1, status=CALCULATING, winning_numbers=None, now=clock.now)
    with pytest.raises(PhaseError) as info:
        engine.step()
    assert info.value.phase == CALCULATING
    assert info.value.round_id == 1


def test_run_forever_backs_off_and_recovers(engine, clock):
    calls = {'n': 0}
    original = engine.store.current_round

    def flaky():
        calls['n'] += 1
        if calls['n'] <= 2:
            raise StoreUnavailable('down')
        return original()

    engine.store.current_round = flaky
    engine.run_forever(should_stop=lambda: calls['n'] >= 3)
    assert clock.sleeps[:2] == [2.0, 4.0]
    assert engine.supervisor.failures == 0


def test_supervisor_policy():
    supervisor = RoundSupervisor(base_delay=2, max_delay=10)
    outage = PhaseError('inspect', None, StoreUnavailable('down'))
    assert [supervisor.failed(outage) for _ in range(4)] == [2, 4, 8, 10]
    supervisor.succeeded()
    assert supervisor.failed(outage) == 2
    supervisor.succeeded()
    assert supervisor.failed(PhaseError('running', 1, KeyError('boom'))) == 2
    assert supervisor.failed(PhaseError('running', 1, KeyError('boom'))) == 2


def test_non_transient_settlement_error_still_finishes_round(flask_app, engine, clock, make_account, make_round):
    make_account('alice', 1000)
    make_round(1, now=clock.now, cutoff_time=clock.now + 5)
    placed = place_bet(flask_app, 'alice', [1, 2, 3], 100, now=clock.now)
    clock.advance(5)
    run_until(engine, lambda s: s.status == CALCULATING)

    calls = {'n': 0}

    def broken(*args, **kwargs):
        calls['n'] += 1
        raise InternalError('UPDATE ticket', {}, Exception('current transaction is aborted'))

    engine.store.settle_ticket = broken
    state = engine.step()

    assert state.status == FINISHED
    assert not state.settled
    assert calls['n'] == flask_app.config['SETTLEMENT_ATTEMPTS']
    assert fresh(Ticket, placed.ticket_id).status == PENDING
    assert fresh(Account, 'alice').balance == 900
