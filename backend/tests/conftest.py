import os
import sys
import json
import random
import pytest

# Ensure the backend root (containing the `keno` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from keno import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    KENO_POOL_SIZE = 80
    KENO_DRAW_SIZE = 20
    MIN_PICKS = 1
    MAX_PICKS = 10
    MIN_STAKE = 10
    MAX_STAKE = 100000
    BETTING_DURATION_SEC = 90
    REVEAL_INTERVAL_SEC = 3.5
    COOLDOWN_SEC = 15
    ENGINE_POLL_SEC = 1
    STALL_MULTIPLIER = 5
    DRAW_MAX_TRIALS = 100
    DRAW_STRATEGY = 'uniform'
    RTP_MODE = 'round'
    RTP_FLOOR = 0.0
    RTP_CEILING = 0.70
    HISTORY_SIZE = 5
    JACKPOT_CONTRIBUTION_RATE = 0
    SETTLEMENT_ATTEMPTS = 3
    STORE_RETRY_ATTEMPTS = 2
    STORE_RETRY_BASE_SEC = 0.01
    STORE_RETRY_MAX_SEC = 0.02
    ENGINE_RETRY_BASE_SEC = 2
    ENGINE_RETRY_MAX_SEC = 16
    ENGINE_AUTOSTART = False


class FakeClock:
    """Deterministic time source whose sleep advances the clock."""

    def __init__(self, start=1_000_000.0):
        self.now = float(start)
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds):
        self.now += seconds


class RecordingBroadcaster:
    def __init__(self):
        self.events = []

    def round_phase(self, round_id, status, time_remaining):
        self.events.append(('round_phase', {'round_id': round_id, 'status': status}))

    def ball_revealed(self, round_id, value, index, drawn):
        self.events.append(('ball_revealed', {'round_id': round_id, 'value': value, 'index': index, 'drawn': list(drawn)}))

    def round_finished(self, round_id, winning_numbers):
        self.events.append(('round_finished', {'round_id': round_id, 'winning_numbers': list(winning_numbers)}))

    def named(self, name):
        return [payload for event, payload in self.events if event == name]


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import keno.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture()
def engine(flask_app, clock, broadcaster):
    from keno.services.rounds.engine import RoundEngine
    return RoundEngine(flask_app, broadcaster=broadcaster, clock=clock, sleep=clock.sleep, rng=random.Random(7))


@pytest.fixture()
def make_account(flask_app):
    from keno.models import Account

    def _make(user_id, balance=1000):
        db.session.add(Account(user_id=user_id, balance=balance))
        db.session.commit()
        return user_id
    return _make


@pytest.fixture()
def make_round(flask_app):
    from keno.models import Round, WAITING

    def _make(round_id=1, status=WAITING, cutoff_time=None, winning_numbers=None,
              revealed_count=0, last_activity_time=None, now=None, bets_closed=False):
        import time
        now = time.time() if now is None else now
        row = Round(
            id=round_id,
            status=status,
            cutoff_time=now + 60 if cutoff_time is None else cutoff_time,
            bets_closed=bets_closed,
            winning_numbers=json.dumps(winning_numbers) if winning_numbers is not None else None,
            revealed_count=revealed_count,
            last_activity_time=now if last_activity_time is None else last_activity_time,
            created_at=now,
        )
        db.session.add(row)
        db.session.commit()
        return round_id
    return _make


def fresh(model, key):
    """Re-read a row, bypassing anything cached in the session."""
    db.session.expire_all()
    return db.session.get(model, key)
