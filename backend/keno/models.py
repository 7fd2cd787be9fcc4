from keno import db
import json
import time

# Round status
WAITING = 'waiting'
RUNNING = 'running'
CALCULATING = 'calculating'
FINISHED = 'finished'

# Ticket status
PENDING = 'pending'
WON = 'won'
LOST = 'lost'


def _decode_numbers(raw):
    return json.loads(raw) if raw else None


class Round(db.Model):
    __tablename__ = 'keno_round'
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    status = db.Column(db.String(16), nullable=False, default=WAITING, index=True)
    cutoff_time = db.Column(db.Float, nullable=False)
    bets_closed = db.Column(db.Boolean, nullable=False, default=False)
    ticket_count = db.Column(db.Integer, nullable=False, default=0)
    # JSON-encoded ordered list; written once together with status=running
    winning_numbers = db.Column(db.Text, nullable=True)
    revealed_count = db.Column(db.Integer, nullable=False, default=0)
    last_activity_time = db.Column(db.Float, nullable=False)
    draw_trials = db.Column(db.Integer, nullable=True)
    projected_payout = db.Column(db.BigInteger, nullable=True)
    settled = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    finished_at = db.Column(db.Float, nullable=True)
    tickets = db.relationship('Ticket', backref='round', lazy='dynamic')

    def to_dict(self, now=None):
        """Client-facing view: only the already revealed prefix of the draw."""
        now = time.time() if now is None else now
        drawn = _decode_numbers(self.winning_numbers) or []
        return {
            'id': self.id,
            'status': self.status,
            'cutoff_time': self.cutoff_time,
            'time_remaining': max(0.0, self.cutoff_time - now) if self.status == WAITING else 0.0,
            'bets_closed': self.bets_closed or self.status != WAITING,
            'ticket_count': self.ticket_count,
            'drawn': drawn[:self.revealed_count],
            'revealed_count': self.revealed_count,
            'finished_at': self.finished_at,
        }


class Ticket(db.Model):
    __tablename__ = 'ticket'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey('account.user_id'), nullable=False, index=True)
    round_id = db.Column(db.Integer, db.ForeignKey('keno_round.id'), nullable=False, index=True)
    numbers = db.Column(db.Text, nullable=False)  # JSON-encoded list of picks
    stake = db.Column(db.BigInteger, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=PENDING, index=True)
    hits = db.Column(db.Integer, nullable=True)
    win_amount = db.Column(db.BigInteger, nullable=False, default=0)
    bonus_amount = db.Column(db.BigInteger, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    settled_at = db.Column(db.Float, nullable=True)

    def picks(self):
        """Decode the stored picks; raises ValueError on malformed data."""
        try:
            values = json.loads(self.numbers)
        except (TypeError, json.JSONDecodeError) as exc:
            raise ValueError(f'ticket {self.id} has unreadable numbers') from exc
        if not isinstance(values, list) or not values:
            raise ValueError(f'ticket {self.id} has no picks')
        if any(isinstance(v, bool) or not isinstance(v, int) for v in values):
            raise ValueError(f'ticket {self.id} has non-integer picks')
        if len(set(values)) != len(values):
            raise ValueError(f'ticket {self.id} has duplicate picks')
        return values

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'round_id': self.round_id,
            'numbers': _decode_numbers(self.numbers),
            'stake': self.stake,
            'status': self.status,
            'hits': self.hits,
            'win_amount': self.win_amount,
            'bonus_amount': self.bonus_amount,
        }


class Account(db.Model):
    __tablename__ = 'account'
    __table_args__ = (db.CheckConstraint('balance >= 0', name='ck_account_balance_non_negative'),)
    user_id = db.Column(db.String(64), primary_key=True)
    balance = db.Column(db.BigInteger, nullable=False, default=0)

    def to_dict(self):
        return {'user_id': self.user_id, 'balance': self.balance}


class AggregateStats(db.Model):
    __tablename__ = 'aggregate_stats'
    id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    total_staked = db.Column(db.BigInteger, nullable=False, default=0)
    total_paid_out = db.Column(db.BigInteger, nullable=False, default=0)
    jackpot_pool = db.Column(db.BigInteger, nullable=False, default=0)
    tickets_settled = db.Column(db.Integer, nullable=False, default=0)
    rounds_finished = db.Column(db.Integer, nullable=False, default=0)

    @property
    def implied_rtp(self):
        if not self.total_staked:
            return None
        return self.total_paid_out / self.total_staked

    def to_dict(self):
        return {
            'total_staked': self.total_staked,
            'total_paid_out': self.total_paid_out,
            'implied_rtp': self.implied_rtp,
            'jackpot_pool': self.jackpot_pool,
            'tickets_settled': self.tickets_settled,
            'rounds_finished': self.rounds_finished,
        }


class RoundHistory(db.Model):
    __tablename__ = 'round_history'
    round_id = db.Column(db.Integer, primary_key=True, autoincrement=False)
    winning_numbers = db.Column(db.Text, nullable=False)
    finished_at = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            'round_id': self.round_id,
            'winning_numbers': _decode_numbers(self.winning_numbers),
            'finished_at': self.finished_at,
        }
