"""Persistence for the round engine.

Every state change is a single guarded UPDATE (``WHERE status = ...`` or
``WHERE revealed_count = ...``) so that a retried or duplicated call is a
no-op instead of a second transition, and every balance or counter change
is a relative increment evaluated by the database.
"""
import functools
import json
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from keno import db
from keno.models import (
    Account, AggregateStats, Round, RoundHistory, Ticket,
    CALCULATING, FINISHED, LOST, PENDING, RUNNING, WAITING, WON,
)
from .errors import BetRejected, SettlementError, StoreUnavailable
from .ledger import StatsSnapshot

TRANSIENT_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError)
STATS_ID = 1


@dataclass(frozen=True)
class RoundState:
    """Immutable snapshot of the persisted current round."""
    id: int
    status: str
    cutoff_time: float
    bets_closed: bool
    winning_numbers: Optional[Tuple[int, ...]]
    revealed_count: int
    last_activity_time: float
    finished_at: Optional[float]
    settled: bool

    @classmethod
    def from_row(cls, row: Round) -> 'RoundState':
        numbers = json.loads(row.winning_numbers) if row.winning_numbers else None
        return cls(
            id=row.id,
            status=row.status,
            cutoff_time=row.cutoff_time,
            bets_closed=bool(row.bets_closed),
            winning_numbers=tuple(numbers) if numbers else None,
            revealed_count=row.revealed_count or 0,
            last_activity_time=row.last_activity_time,
            finished_at=row.finished_at,
            settled=bool(row.settled),
        )


@dataclass(frozen=True)
class PendingTicket:
    id: int
    user_id: str
    stake: int
    numbers: Optional[Tuple[int, ...]]
    error: Optional[str] = None


@dataclass(frozen=True)
class SettledTicket:
    ticket_id: int
    hits: int
    win_amount: int
    bonus_amount: int


@dataclass(frozen=True)
class PlacedBet:
    ticket_id: int
    round_id: int
    balance: int


def transient(method):
    """Retry a store operation on connection-level failures with backoff."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        attempt = 1
        while True:
            try:
                return method(self, *args, **kwargs)
            except TRANSIENT_ERRORS as exc:
                db.session.rollback()
                if attempt >= self.retry_attempts:
                    raise StoreUnavailable(f'{method.__name__} failed after {attempt} attempts: {exc}') from exc
                delay = min(self.retry_base * (2 ** (attempt - 1)), self.retry_max)
                self.logger.warning(
                    f"[store-retry] op={method.__name__} attempt={attempt} delay={delay:.2f}s error={exc.__class__.__name__}"
                )
                self.sleep(delay)
                attempt += 1
            except Exception:
                db.session.rollback()
                raise
    return wrapper


class RoundStore:
    def __init__(self, app, sleep=None):
        cfg = app.config
        self.logger = app.logger
        self.sleep = sleep or time.sleep
        self.retry_attempts = max(1, int(cfg.get('STORE_RETRY_ATTEMPTS', 5)))
        self.retry_base = float(cfg.get('STORE_RETRY_BASE_SEC', 0.5))
        self.retry_max = float(cfg.get('STORE_RETRY_MAX_SEC', 8))
        self.history_size = int(cfg.get('HISTORY_SIZE', 20))

    # ---- rounds ----

    @transient
    def current_round(self) -> Optional[RoundState]:
        row = Round.query.populate_existing().order_by(Round.id.desc()).first()
        state = RoundState.from_row(row) if row else None
        db.session.commit()
        return state

    @transient
    def get_round(self, round_id: int) -> Optional[RoundState]:
        row = Round.query.populate_existing().filter_by(id=round_id).first()
        state = RoundState.from_row(row) if row else None
        db.session.commit()
        return state

    @transient
    def create_round(self, round_id: int, cutoff_time: float, now: float) -> bool:
        """Insert a new waiting round; False if that id already exists."""
        db.session.add(Round(
            id=round_id,
            status=WAITING,
            cutoff_time=cutoff_time,
            last_activity_time=now,
            created_at=now,
        ))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            return False
        return True

    @transient
    def close_bets(self, round_id: int) -> None:
        db.session.execute(
            update(Round)
            .where(Round.id == round_id, Round.status == WAITING)
            .values(bets_closed=True)
        )
        db.session.commit()

    @transient
    def commit_draw(self, round_id: int, numbers, now: float, trials=None, projected_payout=None) -> bool:
        """Write the winning set and enter running in one statement.

        Only succeeds from waiting, so a decided set is never replaced.
        """
        result = db.session.execute(
            update(Round)
            .where(Round.id == round_id, Round.status == WAITING)
            .values(
                status=RUNNING,
                bets_closed=True,
                winning_numbers=json.dumps(list(numbers)),
                revealed_count=0,
                last_activity_time=now,
                draw_trials=trials,
                projected_payout=projected_payout,
            )
        )
        db.session.commit()
        return result.rowcount == 1

    @transient
    def reopen_undecided(self, round_id: int, now: float) -> bool:
        """Send a running round with no stored draw back to waiting."""
        result = db.session.execute(
            update(Round)
            .where(Round.id == round_id, Round.status == RUNNING, Round.winning_numbers.is_(None))
            .values(status=WAITING, bets_closed=True, revealed_count=0, last_activity_time=now)
        )
        db.session.commit()
        return result.rowcount == 1

    @transient
    def advance_reveal(self, round_id: int, index: int, now: float) -> bool:
        """Move the reveal cursor from index to index + 1."""
        result = db.session.execute(
            update(Round)
            .where(Round.id == round_id, Round.status == RUNNING, Round.revealed_count == index)
            .values(revealed_count=index + 1, last_activity_time=now)
        )
        db.session.commit()
        return result.rowcount == 1

    @transient
    def begin_settlement(self, round_id: int, draw_size: int, now: float) -> bool:
        result = db.session.execute(
            update(Round)
            .where(Round.id == round_id, Round.status == RUNNING)
            .values(status=CALCULATING, revealed_count=draw_size, last_activity_time=now)
        )
        db.session.commit()
        return result.rowcount == 1

    @transient
    def finish_round(self, round_id: int, winning_numbers, now: float, settled: bool) -> bool:
        """Mark the round finished and archive its draw in the bounded history."""
        result = db.session.execute(
            update(Round)
            .where(Round.id == round_id, Round.status == CALCULATING)
            .values(status=FINISHED, finished_at=now, last_activity_time=now, settled=settled)
        )
        if result.rowcount != 1:
            db.session.rollback()
            return False
        self._ensure_stats_row()
        db.session.execute(
            update(AggregateStats)
            .where(AggregateStats.id == STATS_ID)
            .values(rounds_finished=AggregateStats.rounds_finished + 1)
        )
        if db.session.get(RoundHistory, round_id) is None:
            db.session.add(RoundHistory(
                round_id=round_id,
                winning_numbers=json.dumps(list(winning_numbers)),
                finished_at=now,
            ))
            db.session.flush()
        stale = [
            h.round_id for h in
            RoundHistory.query.order_by(RoundHistory.round_id.desc()).offset(self.history_size).all()
        ]
        if stale:
            RoundHistory.query.filter(RoundHistory.round_id.in_(stale)).delete(synchronize_session=False)
        db.session.commit()
        return True

    @transient
    def mark_settled(self, round_id: int) -> None:
        db.session.execute(update(Round).where(Round.id == round_id).values(settled=True))
        db.session.commit()

    # ---- tickets ----

    @transient
    def pending_tickets(self, round_id: int) -> List[PendingTicket]:
        rows = (
            Ticket.query.populate_existing()
            .filter_by(round_id=round_id, status=PENDING)
            .order_by(Ticket.id)
            .all()
        )
        tickets = []
        for row in rows:
            try:
                tickets.append(PendingTicket(row.id, row.user_id, int(row.stake), tuple(row.picks())))
            except (TypeError, ValueError) as exc:
                tickets.append(PendingTicket(row.id, row.user_id, row.stake, None, str(exc)))
        db.session.commit()
        return tickets

    @transient
    def place_ticket(self, user_id: str, numbers, stake: int, now: float) -> PlacedBet:
        """Bind a ticket to the current round and debit its stake, all or nothing."""
        current = Round.query.populate_existing().order_by(Round.id.desc()).first()
        if current is None or current.status != WAITING or current.bets_closed or current.cutoff_time <= now:
            raise BetRejected(BetRejected.ROUND_CLOSED, 'Betting is closed for the current round')
        # Serialises with close_bets through the round row
        guarded = db.session.execute(
            update(Round)
            .where(
                Round.id == current.id,
                Round.status == WAITING,
                Round.bets_closed.is_(False),
                Round.cutoff_time > now,
            )
            .values(ticket_count=Round.ticket_count + 1)
        )
        if guarded.rowcount != 1:
            raise BetRejected(BetRejected.ROUND_CLOSED, 'Betting is closed for the current round')
        debited = db.session.execute(
            update(Account)
            .where(Account.user_id == user_id, Account.balance >= stake)
            .values(balance=Account.balance - stake)
        )
        if debited.rowcount != 1:
            if db.session.get(Account, user_id) is None:
                raise BetRejected(BetRejected.UNKNOWN_ACCOUNT, f'No account for user {user_id}')
            raise BetRejected(BetRejected.INSUFFICIENT_FUNDS, 'Insufficient funds for this stake')
        ticket = Ticket(
            user_id=user_id,
            round_id=current.id,
            numbers=json.dumps(list(numbers)),
            stake=stake,
            status=PENDING,
            created_at=now,
        )
        db.session.add(ticket)
        db.session.flush()
        placed = PlacedBet(ticket.id, current.id, self._balance(user_id))
        db.session.commit()
        return placed

    @transient
    def settle_ticket(self, ticket: PendingTicket, hits: int, win_amount: int,
                      contribution: int = 0, jackpot_eligible: bool = False,
                      now: Optional[float] = None) -> Optional[SettledTicket]:
        """Settle one ticket in a single transaction.

        Returns None when the ticket is no longer pending (already settled),
        which makes re-running settlement for a round safe.
        """
        now = time.time() if now is None else now
        claimed = db.session.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.status == PENDING)
            .values(status=WON if win_amount > 0 else LOST, hits=hits, win_amount=win_amount, settled_at=now)
        )
        if claimed.rowcount != 1:
            db.session.rollback()
            return None
        self._ensure_stats_row()

        bonus = 0
        if jackpot_eligible:
            pool = db.session.execute(
                select(AggregateStats.jackpot_pool).where(AggregateStats.id == STATS_ID)
            ).scalar_one()
            if pool > 0:
                taken = db.session.execute(
                    update(AggregateStats)
                    .where(AggregateStats.id == STATS_ID, AggregateStats.jackpot_pool >= pool)
                    .values(jackpot_pool=AggregateStats.jackpot_pool - pool)
                )
                if taken.rowcount == 1:
                    bonus = pool
                    db.session.execute(
                        update(Ticket).where(Ticket.id == ticket.id).values(bonus_amount=bonus, status=WON)
                    )

        credit = win_amount + bonus
        if credit > 0:
            credited = db.session.execute(
                update(Account)
                .where(Account.user_id == ticket.user_id)
                .values(balance=Account.balance + credit)
            )
            if credited.rowcount != 1:
                raise SettlementError(f'account {ticket.user_id} missing for ticket {ticket.id}')

        db.session.execute(
            update(AggregateStats)
            .where(AggregateStats.id == STATS_ID)
            .values(
                total_staked=AggregateStats.total_staked + ticket.stake,
                total_paid_out=AggregateStats.total_paid_out + credit,
                jackpot_pool=AggregateStats.jackpot_pool + contribution,
                tickets_settled=AggregateStats.tickets_settled + 1,
            )
        )
        db.session.commit()
        return SettledTicket(ticket.id, hits, win_amount, bonus)

    # ---- accounts & stats ----

    @transient
    def credit_account(self, user_id: str, amount: int) -> int:
        if amount <= 0:
            raise ValueError('credit amount must be positive')
        if db.session.get(Account, user_id) is None:
            db.session.add(Account(user_id=user_id, balance=0))
            db.session.flush()
        db.session.execute(
            update(Account).where(Account.user_id == user_id).values(balance=Account.balance + amount)
        )
        balance = self._balance(user_id)
        db.session.commit()
        return balance

    @transient
    def stats(self) -> StatsSnapshot:
        row = AggregateStats.query.populate_existing().filter_by(id=STATS_ID).first()
        snapshot = StatsSnapshot(row.total_staked, row.total_paid_out, row.jackpot_pool) if row else StatsSnapshot()
        db.session.commit()
        return snapshot

    def _balance(self, user_id: str) -> int:
        return db.session.execute(select(Account.balance).where(Account.user_id == user_id)).scalar_one()

    def _ensure_stats_row(self) -> None:
        if db.session.get(AggregateStats, STATS_ID) is None:
            db.session.add(AggregateStats(
                id=STATS_ID, total_staked=0, total_paid_out=0, jackpot_pool=0,
                tickets_settled=0, rounds_finished=0,
            ))
            db.session.flush()
