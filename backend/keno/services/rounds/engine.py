import time
from contextlib import nullcontext
from typing import Optional

from flask import has_app_context

from keno import socketio
from keno.models import CALCULATING, FINISHED, RUNNING, WAITING
from .broadcast import Broadcaster
from .errors import KenoError, PhaseError, StoreUnavailable
from .ledger import StatisticsLedger
from .paytable import Paytable
from .reveal import BallScheduler
from .selector import TicketSnapshot, build_selector
from .settlement import settle_round
from .store import RoundState, RoundStore

FIRST_ROUND_ID = 1


class RoundSupervisor:
    """Failure policy for engine steps.

    Storage outages back off exponentially; any other failure restarts the
    step after the base delay. A successful step resets the backoff.
    """

    def __init__(self, base_delay=2.0, max_delay=60.0):
        self.base_delay = float(base_delay)
        self.max_delay = float(max_delay)
        self.failures = 0

    def succeeded(self) -> None:
        self.failures = 0

    def failed(self, error: Exception) -> float:
        self.failures += 1
        cause = getattr(error, 'cause', error)
        if isinstance(cause, StoreUnavailable):
            return min(self.base_delay * (2 ** (self.failures - 1)), self.max_delay)
        return self.base_delay


class RoundEngine:
    """Drives the current round through waiting -> running -> calculating -> finished.

    Each ``step`` re-reads the persisted round and performs the next
    transition, so the engine holds no round state of its own and a restart
    at any point resumes from the database:

    - no round: create round 1
    - waiting: count down; at the cutoff close bets, decide the draw, run
    - running: reveal from ``revealed_count``; force settlement when stalled
    - calculating: settle tickets, finish and archive
    - finished: after the cooldown, open the next round
    """

    def __init__(self, app, store=None, broadcaster=None, selector=None,
                 clock=None, sleep=None, rng=None):
        cfg = app.config
        self.app = app
        self.logger = app.logger
        self.clock = clock or time.time
        self.sleep = sleep or socketio.sleep
        self.store = store or RoundStore(app, sleep=self.sleep)
        self.broadcaster = broadcaster or Broadcaster(app.logger)
        self.paytable = Paytable.from_config(cfg)
        self.ledger = StatisticsLedger(cfg)
        self.selector = selector or build_selector(cfg, self.paytable, rng=rng)

        self.draw_size = int(cfg.get('KENO_DRAW_SIZE', 20))
        self.betting_duration = float(cfg.get('BETTING_DURATION_SEC', 90))
        self.reveal_interval = float(cfg.get('REVEAL_INTERVAL_SEC', 3.5))
        self.cooldown = float(cfg.get('COOLDOWN_SEC', 15))
        self.poll = float(cfg.get('ENGINE_POLL_SEC', 1))
        self.stall_threshold = self.reveal_interval * float(cfg.get('STALL_MULTIPLIER', 5))
        self.settlement_attempts = max(1, int(cfg.get('SETTLEMENT_ATTEMPTS', 3)))

        self.scheduler = BallScheduler(
            self.store, self.broadcaster, self.reveal_interval, self.clock, self.sleep, self.logger
        )
        self.supervisor = RoundSupervisor(
            cfg.get('ENGINE_RETRY_BASE_SEC', 2.0), cfg.get('ENGINE_RETRY_MAX_SEC', 60.0)
        )

    # ---- supervision ----

    def run_forever(self, should_stop=None) -> None:
        self.logger.info(f"[engine-start] draw_size={self.draw_size} interval={self.reveal_interval}s")
        while not (should_stop and should_stop()):
            try:
                self.step()
                self.supervisor.succeeded()
            except Exception as exc:
                delay = self.supervisor.failed(exc)
                self.logger.error(f"[engine-error] {exc} retry_in={delay:.1f}s", exc_info=True)
                self.sleep(delay)

    def step(self) -> Optional[RoundState]:
        """Inspect the persisted round and perform at most one transition."""
        # Background tasks have no app context; CLI commands and tests do
        ctx = nullcontext() if has_app_context() else self.app.app_context()
        with ctx:
            try:
                state = self.store.current_round()
            except Exception as exc:
                raise PhaseError('inspect', None, exc) from exc
            if state is None:
                return self._open_round(FIRST_ROUND_ID)
            handler = {
                WAITING: self._on_waiting,
                RUNNING: self._on_running,
                CALCULATING: self._on_calculating,
                FINISHED: self._on_finished,
            }.get(state.status)
            if handler is None:
                raise PhaseError(state.status, state.id, ValueError(f'unknown status {state.status!r}'))
            try:
                return handler(state)
            except PhaseError:
                raise
            except Exception as exc:
                raise PhaseError(state.status, state.id, exc) from exc

    # ---- phases ----

    def _open_round(self, round_id: int) -> Optional[RoundState]:
        now = self.clock()
        if self.store.create_round(round_id, now + self.betting_duration, now):
            self.logger.info(f"[round-open] round={round_id} betting={self.betting_duration:.0f}s")
            self.broadcaster.round_phase(round_id, WAITING, self.betting_duration)
        return self.store.current_round()

    def _on_waiting(self, state: RoundState) -> Optional[RoundState]:
        now = self.clock()
        if now < state.cutoff_time and not state.bets_closed:
            self.sleep(min(state.cutoff_time - now, self.poll))
            return state
        return self._decide(state)

    def _decide(self, state: RoundState) -> Optional[RoundState]:
        # Closing first means no ticket can bind to this round after the snapshot
        self.store.close_bets(state.id)
        snapshot = []
        for ticket in self.store.pending_tickets(state.id):
            if ticket.numbers is None:
                self.logger.warning(f"[draw-skip] round={state.id} ticket={ticket.id} reason={ticket.error}")
                continue
            snapshot.append(TicketSnapshot(ticket.id, frozenset(ticket.numbers), ticket.stake))
        round_stake = sum(t.stake for t in snapshot)
        band = self.ledger.band_for_round(self.store.stats(), round_stake)
        decision = self.selector.select(snapshot, band)

        if not self.store.commit_draw(state.id, decision.numbers, self.clock(),
                                      trials=decision.trials, projected_payout=decision.projected_payout):
            self.logger.warning(f"[draw-conflict] round={state.id} already decided")
            return self.store.current_round()
        ratio = f"{decision.ratio:.3f}" if decision.ratio is not None else 'n/a'
        self.logger.info(
            f"[draw-decided] round={state.id} tickets={len(snapshot)} stake={round_stake} "
            f"projected={decision.projected_payout} ratio={ratio} band={band.floor:.2f}-{band.ceiling:.2f} "
            f"trials={decision.trials} in_band={decision.in_band}"
        )
        self.broadcaster.round_phase(state.id, RUNNING, self.draw_size * self.reveal_interval)
        return self.store.current_round()

    def _on_running(self, state: RoundState) -> Optional[RoundState]:
        if not state.winning_numbers:
            # Nothing can have been revealed without a stored draw
            self.logger.error(f"[draw-missing] round={state.id} returning to waiting")
            self.store.reopen_undecided(state.id, self.clock())
            return self.store.current_round()
        total = len(state.winning_numbers)
        if state.revealed_count >= total:
            return self._begin_settlement(state)
        idle = self.clock() - state.last_activity_time
        if idle > self.stall_threshold:
            self.logger.warning(
                f"[stall] round={state.id} idle={idle:.1f}s revealed={state.revealed_count}/{total} forcing settlement"
            )
            return self._begin_settlement(state)
        if state.revealed_count:
            self.logger.info(f"[reveal-resume] round={state.id} from={state.revealed_count + 1}/{total}")
        cursor = self.scheduler.reveal(state)
        if cursor >= total:
            return self._begin_settlement(self.store.get_round(state.id))
        return self.store.current_round()

    def _begin_settlement(self, state: RoundState) -> Optional[RoundState]:
        if self.store.begin_settlement(state.id, len(state.winning_numbers), self.clock()):
            self.broadcaster.round_phase(state.id, CALCULATING, 0)
        return self.store.current_round()

    def _on_calculating(self, state: RoundState) -> Optional[RoundState]:
        if not state.winning_numbers:
            raise KenoError(f'round {state.id} is calculating without a draw')
        report = None
        for attempt in range(1, self.settlement_attempts + 1):
            try:
                report = self._settle(state)
                break
            except StoreUnavailable as exc:
                self.logger.warning(
                    f"[settle-retry] round={state.id} attempt={attempt}/{self.settlement_attempts} error={exc}"
                )
                if attempt < self.settlement_attempts:
                    self.sleep(self.supervisor.base_delay)
            except Exception as exc:
                # Counted against the same budget so the round still finishes
                self.logger.error(
                    f"[settle-error] round={state.id} attempt={attempt}/{self.settlement_attempts} error={exc}",
                    exc_info=True,
                )
        settled = report is not None and not report.skipped
        if report is None:
            self.logger.error(f"[settle-failed] round={state.id} finishing unsettled; retry with `flask settle-round {state.id}`")
        now = self.clock()
        if self.store.finish_round(state.id, state.winning_numbers, now, settled):
            self.broadcaster.round_finished(state.id, state.winning_numbers)
            self.broadcaster.round_phase(state.id, FINISHED, self.cooldown)
            self.logger.info(f"[round-finished] round={state.id} settled={settled}")
        return self.store.current_round()

    def _on_finished(self, state: RoundState) -> Optional[RoundState]:
        ready_at = (state.finished_at or state.last_activity_time) + self.cooldown
        now = self.clock()
        if now < ready_at:
            self.sleep(min(ready_at - now, self.poll))
            return state
        return self._open_round(state.id + 1)

    # ---- settlement ----

    def _settle(self, state: RoundState):
        return settle_round(
            self.store, state.id, state.winning_numbers, self.paytable, self.ledger,
            self.logger, now=self.clock(),
        )

    def resettle(self, round_id: int):
        """Out-of-band settlement retry for a round that already has a draw."""
        state = self.store.get_round(round_id)
        if state is None or state.status not in (CALCULATING, FINISHED) or not state.winning_numbers:
            raise KenoError(f'round {round_id} has no completed draw to settle')
        report = self._settle(state)
        if not report.skipped and state.status == FINISHED:
            self.store.mark_settled(round_id)
        return report


def start_round_engine(app) -> RoundEngine:
    """Run the engine as a Socket.IO background task."""
    engine = RoundEngine(app)
    socketio.start_background_task(engine.run_forever)
    return engine
