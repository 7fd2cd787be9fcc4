from dataclasses import dataclass, field
from typing import List, Sequence

from .errors import SettlementError
from .ledger import StatisticsLedger
from .paytable import Paytable, count_hits


@dataclass
class SettlementReport:
    round_id: int
    settled: int = 0
    already_settled: int = 0
    skipped: List[int] = field(default_factory=list)
    total_stake: int = 0
    total_paid: int = 0


def ticket_outcome(picks: Sequence[int], stake: int, winning_numbers: Sequence[int], paytable: Paytable):
    """Return (hits, win_amount) for one ticket against a draw."""
    hits = count_hits(picks, winning_numbers)
    return hits, paytable.payout(stake, len(picks), hits)


def settle_round(store, round_id: int, winning_numbers: Sequence[int], paytable: Paytable,
                 ledger: StatisticsLedger, logger, now=None) -> SettlementReport:
    """Settle every pending ticket of a round.

    Safe to call again for the same round: tickets that already left
    pending are skipped by the store, so balances are credited once.
    A malformed ticket is logged and left pending; the rest still settle.
    Storage outages propagate as StoreUnavailable.
    """
    report = SettlementReport(round_id)
    for ticket in store.pending_tickets(round_id):
        if ticket.numbers is None:
            logger.warning(f"[settle-skip] round={round_id} ticket={ticket.id} reason={ticket.error}")
            report.skipped.append(ticket.id)
            continue
        try:
            hits, win = ticket_outcome(ticket.numbers, ticket.stake, winning_numbers, paytable)
            result = store.settle_ticket(
                ticket, hits, win,
                contribution=ledger.jackpot_contribution(ticket.stake),
                jackpot_eligible=ledger.qualifies_for_jackpot(len(ticket.numbers), hits),
                now=now,
            )
        except (SettlementError, TypeError, ValueError) as exc:
            logger.warning(f"[settle-skip] round={round_id} ticket={ticket.id} reason={exc}")
            report.skipped.append(ticket.id)
            continue
        if result is None:
            report.already_settled += 1
            continue
        report.settled += 1
        report.total_stake += ticket.stake
        report.total_paid += result.win_amount + result.bonus_amount
        if result.bonus_amount:
            logger.info(f"[jackpot] round={round_id} ticket={ticket.id} user={ticket.user_id} bonus={result.bonus_amount}")
    logger.info(
        f"[settled] round={round_id} tickets={report.settled} skipped={len(report.skipped)} "
        f"stake={report.total_stake} paid={report.total_paid}"
    )
    return report
