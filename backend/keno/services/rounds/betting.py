import time

from .errors import BetRejected
from .store import PlacedBet, RoundStore


def validate_bet(numbers, stake, config):
    """Check a bet's shape; returns the picks as a list of ints.

    Bets may only close within the current round's waiting phase; that
    check happens in the store, inside the debit transaction.
    """
    pool_size = int(config.get('KENO_POOL_SIZE', 80))
    min_picks = int(config.get('MIN_PICKS', 1))
    max_picks = min(int(config.get('MAX_PICKS', 10)), int(config.get('KENO_DRAW_SIZE', 20)))
    min_stake = int(config.get('MIN_STAKE', 10))
    max_stake = int(config.get('MAX_STAKE', 100000))

    if not isinstance(numbers, (list, tuple)):
        raise BetRejected(BetRejected.INVALID_NUMBERS, 'numbers must be a list of integers')
    if any(isinstance(n, bool) or not isinstance(n, int) for n in numbers):
        raise BetRejected(BetRejected.INVALID_NUMBERS, 'numbers must be a list of integers')
    if not min_picks <= len(numbers) <= max_picks:
        raise BetRejected(BetRejected.INVALID_NUMBERS, f'pick between {min_picks} and {max_picks} numbers')
    if len(set(numbers)) != len(numbers):
        raise BetRejected(BetRejected.INVALID_NUMBERS, 'numbers must not repeat')
    if any(n < 1 or n > pool_size for n in numbers):
        raise BetRejected(BetRejected.INVALID_NUMBERS, f'numbers must be between 1 and {pool_size}')

    if isinstance(stake, bool) or not isinstance(stake, int):
        raise BetRejected(BetRejected.INVALID_STAKE, 'stake must be an integer amount')
    if stake < min_stake:
        raise BetRejected(BetRejected.INVALID_STAKE, f'minimum stake is {min_stake}')
    if stake > max_stake:
        raise BetRejected(BetRejected.INVALID_STAKE, f'maximum stake is {max_stake}')
    return list(numbers)


def place_bet(app, user_id, numbers, stake, now=None, store=None) -> PlacedBet:
    """Validate and place a bet on the current round.

    Raises BetRejected with a specific reason; a rejected bet never debits.
    Bets after the cutoff are rejected, not carried to the next round.
    """
    if not user_id or not isinstance(user_id, str):
        raise BetRejected(BetRejected.UNKNOWN_ACCOUNT, 'user_id is required')
    picks = validate_bet(numbers, stake, app.config)
    store = store or RoundStore(app)
    placed = store.place_ticket(user_id, picks, stake, time.time() if now is None else now)
    app.logger.info(
        f"[bet] round={placed.round_id} ticket={placed.ticket_id} user={user_id} picks={len(picks)} stake={stake}"
    )
    return placed
