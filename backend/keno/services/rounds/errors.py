class KenoError(Exception):
    """Base class for round engine errors."""


class StoreUnavailable(KenoError):
    """The database stayed unreachable after all retry attempts."""


class SettlementError(KenoError):
    """A single ticket could not be settled."""


class PhaseError(KenoError):
    """A round engine step failed; wraps the underlying cause."""

    def __init__(self, phase, round_id, cause):
        super().__init__(f'{phase} step failed for round {round_id}: {cause}')
        self.phase = phase
        self.round_id = round_id
        self.cause = cause


class BetRejected(KenoError):
    """A bet was refused. `reason` is a stable code clients can switch on."""

    INVALID_NUMBERS = 'invalid_numbers'
    INVALID_STAKE = 'invalid_stake'
    ROUND_CLOSED = 'round_closed'
    INSUFFICIENT_FUNDS = 'insufficient_funds'
    UNKNOWN_ACCOUNT = 'unknown_account'

    def __init__(self, reason, message):
        super().__init__(message)
        self.reason = reason
        self.message = message
