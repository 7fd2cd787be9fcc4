from .store import RoundState


class BallScheduler:
    """Paces the publication of an already decided draw.

    Only the cursor moves: ball i is persisted as revealed before it is
    broadcast, so a restart resumes at the first unpublished index and the
    order of ``winning_numbers`` is never touched.
    """

    def __init__(self, store, broadcaster, interval, clock, sleep, logger):
        self.store = store
        self.broadcaster = broadcaster
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.logger = logger

    def reveal(self, state: RoundState) -> int:
        """Reveal from state.revealed_count to the end; returns the new cursor."""
        numbers = state.winning_numbers
        cursor = state.revealed_count
        while cursor < len(numbers):
            if not self.store.advance_reveal(state.id, cursor, self.clock()):
                # Cursor moved underneath us; let the engine re-read the round
                self.logger.warning(f"[reveal-conflict] round={state.id} index={cursor}")
                return cursor
            value = numbers[cursor]
            self.broadcaster.ball_revealed(state.id, value, cursor, numbers[:cursor + 1])
            self.logger.info(f"[ball] round={state.id} index={cursor + 1}/{len(numbers)} value={value}")
            cursor += 1
            self.sleep(self.interval)
        return cursor
