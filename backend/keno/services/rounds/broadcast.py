from keno import socketio

ROOM = 'keno'
NAMESPACE = '/ws'


class Broadcaster:
    """Fire-and-forget Socket.IO notifications for round watchers.

    Emission errors are logged and swallowed; round progression never
    depends on delivery.
    """

    def __init__(self, logger, room=ROOM, namespace=NAMESPACE):
        self.logger = logger
        self.room = room
        self.namespace = namespace

    def _emit(self, event, payload):
        try:
            socketio.emit(event, payload, to=self.room, namespace=self.namespace)
        except Exception as exc:
            self.logger.warning(f"[broadcast-failed] event={event} error={exc}")

    def round_phase(self, round_id, status, time_remaining):
        self._emit('round_phase', {
            'round_id': round_id,
            'status': status,
            'time_remaining': max(0.0, float(time_remaining)),
        })

    def ball_revealed(self, round_id, value, index, drawn):
        self._emit('ball_revealed', {
            'round_id': round_id,
            'value': value,
            'index': index,
            'drawn': list(drawn),
        })

    def round_finished(self, round_id, winning_numbers):
        self._emit('round_finished', {
            'round_id': round_id,
            'winning_numbers': list(winning_numbers),
        })
