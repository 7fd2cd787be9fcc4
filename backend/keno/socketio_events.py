from flask import current_app
from flask_socketio import join_room, leave_room, emit
from sqlalchemy.exc import SQLAlchemyError

from keno import db
from keno.models import Round
from keno.services.rounds.broadcast import ROOM


def _current_round_payload():
    try:
        current = Round.query.order_by(Round.id.desc()).first()
        return current.to_dict() if current else None
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning(f"[ws-round-read-failed] {exc}")
        return None


def handle_connect():
    emit('connected', {'message': 'Connected to /ws', 'round': _current_round_payload()})


def handle_join_round(data=None):
    join_room(ROOM)
    # Late joiners get the current state, including already revealed balls
    emit('joined', {'room': ROOM, 'round': _current_round_payload()})


def handle_leave_round(data=None):
    leave_room(ROOM)
    emit('left', {'room': ROOM})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    from keno import socketio

    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_round', handle_join_round, namespace='/ws')
    socketio.on_event('leave_round', handle_leave_round, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_round', handle_join_round, namespace='/')
        socketio.on_event('leave_round', handle_leave_round, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
