from flask import Blueprint, jsonify, request, current_app
from keno import db
from keno.models import Round, Ticket, Account, AggregateStats, RoundHistory
from keno.services.rounds.betting import place_bet
from keno.services.rounds.errors import BetRejected, StoreUnavailable
from keno.services.rounds.paytable import Paytable

rounds = Blueprint('keno', __name__)

_REJECTION_STATUS = {
    BetRejected.INVALID_NUMBERS: 400,
    BetRejected.INVALID_STAKE: 400,
    BetRejected.INSUFFICIENT_FUNDS: 402,
    BetRejected.UNKNOWN_ACCOUNT: 404,
    BetRejected.ROUND_CLOSED: 409,
}


@rounds.route('/round/current', methods=['GET'])
def get_current_round():
    current = Round.query.order_by(Round.id.desc()).first()
    if current is None:
        return jsonify({'round': None})
    return jsonify({'round': current.to_dict()})


@rounds.route('/bets', methods=['POST'])
def submit_bet():
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id')
    numbers = data.get('numbers')
    stake = data.get('stake')
    if user_id is None or numbers is None or stake is None:
        return jsonify({'error': 'user_id, numbers and stake are required', 'reason': 'missing_fields'}), 400

    try:
        placed = place_bet(current_app._get_current_object(), user_id, numbers, stake)
    except BetRejected as exc:
        return jsonify({'error': exc.message, 'reason': exc.reason}), _REJECTION_STATUS.get(exc.reason, 400)
    except StoreUnavailable:
        return jsonify({'error': 'Betting is temporarily unavailable', 'reason': 'unavailable'}), 503

    return jsonify({
        'ticket_id': placed.ticket_id,
        'round_id': placed.round_id,
        'balance': placed.balance,
    }), 201


@rounds.route('/tickets/<int:ticket_id>', methods=['GET'])
def get_ticket(ticket_id):
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None:
        return jsonify({'error': 'Ticket not found'}), 404
    return jsonify(ticket.to_dict())


@rounds.route('/accounts/<string:user_id>', methods=['GET'])
def get_account(user_id):
    account = db.session.get(Account, user_id)
    if account is None:
        return jsonify({'error': 'Account not found'}), 404
    payload = account.to_dict()
    payload['pending_tickets'] = Ticket.query.filter_by(user_id=user_id, status='pending').count()
    return jsonify(payload)


@rounds.route('/history', methods=['GET'])
def get_history():
    limit = int(current_app.config.get('HISTORY_SIZE', 20))
    entries = RoundHistory.query.order_by(RoundHistory.round_id.desc()).limit(limit).all()
    return jsonify([h.to_dict() for h in entries])


@rounds.route('/stats', methods=['GET'])
def get_stats():
    stats = db.session.get(AggregateStats, 1)
    if stats is None:
        return jsonify(AggregateStats(
            id=1, total_staked=0, total_paid_out=0, jackpot_pool=0, tickets_settled=0, rounds_finished=0,
        ).to_dict())
    return jsonify(stats.to_dict())


@rounds.route('/paytable', methods=['GET'])
def get_paytable():
    cfg = current_app.config
    return jsonify({
        'pool_size': int(cfg.get('KENO_POOL_SIZE', 80)),
        'draw_size': int(cfg.get('KENO_DRAW_SIZE', 20)),
        'min_picks': int(cfg.get('MIN_PICKS', 1)),
        'max_picks': int(cfg.get('MAX_PICKS', 10)),
        'min_stake': int(cfg.get('MIN_STAKE', 10)),
        'paytable': Paytable.from_config(cfg).to_dict(),
    })
