import time

from flask import Blueprint, jsonify
from keno.models import Round

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Keno round server is running'})

@main.route('/health')
def health():
    current = Round.query.order_by(Round.id.desc()).first()
    return jsonify({
        'status': 'ok',
        'round_id': current.id if current else None,
        'round_status': current.status if current else None,
        'last_activity_age': round(time.time() - current.last_activity_time, 1) if current else None,
    })
