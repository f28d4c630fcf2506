from flask import Blueprint, current_app, jsonify
import time

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({
        'message': 'Trivia room server',
        'socketNamespace': current_app.config.get('SOCKETIO_NAMESPACE', '/ws'),
    })


@main.route('/health')
def health():
    started_at = current_app.config.get('STARTED_AT') or time.time()
    return jsonify({'status': 'ok', 'uptime': round(time.time() - started_at, 3)})
