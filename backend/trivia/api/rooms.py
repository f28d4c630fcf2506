from flask import Blueprint, jsonify, current_app


rooms = Blueprint('rooms', __name__)


def _orchestrator():
    return current_app.extensions['trivia']['orchestrator']


@rooms.route('/rooms/<string:room_code>', methods=['GET'])
def get_room(room_code):
    summary = _orchestrator().room_summary(room_code)
    if summary is None:
        return jsonify({'success': False, 'error': 'Room not found'}), 404
    return jsonify({'success': True, 'data': summary})


@rooms.route('/stats', methods=['GET'])
def get_stats():
    return jsonify({'success': True, 'data': _orchestrator().stats()})
