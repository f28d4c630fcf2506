from flask_socketio import join_room, emit
from flask import current_app, request
from trivia import socketio
from typing import Dict, Optional
import threading


class SocketIOBroadcaster:
    """Delivers orchestrator events over Socket.IO.

    Also keeps the connection id <-> participant id binding, so the handlers
    below can find the participant behind a socket.
    """

    def __init__(self, sio, namespace: str = '/ws'):
        self._sio = sio
        self.namespace = namespace
        self._lock = threading.Lock()
        self._sids: Dict[str, str] = {}
        self._participants: Dict[str, str] = {}
        self._rooms: Dict[str, str] = {}

    def attach(self, participant_id: str, room_code: str) -> None:
        # Only valid inside a Socket.IO handler: binds the calling connection
        sid = request.sid  # type: ignore
        previous = self.participant_for(sid)
        if previous is not None and previous != participant_id:
            self.detach(previous)
        join_room(room_code, sid=sid, namespace=self.namespace)
        with self._lock:
            self._sids[participant_id] = sid
            self._participants[sid] = participant_id
            self._rooms[participant_id] = room_code

    def detach(self, participant_id: str) -> None:
        """Unbind a participant and take its connection out of the room broadcast."""
        with self._lock:
            sid = self._sids.pop(participant_id, None)
            room_code = self._rooms.pop(participant_id, None)
            if sid is not None and self._participants.get(sid) == participant_id:
                del self._participants[sid]
        if sid is not None and room_code is not None:
            # Works outside a request too (reclaim runs in a background task)
            self._sio.server.leave_room(sid, room_code, namespace=self.namespace)

    def sid_for(self, participant_id: Optional[str]) -> Optional[str]:
        if not participant_id:
            return None
        with self._lock:
            return self._sids.get(participant_id)

    def participant_for(self, sid: str) -> Optional[str]:
        with self._lock:
            return self._participants.get(sid)

    def to_room(self, room_code: str, event: str, payload: dict, skip: Optional[str] = None) -> None:
        # socketio.emit works from background tasks as well as handlers
        self._sio.emit(event, payload, to=room_code, namespace=self.namespace, skip_sid=self.sid_for(skip))

    def to_participant(self, participant_id: str, event: str, payload: dict) -> None:
        sid = self.sid_for(participant_id)
        if sid is None:
            return
        self._sio.emit(event, payload, to=sid, namespace=self.namespace)


def _services():
    return current_app.extensions['trivia']


def _current_participant() -> Optional[str]:
    return _services()['broadcaster'].participant_for(request.sid)  # type: ignore


def _payload(data) -> dict:
    return data if isinstance(data, dict) else {}


def _dispatch(event: str, action):
    """Run one orchestrator call; unexpected failures still get an ack."""
    try:
        return action(_services()['orchestrator'])
    except Exception:
        current_app.logger.exception(f"[socket-error] event={event} sid={request.sid}")  # type: ignore
        emit('error', {'message': 'Internal server error', 'code': 'INTERNAL_ERROR'})
        return {'success': False, 'error': 'Internal server error', 'code': 'INTERNAL_ERROR'}


def _playing_participant() -> Optional[str]:
    """Participant behind this connection, if its room is still live.

    A binding left over from a finished, abandoned or reclaimed room is dropped
    so the connection can create or join another room.
    """
    participant_id = _current_participant()
    if not participant_id:
        return None
    services = _services()
    registry = services['registry']
    room = registry.get_room(registry.get_participant_room(participant_id))
    if room is None or room.is_terminal or participant_id not in room.participants:
        services['broadcaster'].detach(participant_id)
        return None
    return participant_id


def _already_bound():
    return {'success': False, 'error': 'Connection already joined a room', 'code': 'INVALID_REQUEST'}


def handle_connect(auth=None):
    emit('connected', {'message': f"Connected to {_services()['broadcaster'].namespace}"})


def handle_disconnect(reason=None):
    participant_id = _current_participant()
    if not participant_id:
        return
    _dispatch('disconnect', lambda orch: orch.disconnect(participant_id))


def handle_create_room(data=None):
    if _playing_participant():
        return _already_bound()
    payload = _payload(data)
    return _dispatch('create-room', lambda orch: orch.create_room(payload.get('displayName')))


def handle_join_room(data=None):
    if _playing_participant():
        return _already_bound()
    payload = _payload(data)
    return _dispatch(
        'join-room',
        lambda orch: orch.join_room(payload.get('roomCode'), payload.get('displayName')),
    )


def handle_start_game(data=None):
    participant_id = _current_participant()
    return _dispatch('start-game', lambda orch: orch.start_game(participant_id))


def handle_submit_answer(data=None):
    participant_id = _current_participant()
    payload = _payload(data)
    return _dispatch('submit-answer', lambda orch: orch.submit_answer(participant_id, payload.get('optionIndex')))


def handle_next_question(data=None):
    participant_id = _current_participant()
    return _dispatch('next-question', lambda orch: orch.next_question(participant_id))


def handle_ping(data=None):
    emit('pong', data or {})


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('create-room', handle_create_room, namespace=namespace)
    socketio.on_event('join-room', handle_join_room, namespace=namespace)
    socketio.on_event('start-game', handle_start_game, namespace=namespace)
    socketio.on_event('submit-answer', handle_submit_answer, namespace=namespace)
    socketio.on_event('next-question', handle_next_question, namespace=namespace)
    socketio.on_event('ping', handle_ping, namespace=namespace)
