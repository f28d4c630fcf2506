"""Error taxonomy for room and registry operations.

Room and registry methods raise these; the session orchestrator turns them
into failed acknowledgements for the participant who sent the request.
"""
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'
    FORBIDDEN = 'forbidden'
    INVALID_STATE = 'invalid_state'
    CAPACITY = 'capacity'
    NOT_ENOUGH_PLAYERS = 'not_enough_players'
    INVALID_REQUEST = 'invalid_request'


class GameError(Exception):
    kind = ErrorKind.INVALID_STATE
    code = 'GAME_ERROR'
    message = 'Game error'

    def __init__(self, message=None):
        if message:
            self.message = message
        super().__init__(self.message)

    def to_dict(self):
        return {'message': self.message, 'code': self.code, 'kind': self.kind.value}


class RoomNotFound(GameError):
    kind = ErrorKind.NOT_FOUND
    code = 'ROOM_NOT_FOUND'
    message = 'Room not found'


class PlayerNotInRoom(GameError):
    kind = ErrorKind.NOT_FOUND
    code = 'PLAYER_NOT_IN_ROOM'
    message = 'Player not in any room'


class RoomFull(GameError):
    kind = ErrorKind.CAPACITY
    code = 'ROOM_FULL'
    message = 'Room is full'


class NameTaken(GameError):
    kind = ErrorKind.CONFLICT
    code = 'NAME_TAKEN'
    message = 'Player name already taken'


class AlreadyStarted(GameError):
    kind = ErrorKind.CONFLICT
    code = 'ALREADY_STARTED'
    message = 'Game already started'


class GameAlreadyStarted(AlreadyStarted):
    code = 'GAME_ALREADY_STARTED'


class AlreadyAnswered(GameError):
    kind = ErrorKind.CONFLICT
    code = 'ALREADY_ANSWERED'
    message = 'Answer already submitted'


class NotHost(GameError):
    kind = ErrorKind.FORBIDDEN
    code = 'NOT_HOST'
    message = 'Only the host can do that'


class NotEnoughPlayers(GameError):
    kind = ErrorKind.NOT_ENOUGH_PLAYERS
    code = 'NOT_ENOUGH_PLAYERS'
    message = 'Need at least 2 players to start'


class GameNotStarted(GameError):
    code = 'GAME_NOT_STARTED'
    message = 'Game not started yet'


class GameFinished(GameError):
    code = 'GAME_FINISHED'
    message = 'Game already finished'


class NoMoreQuestions(GameError):
    code = 'NO_MORE_QUESTIONS'
    message = 'No more questions'


class NoActiveQuestion(GameError):
    code = 'NO_ACTIVE_QUESTION'
    message = 'No active question'


class InvalidRequest(GameError):
    kind = ErrorKind.INVALID_REQUEST
    code = 'INVALID_REQUEST'
    message = 'Invalid request'


class RoomCodeSpaceExhausted(RuntimeError):
    """No free room code could be found; the code length is misconfigured."""
