"""
Game error taxonomy.

Every rejected action raises one of these. The WebSocket gateway turns them
into a unicast `error` message; the REST router turns them into HTTP errors.
"""


class GameError(Exception):
    code = "GAME_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(GameError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidPhase(GameError):
    code = "INVALID_PHASE"
    status_code = 409


class Forbidden(GameError):
    code = "FORBIDDEN"
    status_code = 403


class GameFull(GameError):
    code = "GAME_FULL"
    status_code = 409


class AlreadyJoined(GameError):
    code = "ALREADY_JOINED"
    status_code = 409


class NotEnoughPlayers(GameError):
    code = "NOT_ENOUGH_PLAYERS"
    status_code = 409


class NotAllReady(GameError):
    code = "NOT_ALL_READY"
    status_code = 409


class InvalidSuspect(GameError):
    code = "INVALID_SUSPECT"
    status_code = 400


class GenerationFailed(GameError):
    code = "GENERATION_FAILED"
    status_code = 502


class ValidationError(GameError):
    code = "VALIDATION_ERROR"
    status_code = 400


# Gateway preconditions (connection state, not game state)

class NotAuthenticated(GameError):
    code = "NOT_AUTHENTICATED"
    status_code = 401


class NotInGame(GameError):
    code = "NOT_IN_GAME"
    status_code = 409
