from __future__ import annotations


class GameError(ValueError):
    """A rejected command. The game state is untouched when one is raised."""

    code = "GAME_ERROR"
    default_msg = "Command rejected"

    def __init__(self, msg: str | None = None) -> None:
        self.msg = msg or self.default_msg
        super().__init__(self.msg)

    def to_payload(self) -> dict[str, str]:
        return {"code": self.code, "msg": self.msg}


class NotYourTurn(GameError):
    code = "NOT_YOUR_TURN"
    default_msg = "Not your turn"


class MustCallOrFold(GameError):
    code = "MUST_CALL_OR_FOLD"
    default_msg = "Cannot check, must call or fold"


class RaiseTooLow(GameError):
    code = "RAISE_TOO_LOW"
    default_msg = "Raise must be higher than current bet"


class InsufficientChips(GameError):
    code = "INSUFFICIENT_CHIPS"
    default_msg = "Not enough chips"


class InvalidAction(GameError):
    code = "INVALID_ACTION"
    default_msg = "Unknown action"


class RoomNotFound(GameError):
    code = "ROOM_NOT_FOUND"
    default_msg = "Room not found"


class RoomFull(GameError):
    code = "ROOM_FULL"
    default_msg = "Room is full"


class GameInProgress(GameError):
    code = "GAME_IN_PROGRESS"
    default_msg = "Game already in progress"


class NotHost(GameError):
    code = "NOT_HOST"
    default_msg = "Only host can start the game"


class NotEnoughPlayers(GameError):
    code = "NOT_ENOUGH_PLAYERS"
    default_msg = "Need at least 2 players"


class PlayerNotFound(GameError):
    code = "PLAYER_NOT_FOUND"
    default_msg = "Player not found"


class BuyBackDisabled(GameError):
    code = "BUY_BACK_DISABLED"
    default_msg = "Buy-backs are not allowed"


class BuyBackLimitReached(GameError):
    code = "BUY_BACK_LIMIT_REACHED"
    default_msg = "Maximum buy-backs reached"


class BuyBackNotNeeded(GameError):
    code = "BUY_BACK_NOT_NEEDED"
    default_msg = "You still have chips"


class RoundAlreadyAdvanced(GameError):
    code = "ROUND_ALREADY_ADVANCED"
    default_msg = "Turn already advanced"


class InvalidSettings(GameError):
    code = "INVALID_SETTINGS"
    default_msg = "Invalid room settings"


class DeckExhausted(RuntimeError):
    """Dealing from an empty deck. Aborts the round, never the room."""

    code = "DECK_EXHAUSTED"

    def __init__(self, msg: str = "Deck exhausted") -> None:
        super().__init__(msg)
        self.msg = msg

    def to_payload(self) -> dict[str, str]:
        return {"code": self.code, "msg": self.msg}
