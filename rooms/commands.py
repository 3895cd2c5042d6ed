from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from holdem.errors import InvalidAction

PROTOCOL_VERSION = 1


class CommandType(str, Enum):
    CREATE_ROOM = "createRoom"
    JOIN_ROOM = "joinRoom"
    START_GAME = "startGame"
    PLAYER_ACTION = "playerAction"
    NEXT_ROUND = "nextRound"
    BUY_BACK = "buyBack"
    CHAT_MESSAGE = "chatMessage"
    REVEAL_CARDS = "revealCards"
    LEAVE_ROOM = "leaveRoom"
    # Internal: produced by timers, the AI scheduler and connection tracking.
    TIMEOUT = "timeout"
    AI_TURN = "aiTurn"
    SET_CONNECTED = "setConnected"


CLIENT_COMMANDS = {
    CommandType.CREATE_ROOM,
    CommandType.JOIN_ROOM,
    CommandType.START_GAME,
    CommandType.PLAYER_ACTION,
    CommandType.NEXT_ROUND,
    CommandType.BUY_BACK,
    CommandType.CHAT_MESSAGE,
    CommandType.REVEAL_CARDS,
    CommandType.LEAVE_ROOM,
}


@dataclass
class Command:
    type: CommandType
    player_id: Optional[str] = None
    room_code: Optional[str] = None
    args: Dict[str, object] = field(default_factory=dict)

    @classmethod
    def from_message(cls, message: Dict[str, object], *, internal: bool = False) -> "Command":
        """Parse ``{"command": "playerAction", "action": "call", ...}`` as sent by clients."""
        raw = message.get("command")
        try:
            command_type = CommandType(raw)
        except ValueError:
            raise InvalidAction(f"Unknown command: {raw}") from None
        if not internal and command_type not in CLIENT_COMMANDS:
            raise InvalidAction(f"Unknown command: {raw}")
        args = {
            key: value
            for key, value in message.items()
            if key not in ("type", "v", "ts", "id", "command", "playerId", "roomCode")
        }
        room_code = message.get("roomCode")
        player_id = message.get("playerId")
        return cls(
            type=command_type,
            player_id=player_id if isinstance(player_id, str) else None,
            room_code=room_code if isinstance(room_code, str) else None,
            args=args,
        )

    def to_message(self) -> Dict[str, object]:
        message: Dict[str, object] = {"command": self.type.value, **self.args}
        if self.player_id is not None:
            message["playerId"] = self.player_id
        if self.room_code is not None:
            message["roomCode"] = self.room_code
        return message


def ok(**data: object) -> Dict[str, object]:
    return {"ok": True, **data}


def error_reply(code: str, msg: str) -> Dict[str, object]:
    return {"ok": False, "code": code, "msg": msg}


def envelope(msg_type: str, payload: Dict[str, object]) -> str:
    body: Dict[str, object] = {"type": msg_type, "v": PROTOCOL_VERSION, "ts": datetime.now(timezone.utc).isoformat()}
    body.update(payload)
    return json.dumps(body)


def decode(raw: str | bytes) -> Dict[str, object]:
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return message if isinstance(message, dict) else {}
