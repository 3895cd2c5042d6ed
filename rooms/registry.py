from __future__ import annotations

import logging
import random
import string
import time
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from holdem.errors import RoomNotFound
from holdem.game import DeckFactory
from holdem.models import Player, RoomSettings

from .commands import Command, CommandType
from .room import GameRoom

LOGGER = logging.getLogger("holdem_rooms.registry")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
DEFAULT_IDLE_TIMEOUT = 3600.0


class RoomRegistry:
    """Every live room, keyed by its join code."""

    def __init__(
        self,
        default_settings: Optional[RoomSettings] = None,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        deck_factory: Optional[DeckFactory] = None,
    ) -> None:
        self.default_settings = default_settings or RoomSettings()
        self.idle_timeout = idle_timeout
        self.rng = rng or random.Random()
        self.clock = clock
        self.deck_factory = deck_factory
        self.rooms: Dict[str, GameRoom] = {}

    def __len__(self) -> int:
        return len(self.rooms)

    def generate_code(self) -> str:
        while True:
            code = "".join(self.rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
            if code not in self.rooms:
                return code

    def create_room(
        self,
        host_name: str,
        settings: Optional[Mapping[str, object]] = None,
        with_ai: bool = False,
    ) -> Tuple[GameRoom, Player]:
        room_settings = RoomSettings.from_payload(settings, base=self.default_settings)
        code = self.generate_code()
        room = GameRoom(code, room_settings, deck_factory=self.deck_factory, clock=self.clock)
        player = room.add_host(host_name)
        if with_ai:
            room.add_ai()
        self.rooms[code] = room
        LOGGER.info("Room %s created by %s (ai=%s)", code, player.name, with_ai)
        return room, player

    def get(self, code: Optional[str]) -> GameRoom:
        if not isinstance(code, str):
            raise RoomNotFound()
        room = self.rooms.get(code.strip().upper())
        if room is None:
            raise RoomNotFound()
        return room

    def join_room(self, code: Optional[str], name: object) -> Dict[str, object]:
        """Seat ``name`` in room ``code``; the reply carries the new playerId."""
        room = self.get(code)
        reply = room.dispatch(Command(CommandType.JOIN_ROOM, room_code=room.code, args={"playerName": name}))
        self.touch(room)
        return reply

    def leave_room(self, code: Optional[str], player_id: Optional[str]) -> Dict[str, object]:
        room = self.get(code)
        reply = room.dispatch(Command(CommandType.LEAVE_ROOM, player_id=player_id, room_code=room.code))
        self.touch(room)
        if reply.get("ok") and not room.game.players:
            self.close_room(room.code)
        return reply

    def touch(self, room: GameRoom) -> None:
        """Refresh the idle bookkeeping after anything happened in ``room``."""
        now = self.clock()
        room.last_activity = now
        if room.has_connected_humans():
            room.empty_since = None
        elif room.empty_since is None:
            room.empty_since = now

    def reap_idle(self, now: Optional[float] = None) -> List[str]:
        now = self.clock() if now is None else now
        expired = [
            code
            for code, room in self.rooms.items()
            if (room.empty_since is not None and now - room.empty_since >= self.idle_timeout)
            or now - room.last_activity >= self.idle_timeout
        ]
        for code in expired:
            self.close_room(code)
        return expired

    def close_room(self, code: str) -> Optional[GameRoom]:
        room = self.rooms.pop(code, None)
        if room is not None:
            LOGGER.info("Room %s closed", code)
        return room
