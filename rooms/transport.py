from __future__ import annotations

import abc
import asyncio
import itertools
import json
import logging
import uuid
from typing import Callable, Dict, List, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from holdem.errors import GameError, InvalidAction

from .commands import Command, CommandType, decode, error_reply
from .registry import RoomRegistry
from .room import GameRoom, PendingTurn
from .timer import TurnTimer

LOGGER = logging.getLogger("holdem_rooms.transport")

Reply = Dict[str, object]
Listener = Callable[[str, Dict[str, object]], None]

# Bound on consecutive AI moves resolved inside one local command.
MAX_AI_CHAIN = 64
ENVELOPE_KEYS = ("type", "v", "ts", "id")


class GameTransport(abc.ABC):
    """Common client-side surface: send commands, receive state pushes.

    Implementations differ only in where the authoritative ``GameRoom`` lives.
    Subscribers receive ``(message_type, payload)`` with types ``state``,
    ``event``, ``chat``, ``timer`` and ``error``.
    """

    def __init__(self) -> None:
        self.player_id: Optional[str] = None
        self.room_code: Optional[str] = None
        self.resume_token: Optional[str] = None
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, msg_type: str, payload: Dict[str, object]) -> None:
        for listener in list(self._listeners):
            listener(msg_type, payload)

    @abc.abstractmethod
    async def send(self, command: Command) -> Reply:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    def _remember(self, command: Command, reply: Reply) -> None:
        if not reply.get("ok"):
            return
        if command.type in (CommandType.CREATE_ROOM, CommandType.JOIN_ROOM):
            self.player_id = reply.get("playerId")  # type: ignore[assignment]
            self.room_code = reply.get("roomCode")  # type: ignore[assignment]
            self.resume_token = reply.get("resumeToken", self.resume_token)  # type: ignore[assignment]
        elif command.type == CommandType.LEAVE_ROOM:
            self.player_id = None
            self.room_code = None
            self.resume_token = None

    def _command(self, command_type: CommandType, **args: object) -> Command:
        return Command(command_type, player_id=self.player_id, room_code=self.room_code, args=args)

    async def create_room(
        self,
        player_name: str,
        settings: Optional[Dict[str, object]] = None,
        with_ai: bool = False,
    ) -> Reply:
        return await self.send(
            Command(
                CommandType.CREATE_ROOM,
                args={"playerName": player_name, "settings": settings or {}, "withAI": with_ai},
            )
        )

    async def join_room(self, room_code: str, player_name: str) -> Reply:
        return await self.send(
            Command(CommandType.JOIN_ROOM, room_code=room_code, args={"playerName": player_name})
        )

    async def start_game(self) -> Reply:
        return await self.send(self._command(CommandType.START_GAME))

    async def player_action(self, action: str, amount: Optional[int] = None) -> Reply:
        args: Dict[str, object] = {"action": action}
        if amount is not None:
            args["amount"] = amount
        return await self.send(self._command(CommandType.PLAYER_ACTION, **args))

    async def next_round(self) -> Reply:
        return await self.send(self._command(CommandType.NEXT_ROUND))

    async def buy_back(self) -> Reply:
        return await self.send(self._command(CommandType.BUY_BACK))

    async def chat_message(self, message: str) -> Reply:
        return await self.send(self._command(CommandType.CHAT_MESSAGE, message=message))

    async def reveal_cards(self, indices: List[int]) -> Reply:
        return await self.send(self._command(CommandType.REVEAL_CARDS, indices=list(indices)))

    async def leave_room(self) -> Reply:
        return await self.send(self._command(CommandType.LEAVE_ROOM))


class LocalTransport(GameTransport):
    """The room lives in this process; AI seats answer straight away.

    Human turns run on a ``TurnTimer`` per room, so an idle seat gets the
    same timeout policy as it would behind the server.
    """

    def __init__(self, registry: Optional[RoomRegistry] = None) -> None:
        super().__init__()
        self.registry = registry if registry is not None else RoomRegistry()
        self.timers: Dict[str, TurnTimer] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def room(self) -> Optional[GameRoom]:
        if self.room_code is None:
            return None
        return self.registry.rooms.get(self.room_code)

    async def send(self, command: Command) -> Reply:
        reply = self.execute(command)
        self._remember(command, reply)
        if command.type in (CommandType.CREATE_ROOM, CommandType.JOIN_ROOM) and reply.get("ok"):
            self._watch(self.registry.get(self.room_code))
        elif command.type == CommandType.LEAVE_ROOM and reply.get("ok") and self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        return reply

    async def close(self) -> None:
        for timer in self.timers.values():
            timer.cancel()
        self.timers.clear()

    def execute(self, command: Command) -> Reply:
        """Apply ``command`` as-is, without touching this transport's identity."""
        try:
            if command.type == CommandType.CREATE_ROOM:
                return self._create(command)
            room = self.registry.get(command.room_code)
            if command.type == CommandType.JOIN_ROOM:
                reply = self.registry.join_room(room.code, command.args.get("playerName"))
            elif command.type == CommandType.LEAVE_ROOM:
                reply = self.registry.leave_room(room.code, command.player_id)
            else:
                reply = room.dispatch(command)
                self.registry.touch(room)
        except GameError as exc:
            return error_reply(exc.code, exc.msg)
        self.run_ai(room)
        self.arm_timer(room)
        return reply

    def _create(self, command: Command) -> Reply:
        name = command.args.get("playerName")
        if not isinstance(name, str) or not name.strip():
            raise InvalidAction("playerName required")
        settings = command.args.get("settings")
        room, player = self.registry.create_room(
            name,
            settings if isinstance(settings, dict) else None,
            with_ai=bool(command.args.get("withAI")),
        )
        return {
            "ok": True,
            "playerId": player.id,
            "roomCode": room.code,
            "room": room.game.snapshot(player.id),
        }

    def _watch(self, room: GameRoom) -> None:
        if self._unsubscribe:
            self._unsubscribe()
        self._unsubscribe = room.subscribe(self._emit, viewer_id=self.player_id)
        self._emit("state", room.game.snapshot(self.player_id))

    def run_ai(self, room: GameRoom) -> None:
        for _ in range(MAX_AI_CHAIN):
            turn = room.pending_turn()
            if turn is None or not turn.is_ai:
                return
            reply = room.dispatch(room.ai_command(turn))
            if not reply.get("ok"):
                LOGGER.warning("AI move rejected in room %s: %s", room.code, reply.get("code"))
                return

    def arm_timer(self, room: GameRoom) -> None:
        """Start, keep or cancel the countdown for whoever holds the turn."""
        timer = self.timers.setdefault(room.code, TurnTimer())
        turn = room.pending_turn()
        seconds = float(room.settings.turn_time_limit)
        live = self.registry.rooms.get(room.code) is room
        if not live or turn is None or turn.is_ai or seconds <= 0:
            timer.cancel()
            return
        if timer.running and timer.key == turn.key:
            return
        timer.start(turn.key, seconds, lambda: self._expire(room, turn))
        room.notify("timer", {"playerId": turn.player_id, "turnToken": turn.turn_token, "seconds": seconds})

    async def _expire(self, room: GameRoom, turn: PendingTurn) -> None:
        current = room.pending_turn()
        if current is None or current.key != turn.key or self.registry.rooms.get(room.code) is not room:
            return
        reply = room.dispatch(room.timeout_command(turn))
        if not reply.get("ok"):
            LOGGER.debug("Room %s dropped timeout for %s: %s", room.code, turn.player_id, reply.get("code"))
        self.registry.touch(room)
        self.run_ai(room)
        self.arm_timer(room)

    def expire_turn(self) -> Reply:
        """Apply the timeout policy to whoever holds the turn right now."""
        room = self.room
        if room is None:
            return error_reply("ROOM_NOT_FOUND", "Room not found")
        turn = room.pending_turn()
        if turn is None:
            return error_reply("NOT_YOUR_TURN", "No turn is running")
        reply = room.dispatch(room.timeout_command(turn))
        self.registry.touch(room)
        self.run_ai(room)
        self.arm_timer(room)
        return reply


class BroadcastChannel:
    """In-process stand-in for a same-origin tab broadcast channel.

    Messages are delivered on the next loop iteration to every other tab.
    """

    def __init__(self, name: str = "holdem") -> None:
        self.name = name
        self._tabs: Dict[str, Callable[[Dict[str, object]], None]] = {}

    def connect(self, tab_id: str, listener: Callable[[Dict[str, object]], None]) -> None:
        self._tabs[tab_id] = listener

    def disconnect(self, tab_id: str) -> None:
        self._tabs.pop(tab_id, None)

    def post(self, sender: str, message: Dict[str, object]) -> None:
        loop = asyncio.get_running_loop()
        # Round-trip through JSON so tabs never share mutable state.
        wire = json.dumps(dict(message, sender=sender))
        for tab_id, listener in list(self._tabs.items()):
            if tab_id != sender:
                loop.call_soon(listener, json.loads(wire))


class BroadcastTransport(GameTransport):
    """Peer tabs over a BroadcastChannel. Only the host tab runs the game."""

    def __init__(
        self,
        channel: BroadcastChannel,
        *,
        host: bool = False,
        registry: Optional[RoomRegistry] = None,
        reply_timeout: float = 10.0,
    ) -> None:
        super().__init__()
        self.channel = channel
        self.is_host = host
        self.tab_id = uuid.uuid4().hex
        self.reply_timeout = reply_timeout
        self.local: Optional[LocalTransport] = LocalTransport(registry) if host else None
        self.followers: Dict[str, str] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._room_unsubscribe: Optional[Callable[[], None]] = None
        if self.local is not None:
            self.local.subscribe(self._emit)
        channel.connect(self.tab_id, self._on_message)

    async def send(self, command: Command) -> Reply:
        if self.local is not None:
            reply = await self.local.send(command)
            self.player_id = self.local.player_id
            self.room_code = self.local.room_code
            if command.type == CommandType.CREATE_ROOM and reply.get("ok"):
                self._watch_room()
            return reply
        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        self.channel.post(self.tab_id, {"kind": "COMMAND", "id": request_id, "command": command.to_message()})
        try:
            reply = await asyncio.wait_for(future, self.reply_timeout)
        finally:
            self._pending.pop(request_id, None)
        self._remember(command, reply)
        return reply

    def request_sync(self) -> None:
        self.channel.post(self.tab_id, {"kind": "SYNC_REQUEST"})

    async def close(self) -> None:
        self.channel.disconnect(self.tab_id)
        if self._room_unsubscribe:
            self._room_unsubscribe()
            self._room_unsubscribe = None
        if self.local is not None:
            await self.local.close()

    def _on_message(self, message: Dict[str, object]) -> None:
        kind = message.get("kind")
        if self.local is not None:
            if kind == "COMMAND":
                asyncio.get_running_loop().create_task(self._serve_command(message))
            elif kind == "SYNC_REQUEST":
                self._send_state(str(message.get("sender")))
            return
        if message.get("to") not in (None, self.tab_id):
            return
        if kind == "REPLY":
            future = self._pending.get(str(message.get("id")))
            if future is not None and not future.done():
                future.set_result(message.get("reply") or {})
        elif kind == "STATE":
            self._emit("state", message.get("state") or {})
        elif kind == "NOTICE":
            self._emit(str(message.get("type")), message.get("payload") or {})

    async def _serve_command(self, message: Dict[str, object]) -> None:
        assert self.local is not None
        sender = str(message.get("sender"))
        try:
            command = Command.from_message(message.get("command") or {})  # type: ignore[arg-type]
        except GameError as exc:
            reply = error_reply(exc.code, exc.msg)
        else:
            reply = self._apply_follower_command(sender, command)
        self.channel.post(self.tab_id, {"kind": "REPLY", "to": sender, "id": message.get("id"), "reply": reply})
        self._send_state(sender)

    def _apply_follower_command(self, sender: str, command: Command) -> Reply:
        assert self.local is not None
        if command.type == CommandType.CREATE_ROOM:
            return error_reply("INVALID_ACTION", "Only the host tab creates the room")
        # Followers act as the seat they joined with, in the host's room.
        command.room_code = self.room_code
        if command.type != CommandType.JOIN_ROOM:
            command.player_id = self.followers.get(sender)
        reply = self.local.execute(command)
        if reply.get("ok"):
            if command.type == CommandType.JOIN_ROOM:
                self.followers[sender] = reply["playerId"]  # type: ignore[assignment]
            elif command.type == CommandType.LEAVE_ROOM:
                self.followers.pop(sender, None)
        return reply

    def _watch_room(self) -> None:
        assert self.local is not None
        room = self.local.room
        if room is None:
            return
        if self._room_unsubscribe:
            self._room_unsubscribe()
        self._room_unsubscribe = room.subscribe(self._relay)

    def _relay(self, msg_type: str, payload: Dict[str, object]) -> None:
        if msg_type == "state":
            for tab_id in list(self.followers):
                self._send_state(tab_id)
        elif msg_type in ("chat", "timer", "error"):
            self.channel.post(self.tab_id, {"kind": "NOTICE", "type": msg_type, "payload": payload})

    def _send_state(self, tab_id: str) -> None:
        assert self.local is not None
        room = self.local.room
        if room is None:
            return
        state = room.game.snapshot(self.followers.get(tab_id))
        self.channel.post(self.tab_id, {"kind": "STATE", "to": tab_id, "state": state})


class RemoteTransport(GameTransport):
    """Client for ``rooms.server.RoomServer`` over a websocket."""

    def __init__(self, url: str) -> None:
        super().__init__()
        self.url = url
        self.websocket: Optional[ClientConnection] = None
        self._ids = itertools.count(1)
        self._pending: Dict[int, asyncio.Future] = {}
        self._reader: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        self.websocket = await connect(self.url)
        self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        if self.websocket is not None:
            await self.websocket.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None

    async def send(self, command: Command) -> Reply:
        if self.websocket is None:
            await self.connect()
        assert self.websocket is not None
        request_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        message = {"type": "command", "v": 1, "id": request_id, **command.to_message()}
        try:
            await self.websocket.send(json.dumps(message))
            reply = await future
        finally:
            self._pending.pop(request_id, None)
        self._remember(command, reply)
        return reply

    async def resume_seat(self) -> Reply:
        """Reclaim this transport's seat over a fresh connection."""
        if self.player_id is None or self.room_code is None:
            return error_reply("PLAYER_NOT_FOUND", "No seat to resume")
        return await self.send(
            Command(
                CommandType.JOIN_ROOM,
                player_id=self.player_id,
                room_code=self.room_code,
                args={"resumeToken": self.resume_token},
            )
        )

    async def _read_loop(self) -> None:
        assert self.websocket is not None
        try:
            async for raw in self.websocket:
                message = decode(raw)
                msg_type = message.get("type")
                if msg_type == "reply":
                    future = self._pending.get(message.get("id"))  # type: ignore[arg-type]
                    if future is not None and not future.done():
                        future.set_result(strip_envelope(message))
                elif isinstance(msg_type, str):
                    self._emit(msg_type, strip_envelope(message))
        except ConnectionClosed:
            LOGGER.info("Connection to %s closed", self.url)
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(ConnectionError("Connection closed"))


def strip_envelope(message: Dict[str, object]) -> Dict[str, object]:
    return {key: value for key, value in message.items() if key not in ENVELOPE_KEYS}
