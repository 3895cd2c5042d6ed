from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Callable, Dict, Optional, Set

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from holdem.errors import GameError, InvalidAction, PlayerNotFound, RoomNotFound

from .commands import Command, CommandType, decode, envelope, error_reply, ok
from .registry import RoomRegistry
from .room import GameRoom
from .worker import DEFAULT_AI_DELAY, DEFAULT_DISCONNECT_GRACE, RoomWorker

LOGGER = logging.getLogger("holdem_rooms")

# RoomServer is the authoritative websocket front end. Each room runs behind a
# RoomWorker; this class only tracks connections and routes commands.

DEFAULT_REAP_INTERVAL = 60.0


@dataclass(eq=False)
class ClientSession:
    websocket: ServerConnection
    player_id: Optional[str] = None
    room_code: Optional[str] = None
    unsubscribe: Optional[Callable[[], None]] = None
    outbox: "asyncio.Queue[str]" = field(default_factory=asyncio.Queue)
    writer: Optional[asyncio.Task] = None


class RoomServer:
    def __init__(
        self,
        registry: Optional[RoomRegistry] = None,
        *,
        ai_delay: float = DEFAULT_AI_DELAY,
        disconnect_grace: float = DEFAULT_DISCONNECT_GRACE,
        reap_interval: float = DEFAULT_REAP_INTERVAL,
    ) -> None:
        self.registry = registry if registry is not None else RoomRegistry()
        self.ai_delay = ai_delay
        self.disconnect_grace = disconnect_grace
        self.reap_interval = reap_interval
        self.workers: Dict[str, RoomWorker] = {}
        self.sessions: Set[ClientSession] = set()
        # playerId -> secret handed only to that seat's own connection.
        self.resume_tokens: Dict[str, str] = {}

    async def start(self, host: str = "0.0.0.0", port: int = 8765) -> None:
        async with serve(self.handle_connection, host, port, process_request=self._process_request):
            LOGGER.info("Room server listening on %s:%s", host, port)
            reaper = asyncio.create_task(self._reap_loop())
            try:
                await asyncio.Future()
            finally:
                reaper.cancel()
                await self.shutdown()

    def _process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        if request.path == "/health":
            return connection.respond(HTTPStatus.OK, "OK\n")
        return None

    async def handle_connection(self, websocket: ServerConnection) -> None:
        session = ClientSession(websocket=websocket)
        session.writer = asyncio.create_task(self._write_loop(session))
        self.sessions.add(session)
        LOGGER.info("Client connected")
        try:
            async for raw in websocket:
                await self.handle_message(session, decode(raw))
        except ConnectionClosed:
            pass
        finally:
            await self._disconnect(session)

    async def handle_message(self, session: ClientSession, message: Dict[str, object]) -> None:
        if message.get("type") != "command":
            self._queue(session, "error", error_reply("INVALID_ACTION", "Unsupported message type"))
            return
        try:
            command = Command.from_message(message)
            reply = await self.execute(session, command)
        except GameError as exc:
            LOGGER.warning("Rejected %s: %s", message.get("command"), exc.code)
            reply = error_reply(exc.code, exc.msg)
        except Exception:
            LOGGER.exception("Command %s failed", message.get("command"))
            reply = error_reply("INTERNAL_ERROR", "Internal server error")
        self._queue(session, "reply", {"id": message.get("id"), **reply})

    async def execute(self, session: ClientSession, command: Command) -> Dict[str, object]:
        if command.type == CommandType.CREATE_ROOM:
            return self._create_room(session, command)
        if command.type == CommandType.JOIN_ROOM:
            return await self._join_room(session, command)
        if session.player_id is None or session.room_code is None:
            raise PlayerNotFound("Join a room first")
        worker = self._worker(session.room_code)
        # The seat is whatever this connection joined as, never what the client claims.
        command.player_id = session.player_id
        command.room_code = session.room_code
        reply = await worker.submit(command)
        if command.type == CommandType.LEAVE_ROOM and reply.get("ok"):
            room_code = session.room_code
            self.resume_tokens.pop(session.player_id, None)
            self._unbind(session)
            if not worker.room.game.players:
                await self.close_room(room_code)
        return reply

    def _create_room(self, session: ClientSession, command: Command) -> Dict[str, object]:
        if session.player_id is not None:
            raise InvalidAction("Already seated in a room")
        name = command.args.get("playerName")
        if not isinstance(name, str) or not name.strip():
            raise InvalidAction("playerName required")
        settings = command.args.get("settings")
        room, player = self.registry.create_room(
            name,
            settings if isinstance(settings, dict) else None,
            with_ai=bool(command.args.get("withAI")),
        )
        self._start_worker(room)
        self._bind(session, room, player.id)
        return ok(
            playerId=player.id,
            roomCode=room.code,
            room=room.game.snapshot(player.id),
            resumeToken=self._issue_resume_token(player.id),
        )

    async def _join_room(self, session: ClientSession, command: Command) -> Dict[str, object]:
        if session.player_id is not None:
            raise InvalidAction("Already seated in a room")
        room = self.registry.get(command.room_code)
        worker = self._worker(room.code)
        if command.player_id is not None:
            return await self._resume_seat(session, room, worker, command.player_id, command.args.get("resumeToken"))
        reply = await worker.submit(command)
        if reply.get("ok"):
            self._bind(session, room, str(reply["playerId"]))
            reply["chat"] = room.chat_history()
            reply["resumeToken"] = self._issue_resume_token(str(reply["playerId"]))
        return reply

    async def _resume_seat(
        self,
        session: ClientSession,
        room: GameRoom,
        worker: RoomWorker,
        player_id: str,
        resume_token: object,
    ) -> Dict[str, object]:
        expected = self.resume_tokens.get(player_id)
        if expected is None or not isinstance(resume_token, str) or not secrets.compare_digest(expected, resume_token):
            raise InvalidAction("Invalid resume token")
        player = room.game.get_player(player_id)
        if player.connected or player.left or player.is_ai:
            raise InvalidAction("Seat is not waiting for a reconnect")
        reply = await worker.submit(
            Command(CommandType.SET_CONNECTED, player_id=player_id, room_code=room.code, args={"connected": True})
        )
        if not reply.get("ok"):
            return reply
        self._bind(session, room, player_id)
        LOGGER.info("Room %s: %s reconnected", room.code, player_id)
        return ok(
            playerId=player_id,
            roomCode=room.code,
            room=room.game.snapshot(player_id),
            chat=room.chat_history(),
            resumeToken=expected,
        )

    def _issue_resume_token(self, player_id: str) -> str:
        token = secrets.token_urlsafe(16)
        self.resume_tokens[player_id] = token
        return token

    def _bind(self, session: ClientSession, room: GameRoom, player_id: str) -> None:
        session.player_id = player_id
        session.room_code = room.code
        session.unsubscribe = room.subscribe(
            lambda msg_type, payload: self._queue(session, msg_type, payload),
            viewer_id=player_id,
        )
        self._queue(session, "state", room.game.snapshot(player_id))

    def _unbind(self, session: ClientSession) -> None:
        if session.unsubscribe is not None:
            session.unsubscribe()
        session.unsubscribe = None
        session.player_id = None
        session.room_code = None

    def _start_worker(self, room: GameRoom) -> RoomWorker:
        worker = RoomWorker(
            room,
            ai_delay=self.ai_delay,
            disconnect_grace=self.disconnect_grace,
            after_command=self.registry.touch,
        )
        self.workers[room.code] = worker
        worker.start()
        return worker

    def _worker(self, room_code: str) -> RoomWorker:
        worker = self.workers.get(room_code)
        if worker is None:
            raise RoomNotFound()
        return worker

    async def close_room(self, room_code: str) -> None:
        self.registry.close_room(room_code)
        worker = self.workers.pop(room_code, None)
        if worker is not None:
            await worker.stop()
            for player in worker.room.game.players:
                self.resume_tokens.pop(player.id, None)
        for session in list(self.sessions):
            if session.room_code == room_code:
                self._queue(session, "error", error_reply("ROOM_NOT_FOUND", "Room closed"))
                self._unbind(session)

    async def reap_idle(self) -> None:
        for code in self.registry.reap_idle():
            LOGGER.info("Room %s expired after inactivity", code)
            await self.close_room(code)

    async def _reap_loop(self) -> None:
        while True:
            await asyncio.sleep(self.reap_interval)
            await self.reap_idle()

    async def shutdown(self) -> None:
        for code in list(self.workers):
            await self.close_room(code)

    async def _disconnect(self, session: ClientSession) -> None:
        self.sessions.discard(session)
        player_id, room_code = session.player_id, session.room_code
        self._unbind(session)
        if session.writer is not None:
            session.writer.cancel()
        LOGGER.info("Client disconnected (player=%s room=%s)", player_id, room_code)
        if player_id is None or room_code is None or room_code not in self.workers:
            return
        # The seat stays; the turn timer folds it if it never comes back.
        await self.workers[room_code].submit(
            Command(CommandType.SET_CONNECTED, player_id=player_id, room_code=room_code, args={"connected": False})
        )

    def _queue(self, session: ClientSession, msg_type: str, payload: Dict[str, object]) -> None:
        session.outbox.put_nowait(envelope(msg_type, payload))

    async def _write_loop(self, session: ClientSession) -> None:
        while True:
            message = await session.outbox.get()
            try:
                await session.websocket.send(message)
            except ConnectionClosed:
                return
