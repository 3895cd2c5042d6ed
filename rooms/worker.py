from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Optional, Tuple

from .commands import Command, error_reply
from .room import GameRoom, PendingTurn
from .timer import TurnTimer

LOGGER = logging.getLogger("holdem_rooms.worker")

DEFAULT_AI_DELAY = 2.0
DEFAULT_DISCONNECT_GRACE = 30.0

Reply = Dict[str, object]


class RoomWorker:
    """Serializes every command for one room through a single queue.

    Client commands, timer expiries and AI moves all land in the same queue, so
    each is applied to completion before the next one is looked at.
    """

    def __init__(
        self,
        room: GameRoom,
        *,
        ai_delay: float = DEFAULT_AI_DELAY,
        disconnect_grace: float = DEFAULT_DISCONNECT_GRACE,
        after_command: Optional[Callable[[GameRoom], None]] = None,
    ) -> None:
        self.room = room
        self.ai_delay = ai_delay
        self.disconnect_grace = disconnect_grace
        self.after_command = after_command
        self.queue: "asyncio.Queue[Tuple[Command, asyncio.Future]]" = asyncio.Queue()
        self.timer = TurnTimer()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"room-{self.room.code}")

    async def submit(self, command: Command) -> Reply:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self.queue.put((command, future))
        return await future

    async def stop(self) -> None:
        self.timer.cancel()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        while not self.queue.empty():
            _, future = self.queue.get_nowait()
            if not future.done():
                future.set_result(error_reply("ROOM_NOT_FOUND", "Room closed"))

    async def _run(self) -> None:
        while True:
            command, future = await self.queue.get()
            try:
                reply = self.room.dispatch(command)
            except Exception:
                LOGGER.exception("Room %s crashed on %s", self.room.code, command.type.value)
                reply = error_reply("INTERNAL_ERROR", "Internal server error")
            if not future.done():
                future.set_result(reply)
            if self.after_command is not None:
                self.after_command(self.room)
            self._reschedule()
            self.queue.task_done()

    def _reschedule(self) -> None:
        turn = self.room.pending_turn()
        if turn is None:
            self.timer.cancel()
            return
        same_turn = self.timer.running and self.timer.key == turn.key
        if turn.is_ai:
            if not same_turn:
                self.timer.start(turn.key, self.ai_delay, lambda: self._enqueue(self.room.ai_command(turn)))
            return
        seconds = self.turn_seconds(turn)
        if seconds <= 0:
            self.timer.cancel()
            return
        # Reconnecting never buys a fresh clock; dropping may only shorten it.
        if same_turn and self.timer.remaining() <= seconds:
            return
        self.timer.start(turn.key, seconds, lambda: self._enqueue(self.room.timeout_command(turn)))
        self.room.notify(
            "timer",
            {"playerId": turn.player_id, "turnToken": turn.turn_token, "seconds": seconds},
        )

    def turn_seconds(self, turn: PendingTurn) -> float:
        limit = float(self.room.settings.turn_time_limit)
        if turn.connected:
            return limit
        # A dropped seat still gets folded even when the room has no clock.
        return min(limit, self.disconnect_grace) if limit > 0 else self.disconnect_grace

    async def _enqueue(self, command: Command) -> None:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self.queue.put((command, future))
        reply = await future
        if not reply.get("ok"):
            LOGGER.debug(
                "Room %s dropped stale %s for %s: %s",
                self.room.code,
                command.type.value,
                command.player_id,
                reply.get("code"),
            )
