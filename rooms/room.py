from __future__ import annotations

import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, NamedTuple, Optional, Tuple

from holdem.dealer_ai import DealerAI
from holdem.errors import DeckExhausted, GameError, InvalidAction, NotHost, NotYourTurn, RoundAlreadyAdvanced
from holdem.game import DeckFactory, Event, PokerGame
from holdem.models import (
    BETTING_PHASES,
    CHAT_HISTORY_LIMIT,
    CHAT_MESSAGE_LIMIT,
    ChatMessage,
    Player,
    RoomSettings,
)

from .commands import Command, CommandType, error_reply, ok

LOGGER = logging.getLogger("holdem_rooms.room")

# Observers get (message_type, payload): "state", "event", "chat", "timer", "error".
Observer = Callable[[str, Dict[str, object]], None]


@dataclass
class Subscription:
    viewer_id: Optional[str]
    callback: Observer


class PendingTurn(NamedTuple):
    player_id: str
    turn_token: int
    is_ai: bool
    connected: bool

    @property
    def key(self) -> Tuple[str, int]:
        """What a turn timer is armed for; connection changes keep the same key."""
        return (self.player_id, self.turn_token)


class GameRoom:
    """One room, one PokerGame. Every mutation goes through ``dispatch``.

    The room does not schedule anything itself; callers (a transport or a
    RoomWorker) look at ``pending_turn`` after each command to arm turn
    timers or AI moves.
    """

    def __init__(
        self,
        code: str,
        settings: Optional[RoomSettings] = None,
        *,
        deck_factory: Optional[DeckFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.code = code
        self.game = PokerGame(code, settings, deck_factory=deck_factory)
        self.chat: Deque[ChatMessage] = deque(maxlen=CHAT_HISTORY_LIMIT)
        self.ai_players: Dict[str, DealerAI] = {}
        self.clock = clock
        self.last_activity = clock()
        self.empty_since: Optional[float] = None
        self._subscriptions: Dict[int, Subscription] = {}
        self._sub_ids = itertools.count(1)

    @property
    def settings(self) -> RoomSettings:
        return self.game.settings

    # Observers -------------------------------------------------------

    def subscribe(self, callback: Observer, viewer_id: Optional[str] = None) -> Callable[[], None]:
        sub_id = next(self._sub_ids)
        self._subscriptions[sub_id] = Subscription(viewer_id=viewer_id, callback=callback)

        def unsubscribe() -> None:
            self._subscriptions.pop(sub_id, None)

        return unsubscribe

    def notify(self, msg_type: str, payload: Dict[str, object]) -> None:
        for sub in list(self._subscriptions.values()):
            sub.callback(msg_type, payload)

    def publish(self, events: List[Event]) -> None:
        """Push events, then one full snapshot per observer."""
        for sub in list(self._subscriptions.values()):
            for event in events:
                sub.callback("event", event)
            sub.callback("state", self.game.snapshot(sub.viewer_id))

    # Seats -----------------------------------------------------------

    def add_host(self, name: str) -> Player:
        return self.game.add_player(name, is_host=True)

    def add_ai(self, name: str = "Dealer", ai: Optional[DealerAI] = None) -> Player:
        player = self.game.add_player(name, is_ai=True)
        self.ai_players[player.id] = ai or DealerAI()
        return player

    def has_connected_humans(self) -> bool:
        return any(not p.is_ai and p.connected and not p.left for p in self.game.players)

    # Command dispatch ------------------------------------------------

    def dispatch(self, command: Command) -> Dict[str, object]:
        """Run one command to completion and return the reply for its sender."""
        try:
            reply = self.handle(command)
        except GameError as exc:
            LOGGER.warning(
                "Room %s rejected %s from %s: %s",
                self.code,
                command.type.value,
                command.player_id,
                exc.code,
            )
            return error_reply(exc.code, exc.msg)
        except DeckExhausted as exc:
            # The round is gone, the room is not: tell everyone and resync.
            self.notify("error", exc.to_payload())
            self.publish([{"ev": "ROUND_ABORTED", "reason": exc.code}])
            return error_reply(exc.code, exc.msg)
        self.last_activity = self.clock()
        return reply

    def handle(self, command: Command) -> Dict[str, object]:
        handler = self._handlers().get(command.type)
        if handler is None:
            raise InvalidAction(f"Command {command.type.value} is not handled by rooms")
        return handler(command)

    def _handlers(self) -> Dict[CommandType, Callable[[Command], Dict[str, object]]]:
        return {
            CommandType.JOIN_ROOM: self._join,
            CommandType.START_GAME: self._start_game,
            CommandType.PLAYER_ACTION: self._player_action,
            CommandType.NEXT_ROUND: self._next_round,
            CommandType.BUY_BACK: self._buy_back,
            CommandType.CHAT_MESSAGE: self._chat,
            CommandType.REVEAL_CARDS: self._reveal,
            CommandType.LEAVE_ROOM: self._leave,
            CommandType.TIMEOUT: self._timeout,
            CommandType.AI_TURN: self._ai_turn,
            CommandType.SET_CONNECTED: self._set_connected,
        }

    def _require_player(self, command: Command) -> str:
        if not command.player_id:
            raise InvalidAction("playerId required")
        self.game.get_player(command.player_id)
        return command.player_id

    def _join(self, command: Command) -> Dict[str, object]:
        name = command.args.get("playerName")
        if not isinstance(name, str) or not name.strip():
            raise InvalidAction("playerName required")
        player = self.game.add_player(name)
        LOGGER.info("Room %s: %s joined as %s", self.code, player.name, player.id)
        self.publish([{"ev": "PLAYER_JOINED", "player_id": player.id, "name": player.name}])
        return ok(playerId=player.id, roomCode=self.code, room=self.game.snapshot(player.id))

    def _start_game(self, command: Command) -> Dict[str, object]:
        player = self.game.get_player(self._require_player(command))
        if not player.is_host:
            raise NotHost()
        events = self.game.start_game(self._seed(command))
        self.publish(events)
        return ok(success=True)

    def _next_round(self, command: Command) -> Dict[str, object]:
        self._require_player(command)
        events = self.game.next_round(self._seed(command))
        self.publish(events)
        return ok(success=True)

    def _seed(self, command: Command) -> Optional[int]:
        seed = command.args.get("seed")
        return seed if isinstance(seed, int) and not isinstance(seed, bool) else None

    def _player_action(self, command: Command) -> Dict[str, object]:
        player_id = self._require_player(command)
        action = command.args.get("action")
        amount = command.args.get("amount")
        if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
            raise InvalidAction("amount must be an integer")
        events = self.game.player_action(player_id, action, amount)  # type: ignore[arg-type]
        self._after_events(events)
        return ok()

    def _timeout(self, command: Command) -> Dict[str, object]:
        player_id = self._require_player(command)
        token = command.args.get("turnToken")
        if not isinstance(token, int):
            raise InvalidAction("turnToken required")
        events = self.game.apply_timeout(player_id, token)
        LOGGER.warning("Room %s: %s timed out (%s)", self.code, player_id, events[0].get("action"))
        self._after_events(events)
        return ok()

    def _ai_turn(self, command: Command) -> Dict[str, object]:
        player_id = self._require_player(command)
        token = command.args.get("turnToken")
        if token is not None and token != self.game.turn_token:
            raise RoundAlreadyAdvanced()
        ai = self.ai_players.get(player_id)
        player = self.game.get_player(player_id)
        if ai is None or not player.is_active:
            raise NotYourTurn()
        decision = ai.decide(self.game, player_id)
        events = self.game.player_action(player_id, decision.action, decision.amount)
        if decision.taunt:
            self._post_chat(player, decision.taunt, taunt=True)
        self._after_events(events)
        return ok(action=decision.action.value, amount=decision.amount)

    def _after_events(self, events: List[Event]) -> None:
        self.publish(events)
        if any(event.get("ev") == "ROUND_END" for event in events):
            for ai_id, ai in self.ai_players.items():
                ai_player = self.game.get_player(ai_id)
                for line in ai.react_to_result(self.game, ai_id):
                    self._post_chat(ai_player, line, taunt=True)

    def _buy_back(self, command: Command) -> Dict[str, object]:
        player_id = self._require_player(command)
        events = self.game.buy_back(player_id)
        self.publish(events)
        player = self.game.get_player(player_id)
        return ok(
            chips=player.chips,
            buyBacksRemaining=self.settings.max_buy_backs - player.buy_backs_used,
        )

    def _chat(self, command: Command) -> Dict[str, object]:
        player = self.game.get_player(self._require_player(command))
        text = command.args.get("message")
        if not isinstance(text, str) or not text.strip():
            raise InvalidAction("message required")
        message = self._post_chat(player, text)
        return ok(message=message.to_payload())

    def _post_chat(self, player: Player, text: str, *, taunt: bool = False) -> ChatMessage:
        message = ChatMessage(
            player_id=player.id,
            player_name=player.name,
            message=text.strip()[:CHAT_MESSAGE_LIMIT],
            is_ai=player.is_ai,
            is_taunt=taunt,
        )
        self.chat.append(message)
        self.notify("chat", message.to_payload())
        return message

    def _reveal(self, command: Command) -> Dict[str, object]:
        player_id = self._require_player(command)
        indices = command.args.get("indices", [])
        if not isinstance(indices, list):
            raise InvalidAction("indices must be a list")
        events = self.game.reveal_cards(player_id, indices)
        self.publish(events)
        return ok()

    def _leave(self, command: Command) -> Dict[str, object]:
        player_id = self._require_player(command)
        events = self.game.remove_player(player_id)
        LOGGER.info("Room %s: %s left", self.code, player_id)
        self._after_events(events)
        return ok()

    def _set_connected(self, command: Command) -> Dict[str, object]:
        player_id = self._require_player(command)
        connected = bool(command.args.get("connected"))
        self.game.set_connected(player_id, connected)
        self.publish([{"ev": "CONNECTED" if connected else "DISCONNECTED", "player_id": player_id}])
        return ok()

    # Scheduling hints ------------------------------------------------

    def pending_turn(self) -> Optional[PendingTurn]:
        if self.game.phase not in BETTING_PHASES:
            return None
        player = self.game.current_player
        if player is None:
            return None
        return PendingTurn(
            player_id=player.id,
            turn_token=self.game.turn_token,
            is_ai=player.id in self.ai_players,
            connected=player.connected,
        )

    def timeout_command(self, turn: PendingTurn) -> Command:
        return Command(CommandType.TIMEOUT, player_id=turn.player_id, room_code=self.code, args={"turnToken": turn.turn_token})

    def ai_command(self, turn: PendingTurn) -> Command:
        return Command(CommandType.AI_TURN, player_id=turn.player_id, room_code=self.code, args={"turnToken": turn.turn_token})

    def chat_history(self) -> List[Dict[str, object]]:
        return [message.to_payload() for message in self.chat]

