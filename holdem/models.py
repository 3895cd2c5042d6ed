from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Mapping, Optional

from .cards import Card
from .errors import InvalidSettings

MAX_PLAYERS = 8
MIN_PLAYERS = 2
CHAT_MESSAGE_LIMIT = 200
CHAT_HISTORY_LIMIT = 50


class Phase(str, Enum):
    WAITING = "waiting"
    PREFLOP = "preflop"
    FLOP = "flop"
    TURN = "turn"
    RIVER = "river"
    SHOWDOWN = "showdown"


BETTING_PHASES = (Phase.PREFLOP, Phase.FLOP, Phase.TURN, Phase.RIVER)


class ActionType(str, Enum):
    FOLD = "fold"
    CHECK = "check"
    CALL = "call"
    RAISE = "raise"


# camelCase keys as clients send them -> RoomSettings attribute names.
SETTINGS_KEYS = {
    "startingChips": "starting_chips",
    "smallBlind": "small_blind",
    "bigBlind": "big_blind",
    "turnTimeLimit": "turn_time_limit",
    "optionalBigBlind": "optional_big_blind",
    "allowBuyBack": "allow_buy_back",
    "maxBuyBacks": "max_buy_backs",
    "buyBackAmount": "buy_back_amount",
    "strictTiebreak": "strict_tiebreak",
}


@dataclass
class RoomSettings:
    starting_chips: int = 1000
    small_blind: int = 10
    big_blind: int = 20
    turn_time_limit: float = 30
    optional_big_blind: bool = False
    allow_buy_back: bool = True
    max_buy_backs: int = 3
    buy_back_amount: int = 1000
    strict_tiebreak: bool = False

    @classmethod
    def from_payload(
        cls,
        payload: Optional[Mapping[str, object]],
        base: Optional["RoomSettings"] = None,
    ) -> "RoomSettings":
        """Build settings from a client payload; unknown keys are ignored."""
        values = {f.name: getattr(base, f.name) for f in fields(cls)} if base else {}
        for key, raw in (payload or {}).items():
            name = SETTINGS_KEYS.get(key, key if key in SETTINGS_KEYS.values() else None)
            if name is None:
                continue
            values[name] = raw
        settings = cls(**values)
        settings.validate()
        return settings

    def validate(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.type in ("bool", bool):
                if not isinstance(value, bool):
                    raise InvalidSettings(f"{f.name} must be true or false")
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidSettings(f"{f.name} must be a number")
            if value < 0:
                raise InvalidSettings(f"{f.name} must not be negative")
            if f.type in ("int", int) and int(value) != value:
                raise InvalidSettings(f"{f.name} must be a whole number")
        if self.big_blind < self.small_blind:
            raise InvalidSettings("bigBlind must be at least smallBlind")
        if self.starting_chips <= 0:
            raise InvalidSettings("startingChips must be positive")

    def to_payload(self) -> Dict[str, object]:
        return {key: getattr(self, name) for key, name in SETTINGS_KEYS.items()}


@dataclass
class Player:
    id: str
    name: str
    chips: int
    bet: int = 0
    cards: List[Card] = field(default_factory=list)
    folded: bool = False
    is_active: bool = False
    is_host: bool = False
    is_ai: bool = False
    buy_backs_used: int = 0
    connected: bool = True
    left: bool = False

    def reset_for_round(self) -> None:
        self.bet = 0
        self.cards.clear()
        self.is_active = False
        # Busted players sit the round out.
        self.folded = self.chips <= 0

    def reset_for_street(self) -> None:
        self.bet = 0
        self.is_active = False

    @property
    def can_bet(self) -> bool:
        return not self.folded and self.chips > 0


@dataclass
class ChatMessage:
    player_id: str
    player_name: str
    message: str
    is_ai: bool = False
    is_taunt: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_payload(self) -> Dict[str, object]:
        return {
            "playerId": self.player_id,
            "playerName": self.player_name,
            "message": self.message,
            "isAI": self.is_ai,
            "isTaunt": self.is_taunt,
            "timestamp": self.timestamp,
        }


@dataclass
class ActionWindow:
    legal: List[ActionType]
    call_amount: int
    min_raise_to: Optional[int]
    max_raise_to: Optional[int]
    free_fold: bool = False
