"""Texas Hold'em engine primitives shared by every room transport."""

from .cards import Card, Deck, build_deck, parse_cards, shuffle
from .dealer_ai import DealerAI, Decision
from .errors import DeckExhausted, GameError
from .evaluator import HandCategory, HandValue, compare_hands, evaluate_best
from .game import PokerGame
from .models import ActionType, ActionWindow, ChatMessage, Phase, Player, RoomSettings

__all__ = [
    "Card",
    "Deck",
    "build_deck",
    "parse_cards",
    "shuffle",
    "DealerAI",
    "Decision",
    "DeckExhausted",
    "GameError",
    "HandCategory",
    "HandValue",
    "compare_hands",
    "evaluate_best",
    "PokerGame",
    "ActionType",
    "ActionWindow",
    "ChatMessage",
    "Phase",
    "Player",
    "RoomSettings",
]
