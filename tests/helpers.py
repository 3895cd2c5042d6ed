from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from holdem.cards import Deck, build_deck, parse_cards
from holdem.game import PokerGame
from holdem.models import BETTING_PHASES, ActionType, RoomSettings


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def stacked_deck(labels: Sequence[str]) -> Deck:
    """A deck that deals ``labels`` first, in order, then the rest of the pack."""
    head = parse_cards(labels)
    tail = [card for card in build_deck() if card not in head]
    return Deck(list(reversed(head + tail)))


def stacked_factory(labels: Sequence[str]) -> Callable[[Optional[int]], Deck]:
    return lambda seed: stacked_deck(labels)


def create_game(
    players: int = 3,
    *,
    settings: Optional[RoomSettings] = None,
    deck: Optional[Sequence[str]] = None,
    deck_factory: Optional[Callable[[Optional[int]], Deck]] = None,
) -> PokerGame:
    """Instantiate a game with ``players`` seats; seat 0 hosts."""
    if deck is not None:
        deck_factory = stacked_factory(deck)
    game = PokerGame("TEST01", settings or RoomSettings(), deck_factory=deck_factory)
    for idx in range(players):
        game.add_player(f"Player{idx}", is_host=idx == 0)
    return game


def ids(game: PokerGame) -> List[str]:
    return [player.id for player in game.players]


def active_id(game: PokerGame) -> str:
    player = game.current_player
    assert player is not None, "no seat holds the turn"
    return player.id


def perform_actions(game: PokerGame, actions: Iterable[Tuple[int, ActionType, Optional[int]]]) -> None:
    """Apply a scripted sequence of (seat index, action, amount)."""
    for seat_idx, action, amount in actions:
        game.player_action(game.players[seat_idx].id, action, amount)


def passive_action(game: PokerGame, player_id: str) -> ActionType:
    legal = game.legal_actions(player_id).legal
    if ActionType.CHECK in legal:
        return ActionType.CHECK
    if ActionType.CALL in legal:
        return ActionType.CALL
    return ActionType.FOLD


def auto_complete_round(game: PokerGame) -> None:
    """Check or call every turn until the round is settled."""
    while game.phase in BETTING_PHASES:
        player_id = active_id(game)
        game.player_action(player_id, passive_action(game, player_id))



def deal_next(game: PokerGame, seed: Optional[int] = None) -> None:
    """Deal the first round with start_game and every later one with next_round."""
    if game.rounds_played == 0:
        game.start_game(seed)
    else:
        game.next_round(seed)
