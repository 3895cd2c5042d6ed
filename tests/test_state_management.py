import pytest

from holdem.cards import Deck, build_deck
from holdem.errors import (
    BuyBackDisabled,
    BuyBackLimitReached,
    BuyBackNotNeeded,
    DeckExhausted,
    InvalidSettings,
    PlayerNotFound,
)
from holdem.models import ActionType, Phase, RoomSettings

from .helpers import active_id, auto_complete_round, create_game, ids


def short_deck(count: int):
    return lambda seed: Deck(build_deck()[:count])


def test_buy_back_restores_busted_player():
    game = create_game(2, settings=RoomSettings(buy_back_amount=500, max_buy_backs=2))
    player = game.players[1]
    player.chips = 0

    events = game.buy_back(player.id)

    assert events == [{"ev": "BUY_BACK", "player_id": player.id, "amount": 500, "remaining": 1}]
    assert player.chips == 500
    assert player.buy_backs_used == 1


def test_buy_back_errors():
    game = create_game(2, settings=RoomSettings(max_buy_backs=1))
    player = game.players[0]

    with pytest.raises(BuyBackNotNeeded):
        game.buy_back(player.id)

    player.chips = 0
    game.buy_back(player.id)
    player.chips = 0
    with pytest.raises(BuyBackLimitReached, match="Maximum buy-backs"):
        game.buy_back(player.id)
    assert player.chips == 0

    disabled = create_game(2, settings=RoomSettings(allow_buy_back=False))
    disabled.players[0].chips = 0
    with pytest.raises(BuyBackDisabled):
        disabled.buy_back(disabled.players[0].id)


def test_busted_player_sits_out_next_round():
    game = create_game(3)
    game.players[2].chips = 0
    game.start_game(seed=4)
    p0, p1, p2 = ids(game)

    assert game.players[2].folded
    assert game.players[2].cards == []
    # Heads-up rules apply between the two funded seats.
    assert game.players[0].bet == 10
    assert game.players[1].bet == 20
    assert active_id(game) == p0


def test_deck_exhaustion_aborts_round_and_restores_chips():
    game = create_game(3, deck_factory=short_deck(6))
    game.start_game()
    p0, p1, p2 = ids(game)
    game.player_action(p0, ActionType.CALL)
    game.player_action(p1, ActionType.CALL)

    with pytest.raises(DeckExhausted):
        game.player_action(p2, ActionType.CHECK)

    assert game.phase == Phase.WAITING
    assert game.pot == 0
    assert [p.chips for p in game.players] == [1000, 1000, 1000]
    assert all(p.cards == [] and p.bet == 0 and not p.is_active for p in game.players)
    assert game.last_result == {"ev": "ROUND_ABORTED", "reason": "DECK_EXHAUSTED"}


def test_deck_exhaustion_while_dealing_hole_cards():
    game = create_game(3, deck_factory=short_deck(4))
    with pytest.raises(DeckExhausted):
        game.start_game()
    assert game.phase == Phase.WAITING
    assert game.chips_in_play() == 3000


def test_leave_mid_round_folds_and_drops_at_next_round():
    game = create_game(3)
    game.start_game(seed=6)
    p0, p1, p2 = ids(game)

    events = game.remove_player(p1)

    assert events[:2] == [{"ev": "LEAVE", "player_id": p1}, {"ev": "FOLD", "player_id": p1}]
    assert game.get_player(p1).folded
    assert game.get_player(p1).left
    assert active_id(game) == p0
    auto_complete_round(game)
    assert game.chips_in_play() == 3000

    game.next_round(seed=7)
    assert ids(game) == [p0, p2]


def test_active_player_leaving_passes_the_turn():
    game = create_game(3)
    game.start_game(seed=6)
    p0, p1, _ = ids(game)
    game.remove_player(p0)
    assert active_id(game) == p1


def test_leaving_heads_up_hands_pot_to_opponent():
    game = create_game(2)
    game.start_game(seed=6)
    dealer, other = ids(game)
    game.remove_player(other)

    assert game.phase == Phase.SHOWDOWN
    assert game.get_player(dealer).chips == 1020


def test_host_moves_to_next_human_when_host_leaves():
    game = create_game(1)
    game.add_player("Dealer", is_ai=True)
    game.add_player("Human")
    host_id = game.players[0].id
    game.remove_player(host_id)

    with pytest.raises(PlayerNotFound):
        game.get_player(host_id)
    assert [p.is_host for p in game.players] == [False, True]


def test_leaving_before_dealer_keeps_dealer_seat():
    game = create_game(3)
    game.dealer_index = 2
    dealer = game.players[2]
    game.remove_player(game.players[0].id)
    assert game.players[game.dealer_index] is dealer


def test_disconnect_flag_kept_on_seat():
    game = create_game(2)
    player_id = game.players[1].id
    game.set_connected(player_id, False)
    assert not game.snapshot()["players"][1]["connected"]


def test_settings_from_payload():
    settings = RoomSettings.from_payload({"startingChips": 500, "turnTimeLimit": 2.5, "unknown": True})
    assert settings.starting_chips == 500
    assert settings.turn_time_limit == 2.5
    assert settings.big_blind == 20

    merged = RoomSettings.from_payload({"small_blind": 5}, base=settings)
    assert merged.starting_chips == 500
    assert merged.small_blind == 5
    assert merged.to_payload()["smallBlind"] == 5
    assert set(merged.to_payload()) >= {
        "startingChips",
        "smallBlind",
        "bigBlind",
        "turnTimeLimit",
        "optionalBigBlind",
        "allowBuyBack",
        "maxBuyBacks",
        "buyBackAmount",
    }


@pytest.mark.parametrize(
    "payload",
    [
        {"smallBlind": -1},
        {"bigBlind": 5},
        {"startingChips": 0},
        {"startingChips": "lots"},
        {"allowBuyBack": "yes"},
        {"maxBuyBacks": 1.5},
        {"turnTimeLimit": True},
    ],
)
def test_invalid_settings_rejected(payload):
    with pytest.raises(InvalidSettings):
        RoomSettings.from_payload(payload)
