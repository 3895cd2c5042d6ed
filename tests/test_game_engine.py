import pytest

from holdem.errors import GameInProgress, InvalidAction, NotEnoughPlayers, NotYourTurn, RoomFull, RoundAlreadyAdvanced
from holdem.game import FOLD_OUT_REASON, PokerGame
from holdem.models import ActionType, Phase, RoomSettings

from .helpers import active_id, auto_complete_round, create_game, ids, perform_actions

# Hole cards go round the table from the seat after the dealer, twice, then
# burn + flop, burn + turn, burn + river.
SPLIT_BOARD_DECK = [
    "2c", "3c", "4c",
    "5s", "6s", "9c",
    "2h", "Th", "Jd", "Qc",
    "3h", "Ks",
    "4h", "Ah",
]


def test_start_game_posts_blinds_after_dealer():
    game = create_game(3)
    events = game.start_game(seed=42)
    p0, p1, p2 = game.players

    assert game.phase == Phase.PREFLOP
    assert game.dealer_index == 0
    assert events[1] == {"ev": "POST_BLINDS", "sb_player": p1.id, "bb_player": p2.id, "sb": 10, "bb": 20}
    assert (p1.chips, p1.bet) == (990, 10)
    assert (p2.chips, p2.bet) == (980, 20)
    assert game.pot == 30
    assert game.current_bet == 20
    # First to act is the seat after the big blind.
    assert active_id(game) == p0.id
    assert all(len(p.cards) == 2 for p in game.players)


def test_heads_up_dealer_posts_small_blind_and_acts_first():
    game = create_game(2)
    game.start_game(seed=7)
    dealer, other = game.players

    assert dealer.bet == 10
    assert other.bet == 20
    assert active_id(game) == dealer.id


def test_start_requires_two_funded_players():
    game = create_game(1)
    with pytest.raises(NotEnoughPlayers, match="Need at least 2 players"):
        game.start_game()
    game.add_player("Broke")
    game.players[1].chips = 0
    with pytest.raises(NotEnoughPlayers):
        game.start_game()


def test_three_player_limped_pot_goes_to_showdown_for_sixty():
    game = create_game(3)
    game.start_game(seed=11)
    perform_actions(
        game,
        [
            (0, ActionType.CALL, None),
            (1, ActionType.CALL, None),
            (2, ActionType.CHECK, None),
        ],
    )
    assert game.phase == Phase.FLOP
    assert game.pot == 60
    assert len(game.community_cards) == 3

    auto_complete_round(game)

    assert game.phase == Phase.SHOWDOWN
    assert game.pot == 0
    assert len(game.community_cards) == 5
    result = game.last_result
    assert result is not None
    assert result["reason"] == "Showdown"
    assert sum(w["winAmount"] for w in result["winners"]) == 60
    winners = {w["playerId"] for w in result["winners"]}
    for player in game.players:
        if player.id not in winners:
            assert player.chips == 980
    assert sum(p.chips for p in game.players) == 3000


def test_everyone_else_folds():
    game = create_game(3)
    game.start_game(seed=5)
    p0, p1, p2 = game.players
    game.player_action(p0.id, ActionType.FOLD)
    events = game.player_action(p1.id, ActionType.FOLD)

    assert game.phase == Phase.SHOWDOWN
    assert {"ev": "POT_AWARD", "player_id": p2.id, "amount": 30} in events
    assert (p0.chips, p1.chips, p2.chips) == (1000, 990, 1010)
    assert game.last_result["reason"] == FOLD_OUT_REASON
    assert game.last_result["winners"][0]["hand"] is None


def test_tied_hands_split_with_odd_chip_to_first_seat_after_dealer():
    game = create_game(3, settings=RoomSettings(small_blind=5, big_blind=20), deck=SPLIT_BOARD_DECK)
    game.start_game()
    p0, p1, p2 = game.players
    game.player_action(p0.id, ActionType.CALL)
    game.player_action(p1.id, ActionType.FOLD)
    game.player_action(p2.id, ActionType.CHECK)
    auto_complete_round(game)

    assert game.phase == Phase.SHOWDOWN
    assert [w["playerId"] for w in game.last_result["winners"]] == [p2.id, p0.id]
    assert (p0.chips, p1.chips, p2.chips) == (1002, 995, 1003)


def test_strict_tiebreak_uses_kickers():
    # Both players pair the board's aces; seat 0 holds the better kicker.
    deck = ["2c", "Kd", "3c", "Qd", "2h", "Ah", "As", "7c", "3h", "8d", "4h", "9s"]
    game = create_game(2, settings=RoomSettings(strict_tiebreak=True), deck=deck)
    game.start_game()
    auto_complete_round(game)
    dealer, other = game.players

    assert [w["playerId"] for w in game.last_result["winners"]] == [dealer.id]
    assert dealer.chips == 1020
    assert other.chips == 980


def test_category_tie_splits_without_strict_mode():
    deck = ["2c", "Kd", "3c", "Qd", "2h", "Ah", "As", "7c", "3h", "8d", "4h", "9s"]
    game = create_game(2, deck=deck)
    game.start_game()
    auto_complete_round(game)

    assert [p.chips for p in game.players] == [1000, 1000]


def test_cards_hidden_from_other_viewers_until_showdown():
    game = create_game(3)
    game.start_game(seed=9)
    p0, p1, p2 = ids(game)
    view = game.snapshot(p0)
    seats = {entry["id"]: entry for entry in view["players"]}

    assert all(card is not None for card in seats[p0]["cards"])
    assert seats[p1]["cards"] == [None, None]
    assert view["legal"] == ["fold", "call", "raise"]
    assert view["callAmount"] == 20
    assert view["minRaiseTo"] == 21
    assert view["maxRaiseTo"] == 1000
    assert "legal" not in game.snapshot(p1)

    auto_complete_round(game)
    view = game.snapshot(p0)
    assert all(card is not None for entry in view["players"] for card in entry["cards"])


def test_fold_out_keeps_cards_hidden_but_reveal_shows_them():
    game = create_game(3)
    game.start_game(seed=5)
    p0, p1, p2 = ids(game)
    game.player_action(p0, ActionType.FOLD)
    game.player_action(p1, ActionType.FOLD)

    seats = {entry["id"]: entry for entry in game.snapshot(p0)["players"]}
    assert seats[p2]["cards"] == [None, None]

    events = game.reveal_cards(p2, [0])
    assert events == [{"ev": "REVEAL", "player_id": p2, "indices": [0]}]
    seats = {entry["id"]: entry for entry in game.snapshot(p0)["players"]}
    assert seats[p2]["cards"][0] is not None
    assert seats[p2]["cards"][1] is None
    assert game.snapshot()["revealedCards"] == {p2: [0]}

    with pytest.raises(InvalidAction):
        game.reveal_cards(p2, [2])


def test_flop_action_starts_left_of_dealer():
    game = create_game(3)
    game.start_game(seed=3)
    perform_actions(game, [(0, ActionType.CALL, None), (1, ActionType.CALL, None), (2, ActionType.CHECK, None)])

    assert game.phase == Phase.FLOP
    assert game.current_bet == 0
    assert all(p.bet == 0 for p in game.players)
    assert active_id(game) == game.players[1].id


def test_next_round_rotates_dealer():
    game = create_game(3)
    game.start_game(seed=1)
    auto_complete_round(game)
    game.next_round(seed=2)

    assert game.dealer_index == 1
    assert game.phase == Phase.PREFLOP
    assert game.players[2].bet == 10
    assert game.players[0].bet == 20


def test_next_round_rejected_while_betting():
    game = create_game(2)
    game.start_game(seed=1)
    with pytest.raises(GameInProgress):
        game.next_round()


def test_next_round_cannot_deal_the_first_round():
    game = create_game(2)
    with pytest.raises(InvalidAction, match="Start the game first"):
        game.next_round()
    assert game.phase == Phase.WAITING
    assert game.pot == 0


def test_dealer_leaving_between_rounds_passes_button_to_next_seat():
    game = create_game(4)
    game.start_game(seed=1)
    auto_complete_round(game)
    dealer, successor = game.players[0], game.players[1]

    game.remove_player(dealer.id)
    game.next_round(seed=2)

    assert game.players[game.dealer_index] is successor


def test_timeout_folds_when_facing_a_bet():
    game = create_game(3)
    game.start_game(seed=21)
    p0, p1, _ = ids(game)
    token = game.turn_token

    events = game.apply_timeout(p0, token)

    assert events[0] == {"ev": "TIMEOUT", "player_id": p0, "action": "fold"}
    assert events[1]["ev"] == "FOLD"
    assert game.players[0].folded
    assert active_id(game) == p1
    with pytest.raises(RoundAlreadyAdvanced):
        game.apply_timeout(p0, token)
    with pytest.raises(NotYourTurn):
        game.apply_timeout(p0, game.turn_token)


def test_timeout_checks_when_free():
    game = create_game(3)
    game.start_game(seed=21)
    perform_actions(game, [(0, ActionType.CALL, None), (1, ActionType.CALL, None), (2, ActionType.CHECK, None)])
    player_id = active_id(game)

    events = game.apply_timeout(player_id, game.turn_token)

    assert events[0]["action"] == "check"
    assert not game.get_player(player_id).folded


def test_free_fold_offered_to_first_preflop_actor():
    game = create_game(3, settings=RoomSettings(optional_big_blind=True))
    game.start_game(seed=4)
    p0, p1, _ = ids(game)

    assert game.legal_actions(p0).free_fold
    events = game.player_action(p0, ActionType.FOLD)
    assert events[0] == {"ev": "FOLD", "player_id": p0, "free": True}
    assert game.players[0].chips == 1000
    assert not game.legal_actions(p1).free_fold


def test_free_fold_needs_three_players():
    game = create_game(2, settings=RoomSettings(optional_big_blind=True))
    game.start_game(seed=4)
    assert not game.legal_actions(active_id(game)).free_fold


def test_table_capacity_and_late_joiners():
    game = PokerGame("CAP001")
    for idx in range(8):
        game.add_player(f"Seat{idx}")
    with pytest.raises(RoomFull):
        game.add_player("Overflow")

    game = create_game(2)
    game.start_game(seed=1)
    with pytest.raises(GameInProgress):
        game.add_player("Late")


def test_player_ids_are_prefixed():
    game = create_game(3)
    for player_id in ids(game):
        assert player_id.startswith("player_")
        assert len(player_id) == len("player_") + 9
    assert len(set(ids(game))) == 3
