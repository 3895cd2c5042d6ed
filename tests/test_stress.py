import random

import pytest

from holdem.dealer_ai import DealerAI, hand_strength, preflop_strength
from holdem.cards import parse_cards
from holdem.errors import NotEnoughPlayers
from holdem.models import BETTING_PHASES, ActionType, Phase

from .helpers import active_id, create_game, deal_next, passive_action

PHASE_ORDER = [Phase.WAITING, Phase.PREFLOP, Phase.FLOP, Phase.TURN, Phase.RIVER, Phase.SHOWDOWN]


def random_action(game, player_id, rng):
    window = game.legal_actions(player_id)
    action = rng.choice(window.legal)
    if action == ActionType.RAISE:
        high = min(window.max_raise_to, window.min_raise_to + rng.choice([0, 20, 100, 500]))
        return action, rng.randint(window.min_raise_to, high)
    return action, None


def assert_single_active(game):
    active = [p for p in game.players if p.is_active]
    assert len(active) == 1
    assert not active[0].folded
    assert game.current_player is active[0]


@pytest.mark.parametrize("players", [2, 3, 6])
def test_random_play_conserves_chips(players):
    rng = random.Random(players)
    game = create_game(players)
    total = game.chips_in_play()
    rounds = 0

    for seed in range(300):
        try:
            deal_next(game, seed)
        except NotEnoughPlayers:
            break
        rounds += 1
        last_phase = Phase.PREFLOP
        while game.phase in BETTING_PHASES:
            assert_single_active(game)
            player_id = active_id(game)
            action, amount = random_action(game, player_id, rng)
            game.player_action(player_id, action, amount)
            assert game.chips_in_play() == total
            assert PHASE_ORDER.index(game.phase) >= PHASE_ORDER.index(last_phase)
            last_phase = game.phase
        assert game.phase == Phase.SHOWDOWN
        assert game.pot == 0
        assert all(p.chips >= 0 for p in game.players)

    assert rounds > 0
    assert game.chips_in_play() == total


def test_buy_backs_add_exactly_the_buy_back_amount():
    rng = random.Random(99)
    game = create_game(3)
    expected = game.chips_in_play()

    for seed in range(200):
        for player in game.players:
            if player.chips == 0 and player.buy_backs_used < game.settings.max_buy_backs:
                game.buy_back(player.id)
                expected += game.settings.buy_back_amount
        try:
            deal_next(game, seed)
        except NotEnoughPlayers:
            break
        while game.phase in BETTING_PHASES:
            player_id = active_id(game)
            action, amount = random_action(game, player_id, rng)
            game.player_action(player_id, action, amount)
        assert game.chips_in_play() == expected


def test_many_passive_rounds():
    game = create_game(6)
    total = game.chips_in_play()
    for seed in range(300):
        try:
            deal_next(game, seed)
        except NotEnoughPlayers:
            break
        while game.phase in BETTING_PHASES:
            player_id = active_id(game)
            game.player_action(player_id, passive_action(game, player_id))
    assert game.rounds_played >= 50
    assert game.chips_in_play() == total


def test_dealer_ai_only_makes_legal_moves():
    for seed in range(40):
        rng = random.Random(seed)
        game = create_game(4)
        ai = DealerAI(rng=random.Random(seed), aggressiveness=rng.random())
        for round_seed in range(15):
            try:
                deal_next(game, seed * 100 + round_seed)
            except NotEnoughPlayers:
                break
            while game.phase in BETTING_PHASES:
                player_id = active_id(game)
                decision = ai.decide(game, player_id)
                assert decision.action in game.legal_actions(player_id).legal
                game.player_action(player_id, decision.action, decision.amount)


def test_dealer_ai_taunts_do_not_repeat_back_to_back():
    ai = DealerAI(rng=random.Random(1))
    lines = [ai.taunt("win") for _ in range(30)]
    assert all(a != b for a, b in zip(lines, lines[1:]))
    assert ai.taunt("nonsense") is None


def test_hand_strength_scales_with_made_hand():
    board = parse_cards(["2c", "7d", "9h"])
    weak = hand_strength(parse_cards(["3s", "4d"]), board)
    strong = hand_strength(parse_cards(["9c", "9s"]), board)
    assert 0 < weak < strong <= 1
    assert preflop_strength(parse_cards(["Ah", "As"])) > preflop_strength(parse_cards(["7c", "2d"]))
