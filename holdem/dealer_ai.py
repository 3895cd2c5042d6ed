from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .cards import Card
from .evaluator import evaluate_best
from .game import PokerGame
from .models import ActionType

TAUNTS = {
    "win": [
        "Thanks for the chips!",
        "Is that all you got?",
        "Too easy! Better luck next time!",
        "Yoink! My chips now!",
        "GG! No re!",
    ],
    "bigWin": [
        "HUGE POT! Thanks for the donation!",
        "CLEANING YOU OUT!",
        "That's gotta hurt!",
    ],
    "raise": [
        "Let's make this interesting!",
        "Can you afford this?",
        "Feeling lucky?",
    ],
    "allIn": [
        "ALL IN! You feeling brave?",
        "Go big or go home!",
    ],
    "playerFolded": [
        "That's right, run away!",
        "Another one bites the dust!",
    ],
    "playerLowChips": [
        "Running low there, buddy!",
        "Might wanna hit that buy-back button!",
    ],
}

BIG_WIN_THRESHOLD = 100
LOW_CHIPS_THRESHOLD = 200


@dataclass
class Decision:
    action: ActionType
    amount: Optional[int] = None
    taunt: Optional[str] = None


class DealerAI:
    """Aggressive house opponent: raises with strength, bluffs now and then."""

    def __init__(self, rng: Optional[random.Random] = None, aggressiveness: float = 0.75) -> None:
        self.rng = rng or random.Random()
        self.aggressiveness = aggressiveness
        self.last_taunt: Optional[str] = None

    def taunt(self, category: str) -> Optional[str]:
        choices = TAUNTS.get(category) or []
        if not choices:
            return None
        fresh = [line for line in choices if line != self.last_taunt] or choices
        self.last_taunt = self.rng.choice(fresh)
        return self.last_taunt

    def decide(self, game: PokerGame, player_id: str) -> Decision:
        player = game.get_player(player_id)
        window = game.legal_actions(player_id)
        if not window.legal:
            raise ValueError("AI asked to act outside its turn")

        strength = hand_strength(player.cards, game.community_cards)
        call_amount = window.call_amount
        pot = game.pot
        pot_odds = call_amount / (pot + call_amount) if pot > 0 else 0.3
        roll = self.rng.random()
        aggressive = roll < self.aggressiveness
        bluff = self.rng.random() < 0.25 and player.chips > pot
        big_blind = game.settings.big_blind or 20

        def raise_to(target: int) -> Optional[Decision]:
            if ActionType.RAISE not in window.legal or window.max_raise_to is None:
                return None
            target = max(target, window.min_raise_to or target)
            if target > window.max_raise_to:
                return None
            category = "allIn" if target == window.max_raise_to else "raise"
            return Decision(ActionType.RAISE, target, self.taunt(category))

        def passive() -> Decision:
            if ActionType.CHECK in window.legal:
                return Decision(ActionType.CHECK)
            if ActionType.CALL in window.legal:
                return Decision(ActionType.CALL)
            return Decision(ActionType.FOLD)

        if strength >= 0.6:
            if strength >= 0.8 and self.rng.random() < 0.3 and window.max_raise_to:
                shove = raise_to(window.max_raise_to)
                if shove:
                    return shove
            target = max(int(pot * (0.5 + strength * 0.5)), game.current_bet + big_blind)
            if target < (window.max_raise_to or 0):
                decision = raise_to(target)
                if decision:
                    return decision
            return passive()

        if strength >= 0.35:
            if call_amount == 0:
                if aggressive or strength > 0.5:
                    bet = int(pot * 0.4) + big_blind
                    if bet < (window.max_raise_to or 0):
                        decision = raise_to(max(bet, game.current_bet + big_blind))
                        if decision:
                            return decision
                return Decision(ActionType.CHECK)
            if strength > pot_odds or aggressive:
                if roll < 0.3 and game.current_bet * 2 < (window.max_raise_to or 0):
                    decision = raise_to(game.current_bet * 2)
                    if decision:
                        return decision
                if ActionType.CALL in window.legal:
                    return Decision(ActionType.CALL)
            return Decision(ActionType.FOLD)

        if call_amount == 0:
            if bluff:
                bluff_to = int(pot * 0.6)
                if bluff_to > big_blind:
                    decision = raise_to(bluff_to)
                    if decision:
                        return decision
            return Decision(ActionType.CHECK)
        if call_amount <= pot * 0.3 and roll < 0.2 and ActionType.CALL in window.legal:
            return Decision(ActionType.CALL)
        return Decision(ActionType.FOLD)

    def react_to_result(self, game: PokerGame, player_id: str) -> List[str]:
        """Chat lines after a round, when the AI took the pot."""
        result = game.last_result or {}
        winners = result.get("winners") or []
        if not any(w.get("playerId") == player_id for w in winners):
            return []
        lines: List[str] = []
        amount = sum(w.get("winAmount", 0) for w in winners if w.get("playerId") == player_id)
        if result.get("reason") == "All others folded":
            line = self.taunt("playerFolded")
        else:
            line = self.taunt("bigWin" if amount > BIG_WIN_THRESHOLD else "win")
        if line:
            lines.append(line)
        if any(not p.is_ai and 0 < p.chips < LOW_CHIPS_THRESHOLD for p in game.players):
            line = self.taunt("playerLowChips")
            if line:
                lines.append(line)
        return lines


def hand_strength(hole: Sequence[Card], community: Sequence[Card]) -> float:
    """Rough 0..1 score; pre-flop from the hole cards, later from the made hand."""
    if len(hole) < 2:
        return 0.3
    if len(community) < 3:
        return preflop_strength(hole)
    value = evaluate_best(list(hole) + list(community))
    return min(int(value.category) / 10 * 1.2, 1.0)


def preflop_strength(hole: Sequence[Card]) -> float:
    high = max(card.rank for card in hole[:2])
    low = min(card.rank for card in hole[:2])
    suited = hole[0].suit == hole[1].suit
    gap = high - low

    if gap == 0:
        if high >= 11:
            strength = 0.85 + high / 100
        elif high >= 8:
            strength = 0.65 + high / 50
        else:
            strength = 0.5 + high / 40
    elif high == 14 and low >= 12:
        strength = 0.75 if suited else 0.68
    elif high >= 12 and low >= 10:
        strength = 0.55 if suited else 0.48
    elif suited and gap <= 2 and low >= 6:
        strength = 0.45 + low / 100
    elif high == 14:
        strength = 0.45 if suited else 0.38
    else:
        strength = (high + low) / 35
        if suited:
            strength += 0.08
        if gap <= 3:
            strength += 0.05
    return min(strength, 0.95)
