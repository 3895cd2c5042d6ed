from __future__ import annotations

import itertools
from enum import IntEnum
from typing import Iterable, List, NamedTuple, Optional, Sequence

from .cards import Card


class HandCategory(IntEnum):
    HIGH_CARD = 1
    PAIR = 2
    TWO_PAIR = 3
    THREE_OF_A_KIND = 4
    STRAIGHT = 5
    FLUSH = 6
    FULL_HOUSE = 7
    FOUR_OF_A_KIND = 8
    STRAIGHT_FLUSH = 9
    ROYAL_FLUSH = 10


CATEGORY_NAMES = {
    HandCategory.HIGH_CARD: "High Card",
    HandCategory.PAIR: "Pair",
    HandCategory.TWO_PAIR: "Two Pair",
    HandCategory.THREE_OF_A_KIND: "Three of a Kind",
    HandCategory.STRAIGHT: "Straight",
    HandCategory.FLUSH: "Flush",
    HandCategory.FULL_HOUSE: "Full House",
    HandCategory.FOUR_OF_A_KIND: "Four of a Kind",
    HandCategory.STRAIGHT_FLUSH: "Straight Flush",
    HandCategory.ROYAL_FLUSH: "Royal Flush",
}


class HandValue(NamedTuple):
    category: HandCategory
    tiebreak: tuple

    @property
    def name(self) -> str:
        return CATEGORY_NAMES[self.category]


def evaluate_best(cards: Sequence[Card]) -> HandValue:
    """Best five-card hand out of 5 to 7 cards. Higher compares greater."""
    if len(cards) < 5:
        raise ValueError("At least 5 cards required")
    if len(cards) > 7:
        raise ValueError("At most 7 cards allowed")
    best: Optional[HandValue] = None
    for combo in itertools.combinations(cards, 5):
        value = _evaluate_five(combo)
        if best is None or (value.category, value.tiebreak) > (best.category, best.tiebreak):
            best = value
    assert best is not None
    return best


def _evaluate_five(cards: Sequence[Card]) -> HandValue:
    ranks = sorted((card.rank for card in cards), reverse=True)
    is_flush = len({card.suit for card in cards}) == 1
    straight_high = _straight_high(ranks)

    counts: dict[int, int] = {}
    for rank in ranks:
        counts[rank] = counts.get(rank, 0) + 1
    # Groups ordered by size, then rank: (3, Q), (2, 9) ...
    groups = sorted(counts.items(), key=lambda item: (item[1], item[0]), reverse=True)
    shape = [count for _, count in groups]
    grouped = tuple(rank for rank, _ in groups)

    if straight_high and is_flush:
        if straight_high == 14:
            return HandValue(HandCategory.ROYAL_FLUSH, (14,))
        return HandValue(HandCategory.STRAIGHT_FLUSH, (straight_high,))
    if shape[0] == 4:
        return HandValue(HandCategory.FOUR_OF_A_KIND, grouped)
    if shape[0] == 3 and shape[1] == 2:
        return HandValue(HandCategory.FULL_HOUSE, grouped)
    if is_flush:
        return HandValue(HandCategory.FLUSH, tuple(ranks))
    if straight_high:
        return HandValue(HandCategory.STRAIGHT, (straight_high,))
    if shape[0] == 3:
        return HandValue(HandCategory.THREE_OF_A_KIND, grouped)
    if shape[0] == 2 and shape[1] == 2:
        return HandValue(HandCategory.TWO_PAIR, grouped)
    if shape[0] == 2:
        return HandValue(HandCategory.PAIR, grouped)
    return HandValue(HandCategory.HIGH_CARD, tuple(ranks))


def _straight_high(ranks: Iterable[int]) -> Optional[int]:
    unique = sorted(set(ranks), reverse=True)
    if len(unique) != 5:
        return None
    if unique[0] - unique[4] == 4:
        return unique[0]
    if unique == [14, 5, 4, 3, 2]:  # wheel, ace plays low
        return 5
    return None


def compare_hands(a: HandValue, b: HandValue, strict: bool = False) -> int:
    """-1, 0 or 1. Without ``strict`` only the category counts, so kickers never break ties."""
    left = (a.category, a.tiebreak) if strict else (a.category,)
    right = (b.category, b.tiebreak) if strict else (b.category,)
    return (left > right) - (left < right)


def best_hands(values: dict[str, HandValue], strict: bool = False) -> List[str]:
    """Keys of every hand that no other hand beats, in input order."""
    winners: List[str] = []
    for key, value in values.items():
        if not winners:
            winners.append(key)
            continue
        result = compare_hands(value, values[winners[0]], strict)
        if result > 0:
            winners = [key]
        elif result == 0:
            winners.append(key)
    return winners
