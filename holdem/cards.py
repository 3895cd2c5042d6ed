from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .errors import DeckExhausted

RANKS = "23456789TJQKA"
SUITS = "hdcs"
RANK_VALUE = {rank: idx for idx, rank in enumerate(RANKS, start=2)}
VALUE_RANK = {idx: rank for rank, idx in RANK_VALUE.items()}


@dataclass(frozen=True)
class Card:
    rank: int
    suit: str

    def __post_init__(self) -> None:
        if not isinstance(self.rank, int) or self.rank not in VALUE_RANK:
            raise ValueError(f"Invalid rank: {self.rank}")
        if self.suit not in SUITS:
            raise ValueError(f"Invalid suit: {self.suit}")

    @property
    def label(self) -> str:
        return f"{VALUE_RANK[self.rank]}{self.suit}"

    def to_payload(self) -> dict[str, object]:
        return {"rank": self.rank, "suit": self.suit, "label": self.label}


def build_deck() -> List[Card]:
    return [Card(rank, suit) for suit in SUITS for rank in range(2, 15)]


def shuffle(cards: Iterable[Card], rng: Optional[random.Random] = None) -> List[Card]:
    """Fisher-Yates over a copy; the input sequence is left as it was."""
    rng = rng or random.Random()
    shuffled = list(cards)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


class Deck:
    """Cards are dealt from the end of the list."""

    def __init__(self, cards: Iterable[Card]) -> None:
        self.cards: List[Card] = list(cards)

    @classmethod
    def shuffled(cls, seed: Optional[int] = None) -> "Deck":
        return cls(shuffle(build_deck(), random.Random(seed)))

    def __len__(self) -> int:
        return len(self.cards)

    def deal_one(self) -> Card:
        if not self.cards:
            raise DeckExhausted()
        return self.cards.pop()

    def deal(self, count: int) -> List[Card]:
        return [self.deal_one() for _ in range(count)]

    def burn(self) -> None:
        self.deal_one()


def cards_to_labels(cards: Iterable[Card]) -> List[str]:
    return [card.label for card in cards]


def parse_label(label: str) -> Card:
    if label[:-1] == "10":
        label = "T" + label[-1]
    if len(label) != 2:
        raise ValueError(f"Invalid card label: {label}")
    rank = RANK_VALUE.get(label[0].upper())
    if rank is None:
        raise ValueError(f"Invalid rank: {label[0]}")
    return Card(rank, label[1].lower())


def parse_cards(labels: Iterable[str]) -> List[Card]:
    return [parse_label(label) for label in labels]
