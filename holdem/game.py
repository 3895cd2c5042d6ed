from __future__ import annotations

import logging
import random
import string
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .cards import Card, Deck, cards_to_labels
from .errors import (
    BuyBackDisabled,
    BuyBackLimitReached,
    BuyBackNotNeeded,
    DeckExhausted,
    GameInProgress,
    InsufficientChips,
    InvalidAction,
    MustCallOrFold,
    NotEnoughPlayers,
    NotYourTurn,
    PlayerNotFound,
    RaiseTooLow,
    RoomFull,
    RoundAlreadyAdvanced,
)
from .evaluator import HandValue, best_hands, evaluate_best
from .models import (
    BETTING_PHASES,
    MAX_PLAYERS,
    MIN_PLAYERS,
    ActionType,
    ActionWindow,
    Phase,
    Player,
    RoomSettings,
)

LOGGER = logging.getLogger("holdem.game")

# PokerGame keeps one room's table in memory. No networking or timers live
# here, only poker rules, chip accounting and turn order.

Event = Dict[str, object]
DeckFactory = Callable[[Optional[int]], Deck]

FOLD_OUT_REASON = "All others folded"
SHOWDOWN_REASON = "Showdown"

_ID_ALPHABET = string.ascii_lowercase + string.digits
_id_rng = random.SystemRandom()


def generate_player_id() -> str:
    return "player_" + "".join(_id_rng.choice(_ID_ALPHABET) for _ in range(9))


class PokerGame:
    """Texas Hold'em round state machine for a single room."""

    def __init__(
        self,
        room_code: str,
        settings: Optional[RoomSettings] = None,
        deck_factory: Optional[DeckFactory] = None,
    ) -> None:
        self.room_code = room_code
        self.settings = settings or RoomSettings()
        self.players: List[Player] = []
        self.deck = Deck([])
        self.community_cards: List[Card] = []
        self.pot = 0
        self.current_bet = 0
        self.dealer_index = 0
        self.current_player_index: Optional[int] = None
        self.phase = Phase.WAITING
        self.revealed_cards: Dict[str, List[int]] = {}
        self.turn_token = 0
        self.rounds_played = 0
        self.last_action: Optional[Event] = None
        self.last_result: Optional[Event] = None
        self._deck_factory = deck_factory or Deck.shuffled
        self._acted: Set[str] = set()
        self._shown: Set[str] = set()
        self._free_fold_id: Optional[str] = None
        self._opening_chips: Dict[str, int] = {}
        self._opening_order: List[Player] = []
        self._bb_index = 0

    # Seat management -------------------------------------------------

    def add_player(self, name: str, *, is_ai: bool = False, is_host: bool = False) -> Player:
        if len(self.players) >= MAX_PLAYERS:
            raise RoomFull()
        if self.phase in BETTING_PHASES:
            raise GameInProgress()
        player = Player(
            id=generate_player_id(),
            name=name.strip()[:32] or "Player",
            chips=self.settings.starting_chips,
            is_ai=is_ai,
            is_host=is_host,
        )
        self.players.append(player)
        return player

    def remove_player(self, player_id: str) -> List[Event]:
        """Leave the table. Mid-round the seat folds now and is dropped at the next reset."""
        player = self.get_player(player_id)
        events: List[Event] = [{"ev": "LEAVE", "player_id": player_id}]
        if self.phase in BETTING_PHASES and not player.folded:
            if player.is_active:
                events.extend(self.player_action(player_id, ActionType.FOLD))
            else:
                player.folded = True
                self._acted.discard(player_id)
                events.append({"ev": "FOLD", "player_id": player_id})
                live = self._live_players()
                if len(live) == 1:
                    self._award_fold_out(live[0], events)
            player.left = True
            player.connected = False
        elif self.phase in BETTING_PHASES:
            player.left = True
            player.connected = False
        else:
            self._drop(player)
        self._transfer_host()
        return events

    def set_connected(self, player_id: str, connected: bool) -> None:
        self.get_player(player_id).connected = connected

    def get_player(self, player_id: str) -> Player:
        for player in self.players:
            if player.id == player_id:
                return player
        raise PlayerNotFound()

    @property
    def current_player(self) -> Optional[Player]:
        if self.current_player_index is None:
            return None
        return self.players[self.current_player_index]

    def _drop(self, player: Player) -> None:
        idx = self.players.index(player)
        self.players.pop(idx)
        self.revealed_cards.pop(player.id, None)
        if idx < self.dealer_index or (idx == self.dealer_index and self.rounds_played > 0):
            # Step back so the next rotation lands on the seat after the one that left.
            self.dealer_index -= 1
        if self.players:
            self.dealer_index %= len(self.players)
        else:
            self.dealer_index = 0

    def _transfer_host(self) -> None:
        seated = [p for p in self.players if not p.left]
        if any(p.is_host for p in seated):
            return
        for player in self.players:
            player.is_host = False
        for player in seated:
            if not player.is_ai:
                player.is_host = True
                return

    # Round lifecycle -------------------------------------------------

    def can_start(self) -> bool:
        funded = [p for p in self.players if not p.left and p.chips > 0]
        return len(funded) >= MIN_PLAYERS and self.phase not in BETTING_PHASES

    def start_game(self, seed: Optional[int] = None, *, rotate_dealer: bool = False) -> List[Event]:
        if self.phase in BETTING_PHASES:
            raise GameInProgress()
        remaining = [p for p in self.players if not p.left]
        if len([p for p in remaining if p.chips > 0]) < MIN_PLAYERS:
            raise NotEnoughPlayers()

        dealer = self._pick_dealer(rotate_dealer)
        self.players = remaining
        self.dealer_index = self.players.index(dealer)
        self._transfer_host()

        self._opening_chips = {p.id: p.chips for p in self.players}
        self._opening_order = list(self.players)
        self.community_cards = []
        self.pot = 0
        self.current_bet = 0
        self.current_player_index = None
        self.revealed_cards = {}
        self.last_action = None
        self.last_result = None
        self._acted = set()
        self._shown = set()
        self._free_fold_id = None
        for player in self.players:
            player.reset_for_round()

        self.phase = Phase.PREFLOP
        self.turn_token += 1
        events: List[Event] = [{"ev": "ROUND_START", "dealer_index": self.dealer_index}]
        try:
            self.deck = self._deck_factory(seed)
            self._deal_hole_cards()
            self._post_blinds(events)
            self._open_preflop(events)
        except DeckExhausted:
            self._abort_round()
            raise
        LOGGER.info("Room %s: round started, dealer=%s", self.room_code, dealer.name)
        return events

    def next_round(self, seed: Optional[int] = None) -> List[Event]:
        if self.phase in BETTING_PHASES:
            raise GameInProgress()
        if self.rounds_played == 0:
            # The first deal is the host's startGame, never a nextRound.
            raise InvalidAction("Start the game first")
        return self.start_game(seed, rotate_dealer=self.rounds_played > 0)

    def _pick_dealer(self, rotate: bool) -> Player:
        count = len(self.players)
        start = self.dealer_index % count
        offsets = range(1, count + 1) if rotate else range(count)
        for offset in offsets:
            candidate = self.players[(start + offset) % count]
            if not candidate.left and candidate.chips > 0:
                return candidate
        raise NotEnoughPlayers()

    def _seats_from(self, start: int) -> List[int]:
        """Seat indices in table order beginning with ``start``."""
        count = len(self.players)
        return [(start + offset) % count for offset in range(count)]

    def _next_seat(self, start: int, predicate: Callable[[Player], bool]) -> Optional[int]:
        for idx in self._seats_from(start + 1):
            if predicate(self.players[idx]):
                return idx
        return None

    def _deal_hole_cards(self) -> None:
        order = [idx for idx in self._seats_from(self.dealer_index + 1) if not self.players[idx].folded]
        for _ in range(2):
            for idx in order:
                self.players[idx].cards.append(self.deck.deal_one())

    def _post_blinds(self, events: List[Event]) -> None:
        in_round = [p for p in self.players if not p.folded]
        if len(in_round) == 2:
            sb_idx = self.dealer_index
        else:
            sb_idx = self._next_seat(self.dealer_index, lambda p: not p.folded)
        assert sb_idx is not None
        bb_idx = self._next_seat(sb_idx, lambda p: not p.folded)
        assert bb_idx is not None

        sb_player = self.players[sb_idx]
        bb_player = self.players[bb_idx]
        self._commit(sb_player, min(self.settings.small_blind, sb_player.chips))
        self._commit(bb_player, min(self.settings.big_blind, bb_player.chips))
        self.current_bet = max(self.settings.big_blind, sb_player.bet)
        self._bb_index = bb_idx
        events.append(
            {
                "ev": "POST_BLINDS",
                "sb_player": sb_player.id,
                "bb_player": bb_player.id,
                "sb": sb_player.bet,
                "bb": bb_player.bet,
            }
        )

    def _open_preflop(self, events: List[Event]) -> None:
        in_round = [p for p in self.players if not p.folded]
        if len(in_round) == 2:
            start = self.dealer_index - 1  # heads-up: the dealer acts first
        else:
            start = self._bb_index
        first = self._next_seat(start, self._needs_action)
        if first is None:
            self._advance_phase(events)
            return
        if self.settings.optional_big_blind and len(in_round) >= 3:
            self._free_fold_id = self.players[first].id
        self._activate(first)

    def _commit(self, player: Player, amount: int) -> None:
        player.chips -= amount
        player.bet += amount
        self.pot += amount

    def _abort_round(self) -> None:
        # Every chip goes back to where it was when the round began.
        self.players = list(self._opening_order)
        for player in self.players:
            player.chips = self._opening_chips.get(player.id, player.chips)
            player.bet = 0
            player.cards.clear()
            player.folded = False
            player.is_active = False
        self.pot = 0
        self.current_bet = 0
        self.community_cards = []
        self.current_player_index = None
        self.phase = Phase.WAITING
        self.turn_token += 1
        self.last_result = {"ev": "ROUND_ABORTED", "reason": DeckExhausted.code}
        LOGGER.error("Room %s: deck exhausted, round aborted and chips restored", self.room_code)

    # Action handling -------------------------------------------------

    def legal_actions(self, player_id: str) -> ActionWindow:
        player = self.get_player(player_id)
        if self.phase not in BETTING_PHASES or player.folded:
            return ActionWindow(legal=[], call_amount=0, min_raise_to=None, max_raise_to=None)

        legal: List[ActionType] = [ActionType.FOLD]
        call_amount = max(self.current_bet - player.bet, 0)
        if call_amount == 0:
            legal.append(ActionType.CHECK)
        elif player.chips >= call_amount:
            legal.append(ActionType.CALL)

        min_raise_to: Optional[int] = None
        max_raise_to = player.chips + player.bet
        if max_raise_to > self.current_bet:
            min_raise_to = self.current_bet + 1
            legal.append(ActionType.RAISE)
        free_fold = (
            player.id == self._free_fold_id and self.phase == Phase.PREFLOP and call_amount > 0
        )
        return ActionWindow(
            legal=legal,
            call_amount=call_amount,
            min_raise_to=min_raise_to,
            max_raise_to=max_raise_to if min_raise_to is not None else None,
            free_fold=free_fold,
        )

    def player_action(
        self,
        player_id: str,
        action: ActionType | str,
        amount: Optional[int] = None,
    ) -> List[Event]:
        player = self.get_player(player_id)
        if self.phase not in BETTING_PHASES or not player.is_active:
            raise NotYourTurn()
        try:
            action = ActionType(action)
        except ValueError:
            raise InvalidAction(f"Unknown action: {action}") from None

        # Validate everything first so a rejected action leaves no trace.
        debit = 0
        if action == ActionType.CHECK:
            if player.bet != self.current_bet:
                raise MustCallOrFold()
        elif action == ActionType.CALL:
            debit = max(self.current_bet - player.bet, 0)
            if debit > player.chips:
                raise InsufficientChips(f"Need {debit} chips to call, have {player.chips}")
        elif action == ActionType.RAISE:
            if isinstance(amount, bool) or not isinstance(amount, int):
                raise InvalidAction("Raise requires an amount")
            if amount <= self.current_bet:
                raise RaiseTooLow(f"Raise must be higher than {self.current_bet}")
            debit = amount - player.bet
            if debit > player.chips:
                raise InsufficientChips(f"Raise to {amount} needs {debit} chips, have {player.chips}")

        events: List[Event] = []
        try:
            if action == ActionType.FOLD:
                player.folded = True
                event: Event = {"ev": "FOLD", "player_id": player_id}
                if player_id == self._free_fold_id:
                    event["free"] = True
                events.append(event)
            elif action == ActionType.CHECK:
                events.append({"ev": "CHECK", "player_id": player_id})
            elif action == ActionType.CALL:
                self._commit(player, debit)
                events.append({"ev": "CALL", "player_id": player_id, "amount": debit})
            else:
                assert amount is not None
                self._commit(player, debit)
                self.current_bet = amount
                # A raise reopens the action for everyone else.
                self._acted = set()
                events.append({"ev": "RAISE", "player_id": player_id, "amount": debit, "to": amount})

            self._acted.add(player_id)
            self._free_fold_id = None
            self.last_action = {"playerId": player_id, "action": action.value, "amount": amount}
            player.is_active = False
            self.turn_token += 1
            self._after_action(events)
        except DeckExhausted:
            self._abort_round()
            raise
        return events

    def timeout_decision(self, player_id: str) -> Tuple[ActionType, Optional[int]]:
        window = self.legal_actions(player_id)
        if ActionType.CHECK in window.legal:
            return ActionType.CHECK, None
        return ActionType.FOLD, None

    def apply_timeout(self, player_id: str, turn_token: int) -> List[Event]:
        """Auto-act for an unresponsive seat, exactly like a manual action would."""
        if turn_token != self.turn_token:
            raise RoundAlreadyAdvanced()
        player = self.get_player(player_id)
        if self.phase not in BETTING_PHASES or not player.is_active:
            raise NotYourTurn()
        action, amount = self.timeout_decision(player_id)
        events: List[Event] = [{"ev": "TIMEOUT", "player_id": player_id, "action": action.value}]
        events.extend(self.player_action(player_id, action, amount))
        return events

    def _needs_action(self, player: Player) -> bool:
        if not player.can_bet:
            return False
        if player.bet < self.current_bet:
            return True
        if player.id in self._acted:
            return False
        # A lone player with chips who already covers every other bet has nothing to decide.
        others = [p for p in self._live_players() if p is not player]
        if not any(p.can_bet for p in others):
            return player.bet < max((p.bet for p in others), default=0)
        return True

    def _live_players(self) -> List[Player]:
        return [p for p in self.players if not p.folded]

    def _activate(self, idx: int) -> None:
        for player in self.players:
            player.is_active = False
        self.current_player_index = idx
        self.players[idx].is_active = True

    def _after_action(self, events: List[Event]) -> None:
        live = self._live_players()
        if len(live) == 1:
            self._award_fold_out(live[0], events)
            return
        assert self.current_player_index is not None
        next_idx = self._next_seat(self.current_player_index, self._needs_action)
        if next_idx is None:
            self._advance_phase(events)
            return
        self._activate(next_idx)

    def _advance_phase(self, events: List[Event]) -> None:
        while True:
            if self.phase == Phase.PREFLOP:
                self.deck.burn()
                cards = self.deck.deal(3)
                self.phase = Phase.FLOP
                events.append({"ev": "FLOP", "cards": cards_to_labels(cards)})
            elif self.phase == Phase.FLOP:
                self.deck.burn()
                cards = self.deck.deal(1)
                self.phase = Phase.TURN
                events.append({"ev": "TURN", "card": cards[0].label})
            elif self.phase == Phase.TURN:
                self.deck.burn()
                cards = self.deck.deal(1)
                self.phase = Phase.RIVER
                events.append({"ev": "RIVER", "card": cards[0].label})
            else:
                self._showdown(events)
                return
            self.community_cards.extend(cards)

            self.current_bet = 0
            self._acted = set()
            self._free_fold_id = None
            for player in self.players:
                player.reset_for_street()
            self.current_player_index = None
            self.turn_token += 1

            first = self._next_seat(self.dealer_index, self._needs_action)
            if first is not None:
                self._activate(first)
                return
            # Nobody left who can bet: keep dealing street by street.

    def _award_fold_out(self, winner: Player, events: List[Event]) -> None:
        amount = self.pot
        winner.chips += amount
        events.append({"ev": "POT_AWARD", "player_id": winner.id, "amount": amount})
        self._finish_round(events, [winner.id], {winner.id: amount}, FOLD_OUT_REASON, None)

    def _showdown(self, events: List[Event]) -> None:
        self.phase = Phase.SHOWDOWN
        contenders = [self.players[idx] for idx in self._seats_from(self.dealer_index + 1) if not self.players[idx].folded]
        values: Dict[str, HandValue] = {}
        for player in contenders:
            value = evaluate_best(list(player.cards) + self.community_cards)
            values[player.id] = value
            events.append(
                {
                    "ev": "SHOWDOWN",
                    "player_id": player.id,
                    "hand": cards_to_labels(player.cards),
                    "board": cards_to_labels(self.community_cards),
                    "category": int(value.category),
                    "rank": value.name,
                }
            )
        self._shown = set(values)

        winners = best_hands(values, strict=self.settings.strict_tiebreak)
        share, remainder = divmod(self.pot, len(winners))
        payouts: Dict[str, int] = {}
        # Odd chips go to the earliest winners after the dealer.
        for idx, player_id in enumerate(winners):
            payout = share + (1 if idx < remainder else 0)
            self.get_player(player_id).chips += payout
            payouts[player_id] = payout
            events.append({"ev": "POT_AWARD", "player_id": player_id, "amount": payout})
        self._finish_round(events, winners, payouts, SHOWDOWN_REASON, values)

    def _finish_round(
        self,
        events: List[Event],
        winners: List[str],
        payouts: Dict[str, int],
        reason: str,
        values: Optional[Dict[str, HandValue]],
    ) -> None:
        self.phase = Phase.SHOWDOWN
        self.pot = 0
        self.current_bet = 0
        self.current_player_index = None
        self._acted = set()
        self._free_fold_id = None
        for player in self.players:
            player.bet = 0
            player.is_active = False
        self.turn_token += 1
        self.rounds_played += 1
        self.last_result = {
            "ev": "ROUND_END",
            "reason": reason,
            "winners": [
                {
                    "playerId": player_id,
                    "name": self.get_player(player_id).name,
                    "winAmount": payouts[player_id],
                    "hand": values[player_id].name if values else None,
                }
                for player_id in winners
            ],
        }
        events.append(dict(self.last_result))
        LOGGER.info(
            "Room %s: round %s over (%s), winners=%s",
            self.room_code,
            self.rounds_played,
            reason,
            payouts,
        )

    # Ledger ----------------------------------------------------------

    def buy_back(self, player_id: str) -> List[Event]:
        player = self.get_player(player_id)
        if not self.settings.allow_buy_back:
            raise BuyBackDisabled()
        if player.buy_backs_used >= self.settings.max_buy_backs:
            raise BuyBackLimitReached(f"Maximum buy-backs ({self.settings.max_buy_backs}) reached")
        if player.chips > 0:
            raise BuyBackNotNeeded()
        player.chips += self.settings.buy_back_amount
        player.buy_backs_used += 1
        if self.phase in BETTING_PHASES and player.id in self._opening_chips:
            # Keep an abort from clawing back chips bought mid-round.
            self._opening_chips[player.id] += self.settings.buy_back_amount
        return [
            {
                "ev": "BUY_BACK",
                "player_id": player_id,
                "amount": self.settings.buy_back_amount,
                "remaining": self.settings.max_buy_backs - player.buy_backs_used,
            }
        ]

    def reveal_cards(self, player_id: str, indices: Iterable[int]) -> List[Event]:
        player = self.get_player(player_id)
        try:
            chosen = sorted(set(indices))
        except TypeError:
            raise InvalidAction("Card indices must be a list") from None
        if any(isinstance(idx, bool) or idx not in (0, 1) for idx in chosen):
            raise InvalidAction("Card indices must be 0 or 1")
        self.revealed_cards[player.id] = chosen
        return [{"ev": "REVEAL", "player_id": player_id, "indices": chosen}]

    def chips_in_play(self) -> int:
        return self.pot + sum(p.chips for p in self.players)

    # Snapshots -------------------------------------------------------

    def _card_visible(self, player: Player, idx: int, viewer_id: Optional[str]) -> bool:
        if player.id == viewer_id:
            return True
        if self.phase == Phase.SHOWDOWN and player.id in self._shown:
            return True
        return idx in self.revealed_cards.get(player.id, [])

    def snapshot(self, viewer_id: Optional[str] = None) -> Dict[str, object]:
        """Full display-agnostic state as one viewer may see it."""
        players = []
        for player in self.players:
            cards = [
                card.to_payload() if self._card_visible(player, idx, viewer_id) else None
                for idx, card in enumerate(player.cards)
            ]
            players.append(
                {
                    "id": player.id,
                    "name": player.name,
                    "chips": player.chips,
                    "bet": player.bet,
                    "folded": player.folded,
                    "isActive": player.is_active,
                    "isHost": player.is_host,
                    "isAI": player.is_ai,
                    "connected": player.connected,
                    "buyBacksUsed": player.buy_backs_used,
                    "cards": cards,
                }
            )
        payload: Dict[str, object] = {
            "roomCode": self.room_code,
            "players": players,
            "communityCards": [card.to_payload() for card in self.community_cards],
            "pot": self.pot,
            "currentBet": self.current_bet,
            "gamePhase": self.phase.value,
            "dealerIndex": self.dealer_index,
            "currentPlayerIndex": self.current_player_index,
            "revealedCards": {pid: list(idx) for pid, idx in self.revealed_cards.items()},
            "settings": self.settings.to_payload(),
            "turnToken": self.turn_token,
            "lastAction": self.last_action,
            "result": self.last_result,
        }
        if viewer_id is not None and self.phase in BETTING_PHASES:
            viewer = next((p for p in self.players if p.id == viewer_id), None)
            if viewer is not None and viewer.is_active:
                window = self.legal_actions(viewer_id)
                payload["legal"] = [action.value for action in window.legal]
                payload["callAmount"] = window.call_amount
                payload["minRaiseTo"] = window.min_raise_to
                payload["maxRaiseTo"] = window.max_raise_to
                payload["freeFold"] = window.free_fold
        return payload
