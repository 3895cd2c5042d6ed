#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import shlex
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from rooms.transport import RemoteTransport

logging.basicConfig(level=logging.INFO)

# ManualClient is a terminal seat at a room server: it renders the snapshots
# the server pushes and turns typed lines into commands.

HELP = """Commands:
  start                 start the game (host only)
  next                  deal the next round
  fold | check | call   act on your turn
  raise <to>            raise the table bet to <to>
  buy                   buy back in when busted
  say <text>            chat
  show <0|1> [<0|1>]    reveal hole cards
  quit                  leave the room"""

ACTION_ALIASES = {"f": "fold", "k": "check", "c": "call", "r": "raise"}


def card_text(card: Optional[Dict[str, Any]]) -> str:
    return card["label"] if card else "??"


class ManualClient:
    def __init__(self, url: str, name: str) -> None:
        self.url = url
        self.name = name
        self.transport = RemoteTransport(url)
        self.state: Optional[Dict[str, Any]] = None
        self.recent_events: Deque[str] = deque(maxlen=6)

    async def run(self, room_code: Optional[str], settings: Dict[str, Any], with_ai: bool) -> None:
        self.transport.subscribe(self._on_message)
        await self.transport.connect()
        try:
            if room_code:
                reply = await self.transport.join_room(room_code, self.name)
            else:
                reply = await self.transport.create_room(self.name, settings, with_ai)
            if not reply.get("ok"):
                print(f"Error {reply.get('code')}: {reply.get('msg')}")
                return
            print(f"Seated in room {self.transport.room_code} as {self.transport.player_id}")
            print(HELP)
            await self._loop()
        finally:
            await self.transport.close()

    async def _loop(self) -> None:
        while True:
            line = await asyncio.to_thread(input, "> ")
            try:
                words = shlex.split(line)
            except ValueError:
                print("Could not parse that line")
                continue
            if not words:
                continue
            verb = ACTION_ALIASES.get(words[0].lower(), words[0].lower())
            if verb == "quit":
                await self.transport.leave_room()
                return
            reply = await self._dispatch(verb, words[1:])
            if reply is None:
                print(HELP)
            elif not reply.get("ok"):
                print(f"Error {reply.get('code')}: {reply.get('msg')}")

    async def _dispatch(self, verb: str, rest: List[str]) -> Optional[Dict[str, Any]]:
        if verb == "start":
            return await self.transport.start_game()
        if verb == "next":
            return await self.transport.next_round()
        if verb in ("fold", "check", "call"):
            return await self.transport.player_action(verb)
        if verb == "raise":
            amount = self._parse_amount(rest)
            if amount is None:
                return None
            return await self.transport.player_action("raise", amount)
        if verb == "buy":
            return await self.transport.buy_back()
        if verb == "say" and rest:
            return await self.transport.chat_message(" ".join(rest))
        if verb == "show" and rest and all(word in ("0", "1") for word in rest):
            return await self.transport.reveal_cards([int(word) for word in rest])
        return None

    def _parse_amount(self, rest: List[str]) -> Optional[int]:
        if len(rest) != 1:
            return None
        try:
            return int(rest[0])
        except ValueError:
            print("Enter a valid integer")
            return None

    def _on_message(self, msg_type: str, payload: Dict[str, Any]) -> None:
        if msg_type == "state":
            self.state = payload
            self._render()
        elif msg_type == "event":
            ev = payload.get("ev")
            summary = {k: v for k, v in payload.items() if k != "ev"}
            self.recent_events.append(f"{ev} {json.dumps(summary)}")
        elif msg_type == "chat":
            tag = "*" if payload.get("isTaunt") else ""
            print(f"[{payload.get('playerName')}{tag}] {payload.get('message')}")
        elif msg_type == "timer":
            if payload.get("playerId") == self.transport.player_id:
                print(f"Your turn: {payload.get('seconds')}s on the clock")
        elif msg_type == "error":
            print(f"Error {payload.get('code')}: {payload.get('msg')}")

    def _render(self) -> None:
        state = self.state
        if state is None:
            return
        board = " ".join(card_text(card) for card in state.get("communityCards", [])) or "--"
        print(
            f"\nRoom {state['roomCode']} | {state['gamePhase']} | Board {board} "
            f"| Pot={state['pot']} | Current bet={state['currentBet']}"
        )
        for idx, player in enumerate(state.get("players", [])):
            markers = "".join(
                [
                    "D" if idx == state.get("dealerIndex") else " ",
                    ">" if player.get("isActive") else " ",
                    "x" if player.get("folded") else " ",
                ]
            )
            cards = " ".join(card_text(card) for card in player.get("cards", []))
            you = " (you)" if player["id"] == self.transport.player_id else ""
            print(
                f" {markers} {player['name']}{you}: chips={player['chips']} bet={player['bet']} [{cards}]"
            )
        for line in self.recent_events:
            print(f"   {line}")
        self.recent_events.clear()
        result = state.get("result")
        if result and result.get("winners"):
            winners = ", ".join(
                f"{w['name']} +{w['winAmount']}" + (f" ({w['hand']})" if w.get("hand") else "")
                for w in result["winners"]
            )
            print(f"Result: {result.get('reason')} -> {winners}")
        if state.get("legal"):
            raise_range = ""
            if state.get("minRaiseTo") is not None:
                raise_range = f" raise {state['minRaiseTo']}-{state['maxRaiseTo']}"
            print(f"Your move: {'/'.join(state['legal'])} (call {state.get('callAmount')}){raise_range}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Play a hold'em room from the terminal")
    parser.add_argument("--url", default="ws://localhost:8765")
    parser.add_argument("--name", default="Player")
    parser.add_argument("--room", help="Room code to join; omit to create a new room")
    parser.add_argument("--ai", action="store_true", help="Seat the AI dealer in a new room")
    parser.add_argument("--starting-chips", type=int)
    parser.add_argument("--turn-time", type=float)
    args = parser.parse_args()

    settings: Dict[str, Any] = {}
    if args.starting_chips is not None:
        settings["startingChips"] = args.starting_chips
    if args.turn_time is not None:
        settings["turnTimeLimit"] = args.turn_time

    client = ManualClient(args.url, args.name)
    try:
        asyncio.run(client.run(args.room, settings, args.ai))
    except KeyboardInterrupt:
        print("Exiting manual client.")


if __name__ == "__main__":
    main()
