import argparse
import asyncio
import logging

from holdem.errors import InvalidSettings
from holdem.models import RoomSettings

from .registry import DEFAULT_IDLE_TIMEOUT, RoomRegistry
from .server import RoomServer
from .worker import DEFAULT_AI_DELAY, DEFAULT_DISCONNECT_GRACE

logging.basicConfig(level=logging.INFO)


def main() -> None:
    # Table options here become the defaults every new room starts from.
    parser = argparse.ArgumentParser(description="Hold'em rooms websocket server")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--starting-chips", type=int, default=1000)
    parser.add_argument("--sb", type=int, default=10)
    parser.add_argument("--bb", type=int, default=20)
    parser.add_argument(
        "--turn-time",
        type=float,
        default=30,
        help="Seconds per turn before the timeout policy acts (0 disables the clock)",
    )
    parser.add_argument("--ai-delay", type=float, default=DEFAULT_AI_DELAY, help="Seconds the AI waits before acting")
    parser.add_argument(
        "--disconnect-grace",
        type=float,
        default=DEFAULT_DISCONNECT_GRACE,
        help="Seconds a disconnected player keeps the turn before being folded",
    )
    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=DEFAULT_IDLE_TIMEOUT,
        help="Seconds before an inactive room is closed",
    )
    args = parser.parse_args()

    try:
        defaults = RoomSettings.from_payload(
            {
                "startingChips": args.starting_chips,
                "smallBlind": args.sb,
                "bigBlind": args.bb,
                "turnTimeLimit": args.turn_time,
            }
        )
    except InvalidSettings as exc:
        parser.error(exc.msg)

    server = RoomServer(
        RoomRegistry(defaults, idle_timeout=args.idle_timeout),
        ai_delay=args.ai_delay,
        disconnect_grace=args.disconnect_grace,
    )
    asyncio.run(server.start(host=args.host, port=args.port))


if __name__ == "__main__":
    main()
