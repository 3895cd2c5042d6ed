"""Multiplayer rooms on top of the holdem engine: registry, workers and transports."""

from .commands import Command, CommandType
from .registry import RoomRegistry
from .room import GameRoom
from .server import RoomServer
from .transport import BroadcastChannel, BroadcastTransport, GameTransport, LocalTransport, RemoteTransport

__all__ = [
    "Command",
    "CommandType",
    "RoomRegistry",
    "GameRoom",
    "GameTransport",
    "LocalTransport",
    "BroadcastChannel",
    "BroadcastTransport",
    "RemoteTransport",
    "RoomServer",
]
