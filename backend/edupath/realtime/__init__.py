"""Realtime socket layer exports."""

from .container import Realtime, build_realtime
from .handlers import RealtimeEventHandlers
from .registry import Connection, ConnectionRegistry
from .router import MessageRouter

__all__ = [
	"Connection",
	"ConnectionRegistry",
	"MessageRouter",
	"Realtime",
	"RealtimeEventHandlers",
	"build_realtime",
]
