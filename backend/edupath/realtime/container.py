"""Explicit construction of the realtime object graph."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from edupath.infra.jwt import JwtService
from edupath.realtime.auth import AuthenticationGate, TokenVerifier
from edupath.realtime.handlers import (
	ApplicationStatusHandler,
	ChatHandler,
	ForumHandler,
	NotificationHandler,
	RealtimeEventHandlers,
)
from edupath.realtime.monitor import ConnectionMonitor
from edupath.realtime.polls import PollDataSource, PollFanout
from edupath.realtime.registry import ConnectionRegistry
from edupath.realtime.router import MessageRouter
from edupath.realtime.service import RealtimeService
from edupath.settings import settings


@dataclass
class Realtime:
	registry: ConnectionRegistry
	router: MessageRouter
	gate: AuthenticationGate
	service: RealtimeService
	handlers: RealtimeEventHandlers
	monitor: ConnectionMonitor


def build_realtime(
	poll_source: PollDataSource,
	*,
	verifier: Optional[TokenVerifier] = None,
	monitor_interval_seconds: Optional[float] = None,
) -> Realtime:
	registry = ConnectionRegistry()
	router = MessageRouter(registry)
	gate = AuthenticationGate(registry, verifier or JwtService())
	handlers = RealtimeEventHandlers(
		chat=ChatHandler(router),
		notification=NotificationHandler(router),
		application_status=ApplicationStatusHandler(router),
		forum=ForumHandler(router, PollFanout(registry, router, poll_source)),
	)
	interval = settings.ws_monitor_interval_seconds if monitor_interval_seconds is None else monitor_interval_seconds
	return Realtime(
		registry=registry,
		router=router,
		gate=gate,
		service=RealtimeService(registry, router, gate),
		handlers=handlers,
		monitor=ConnectionMonitor(registry, interval_seconds=interval),
	)
