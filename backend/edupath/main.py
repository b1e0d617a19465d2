"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import asyncpg
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from edupath.api import ops, ws
from edupath.api.errors import install_error_handlers
from edupath.domain.forum import ForumRepository, ForumService
from edupath.infra import postgres
from edupath.obs import init as obs_init
from edupath.realtime import build_realtime
from edupath.settings import settings

_LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	try:
		await postgres.init_pool()
	except (OSError, asyncpg.PostgresError):
		_LOG.warning("postgres.unavailable", exc_info=True)
	forum_repository = ForumRepository()
	realtime = build_realtime(forum_repository)
	app.state.realtime = realtime
	app.state.forum_service = ForumService(forum_repository, events=realtime.handlers.forum)
	monitor_task = asyncio.create_task(realtime.monitor.run_forever(), name="realtime-connection-monitor")
	try:
		yield
	finally:
		realtime.monitor.stop()
		monitor_task.cancel()
		await asyncio.gather(monitor_task, return_exceptions=True)
		await realtime.service.shutdown()
		await postgres.close_pool()


def _allow_origins() -> list[str]:
	allow_origins = list(settings.cors_allow_origins)
	if not allow_origins:
		allow_origins = ["http://localhost:5000"] if settings.is_dev() else []
	# Starlette disallows wildcard '*' with allow_credentials=True.
	return [origin for origin in allow_origins if origin != "*"]


def create_app() -> FastAPI:
	app = FastAPI(title="EduPath Realtime", lifespan=lifespan)
	install_error_handlers(app)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=_allow_origins(),
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	obs_init(app)
	app.include_router(ops.router, tags=["ops"])
	app.include_router(ws.router, tags=["realtime"])
	return app


app = create_app()
