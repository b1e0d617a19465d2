"""Post-connect authentication for socket sessions.

A session starts unauthenticated. The client sends ``authenticate`` with a
bearer token; the identity bound to the session is always the ``userId``
claim of the verified token, never anything the client declares.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import jwt

from edupath.obs import metrics as obs_metrics
from edupath.realtime.messages import AuthenticatedMessage, AuthErrorMessage
from edupath.realtime.registry import ConnectionRegistry
from edupath.realtime.transport import POLICY_VIOLATION, send_message

_LOG = logging.getLogger(__name__)

TOKEN_REQUIRED = "Authentication token required"
TOKEN_INVALID = "Invalid authentication token"
ALREADY_AUTHENTICATED = "Connection already authenticated"
CLOSE_REASON = "Authentication failed"


class TokenVerifier(Protocol):
	def verify(self, token: str) -> dict[str, Any]: ...


class AuthenticationGate:
	def __init__(self, registry: ConnectionRegistry, verifier: TokenVerifier) -> None:
		self._registry = registry
		self._verifier = verifier

	async def authenticate(self, connection_id: str, token: Any) -> Optional[str]:
		"""Verify ``token`` for the session and return the bound user id.

		Returns ``None`` when the session is (still) unauthenticated. An
		invalid token closes the session with 1008 and removes it.
		"""
		connection = self._registry.get(connection_id)
		if connection is None:
			return None
		if not token:
			obs_metrics.ws_auth("missing_token")
			await send_message(connection_id, connection.transport, AuthErrorMessage(message=TOKEN_REQUIRED))
			return connection.user_id

		try:
			payload = self._verifier.verify(token)
		except (jwt.PyJWTError, ValueError, TypeError) as exc:
			obs_metrics.ws_auth("invalid_token")
			_LOG.warning(
				"realtime.auth_failed",
				extra={"connection_id": connection_id, "reason": type(exc).__name__},
			)
			await send_message(connection_id, connection.transport, AuthErrorMessage(message=TOKEN_INVALID))
			await connection.transport.close(code=POLICY_VIOLATION, reason=CLOSE_REASON)
			self._registry.unregister(connection_id)
			return None

		user_id = str(payload["userId"])
		if connection.user_id is not None and connection.user_id != user_id:
			obs_metrics.ws_auth("identity_conflict")
			_LOG.warning(
				"realtime.reauth_rejected",
				extra={"connection_id": connection_id, "bound_user_id": connection.user_id},
			)
			await send_message(connection_id, connection.transport, AuthErrorMessage(message=ALREADY_AUTHENTICATED))
			return connection.user_id

		self._registry.bind_user(connection_id, user_id)
		obs_metrics.ws_auth("ok")
		_LOG.info("realtime.authenticated", extra={"connection_id": connection_id, "user": user_id})
		await send_message(connection_id, connection.transport, AuthenticatedMessage(user_id=user_id))
		return user_id
