"""JWT service used to sign and verify session tokens.

Uses HS256 with the configured secret. Validates standard claims and the
expected issuer/audience values. Socket sessions only ever bind the
``userId`` claim from a verified payload.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import jwt
from jwt import InvalidTokenError

from edupath.settings import settings


ALGORITHM = "HS256"


class JwtService:
	"""Sign and verify access tokens."""

	def __init__(
		self,
		secret: Optional[str] = None,
		*,
		issuer: Optional[str] = None,
		audience: Optional[str] = None,
		leeway: Optional[int] = None,
	) -> None:
		self.secret = secret or settings.jwt_secret
		self.issuer = issuer or settings.jwt_issuer
		self.audience = audience or settings.jwt_audience
		self.leeway = settings.jwt_leeway_seconds if leeway is None else leeway

	def sign(self, payload: dict[str, object], *, expires_in: Optional[int] = None) -> str:
		"""Encode a token with issuer/audience defaults.

		``expires_in`` is in seconds and defaults to ``JWT_EXPIRES_MINUTES``.
		"""
		now = int(time.time())
		ttl = expires_in if expires_in is not None else settings.jwt_expires_minutes * 60
		body: Dict[str, Any] = {"iss": self.issuer, "aud": self.audience, "iat": now, "exp": now + ttl}
		body.update(payload)
		user_id = body.get("userId")
		if user_id and "sub" not in body:
			body["sub"] = str(user_id)
		return jwt.encode(body, self.secret, algorithm=ALGORITHM)

	def verify(self, token: str) -> dict[str, Any]:
		"""Decode and validate a token.

		Raises jwt.InvalidTokenError subclasses on failure.
		"""
		if not token or not isinstance(token, str):
			raise InvalidTokenError("empty_token")
		options = {"require": ["exp", "iat", "iss", "aud"]}
		payload = jwt.decode(
			token,
			self.secret,
			algorithms=[ALGORITHM],
			audience=self.audience,
			issuer=self.issuer,
			leeway=self.leeway,
			options=options,
		)
		user_id = payload.get("userId")
		if not user_id or not str(user_id).strip():
			raise InvalidTokenError("missing_claim:userId")
		payload["userId"] = str(user_id).strip()
		return payload
