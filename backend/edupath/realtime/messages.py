"""Wire vocabulary for the realtime socket.

Every frame is a single JSON object with a ``type`` discriminator. Outbound
messages form a closed union; inbound frames are parsed leniently because
clients may attach fields the server ignores.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

EventType = Literal[
	"chat_message",
	"message_read",
	"notification",
	"application_update",
	"forum_post_created",
	"forum_post_updated",
	"forum_post_like_update",
	"forum_comment_created",
	"poll_vote_update",
]


def utc_timestamp() -> str:
	"""ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
	return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _Outbound(BaseModel):
	model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class ConnectedMessage(_Outbound):
	type: Literal["connected"] = "connected"
	connection_id: str
	timestamp: str = Field(default_factory=utc_timestamp)


class AuthenticatedMessage(_Outbound):
	type: Literal["authenticated"] = "authenticated"
	user_id: str


class AuthErrorMessage(_Outbound):
	type: Literal["auth_error"] = "auth_error"
	message: str


class ErrorMessage(_Outbound):
	type: Literal["error"] = "error"
	message: str


class PongMessage(_Outbound):
	type: Literal["pong"] = "pong"
	timestamp: str = Field(default_factory=utc_timestamp)


class SubscribedMessage(_Outbound):
	type: Literal["subscribed"] = "subscribed"
	topic: Any = None
	timestamp: str = Field(default_factory=utc_timestamp)


class EventEnvelope(_Outbound):
	"""Domain event pushed to clients."""

	type: EventType
	data: dict[str, Any]
	timestamp: str = Field(default_factory=utc_timestamp)


OutboundMessage = Annotated[
	Union[
		ConnectedMessage,
		AuthenticatedMessage,
		AuthErrorMessage,
		ErrorMessage,
		PongMessage,
		SubscribedMessage,
		EventEnvelope,
	],
	Field(discriminator="type"),
]

_OUTBOUND_ADAPTER: TypeAdapter[OutboundMessage] = TypeAdapter(OutboundMessage)


def envelope(event_type: EventType, data: dict[str, Any]) -> EventEnvelope:
	return EventEnvelope(type=event_type, data=data)


def to_wire(message: OutboundMessage) -> dict[str, Any]:
	return message.model_dump(mode="json", by_alias=True)


def encode(message: OutboundMessage) -> str:
	return json.dumps(to_wire(message), separators=(",", ":"))


def parse_outbound(payload: dict[str, Any]) -> OutboundMessage:
	"""Validate a decoded frame against the outbound union (used by clients and tests)."""
	return _OUTBOUND_ADAPTER.validate_python(payload)


class MalformedMessage(ValueError):
	"""Raised when a frame is not a JSON object."""


class InboundMessage(BaseModel):
	model_config = ConfigDict(extra="allow")

	type: Optional[str] = None
	token: Any = None
	topic: Any = None


def parse_inbound(raw: str | bytes) -> InboundMessage:
	try:
		decoded = json.loads(raw)
	except (TypeError, ValueError) as exc:
		raise MalformedMessage("invalid_json") from exc
	if not isinstance(decoded, dict):
		raise MalformedMessage("not_an_object")
	message_type = decoded.get("type")
	if not isinstance(message_type, str):
		decoded["type"] = None
	return InboundMessage.model_validate(decoded)
