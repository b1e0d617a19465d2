"""Base model shared by the domain records."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
	"""Base model that reads snake_case rows and dumps camelCase for clients."""

	model_config = ConfigDict(
		alias_generator=to_camel,
		populate_by_name=True,
		from_attributes=True,
	)

	def to_wire(self) -> dict[str, Any]:
		return self.model_dump(mode="json", by_alias=True)
