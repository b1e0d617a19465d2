"""Security setting records."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from edupath.domain.models import CamelModel


class SecuritySetting(CamelModel):
	id: str
	setting_key: str
	setting_value: str
	description: Optional[str] = None
	updated_by: str
	created_at: datetime
	updated_at: datetime
