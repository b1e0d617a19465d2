"""Staff invitation link records."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from edupath.domain.models import CamelModel


class StaffInvitationLink(CamelModel):
	"""Single-use invitation link; inactive links are permanently unusable."""

	id: str
	token: str
	created_by: str
	is_active: bool = True
	used_count: int = 0
	last_used_at: Optional[datetime] = None
	created_at: datetime
	updated_at: datetime
