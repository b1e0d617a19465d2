"""Staff invitation exports."""

from .models import StaffInvitationLink
from .repo import StaffInvitationRepository

__all__ = ["StaffInvitationLink", "StaffInvitationRepository"]
