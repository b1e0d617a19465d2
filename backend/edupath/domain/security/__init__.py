"""Security settings exports."""

from .models import SecuritySetting
from .repo import SecuritySettingsRepository

__all__ = ["SecuritySetting", "SecuritySettingsRepository"]
