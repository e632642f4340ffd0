"""User settings model for NoteTaker."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

SETTINGS_ID = "main_settings"


class Theme(str, Enum):
    """UI colour theme."""

    LIGHT = "light"
    DARK = "dark"


class PerformanceProfile(str, Enum):
    """Trade-off between AI output quality and cost."""

    MAX_QUALITY = "max-quality"
    BALANCED = "balanced"
    MAX_SAVINGS = "max-savings"


@dataclass
class UserSettings:
    """Singleton settings record, created at first run and updated in place."""

    id: str = SETTINGS_ID
    ui_language: str = "en"
    ai_language: str = "English"
    api_key: Optional[str] = None
    theme: Theme = Theme.DARK
    performance_profile: PerformanceProfile = PerformanceProfile.MAX_QUALITY

    def __post_init__(self) -> None:
        """Validate and convert fields after initialization."""
        if isinstance(self.theme, str):
            self.theme = Theme(self.theme)
        if isinstance(self.performance_profile, str):
            self.performance_profile = PerformanceProfile(self.performance_profile)

    @property
    def has_credential(self) -> bool:
        """True if an API key for the external service is configured."""
        return bool(self.api_key and self.api_key.strip())
