"""Client-side rollout flags for observability upgrades."""

from typing import Optional

from .settings import SettingsManager


class FeatureFlagManager:
    """Persisted feature flags. Every flag defaults to enabled on first run."""

    ENHANCED_UI_LAYOUT_KEY = "feature.enhancedUILayout"
    ENHANCED_OBSERVABILITY_KEY = "feature.enhancedObservability"
    ACCESSIBILITY_HARDENING_KEY = "feature.accessibilityHardening"

    def __init__(self, settings: Optional[SettingsManager] = None):
        self.settings = settings or SettingsManager()
        for key in (
            self.ENHANCED_UI_LAYOUT_KEY,
            self.ENHANCED_OBSERVABILITY_KEY,
            self.ACCESSIBILITY_HARDENING_KEY,
        ):
            if self.settings.get(key) is None:
                self.settings.set(key, True)

    @property
    def enhanced_ui_layout(self) -> bool:
        return bool(self.settings.get(self.ENHANCED_UI_LAYOUT_KEY, True))

    @enhanced_ui_layout.setter
    def enhanced_ui_layout(self, value: bool):
        self.settings.set(self.ENHANCED_UI_LAYOUT_KEY, bool(value))

    @property
    def enhanced_observability(self) -> bool:
        """Gates focus filtering, evidence polling and cross-screen jumps."""
        return bool(self.settings.get(self.ENHANCED_OBSERVABILITY_KEY, True))

    @enhanced_observability.setter
    def enhanced_observability(self, value: bool):
        self.settings.set(self.ENHANCED_OBSERVABILITY_KEY, bool(value))

    @property
    def accessibility_hardening(self) -> bool:
        return bool(self.settings.get(self.ACCESSIBILITY_HARDENING_KEY, True))

    @accessibility_hardening.setter
    def accessibility_hardening(self, value: bool):
        self.settings.set(self.ACCESSIBILITY_HARDENING_KEY, bool(value))
