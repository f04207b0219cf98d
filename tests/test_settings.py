import json
import os
import stat

from quotio_observability.utils.feature_flags import FeatureFlagManager
from quotio_observability.utils.settings import (
    CONFIG_KEYS,
    DEFAULT_MANAGEMENT_BASE_URL,
    SettingsManager,
)


def test_settings_persist(tmp_path):
    settings = SettingsManager(config_dir=tmp_path)
    settings.set("managementKey", "abc")

    reloaded = SettingsManager(config_dir=tmp_path)
    assert reloaded.get("managementKey") == "abc"
    assert reloaded.management_key == "abc"
    assert stat.S_IMODE(os.stat(settings.settings_file).st_mode) == 0o600

    reloaded.delete("managementKey")
    assert SettingsManager(config_dir=tmp_path).management_key == ""


def test_settings_defaults_and_corrupt_file(tmp_path):
    (tmp_path / "settings.json").write_text("not json")
    settings = SettingsManager(config_dir=tmp_path)
    assert settings.get("missing", 3) == 3
    assert settings.management_base_url == DEFAULT_MANAGEMENT_BASE_URL


def test_snapshot_stringifies_known_keys(settings):
    settings.set("realtimeAutoScroll", False)
    snapshot = settings.snapshot()
    assert set(snapshot) == CONFIG_KEYS
    assert snapshot["realtimeAutoScroll"] == "False"
    assert snapshot["managementKey"] == "unknown"
    assert settings.snapshot({"requestLog"}) == {"requestLog": "unknown"}


def test_feature_flags_default_on_and_persist(settings):
    flags = FeatureFlagManager(settings)
    assert flags.enhanced_ui_layout
    assert flags.enhanced_observability
    assert flags.accessibility_hardening

    flags.enhanced_observability = False
    stored = json.loads(settings.settings_file.read_text())
    assert stored[FeatureFlagManager.ENHANCED_OBSERVABILITY_KEY] is False

    assert not FeatureFlagManager(settings).enhanced_observability
