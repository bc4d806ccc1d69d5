"""
Tests for runtime setting overrides.
"""

import pytest

from ppe_kernel.domain.policy import StockPolicy
from ppe_kernel.services.settings_service import (
    ALLOW_FORCED_ADJUSTMENTS,
    ALLOW_NEGATIVE_STOCK,
    RETURN_CANCELLATION_WINDOW_HOURS,
    SettingsService,
    parse_bool,
    parse_setting,
)


@pytest.fixture
def settings(session):
    return SettingsService(session)


class TestParsing:

    @pytest.mark.parametrize("raw, expected", [("true", True), ("ON", True), ("0", False), (False, False)])
    def test_parse_bool(self, raw, expected):
        assert parse_bool(raw) is expected

    def test_parse_bool_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_bool("maybe")

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="Unknown setting"):
            parse_setting("allow_everything", "true")

    def test_negative_window_rejected(self):
        with pytest.raises(ValueError):
            parse_setting(RETURN_CANCELLATION_WINDOW_HOURS, "-1")


class TestResolve:

    def test_no_rows_returns_defaults(self, settings):
        defaults = StockPolicy()

        assert settings.resolve(defaults) is defaults

    def test_rows_override_defaults(self, settings, test_actor_id):
        settings.set_setting(ALLOW_NEGATIVE_STOCK, True, test_actor_id)
        settings.set_setting(RETURN_CANCELLATION_WINDOW_HOURS, 48, test_actor_id)

        policy = settings.resolve(StockPolicy())

        assert policy.allow_negative_stock is True
        assert policy.allow_forced_adjustments is False
        assert policy.return_cancellation_window_hours == 48
        assert policy.delivery_cancellation_window_hours == 24

    def test_update_existing_row(self, settings, test_actor_id):
        settings.set_setting(ALLOW_FORCED_ADJUSTMENTS, "yes", test_actor_id)
        row = settings.set_setting(ALLOW_FORCED_ADJUSTMENTS, "off", test_actor_id, description="audit")

        assert row.value == "false"
        assert row.description == "audit"
        assert settings.resolve(StockPolicy()).allow_forced_adjustments is False

    def test_change_is_logged(self, settings, test_actor_id, captured_logs):
        settings.set_setting(ALLOW_NEGATIVE_STOCK, "true", test_actor_id)

        [record] = [r for r in captured_logs() if r["message"] == "runtime_setting_changed"]
        assert record["setting_key"] == ALLOW_NEGATIVE_STOCK
        assert record["setting_value"] == "true"
