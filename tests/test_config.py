"""Tests for configuration loading."""

from project_tracker.config import get_settings, validate_all_settings


class TestSettings:
    """Tests for the settings container."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("ROLLUP_INCLUDE_FINANCIAL_TOTALS", raising=False)
        monkeypatch.delenv("ELEVATED_ROLE", raising=False)
        settings = get_settings()
        assert settings.rollup.include_financial_totals is False
        assert settings.rollup.retry_attempts >= 1
        assert settings.app.elevated_role == "super_admin"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("ROLLUP_INCLUDE_FINANCIAL_TOTALS", "true")
        monkeypatch.setenv("AUDIT_RETRY_ATTEMPTS", "5")
        settings = get_settings()
        assert settings.rollup.include_financial_totals is True
        assert settings.audit.retry_attempts == 5

    def test_validate_all_settings(self):
        results = validate_all_settings()
        assert results["app"] and results["rollup"] and results["audit"]
