from __future__ import annotations

import pytest

from contact_api.core.config import Settings


@pytest.fixture
def app_main():
    from contact_api import main

    yield main
    if hasattr(main.app.state, "contact_pipeline"):
        del main.app.state.contact_pipeline


@pytest.mark.asyncio
async def test_startup_fails_fast_on_config_errors_in_production(monkeypatch, app_main):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setattr(Settings, "validate_required_config", lambda _self: ["missing secret"])

    with pytest.raises(RuntimeError, match="Configuration validation failed in production environment"):
        await app_main._startup_jobs()


@pytest.mark.asyncio
async def test_startup_fails_fast_on_config_errors_outside_production(monkeypatch, app_main):
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setattr(Settings, "validate_required_config", lambda _self: ["missing secret"])

    with pytest.raises(RuntimeError, match="Configuration validation failed in test environment: missing secret"):
        await app_main._startup_jobs()

    assert app_main._rate_limit_sweep_task is None


@pytest.mark.asyncio
async def test_allow_invalid_config_is_ignored_in_production(monkeypatch, app_main):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.setenv("ALLOW_INVALID_CONFIG", "true")
    monkeypatch.setattr(Settings, "validate_required_config", lambda _self: ["missing secret"])

    with pytest.raises(RuntimeError, match="Configuration validation failed in production environment"):
        await app_main._startup_jobs()


@pytest.mark.asyncio
async def test_allow_invalid_config_starts_with_warning_outside_production(monkeypatch, app_main, caplog):
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("ALLOW_INVALID_CONFIG", "true")
    monkeypatch.setattr(Settings, "validate_required_config", lambda _self: ["missing secret"])

    await app_main._startup_jobs()
    try:
        assert "missing secret" in caplog.text
        assert "ALLOW_INVALID_CONFIG" in caplog.text
        assert app_main._rate_limit_sweep_task is not None
        assert app_main.app.state.contact_pipeline._service is None
    finally:
        await app_main._shutdown_jobs()

    assert app_main._rate_limit_sweep_task is None


@pytest.mark.asyncio
async def test_startup_builds_pipeline_when_config_is_valid(app_main):
    await app_main._startup_jobs()
    try:
        assert app_main.app.state.contact_pipeline._service is not None
    finally:
        await app_main._shutdown_jobs()


# ── validate_required_config ──────────────────────────────────────────────


def _settings(**overrides) -> Settings:
    values = {
        "environment": "production",
        "turnstile_secret_key": "0x4AAAAAAATestSecret",
        "email_provider": "resend",
        "email_fallback_provider": "",
        "resend_api_key": "re_123",
        "email_from": "Portfolio <noreply@example.com>",
        "email_to": "owner@example.com",
    }
    values.update(overrides)
    return Settings(**values)


def test_valid_production_config_has_no_errors():
    assert _settings().validate_required_config() == []


def test_turnstile_secret_format():
    assert 'TURNSTILE_SECRET_KEY must start with "0x"' in _settings(turnstile_secret_key="abc").validate_required_config()
    assert "TURNSTILE_SECRET_KEY is required" in _settings(turnstile_secret_key="").validate_required_config()


def test_turnstile_mock_skips_secret_outside_production():
    settings = _settings(environment="development", enable_turnstile_mock=True, turnstile_secret_key="")
    assert settings.validate_required_config() == []


def test_turnstile_mock_is_ignored_in_production():
    settings = _settings(enable_turnstile_mock=True, turnstile_secret_key="")
    assert "TURNSTILE_SECRET_KEY is required" in settings.validate_required_config()


def test_provider_credentials_are_checked_per_selected_provider():
    errors = _settings(resend_api_key="key_123", email_fallback_provider="sendgrid").validate_required_config()
    assert 'RESEND_API_KEY must start with "re_"' in errors
    assert "SENDGRID_API_KEY is required" in errors


def test_smtp_requires_host():
    assert "SMTP_HOST is required" in _settings(email_provider="smtp").validate_required_config()


def test_mock_email_not_allowed_in_production():
    errors = _settings(email_provider="mock").validate_required_config()
    assert "Mock email provider is not allowed in production" in errors


def test_unknown_provider_is_reported():
    errors = _settings(email_provider="pigeon").validate_required_config()
    assert "Unknown email provider: 'pigeon'" in errors


def test_addresses_are_validated():
    errors = _settings(email_from="", email_to="not-an-address").validate_required_config()
    assert "EMAIL_FROM is required" in errors
    assert "EMAIL_TO must be a valid email address" in errors


def test_thresholds_must_be_positive():
    errors = _settings(rate_limit_max_requests=0, rate_limit_window_seconds=-1).validate_required_config()
    assert "RATE_LIMIT_MAX_REQUESTS must be positive" in errors
    assert "RATE_LIMIT_WINDOW_SECONDS must be positive" in errors


def test_list_settings_accept_csv_and_json():
    settings = _settings(trusted_proxy_cidrs_raw="10.0.0.0/8, 192.168.0.0/16", cors_allow_origins_raw='["https://a.example"]')
    assert settings.trusted_proxy_cidrs == ["10.0.0.0/8", "192.168.0.0/16"]
    assert settings.cors_allow_origins == ["https://a.example"]


def test_default_timeouts_fit_inside_request_timeout():
    settings = _settings(email_fallback_provider="sendgrid", sendgrid_api_key="SG.abc")
    assert settings.worst_case_stage_seconds <= settings.request_timeout_seconds
    assert settings.validate_required_config() == []


def test_request_timeout_must_cover_retries_and_fallback():
    settings = _settings(
        email_fallback_provider="sendgrid",
        sendgrid_api_key="SG.abc",
        turnstile_timeout_seconds=5.0,
        email_timeout_seconds=10.0,
        email_max_retries=3,
        email_retry_base_delay_ms=100,
        request_timeout_seconds=30.0,
    )
    # 5 + 2 * (3 * 10 + 0.1 + 0.2)
    assert settings.worst_case_stage_seconds == pytest.approx(65.6)
    assert "REQUEST_TIMEOUT_SECONDS must cover the worst-case stage time (65.6s)" in settings.validate_required_config()
