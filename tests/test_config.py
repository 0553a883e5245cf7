from __future__ import annotations

import pytest

from coordinator.core.config import BulkheadLimits, Settings, get_settings


def test_defaults() -> None:
    settings = Settings()

    assert settings.bulkhead.defaults.max_concurrent_requests == 20
    assert settings.bulkhead.defaults.queue_size == 50
    assert settings.circuit_breaker.isolate_tenants is False
    assert settings.health_checks.degraded_error_rate == pytest.approx(0.1)
    assert settings.tools.register_defaults is False
    assert settings.observability.prometheus_enabled is True


def test_nested_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BULKHEAD__DEFAULTS__MAX_CONCURRENT_REQUESTS", "7")
    monkeypatch.setenv("CIRCUIT_BREAKER__ISOLATE_TENANTS", "true")
    monkeypatch.setenv("OBSERVABILITY__LOG_LEVEL", "DEBUG")

    settings = Settings()

    assert settings.bulkhead.defaults.max_concurrent_requests == 7
    assert settings.circuit_breaker.isolate_tenants is True
    assert settings.observability.log_level == "DEBUG"


def test_tenant_overrides_fall_back_to_defaults() -> None:
    settings = Settings(
        bulkhead={
            "defaults": {"max_concurrent_requests": 2, "queue_size": 4},
            "tenant_overrides": {"vip": {"max_concurrent_requests": 50, "queue_size": 100}},
        }
    )

    assert settings.bulkhead.limits_for("vip") == BulkheadLimits(max_concurrent_requests=50, queue_size=100)
    assert settings.bulkhead.limits_for("other") == BulkheadLimits(max_concurrent_requests=2, queue_size=4)


def test_get_settings_caches_defaults_and_honours_overrides() -> None:
    assert get_settings() is get_settings()

    overridden = get_settings({"environment": "test"})
    assert overridden.environment == "test"
    assert overridden is not get_settings()
