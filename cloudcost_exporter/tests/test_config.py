"""
Tests for configuration validation.
"""

import pytest

from cloudcost_exporter.core.config import Config


@pytest.fixture
def settings(monkeypatch):
    """A Config subclass whose attributes tests can override."""
    class Settings(Config):
        pass

    monkeypatch.setattr(Settings, "PROVIDER", "aws")
    monkeypatch.setattr(Settings, "CPU_COST_RATIOS", "")
    monkeypatch.setattr(Settings, "METRICS_PATH", "/metrics")
    return Settings


def test_defaults_validate(settings):
    """The default configuration is valid."""
    settings.validate()


def test_unknown_provider_rejected(settings):
    """Only aws and gcp are accepted."""
    settings.PROVIDER = "azure"

    with pytest.raises(ValueError, match="PROVIDER"):
        settings.validate()


def test_gcp_requires_projects(settings):
    """PROVIDER=gcp without projects is an error."""
    settings.PROVIDER = "gcp"
    settings.GCP_PROJECTS = []

    with pytest.raises(ValueError, match="GCP_PROJECTS"):
        settings.validate()


def test_cpu_cost_ratios_parsed(settings):
    """CPU_COST_RATIOS is a JSON object of family -> ratio."""
    settings.CPU_COST_RATIOS = '{"Compute optimized": 0.9}'

    assert settings.cpu_cost_ratios() == {"Compute optimized": 0.9}


@pytest.mark.parametrize("value", ["not json", "[0.5]", '{"General purpose": 2}'])
def test_bad_cpu_cost_ratios_rejected(settings, value):
    """Invalid ratio overrides fail validation."""
    settings.CPU_COST_RATIOS = value

    with pytest.raises(ValueError):
        settings.validate()


def test_metrics_path_must_be_absolute(settings):
    """METRICS_PATH needs a leading slash."""
    settings.METRICS_PATH = "metrics"

    with pytest.raises(ValueError):
        settings.validate()


def test_pricing_build_timeout_defaults_to_unbounded(settings):
    """PRICING_BUILD_TIMEOUT_SECONDS=0 means builds have no deadline."""
    settings.PRICING_BUILD_TIMEOUT_SECONDS = 0

    assert settings.pricing_build_timeout() is None
    settings.validate()


def test_pricing_build_timeout_is_separate_from_scrape_timeout(settings):
    """A build deadline is reported in seconds, independent of COLLECTOR_TIMEOUT_SECONDS."""
    settings.COLLECTOR_TIMEOUT_SECONDS = 60
    settings.PRICING_BUILD_TIMEOUT_SECONDS = 900

    assert settings.pricing_build_timeout() == 900.0


def test_negative_pricing_build_timeout_rejected(settings):
    """A negative build deadline is a configuration error."""
    settings.PRICING_BUILD_TIMEOUT_SECONDS = -1

    with pytest.raises(ValueError, match="PRICING_BUILD_TIMEOUT_SECONDS"):
        settings.validate()
