"""
Configuration module for loading environment variables.
All exporter settings are read once at import time.
"""
import json
import os
from typing import Dict, List, Optional


def _split_list(value: str) -> List[str]:
    """Split a comma separated env value, dropping blanks."""
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Exporter configuration loaded from environment variables."""

    # Provider selection
    PROVIDER: str = os.getenv("PROVIDER", "aws").lower()

    # AWS Configuration
    AWS_PROFILE: str = os.getenv("AWS_PROFILE", "")
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    AWS_PRICING_REGION: str = os.getenv("AWS_PRICING_REGION", "us-east-1")
    AWS_REGIONS: List[str] = _split_list(os.getenv("AWS_REGIONS", ""))  # empty = discover
    AWS_SERVICES: List[str] = _split_list(os.getenv("AWS_SERVICES", "EC2"))

    # GCP Configuration
    GCP_PROJECTS: List[str] = _split_list(os.getenv("GCP_PROJECTS", ""))
    GCP_SERVICES: List[str] = _split_list(os.getenv("GCP_SERVICES", "GCE"))
    GCP_BILLING_API_BASE_URL: str = "https://cloudbilling.googleapis.com/v1"
    GCP_COMPUTE_API_BASE_URL: str = "https://compute.googleapis.com/compute/v1"

    # Pricing refresh
    SCRAPE_INTERVAL_SECONDS: int = int(os.getenv("SCRAPE_INTERVAL_SECONDS", "3600"))  # 1 hour
    COLLECTOR_TIMEOUT_SECONDS: int = int(os.getenv("COLLECTOR_TIMEOUT_SECONDS", "60"))  # per scrape
    PRICING_BUILD_TIMEOUT_SECONDS: int = int(os.getenv("PRICING_BUILD_TIMEOUT_SECONDS", "0"))  # 0 = no deadline
    PRICING_FETCH_CONCURRENCY: int = int(os.getenv("PRICING_FETCH_CONCURRENCY", "5"))
    HTTP_TIMEOUT_SECONDS: int = int(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))
    CPU_COST_RATIOS: str = os.getenv("CPU_COST_RATIOS", "")  # optional JSON object

    # Metrics / HTTP surface
    METRIC_PREFIX: str = os.getenv("METRIC_PREFIX", "cloudcost")
    SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
    SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8080"))
    METRICS_PATH: str = os.getenv("METRICS_PATH", "/metrics")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info").lower()
    LOG_OUTPUT: str = os.getenv("LOG_OUTPUT", "stdout").lower()

    @classmethod
    def cpu_cost_ratios(cls) -> Dict[str, float]:
        """
        Parse the CPU_COST_RATIOS override.

        Returns:
            Mapping of instance family to CPU share, empty when unset.

        Raises:
            ValueError: If the value is not a JSON object of numbers.
        """
        if not cls.CPU_COST_RATIOS:
            return {}
        try:
            ratios = json.loads(cls.CPU_COST_RATIOS)
        except json.JSONDecodeError as error:
            raise ValueError(f"CPU_COST_RATIOS must be valid JSON: {error}") from error
        if not isinstance(ratios, dict):
            raise ValueError("CPU_COST_RATIOS must be a JSON object")
        return {str(family): float(ratio) for family, ratio in ratios.items()}

    @classmethod
    def pricing_build_timeout(cls) -> Optional[float]:
        """Deadline of one pricing build in seconds, None when unbounded."""
        if cls.PRICING_BUILD_TIMEOUT_SECONDS <= 0:
            return None
        return float(cls.PRICING_BUILD_TIMEOUT_SECONDS)

    @classmethod
    def validate(cls) -> None:
        """
        Validates that required configuration values are set.

        Raises:
            ValueError: If any required configuration is missing or invalid.
        """
        if cls.PROVIDER not in ("aws", "gcp"):
            raise ValueError(f"PROVIDER must be 'aws' or 'gcp' (got: {cls.PROVIDER})")
        if cls.PROVIDER == "gcp" and not cls.GCP_PROJECTS:
            raise ValueError("GCP_PROJECTS is required when PROVIDER=gcp")
        if cls.SCRAPE_INTERVAL_SECONDS <= 0:
            raise ValueError("SCRAPE_INTERVAL_SECONDS must be positive")
        if cls.COLLECTOR_TIMEOUT_SECONDS <= 0:
            raise ValueError("COLLECTOR_TIMEOUT_SECONDS must be positive")
        if cls.PRICING_BUILD_TIMEOUT_SECONDS < 0:
            raise ValueError("PRICING_BUILD_TIMEOUT_SECONDS must not be negative")
        if cls.PRICING_FETCH_CONCURRENCY < 1:
            raise ValueError("PRICING_FETCH_CONCURRENCY must be at least 1")
        if not cls.METRICS_PATH.startswith("/"):
            raise ValueError(f"METRICS_PATH must start with '/' (got: {cls.METRICS_PATH})")
        if cls.LOG_OUTPUT not in ("stdout", "stderr"):
            raise ValueError(f"LOG_OUTPUT must be 'stdout' or 'stderr' (got: {cls.LOG_OUTPUT})")

        for family, ratio in cls.cpu_cost_ratios().items():
            if not 0.0 <= ratio <= 1.0:
                raise ValueError(f"CPU cost ratio for '{family}' must be within [0, 1]")


config = Config()
