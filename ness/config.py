"""
Runtime configuration for ness.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError

# CloudFront only reads certificates from us-east-1, so every stack lives there.
DEFAULT_REGION = "us-east-1"
DEFAULT_STACK_PREFIX = "ness"
DEFAULT_OWNERSHIP_MARKER = "ness"


@dataclass(frozen=True)
class NessConfig:
    """Knobs for the orchestration engine."""
    region: str = DEFAULT_REGION
    stack_prefix: str = DEFAULT_STACK_PREFIX
    poll_interval: float = 5.0          # seconds between stack / changeset polls
    dns_poll_interval: float = 1.0      # seconds between TXT lookups
    dns_max_attempts: Optional[int] = None  # None keeps polling until cancelled
    stack_timeout: float = 3600.0
    changeset_timeout: float = 600.0
    home: str = ".ness"
    events_url: Optional[str] = None
    ownership_marker: str = DEFAULT_OWNERSHIP_MARKER

    @classmethod
    def from_env(cls, environ=None) -> "NessConfig":
        """
        Build a configuration from NESS_* environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            NessConfig with overrides applied

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        env = os.environ if environ is None else environ
        config = cls()
        overrides = {}

        if env.get("NESS_REGION"):
            overrides["region"] = env["NESS_REGION"]
        if env.get("NESS_STACK_PREFIX"):
            overrides["stack_prefix"] = env["NESS_STACK_PREFIX"]
        if env.get("NESS_HOME"):
            overrides["home"] = env["NESS_HOME"]
        if env.get("NESS_EVENTS_URL"):
            overrides["events_url"] = env["NESS_EVENTS_URL"]

        for var, field_name, cast in (
            ("NESS_POLL_INTERVAL", "poll_interval", float),
            ("NESS_DNS_POLL_INTERVAL", "dns_poll_interval", float),
            ("NESS_DNS_MAX_ATTEMPTS", "dns_max_attempts", int),
            ("NESS_STACK_TIMEOUT", "stack_timeout", float),
        ):
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            try:
                value = cast(raw)
            except ValueError:
                raise ConfigurationError(f"Invalid value for {var}: {raw!r}")
            if value < 0:
                raise ConfigurationError(f"{var} must not be negative")
            overrides[field_name] = value

        return replace(config, **overrides)

    @property
    def home_path(self) -> Path:
        return Path(self.home).resolve()
