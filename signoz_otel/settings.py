"""
SigNoz settings

Settings come from SIGNOZ_* environment variables and, optionally, from the
"Signoz" section of an application config mapping (parsed JSON, TOML, YAML...).
Keys in the section may be snake_case, camelCase or PascalCase.
"""

import re
from typing import Any, Dict, Mapping, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

SETTINGS_SECTION = "Signoz"
DEFAULT_CORRELATION_HEADER = "X-Correlation-ID"

# Key names used by older config files
_LEGACY_KEYS = {
    "use_console": "use_console_export",
    "use_otlp": "use_otlp_export",
}


class SignozSettings(BaseSettings):
    """Telemetry settings bound from the environment or a config section.

    Nothing is installed unless ``enabled`` is true. OTLP exporters are only
    created when ``use_otlp_export`` is set and ``otlp_endpoint`` is configured.
    """

    model_config = SettingsConfigDict(env_prefix="SIGNOZ_", case_sensitive=False, extra="ignore")

    enabled: bool = False

    # Falls back to the application name when blank
    service_name: Optional[str] = None
    service_name_suffix: Optional[str] = None
    service_version: Optional[str] = None

    otlp_endpoint: Optional[str] = None
    use_console_export: bool = False
    use_otlp_export: bool = True

    export_logs: bool = False
    export_traces: bool = True
    export_metrics: bool = True

    correlation_header: str = DEFAULT_CORRELATION_HEADER

    @property
    def should_export_otlp(self) -> bool:
        return self.use_otlp_export and self.otlp_endpoint is not None

    def otlp_url(self, signal: str) -> str:
        """OTLP/HTTP endpoint for a signal ("traces", "metrics" or "logs")."""
        if self.otlp_endpoint is None:
            raise ValueError("otlp_endpoint is not configured")
        return f"{self.otlp_endpoint.rstrip('/')}/v1/{signal}"

    def resolve_service_name(self, application_name: str) -> str:
        """Service name reported to SigNoz, always lowercase.

        The configured name wins over the application name. A suffix is joined
        with a dash, e.g. ``billing`` + ``worker`` -> ``billing-worker``.
        """
        if self.service_name and self.service_name.strip():
            name = self.service_name.strip()
        else:
            name = application_name.strip()

        suffix = (self.service_name_suffix or "").strip().lstrip("-")
        if suffix:
            name = f"{name}-{suffix}"
        return name.lower()


def _normalize_key(key: str) -> str:
    key = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", key).lower()
    return _LEGACY_KEYS.get(key, key)


def _find_section(config: Mapping[str, Any], section: str) -> Mapping[str, Any]:
    if section in config:
        return config[section] or {}
    for key, value in config.items():
        if isinstance(key, str) and key.lower() == section.lower():
            return value or {}
    return {}


def load_settings(config: Optional[Mapping[str, Any]] = None, section: str = SETTINGS_SECTION) -> SignozSettings:
    """Build settings from the environment plus an optional config section.

    Values found in ``config[section]`` take precedence over SIGNOZ_* variables.
    """
    values: Dict[str, Any] = {}
    if config is not None:
        block = _find_section(config, section)
        values = {_normalize_key(key): value for key, value in block.items()}
    return SignozSettings(**values)
