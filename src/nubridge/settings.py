"""Runtime settings for nubridge."""

import os
from collections.abc import Mapping

from nubridge.converter import DEFAULT_MAX_FLATTEN_FIELDS
from nubridge.converter import DEFAULT_MAX_FLATTEN_PROPERTIES
from nubridge.handles import DEFAULT_RETENTION_SECONDS
from nubridge.handles import DEFAULT_SWEEP_INTERVAL_SECONDS

PLUGIN_VERSION: str = "0.1.0"
DEFAULT_PROTOCOL_NAME: str = "nu-plugin"
DEFAULT_PROTOCOL_VERSION: str = "0.105.2"
ENV_RETENTION_SECONDS: str = "NUBRIDGE_RETENTION_SECONDS"
ENV_SWEEP_INTERVAL_SECONDS: str = "NUBRIDGE_SWEEP_INTERVAL_SECONDS"
ENV_WRAP_PIPELINE_DATA: str = "NUBRIDGE_WRAP_PIPELINE_DATA"
ENV_PRELOAD: str = "NUBRIDGE_PRELOAD"
_TRUE_STRINGS: set[str] = {"1", "true", "yes", "on"}
_FALSE_STRINGS: set[str] = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, raw: str) -> bool:
    """Parse a boolean environment value.

    :param name: Variable name, used in messages.
    :param raw: Raw value.
    :returns: Parsed flag.
    :raises ValueError: If the value is not a recognized boolean.
    """
    lowered: str = raw.strip().lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _parse_float(name: str, raw: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


class BridgeSettings:
    """Tunable behavior of one bridge session."""

    protocol_name: str
    protocol_version: str
    retention_seconds: float
    sweep_interval_seconds: float
    wrap_pipeline_data: bool
    max_flatten_properties: int
    max_flatten_fields: int
    preload_modules: list[str]

    def __init__(
        self,
        protocol_name: str = DEFAULT_PROTOCOL_NAME,
        protocol_version: str = DEFAULT_PROTOCOL_VERSION,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        wrap_pipeline_data: bool = False,
        max_flatten_properties: int = DEFAULT_MAX_FLATTEN_PROPERTIES,
        max_flatten_fields: int = DEFAULT_MAX_FLATTEN_FIELDS,
        preload_modules: list[str] | None = None,
    ) -> None:
        """Initialize settings.

        :param protocol_name: Protocol name announced in the handshake.
        :param protocol_version: Protocol version announced in the handshake.
        :param retention_seconds: Idle time after which a handle is swept.
        :param sweep_interval_seconds: Period of the background sweep.
        :param wrap_pipeline_data: Wrap Run results in a ``PipelineData`` envelope.
        :param max_flatten_properties: Property cap per object in ``py obj`` output.
        :param max_flatten_fields: Attribute cap per object in ``py obj`` output.
        :param preload_modules: Modules or paths loaded at startup.
        :raises ValueError: If a value is out of range.
        """
        if protocol_name.strip() == "":
            raise ValueError("protocol_name must not be empty")
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        if max_flatten_properties < 0 or max_flatten_fields < 0:
            raise ValueError("flatten caps must not be negative")
        self.protocol_name = protocol_name
        self.protocol_version = protocol_version
        self.retention_seconds = float(retention_seconds)
        self.sweep_interval_seconds = float(sweep_interval_seconds)
        self.wrap_pipeline_data = wrap_pipeline_data
        self.max_flatten_properties = max_flatten_properties
        self.max_flatten_fields = max_flatten_fields
        self.preload_modules = list(preload_modules) if preload_modules is not None else []

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> "BridgeSettings":
        """Build settings from ``NUBRIDGE_*`` environment variables.

        Keyword overrides whose value is ``None`` are ignored, so parsed CLI
        arguments can be passed through directly.

        :param environ: Environment mapping; defaults to ``os.environ``.
        :param overrides: Explicit values that win over the environment.
        :returns: Settings instance.
        :raises ValueError: If a variable cannot be parsed.
        """
        source: Mapping[str, str] = os.environ if environ is None else environ
        values: dict[str, object] = {}

        raw_retention: str | None = source.get(ENV_RETENTION_SECONDS)
        if raw_retention is not None:
            values["retention_seconds"] = _parse_float(ENV_RETENTION_SECONDS, raw_retention)
        raw_interval: str | None = source.get(ENV_SWEEP_INTERVAL_SECONDS)
        if raw_interval is not None:
            values["sweep_interval_seconds"] = _parse_float(ENV_SWEEP_INTERVAL_SECONDS, raw_interval)
        raw_wrap: str | None = source.get(ENV_WRAP_PIPELINE_DATA)
        if raw_wrap is not None:
            values["wrap_pipeline_data"] = _parse_bool(ENV_WRAP_PIPELINE_DATA, raw_wrap)
        raw_preload: str | None = source.get(ENV_PRELOAD)
        if raw_preload is not None:
            values["preload_modules"] = [item.strip() for item in raw_preload.split(",") if item.strip() != ""]

        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        return cls(**values)
