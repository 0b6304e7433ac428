"""Configuration for the webhook exporter."""

from __future__ import annotations

import json
import math
import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from .metrics.types import Metric


CONFIG_ENV_VAR = "MSP_WEBHOOK_CONFIG"

# Keys of the flat host-settings form
_FLAT_KEYS = {"sendFreq", "webhookUrl", "authKey"}


class ConfigError(ValueError):
    """Invalid configuration."""


@dataclass
class ExporterConfig:
    """What to send, where and how often."""
    send_freq_minutes: float = 1
    webhook_url: str = ""
    auth_key: str = ""
    auth_param: str = "auth_key"

    # metric id -> enabled
    metrics: dict[str, bool] = field(default_factory=dict)

    @property
    def enabled_metrics(self) -> list[Metric]:
        """Enabled metrics in record order."""
        return [m for m in Metric if self.metrics.get(m.value, False)]

    @property
    def subscription_period_ms(self) -> int:
        return int(round(self.send_freq_minutes * 60000))

    def validate(self) -> None:
        freq = self.send_freq_minutes
        if isinstance(freq, bool) or not isinstance(freq, (int, float)):
            raise ConfigError(f"sendFreq must be a number of minutes, got {freq!r}")
        if not math.isfinite(freq) or freq < 1:
            raise ConfigError(f"sendFreq must be >= 1, got {freq}")
        # JSON numbers arrive as floats from some hosts
        if isinstance(freq, float) and freq.is_integer():
            self.send_freq_minutes = int(freq)
        if not self.webhook_url:
            raise ConfigError("webhookUrl is required")
        if not self.auth_key:
            raise ConfigError("authKey is required")
        unknown = [k for k in self.metrics if k not in {m.value for m in Metric}]
        if unknown:
            raise ConfigError(f"Unknown metric id(s): {', '.join(sorted(unknown))}")


@dataclass
class BacklogConfig:
    """Offline backlog storage."""
    path: str = "offlineData.json"
    max_entries: int = 10000      # 0 = unlimited
    max_age_hours: float = 0.0    # 0 = unlimited


@dataclass
class DeliveryConfig:
    """HTTP delivery settings."""
    timeout_seconds: float = 30.0


@dataclass
class BusConfig:
    """Sensor data bus."""
    type: str = "signalk"  # signalk | memory
    base_url: str = "http://localhost:3000"
    timeout_seconds: float = 5.0
    channel_queue_size: int = 1000


@dataclass
class ServerConfig:
    """HTTP status server configuration."""
    host: str = "0.0.0.0"
    port: int = 8060


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class Config:
    """Main configuration container."""
    exporter: ExporterConfig = field(default_factory=ExporterConfig)
    backlog: BacklogConfig = field(default_factory=BacklogConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    bus: BusConfig = field(default_factory=BusConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> Config:
        self.exporter.validate()
        if self.backlog.max_entries < 0:
            raise ConfigError("backlog.max_entries must be >= 0")
        if self.backlog.max_age_hours < 0:
            raise ConfigError("backlog.max_age_hours must be >= 0")
        if self.bus.type not in ("signalk", "memory"):
            raise ConfigError(f"Unknown bus type: {self.bus.type}")
        return self

    @classmethod
    def from_dict(cls, data: dict) -> Config:
        """
        Create config from a dictionary.

        Accepts the nested form (``exporter:``, ``backlog:``, ...) and the
        flat plugin settings form (``sendFreq``, ``webhookUrl``,
        ``authKey`` and one boolean per metric id), or a mix of both.
        """
        data = dict(data or {})
        flat = {k: data.pop(k) for k in list(data) if k in _FLAT_KEYS or k in _METRIC_IDS}

        try:
            exporter = ExporterConfig(**data.get("exporter", {}))
            if flat:
                _apply_flat_settings(exporter, flat)
            config = cls(
                exporter=exporter,
                backlog=BacklogConfig(**data.get("backlog", {})),
                delivery=DeliveryConfig(**data.get("delivery", {})),
                bus=BusConfig(**data.get("bus", {})),
                server=ServerConfig(**data.get("server", {})),
                logging=LoggingConfig(**data.get("logging", {})),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        return config.validate()

    @classmethod
    def from_yaml(cls, path: str) -> Config:
        """Load config from YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_json(cls, path: str) -> Config:
        """Load config from JSON file."""
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: str) -> Config:
        """Load config, picking the parser from the file extension."""
        if path.endswith(".json"):
            return cls.from_json(path)
        return cls.from_yaml(path)

    @classmethod
    def from_env(cls) -> Config:
        """Load the file named by MSP_WEBHOOK_CONFIG."""
        path = os.environ.get(CONFIG_ENV_VAR)
        if not path:
            raise ConfigError(f"{CONFIG_ENV_VAR} is not set")
        return cls.from_file(path)


_METRIC_IDS = {m.value for m in Metric}


def _apply_flat_settings(exporter: ExporterConfig, flat: dict[str, Any]) -> None:
    if "sendFreq" in flat:
        exporter.send_freq_minutes = flat["sendFreq"]
    if "webhookUrl" in flat:
        exporter.webhook_url = flat["webhookUrl"] or ""
    if "authKey" in flat:
        exporter.auth_key = flat["authKey"] or ""

    metrics = dict(exporter.metrics)
    for metric_id in _METRIC_IDS:
        if metric_id in flat:
            metrics[metric_id] = bool(flat[metric_id])
    exporter.metrics = metrics
