"""Configuration models for peaktop."""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field


class IntervalConfig(BaseModel):
    """Sampling cadence per collector, in seconds."""

    host: float = Field(1.0, ge=0.1, description="Host metrics sampling interval.")
    processes: float = Field(2.0, ge=0.1, description="Process table sampling interval.")
    connections: float = Field(3.0, ge=0.1, description="Connection table sampling interval.")


class ThresholdConfig(BaseModel):
    """Alert thresholds for host metrics."""

    cpu: float = Field(80.0, ge=0.0, le=100.0, description="CPU usage alert threshold (%).")
    memory: float = Field(85.0, ge=0.0, le=100.0, description="Memory usage alert threshold (%).")
    disk: float = Field(90.0, ge=0.0, le=100.0, description="Disk usage alert threshold (%).")
    enable_alerts: bool = Field(False, description="Whether threshold alerts are raised at all.")
    cooldown_seconds: float = Field(
        300.0,
        ge=0.0,
        description="Minimum time between two alerts of the same kind.",
    )


class LoggingConfig(BaseModel):
    """Logging destination and verbosity."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Path | None = Field(
        None, description="Optional rotating log file. Console output goes to the textual log."
    )


class MonitorConfig(BaseModel):
    """Top-level configuration consumed by the telemetry engine and the UI."""

    intervals: IntervalConfig = Field(default_factory=IntervalConfig)
    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sample_timeout: float = Field(
        5.0,
        gt=0.0,
        description="Upper bound on a single sampling call before the cycle counts as failed.",
    )
    stop_timeout: float = Field(
        5.0,
        gt=0.0,
        description="How long stop() waits for each collector thread to exit.",
    )
    export_dir: Path = Field(
        Path("."), description="Directory connection CSV exports are written to."
    )


def load_config(
    path: os.PathLike[str] | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> MonitorConfig:
    """
    Load configuration from an optional YAML file.

    Args:
        path: Optional path to a YAML mapping. Defaults are used when omitted.
        overrides: Optional mapping deep-merged on top of the file contents.

    Returns:
        MonitorConfig: Parsed configuration model.
    """
    data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}

    if overrides:
        data = _deep_update(data, overrides)

    return MonitorConfig(**data)


def _deep_update(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge update mapping into base mapping."""
    merged = dict(base)
    for key, value in updates.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_update(merged[key], value)
        else:
            merged[key] = value
    return merged
