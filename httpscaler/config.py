"""Scaler settings read from the process environment."""

from __future__ import annotations

import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any


class ConfigError(ValueError):
    """Raised when the environment does not describe a usable configuration."""


_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"([0-9]+\.?[0-9]*|\.[0-9]+)(ns|us|\u00b5s|\u03bcs|ms|s|m|h)")
_MAX_NS = 2**63 - 1
_LEGACY_OCTAL = re.compile(r"[+-]?0[0-7]+")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"300ms"``, ``"1.5h"`` or ``"2h45m"``."""
    body = text
    negative = False
    if body[:1] in ("-", "+"):
        negative = body[0] == "-"
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body:
        raise ConfigError(f"invalid duration {text!r}")

    total_ns = 0
    pos = 0
    while pos < len(body):
        match = _COMPONENT.match(body, pos)
        if match is None:
            raise ConfigError(f"invalid duration {text!r}")
        total_ns += int(Decimal(match.group(1)) * _UNIT_NS[match.group(2)])
        pos = match.end()

    if total_ns > _MAX_NS:
        raise ConfigError(f"duration {text!r} is out of range")
    delta = timedelta(microseconds=total_ns // 1_000)
    return -delta if negative else delta


def _parse_int(text: str) -> int:
    try:
        if _LEGACY_OCTAL.fullmatch(text):
            return int(text, 8)
        return int(text, 0)
    except ValueError as exc:
        raise ConfigError(f"invalid integer {text!r}") from exc


@dataclass(frozen=True)
class ScalerConfig:
    """Settings for the external scaler process."""

    target_namespace: str
    target_service: str
    target_deployment: str
    target_port: int
    grpc_port: int = 8080
    health_port: int = 8090
    target_pending_requests: int = 100
    config_map_cache_rsync_period: timedelta = timedelta(minutes=60)
    deployment_cache_rsync_period: timedelta = timedelta(minutes=60)
    queue_tick_duration: timedelta = timedelta(milliseconds=500)


# (field, variable, parser, default); a default of None marks a required variable.
_FIELDS: tuple[tuple[str, str, Callable[[str], Any], str | None], ...] = (
    ("grpc_port", "KEDA_HTTP_SCALER_PORT", _parse_int, "8080"),
    ("health_port", "KEDA_HTTP_HEALTH_PORT", _parse_int, "8090"),
    ("target_namespace", "KEDA_HTTP_SCALER_TARGET_ADMIN_NAMESPACE", str, None),
    ("target_service", "KEDA_HTTP_SCALER_TARGET_ADMIN_SERVICE", str, None),
    ("target_deployment", "KEDA_HTTP_SCALER_TARGET_ADMIN_DEPLOYMENT", str, None),
    ("target_port", "KEDA_HTTP_SCALER_TARGET_ADMIN_PORT", _parse_int, None),
    ("target_pending_requests", "KEDA_HTTP_SCALER_TARGET_PENDING_REQUESTS", _parse_int, "100"),
    (
        "config_map_cache_rsync_period",
        "KEDA_HTTP_SCALER_CONFIG_MAP_INFORMER_RSYNC_PERIOD",
        parse_duration,
        "60m",
    ),
    (
        "deployment_cache_rsync_period",
        "KEDA_HTTP_SCALER_DEPLOYMENT_INFORMER_RSYNC_PERIOD",
        parse_duration,
        "60m",
    ),
    ("queue_tick_duration", "KEDA_HTTP_QUEUE_TICK_DURATION", parse_duration, "500ms"),
)


def load_config(environ: Mapping[str, str] | None = None) -> ScalerConfig:
    """Build a :class:`ScalerConfig` from ``environ`` (the process environment by default)."""
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    for name, variable, parse, default in _FIELDS:
        raw = env.get(variable)
        if raw is None:
            if default is None:
                raise ConfigError(f"required key {variable} missing value")
            raw = default
        try:
            values[name] = parse(raw)
        except ConfigError as exc:
            raise ConfigError(f"{variable}: {exc}") from exc
    return ScalerConfig(**values)