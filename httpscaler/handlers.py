"""External scaler operations: activity, metric specs and metric values."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field

from httpscaler.naming import metric_name, namespaced_key
from httpscaler.queue_pinger import QueuePinger

log = logging.getLogger(__name__)

KEY_INTERCEPTOR_TARGET_PENDING_REQUESTS = "interceptorTargetPendingRequests"
DEFAULT_TARGET_PENDING_REQUESTS = 100

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_DECIMAL_INT = re.compile(r"[+-]?[0-9]+")

TargetLookup = Callable[[str, str], "int | None"]
"""Return the target pending requests of the scaled object ``(namespace, name)``.

``None`` means the object sets no target. A missing object raises
:class:`ScaledObjectNotFound`.
"""


class ScaledObjectNotFound(LookupError):
    """Raised when a scaled object does not exist."""


class ScalerError(RuntimeError):
    """Raised when a scaler request cannot be answered."""


@dataclass(frozen=True)
class ScaledObjectRef:
    """Reference to the scaled object a request is about."""

    namespace: str
    name: str
    scaler_metadata: Mapping[str, str] | None = field(default=None)


@dataclass(frozen=True)
class MetricSpec:
    """Name of a metric and the target value to scale on."""

    metric_name: str
    target_size: int


@dataclass(frozen=True)
class MetricValue:
    """Current value of a metric."""

    metric_name: str
    metric_value: int


def _parse_int64(text: str) -> int:
    if not _DECIMAL_INT.fullmatch(text):
        raise ScalerError(f"invalid syntax in integer {text!r}")
    value = int(text, 10)
    if not _INT64_MIN <= value <= _INT64_MAX:
        raise ScalerError(f"integer {text!r} out of range")
    return value


def _has_interceptor_metadata(ref: ScaledObjectRef) -> bool:
    return bool(ref.scaler_metadata) and (
        KEY_INTERCEPTOR_TARGET_PENDING_REQUESTS in ref.scaler_metadata
    )


class ScalerHandler:
    """Answers the queries an autoscaler makes of an external scaler."""

    def __init__(
        self,
        pinger: QueuePinger,
        lookup_target: TargetLookup,
        default_target_metric: int,
    ) -> None:
        self.pinger = pinger
        self.lookup_target = lookup_target
        self.target_metric = default_target_metric

    def ping(self) -> None:
        """Answer a liveness ping; does nothing."""

    def is_active(self, ref: ScaledObjectRef) -> bool:
        """Return whether the scaled object has any pending requests."""
        try:
            values = self.get_metrics(ref)
        except Exception as exc:
            log.error("GetMetrics failed for %s/%s: %s", ref.namespace, ref.name, exc)
            raise
        if len(values) != 1:
            log.error("invalid metrics response for %s/%s", ref.namespace, ref.name)
            raise ScalerError("len(metricValues) != 1")
        return values[0].metric_value > 0

    def stream_is_active(
        self,
        ref: ScaledObjectRef,
        stop_event: threading.Event,
        interval: float = 0.005,
    ) -> Iterator[bool]:
        """Yield the activity of ``ref`` every ``interval`` seconds until stopped."""
        while not stop_event.wait(interval):
            try:
                active = self.is_active(ref)
            except Exception as exc:
                log.error("error getting active status in stream: %s", exc)
                raise
            yield active

    def get_metric_spec(self, ref: ScaledObjectRef) -> list[MetricSpec]:
        """Return the metric spec for the scaled object."""
        name = metric_name(ref.namespace, ref.name)
        try:
            target = self.lookup_target(ref.namespace, ref.name)
        except Exception as exc:
            if ref.scaler_metadata:
                raw = ref.scaler_metadata.get(KEY_INTERCEPTOR_TARGET_PENDING_REQUESTS)
                if raw is not None:
                    return self._interceptor_metric_spec(name, raw)
            log.error(
                "unable to get HTTPScaledObject %s/%s: %s", ref.namespace, ref.name, exc
            )
            raise
        if target is None:
            target = DEFAULT_TARGET_PENDING_REQUESTS
        return [MetricSpec(metric_name=name, target_size=int(target))]

    def _interceptor_metric_spec(self, name: str, raw: str) -> list[MetricSpec]:
        try:
            target = _parse_int64(raw)
        except ScalerError as exc:
            log.error("unable to parse interceptorTargetPendingRequests %r: %s", raw, exc)
            raise
        return [MetricSpec(metric_name=name, target_size=target)]

    def get_metrics(self, ref: ScaledObjectRef) -> list[MetricValue]:
        """Return the current pending-request count for the scaled object."""
        name = metric_name(ref.namespace, ref.name)
        count = self.pinger.counts().get(namespaced_key(ref.namespace, ref.name), 0)
        if count == 0 and _has_interceptor_metadata(ref):
            return self._interceptor_metrics(name)
        return [MetricValue(metric_name=name, metric_value=count)]

    def _interceptor_metrics(self, name: str) -> list[MetricValue]:
        count = sum(self.pinger.counts().values())
        if count < 0 or count > _INT64_MAX:
            log.error("count overflowed: %d", count)
            raise ScalerError(f"count {count} out of range")
        return [MetricValue(metric_name=name, metric_value=count)]