"""Poll interceptors for their pending-request counts and aggregate them."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

log = logging.getLogger(__name__)

EndpointsFunc = Callable[[str, str], Iterable[str]]
"""Return the addresses of the endpoints behind ``(namespace, service)``."""

CountFunc = Callable[[str], Mapping[str, int]]
"""Return the per-host pending counts served by the interceptor at a URL."""

_POLL_SECONDS = 0.05


class QueuePingerError(RuntimeError):
    """Raised when request counts cannot be fetched."""


def fetch_counts(
    endpoints_fn: EndpointsFunc,
    count_fn: CountFunc,
    namespace: str,
    service: str,
    admin_port: str,
) -> tuple[dict[str, int], int]:
    """Fetch counts from every endpoint of a service concurrently.

    Each endpoint is addressed as ``http://<address>:<admin_port>``. Returns the
    per-host totals summed over all endpoints and the grand total. Any failure
    raises :class:`QueuePingerError`.
    """
    try:
        addresses = list(endpoints_fn(namespace, service))
    except Exception as exc:
        raise QueuePingerError(
            f"getting endpoints for service {namespace}/{service}"
        ) from exc

    urls = [f"http://{address}:{admin_port}" for address in addresses]
    if not urls:
        return {}, 0

    with ThreadPoolExecutor(max_workers=len(urls)) as pool:
        futures = [pool.submit(count_fn, url) for url in urls]
        results = []
        for url, future in zip(urls, futures):
            try:
                results.append(future.result())
            except Exception as exc:
                log.error("getting queue counts from interceptor %s: %s", url, exc)
                raise QueuePingerError(
                    f"getting queue counts from interceptor {url}"
                ) from exc

    totals: Counter[str] = Counter()
    aggregate = 0
    for counts in results:
        for host, value in counts.items():
            totals[host] += value
            aggregate += value
    return dict(totals), aggregate


class QueuePinger:
    """Keeps the latest pending-request counts of all interceptors behind a service."""

    def __init__(
        self,
        endpoints_fn: EndpointsFunc,
        count_fn: CountFunc,
        namespace: str,
        service: str,
        deployment: str,
        admin_port: str,
    ) -> None:
        self.endpoints_fn = endpoints_fn
        self.count_fn = count_fn
        self.namespace = namespace
        self.service = service
        self.deployment = deployment
        self.admin_port = admin_port
        self.last_ping_time: datetime | None = None
        self._lock = threading.Lock()
        self._all_counts: dict[str, int] = {}
        self._aggregate = 0
        self.fetch_and_save_counts()

    def counts(self) -> dict[str, int]:
        """Return a copy of the latest per-host counts."""
        with self._lock:
            return dict(self._all_counts)

    def aggregate_count(self) -> int:
        """Return the latest sum of all counts."""
        with self._lock:
            return self._aggregate

    def fetch_and_save_counts(self) -> None:
        """Fetch fresh counts and store them."""
        with self._lock:
            try:
                counts, aggregate = fetch_counts(
                    self.endpoints_fn,
                    self.count_fn,
                    self.namespace,
                    self.service,
                    self.admin_port,
                )
            except QueuePingerError as exc:
                log.error("getting request counts: %s", exc)
                raise
            self._all_counts = counts
            self._aggregate = aggregate
            self.last_ping_time = datetime.now()

    def start(
        self,
        stop_event: threading.Event,
        interval: float,
        deployment_events: queue.Queue | None = None,
    ) -> None:
        """Refresh counts every ``interval`` seconds until ``stop_event`` is set.

        Every item arriving on ``deployment_events`` (changes to the interceptor
        deployment) triggers an extra refresh whose failure is only logged. A
        failed scheduled refresh raises :class:`QueuePingerError`.
        """
        next_tick = time.monotonic() + interval
        while not stop_event.is_set():
            remaining = next_tick - time.monotonic()
            if remaining <= 0:
                try:
                    self.fetch_and_save_counts()
                except QueuePingerError as exc:
                    raise QueuePingerError("error getting request counts") from exc
                next_tick = max(next_tick + interval, time.monotonic())
                continue

            wait = min(remaining, _POLL_SECONDS)
            if deployment_events is None:
                stop_event.wait(wait)
                continue
            try:
                deployment_events.get(timeout=wait)
            except queue.Empty:
                continue
            try:
                self.fetch_and_save_counts()
            except QueuePingerError as exc:
                log.error(
                    "getting request counts after interceptor deployment event: %s", exc
                )
        log.info("stop requested, stopping queue pinger loop")