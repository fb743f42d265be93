import queue
import threading
import time

import pytest

from httpscaler.queue_pinger import QueuePinger, QueuePingerError, fetch_counts

NS = "testns"
SVC = "testsvc"
DEPL = "testdepl"
ADMIN_PORT = "8081"
ADDRESSES = ["10.0.0.1", "10.0.0.2", "10.0.0.3"]


class FakeInterceptors:
    """Endpoints that all serve the same in-memory queue."""

    def __init__(self, counts, num_endpoints=3):
        self.counts = dict(counts)
        self.addresses = ADDRESSES[:num_endpoints]
        self.urls = []
        self.endpoint_requests = []
        self.fail = False
        self.on_fail = None
        self._lock = threading.Lock()

    def endpoints(self, namespace, service):
        self.endpoint_requests.append((namespace, service))
        return list(self.addresses)

    def __call__(self, url):
        with self._lock:
            self.urls.append(url)
            if self.fail:
                if self.on_fail is not None:
                    self.on_fail()
                raise RuntimeError("interceptor unavailable")
            return dict(self.counts)


def _make_pinger(fake):
    return QueuePinger(fake.endpoints, fake, NS, SVC, DEPL, ADMIN_PORT)


def _wait_for(condition, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.005)
    return condition()


def test_fetch_counts():
    counts = {"host1": 123, "host2": 234, "host3": 345}
    fake = FakeInterceptors(counts, num_endpoints=3)
    cts, agg = fetch_counts(fake.endpoints, fake, NS, SVC, ADMIN_PORT)
    assert agg == sum(counts.values()) * 3
    assert cts == {host: val * 3 for host, val in counts.items()}


def test_fetch_counts_queries_every_endpoint():
    fake = FakeInterceptors({"host1": 1})
    fetch_counts(fake.endpoints, fake, NS, SVC, ADMIN_PORT)
    assert fake.endpoint_requests == [(NS, SVC)]
    assert sorted(fake.urls) == [
        "http://10.0.0.1:8081",
        "http://10.0.0.2:8081",
        "http://10.0.0.3:8081",
    ]


def test_fetch_counts_without_endpoints_is_empty():
    fake = FakeInterceptors({"host1": 5}, num_endpoints=0)
    assert fetch_counts(fake.endpoints, fake, NS, SVC, ADMIN_PORT) == ({}, 0)


def test_fetch_counts_keeps_zero_counts():
    fake = FakeInterceptors({"idle": 0, "busy": 2}, num_endpoints=1)
    cts, agg = fetch_counts(fake.endpoints, fake, NS, SVC, ADMIN_PORT)
    assert cts == {"idle": 0, "busy": 2}
    assert agg == 2


def test_fetch_counts_raises_when_an_interceptor_fails():
    fake = FakeInterceptors({"host1": 1})
    fake.fail = True
    with pytest.raises(QueuePingerError) as info:
        fetch_counts(fake.endpoints, fake, NS, SVC, ADMIN_PORT)
    assert isinstance(info.value.__cause__, RuntimeError)


def test_fetch_counts_raises_when_endpoints_fail():
    def broken_endpoints(namespace, service):
        raise LookupError("no such service")

    with pytest.raises(QueuePingerError):
        fetch_counts(broken_endpoints, FakeInterceptors({}), NS, SVC, ADMIN_PORT)


def test_fetch_and_save_counts():
    counts = {"host1": 123, "host2": 234, "host3": 345}
    fake = FakeInterceptors(counts, num_endpoints=3)
    pinger = _make_pinger(fake)
    pinger.fetch_and_save_counts()
    assert pinger.aggregate_count() == sum(counts.values()) * 3
    assert pinger.counts() == {host: val * 3 for host, val in counts.items()}
    assert pinger.last_ping_time is not None


def test_constructor_does_initial_fetch():
    counts = {"host1": 123, "host2": 234, "host3": 456, "host4": 809}
    fake = FakeInterceptors(counts)
    pinger = _make_pinger(fake)
    assert len(pinger.counts()) == len(counts)


def test_constructor_raises_when_initial_fetch_fails():
    fake = FakeInterceptors({"host1": 1})
    fake.fail = True
    with pytest.raises(QueuePingerError):
        _make_pinger(fake)


def test_counts_returns_a_copy():
    fake = FakeInterceptors({"host1": 1}, num_endpoints=1)
    pinger = _make_pinger(fake)
    snapshot = pinger.counts()
    snapshot["host1"] = 999
    assert pinger.counts() == {"host1": 1}


def test_counts_are_updated_on_tick():
    counts = {"host1": 123, "host2": 234, "host3": 456, "host4": 809}
    fake = FakeInterceptors(counts)
    pinger = _make_pinger(fake)

    fake.counts = {"host1": 1, "host2": 2, "host3": 3, "host4": 4}
    stop = threading.Event()
    worker = threading.Thread(target=pinger.start, args=(stop, 0.01, queue.Queue()))
    worker.start()
    try:
        expected = {host: count * 3 for host, count in fake.counts.items()}
        assert _wait_for(lambda: pinger.counts() == expected)
    finally:
        stop.set()
        worker.join(timeout=5)
    assert not worker.is_alive()


def test_deployment_event_triggers_fetch():
    fake = FakeInterceptors({"host1": 10}, num_endpoints=1)
    pinger = _make_pinger(fake)
    fake.counts = {"host1": 20}
    events = queue.Queue()
    stop = threading.Event()
    worker = threading.Thread(target=pinger.start, args=(stop, 60.0, events))
    worker.start()
    try:
        events.put("modified")
        assert _wait_for(lambda: pinger.counts() == {"host1": 20})
    finally:
        stop.set()
        worker.join(timeout=5)
    assert pinger.aggregate_count() == 20


def test_start_raises_when_scheduled_fetch_fails():
    fake = FakeInterceptors({"host1": 1})
    pinger = _make_pinger(fake)
    fake.fail = True
    with pytest.raises(QueuePingerError, match="error getting request counts"):
        pinger.start(threading.Event(), 0.01)


def test_failed_fetch_after_deployment_event_is_not_fatal():
    fake = FakeInterceptors({"host1": 7}, num_endpoints=1)
    pinger = _make_pinger(fake)
    stop = threading.Event()
    fake.fail = True
    fake.on_fail = stop.set
    events = queue.Queue()
    events.put("modified")
    assert pinger.start(stop, 60.0, events) is None
    assert pinger.counts() == {"host1": 7}


def test_start_returns_immediately_when_already_stopped():
    fake = FakeInterceptors({"host1": 1}, num_endpoints=1)
    pinger = _make_pinger(fake)
    calls_before = len(fake.urls)
    stop = threading.Event()
    stop.set()
    assert pinger.start(stop, 0.001) is None
    assert len(fake.urls) == calls_before