# httpscaler

Core logic of an external scaler for HTTP workloads. It polls every
interceptor instance behind a service for its pending-request counts,
adds them up per host, and answers the questions an autoscaler asks:
is this workload active, what is its target size, and what is its
current metric value.

The package has no third-party dependencies.

## Installation

```
pip install httpscaler
```

## Configuration

`httpscaler.config.load_config(environ=None)` reads settings from a mapping
of environment variables (the process environment when `environ` is `None`)
and returns a frozen `ScalerConfig` dataclass.

Required variables:

| Variable | Field |
| --- | --- |
| `KEDA_HTTP_SCALER_TARGET_ADMIN_NAMESPACE` | `target_namespace` |
| `KEDA_HTTP_SCALER_TARGET_ADMIN_SERVICE` | `target_service` |
| `KEDA_HTTP_SCALER_TARGET_ADMIN_DEPLOYMENT` | `target_deployment` |
| `KEDA_HTTP_SCALER_TARGET_ADMIN_PORT` | `target_port` |

Optional variables and their defaults:

| Variable | Field | Default |
| --- | --- | --- |
| `KEDA_HTTP_SCALER_PORT` | `grpc_port` | `8080` |
| `KEDA_HTTP_HEALTH_PORT` | `health_port` | `8090` |
| `KEDA_HTTP_SCALER_TARGET_PENDING_REQUESTS` | `target_pending_requests` | `100` |
| `KEDA_HTTP_SCALER_CONFIG_MAP_INFORMER_RSYNC_PERIOD` | `config_map_cache_rsync_period` | `60m` |
| `KEDA_HTTP_SCALER_DEPLOYMENT_INFORMER_RSYNC_PERIOD` | `deployment_cache_rsync_period` | `60m` |
| `KEDA_HTTP_QUEUE_TICK_DURATION` | `queue_tick_duration` | `500ms` |

Integers accept `0x`, `0o` and `0b` prefixes, and a leading `0` means octal.
Durations are parsed by `parse_duration`, which takes strings such as
`300ms`, `1.5h` or `2h45m` (units `ns`, `us`, `µs`, `ms`, `s`, `m`, `h`,
optionally signed) and returns a `datetime.timedelta`. A missing required
variable or a malformed value raises `ConfigError`, a `ValueError`.

## Metric names

`httpscaler.naming` builds the names under which metrics are reported:

- `namespaced_key(namespace, name)` returns `"namespace/name"`.
- `metric_name(namespace, name)` returns `"http-namespace/name"` escaped by
  `escape_string`.
- `escape_string(s)` replaces every character other than ASCII letters,
  digits, `-` and `.` by `_` followed by the upper-case hex of its UTF-8
  bytes, padded to at least four digits.

```python
>>> from httpscaler.naming import metric_name
>>> metric_name("default", "app")
'http-default_002Fapp'
```

## Polling interceptors

`httpscaler.queue_pinger.QueuePinger` keeps the latest counts from every
interceptor behind a service. You supply two callables:

- `endpoints_fn(namespace, service)` returns the addresses of the
  interceptor instances;
- `count_fn(url)` returns a `{host: pending_count}` mapping from the
  interceptor at `url`, which is built as `http://<address>:<admin_port>`.

```python
import threading
from httpscaler.queue_pinger import QueuePinger

def endpoints(namespace, service):
    return ["10.0.0.1", "10.0.0.2"]

def count(url):
    return {"default/app": 3}

pinger = QueuePinger(endpoints, count, "keda", "interceptor-admin",
                     "interceptor", "9090")
print(pinger.counts(), pinger.aggregate_count())
# {'default/app': 6} 6

stop = threading.Event()
threading.Thread(target=pinger.start, args=(stop, 0.5, None)).start()
# ... later
stop.set()
```

The pinger fetches once when it is constructed, then on every tick of
`start(stop_event, interval, deployment_events=None)` until `stop_event` is
set. Each item put on the optional `deployment_events` queue triggers an
extra fetch; a failure of that extra fetch is only logged, while a failed
scheduled fetch raises `QueuePingerError`. `fetch_and_save_counts()` fetches
on demand, and `last_ping_time` records when counts were last stored.

The module-level `fetch_counts(endpoints_fn, count_fn, namespace, service,
admin_port)` queries all endpoints concurrently and returns the per-host
totals and the grand total; any failure raises `QueuePingerError`.

## Answering scaler requests

`httpscaler.handlers.ScalerHandler` answers the queries an autoscaler makes
of an external scaler, using a `QueuePinger` and a target lookup:

```python
from httpscaler.handlers import ScalerHandler, ScaledObjectRef, ScaledObjectNotFound

targets = {("default", "app"): 50}

def lookup_target(namespace, name):
    try:
        return targets[(namespace, name)]
    except KeyError:
        raise ScaledObjectNotFound(f"{namespace}/{name}") from None

handler = ScalerHandler(pinger, lookup_target, default_target_metric=100)
ref = ScaledObjectRef(namespace="default", name="app")
handler.is_active(ref)        # True when the metric value is above zero
handler.get_metric_spec(ref)  # [MetricSpec(metric_name=..., target_size=50)]
handler.get_metrics(ref)      # [MetricValue(metric_name=..., metric_value=...)]
```

- `get_metric_spec(ref)` uses the target returned by `lookup_target`, or 100
  when it returns `None`. If the lookup raises and the reference carries the
  `interceptorTargetPendingRequests` metadata key, the target is that key's
  value parsed as a 64-bit decimal integer (a bad value raises
  `ScalerError`); otherwise the lookup's exception propagates.
- `get_metrics(ref)` reports the count stored under `namespace/name`. When
  that count is zero and the reference carries the
  `interceptorTargetPendingRequests` key, it reports the sum of all counts
  instead.
- `is_active(ref)` is true when the metric value is greater than zero.
- `stream_is_active(ref, stop_event, interval=0.005)` is a generator that
  yields `is_active(ref)` every `interval` seconds until `stop_event` is set.
- `ping()` does nothing and exists to answer liveness checks.

## What this package does not do

It contains the scaler's logic only. It does not include a gRPC or health
server, a command-line entry point, a client for querying interceptors over
HTTP, or any lookup of service endpoints or scaled objects in a cluster;
these are supplied by the caller as the `endpoints_fn`, `count_fn` and
`lookup_target` callables.